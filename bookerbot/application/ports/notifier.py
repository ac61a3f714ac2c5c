from abc import ABC, abstractmethod


class NotifierPort(ABC):
    @abstractmethod
    async def send_text(self, recipient: str, text: str) -> None:
        raise NotImplementedError
