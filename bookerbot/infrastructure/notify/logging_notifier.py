from __future__ import annotations

import logging

from bookerbot.application.ports.notifier import NotifierPort


class LoggingNotifier(NotifierPort):
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self._logger = logging.getLogger(__name__)

    async def send_text(self, recipient: str, text: str) -> None:
        self.sent.append((recipient, text))
        self._logger.info("Notification", extra={"recipient": recipient, "text": text})
