from abc import ABC, abstractmethod
from datetime import datetime

from bookerbot.domain.entities.appointment import Appointment, NewAppointment
from bookerbot.domain.entities.contact import CalendarConnection, Contact
from bookerbot.domain.entities.message import Message, OutboundMessage
from bookerbot.domain.entities.reply import TurnWrite


class ContactStorePort(ABC):
    @abstractmethod
    async def get_contact(self, contact_id: str) -> Contact | None:
        """Load a contact joined with its workflow and client."""
        raise NotImplementedError

    @abstractmethod
    async def get_messages(self, contact_id: str, limit: int = 50) -> list[Message]:
        """Return the most recent messages, oldest first."""
        raise NotImplementedError

    @abstractmethod
    async def save_turn(self, turn: TurnWrite) -> None:
        """
        Persist the outbound message and the contact update as one write.

        The write applies only if the stored conversation record still carries
        `turn.expected_revision`; otherwise StaleContextError is raised and
        nothing is written.
        """
        raise NotImplementedError

    @abstractmethod
    async def insert_outbound_message(self, message: OutboundMessage) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get_calendar_connection(self, client_id: str) -> CalendarConnection | None:
        raise NotImplementedError

    @abstractmethod
    async def create_appointment(self, appointment: NewAppointment) -> Appointment:
        raise NotImplementedError

    @abstractmethod
    async def update_appointment(
        self,
        appointment_id: str,
        start_time: datetime,
        end_time: datetime,
        calendar_event_id: str | None,
    ) -> Appointment:
        raise NotImplementedError

    @abstractmethod
    async def get_latest_confirmed_appointment(self, contact_id: str) -> Appointment | None:
        raise NotImplementedError
