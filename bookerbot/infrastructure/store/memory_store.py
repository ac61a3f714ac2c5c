from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone

from bookerbot.application.dto.conversation_record import load_record
from bookerbot.application.exceptions import StaleContextError, StoreError
from bookerbot.application.ports.contact_store import ContactStorePort
from bookerbot.domain.entities.appointment import Appointment, NewAppointment
from bookerbot.domain.entities.contact import CalendarConnection, Contact
from bookerbot.domain.entities.message import Message, OutboundMessage
from bookerbot.domain.entities.reply import TurnWrite


class MemoryContactStore(ContactStorePort):
    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._contacts: dict[str, Contact] = {}
        self._messages: dict[str, list[Message]] = {}
        self._connections: dict[str, CalendarConnection] = {}
        self._appointments: dict[str, Appointment] = {}
        self.outbound: list[OutboundMessage] = []
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = asyncio.Lock()

    # seeding helpers for local runs and tests

    def add_contact(self, contact: Contact) -> None:
        self._contacts[contact.id] = contact

    def add_message(self, contact_id: str, direction: str, content: str) -> Message:
        message = Message(
            id=str(uuid.uuid4()),
            contact_id=contact_id,
            direction=direction,
            content=content,
            created_at=self._clock(),
        )
        self._messages.setdefault(contact_id, []).append(message)
        return message

    def add_connection(self, connection: CalendarConnection) -> None:
        self._connections[connection.client_id] = connection

    def add_appointment(self, appointment: Appointment) -> None:
        self._appointments[appointment.id] = appointment

    def appointments_for(self, contact_id: str) -> list[Appointment]:
        return [a for a in self._appointments.values() if a.contact_id == contact_id]

    # ContactStorePort

    async def get_contact(self, contact_id: str) -> Contact | None:
        return self._contacts.get(contact_id)

    async def get_messages(self, contact_id: str, limit: int = 50) -> list[Message]:
        return list(self._messages.get(contact_id, []))[-limit:]

    async def save_turn(self, turn: TurnWrite) -> None:
        async with self._lock:
            contact = self._contacts.get(turn.contact_id)
            if contact is None:
                raise StoreError(f"Contact {turn.contact_id} not found")

            stored_revision = load_record(contact.conversation_context).revision
            if stored_revision != turn.expected_revision:
                raise StaleContextError(
                    f"Conversation for {turn.contact_id} is at revision {stored_revision}, "
                    f"expected {turn.expected_revision}"
                )

            updated = replace(
                contact,
                conversation_context=turn.conversation_context,
                last_message_at=turn.last_message_at,
            )
            if turn.status is not None:
                updated = replace(updated, status=turn.status)
            if turn.opted_out is not None:
                updated = replace(updated, opted_out=turn.opted_out)
            self._contacts[contact.id] = updated

            if turn.outbound is not None:
                self._record_outbound(turn.outbound)

    async def insert_outbound_message(self, message: OutboundMessage) -> None:
        async with self._lock:
            self._record_outbound(message)

    async def get_calendar_connection(self, client_id: str) -> CalendarConnection | None:
        return self._connections.get(client_id)

    async def create_appointment(self, appointment: NewAppointment) -> Appointment:
        created = Appointment(
            id=str(uuid.uuid4()),
            contact_id=appointment.contact_id,
            workflow_id=appointment.workflow_id,
            client_id=appointment.client_id,
            start_time=appointment.start_time,
            end_time=appointment.end_time,
            calendar_event_id=appointment.calendar_event_id,
            status=appointment.status,
            notes=appointment.notes,
        )
        self._appointments[created.id] = created
        return created

    async def update_appointment(
        self,
        appointment_id: str,
        start_time: datetime,
        end_time: datetime,
        calendar_event_id: str | None,
    ) -> Appointment:
        existing = self._appointments.get(appointment_id)
        if existing is None:
            raise StoreError(f"Appointment {appointment_id} not found")
        updated = replace(existing, start_time=start_time, end_time=end_time, calendar_event_id=calendar_event_id)
        self._appointments[appointment_id] = updated
        return updated

    async def get_latest_confirmed_appointment(self, contact_id: str) -> Appointment | None:
        confirmed = [a for a in self.appointments_for(contact_id) if a.status == "confirmed"]
        return max(confirmed, key=lambda a: a.start_time, default=None)

    def _record_outbound(self, message: OutboundMessage) -> None:
        self.outbound.append(message)
        self.add_message(message.contact_id, "outbound", message.content)
