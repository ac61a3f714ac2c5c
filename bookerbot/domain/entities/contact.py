from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time
from enum import StrEnum
from typing import Any


class ContactStatus(StrEnum):
    PENDING = "pending"
    CONTACTED = "contacted"
    IN_CONVERSATION = "in_conversation"
    QUALIFIED = "qualified"
    BOOKED = "booked"
    OPTED_OUT = "opted_out"
    UNRESPONSIVE = "unresponsive"
    HANDED_OFF = "handed_off"


class WorkflowStatus(StrEnum):
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class Channel(StrEnum):
    SMS = "sms"
    WHATSAPP = "whatsapp"
    EMAIL = "email"


@dataclass(frozen=True)
class DayHours:
    start: time
    end: time


# keyed by lowercase weekday name; None means closed
BusinessHours = dict[str, DayHours | None]


@dataclass(frozen=True)
class FAQ:
    question: str
    answer: str


@dataclass(frozen=True)
class Client:
    id: str
    name: str
    timezone: str = "Europe/London"
    business_hours: BusinessHours | None = None
    brand_summary: str | None = None
    brand_services: tuple[str, ...] = ()
    brand_target_audience: str | None = None
    brand_tone: str | None = None
    brand_faqs: tuple[FAQ, ...] = ()
    brand_dos: tuple[str, ...] = ()
    brand_donts: tuple[str, ...] = ()
    brand_researched_at: datetime | None = None


@dataclass(frozen=True)
class Workflow:
    id: str
    name: str
    client: Client
    status: WorkflowStatus = WorkflowStatus.ACTIVE
    channel: Channel = Channel.SMS
    instructions: str = ""
    description: str | None = None
    opt_out_message: str | None = None
    appointment_duration_minutes: int = 30
    qualification_criteria: str | None = None


@dataclass(frozen=True)
class Contact:
    id: str
    workflow: Workflow
    phone: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    status: ContactStatus = ContactStatus.PENDING
    opted_out: bool = False
    conversation_context: dict[str, Any] | None = field(default=None, compare=False)
    last_message_at: datetime | None = None

    @property
    def client(self) -> Client:
        return self.workflow.client

    @property
    def display_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or "Unknown"


@dataclass(frozen=True)
class CalendarConnection:
    client_id: str
    calendar_id: str
    provider: str = "google"
    access_token: str | None = None
