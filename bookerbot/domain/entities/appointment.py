from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class Appointment:
    id: str
    contact_id: str
    workflow_id: str
    client_id: str
    start_time: datetime
    end_time: datetime
    calendar_event_id: str | None = None
    status: str = "confirmed"  # "confirmed", "cancelled", "completed", "no_show"
    notes: str | None = None


@dataclass(frozen=True)
class NewAppointment:
    contact_id: str
    workflow_id: str
    client_id: str
    start_time: datetime
    end_time: datetime
    calendar_event_id: str | None = None
    status: str = "confirmed"
    notes: str | None = None


@dataclass(frozen=True)
class CalendarEventInput:
    summary: str
    description: str
    start: datetime
    end: datetime
    attendee_email: str | None = None
    attendee_name: str | None = None
    time_zone: str | None = None


@dataclass(frozen=True)
class CalendarEvent:
    id: str
    start: datetime | None = None
    end: datetime | None = None
    html_link: str | None = None


@dataclass(frozen=True)
class BusyPeriod:
    start: datetime
    end: datetime
