from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class TimeSlot:
    start: datetime
    end: datetime
    formatted: str = field(default="", compare=False)  # display only; slots compare by (start, end)


@dataclass(frozen=True)
class BookingState:
    is_active: bool = False
    offered_slots: tuple[TimeSlot, ...] = ()
    slots_offered_at: datetime | None = None
    selected_slot: TimeSlot | None = None
    offer_attempts: int = 0
    last_offered_slot: TimeSlot | None = None  # what a bare "yes" resolves to
    is_rescheduling: bool = False
    existing_appointment_id: str | None = None
    existing_calendar_event_id: str | None = None

    @property
    def awaiting_selection(self) -> bool:
        return self.is_active and bool(self.offered_slots)
