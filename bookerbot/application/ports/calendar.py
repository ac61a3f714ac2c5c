from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from bookerbot.domain.entities.appointment import BusyPeriod, CalendarEvent, CalendarEventInput


class CalendarPort(ABC):
    @abstractmethod
    async def get_free_busy(self, calendar_id: str, start: datetime, end: datetime) -> list[BusyPeriod]:
        """Return busy periods overlapping [start, end)."""
        raise NotImplementedError

    @abstractmethod
    async def create_event(self, calendar_id: str, event: CalendarEventInput) -> CalendarEvent:
        raise NotImplementedError

    @abstractmethod
    async def update_event(self, calendar_id: str, event_id: str, event: CalendarEventInput) -> CalendarEvent:
        raise NotImplementedError
