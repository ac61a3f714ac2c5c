from __future__ import annotations

import logging
from datetime import datetime

from bookerbot.application.ports.calendar import CalendarPort
from bookerbot.domain.entities.appointment import BusyPeriod, CalendarEvent, CalendarEventInput


class MockCalendar(CalendarPort):
    def __init__(
        self,
        busy: list[BusyPeriod] | None = None,
        fail_free_busy: bool = False,
        fail_events: bool = False,
    ) -> None:
        self.busy = list(busy or [])
        self.fail_free_busy = fail_free_busy
        self.fail_events = fail_events
        self.events: dict[str, CalendarEventInput] = {}
        self._logger = logging.getLogger(__name__)

    async def get_free_busy(self, calendar_id: str, start: datetime, end: datetime) -> list[BusyPeriod]:
        if self.fail_free_busy:
            raise ConnectionError("Mock calendar unavailable")
        taken = [BusyPeriod(start=e.start, end=e.end) for e in self.events.values()]
        return [p for p in [*self.busy, *taken] if p.start < end and p.end > start]

    async def create_event(self, calendar_id: str, event: CalendarEventInput) -> CalendarEvent:
        if self.fail_events:
            raise ConnectionError("Mock calendar unavailable")
        event_id = f"mock_event_{len(self.events) + 1}"
        self.events[event_id] = event
        self._logger.info(
            "Mock calendar event created",
            extra={"event_id": event_id, "start": event.start.isoformat(), "summary": event.summary},
        )
        return CalendarEvent(id=event_id, start=event.start, end=event.end)

    async def update_event(self, calendar_id: str, event_id: str, event: CalendarEventInput) -> CalendarEvent:
        if self.fail_events:
            raise ConnectionError("Mock calendar unavailable")
        if event_id not in self.events:
            raise KeyError(event_id)
        self.events[event_id] = event
        self._logger.info("Mock calendar event updated", extra={"event_id": event_id})
        return CalendarEvent(id=event_id, start=event.start, end=event.end)
