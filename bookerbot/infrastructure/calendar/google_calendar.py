from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx

from bookerbot.application.ports.calendar import CalendarPort
from bookerbot.core.config import settings
from bookerbot.domain.entities.appointment import BusyPeriod, CalendarEvent, CalendarEventInput
from bookerbot.domain.entities.contact import CalendarConnection


class GoogleCalendar(CalendarPort):
    """Google Calendar v3 over REST. Token refresh happens upstream; this only uses the access token."""

    def __init__(
        self,
        access_token: str,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not access_token:
            raise ValueError("An access token is required for Google Calendar")
        self._base_url = (base_url or settings.GOOGLE_CALENDAR_BASE_URL).rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=10.0)
        self._headers = {"Authorization": f"Bearer {access_token}"}
        self._logger = logging.getLogger(__name__)

    @classmethod
    def from_connection(cls, connection: CalendarConnection) -> GoogleCalendar:
        return cls(access_token=connection.access_token or "")

    async def get_free_busy(self, calendar_id: str, start: datetime, end: datetime) -> list[BusyPeriod]:
        payload = {
            "timeMin": start.isoformat(),
            "timeMax": end.isoformat(),
            "items": [{"id": calendar_id}],
        }
        response = await self._client.post(f"{self._base_url}/freeBusy", json=payload, headers=self._headers)
        response.raise_for_status()

        calendars = response.json().get("calendars", {})
        busy: list[BusyPeriod] = []
        for period in calendars.get(calendar_id, {}).get("busy", []):
            try:
                busy.append(BusyPeriod(start=_parse_datetime(period["start"]), end=_parse_datetime(period["end"])))
            except (KeyError, ValueError, AttributeError):
                continue
        return busy

    async def create_event(self, calendar_id: str, event: CalendarEventInput) -> CalendarEvent:
        response = await self._client.post(
            f"{self._base_url}/calendars/{calendar_id}/events",
            params={"sendUpdates": "all"},
            json=_event_body(event),
            headers=self._headers,
        )
        response.raise_for_status()
        created = _to_event(response.json())
        self._logger.info("Calendar event created", extra={"event_id": created.id})
        return created

    async def update_event(self, calendar_id: str, event_id: str, event: CalendarEventInput) -> CalendarEvent:
        response = await self._client.patch(
            f"{self._base_url}/calendars/{calendar_id}/events/{event_id}",
            params={"sendUpdates": "all"},
            json=_event_body(event),
            headers=self._headers,
        )
        response.raise_for_status()
        updated = _to_event(response.json())
        self._logger.info("Calendar event updated", extra={"event_id": updated.id})
        return updated


def _event_body(event: CalendarEventInput) -> dict[str, Any]:
    start: dict[str, str] = {"dateTime": event.start.isoformat()}
    end: dict[str, str] = {"dateTime": event.end.isoformat()}
    if event.time_zone:
        start["timeZone"] = event.time_zone
        end["timeZone"] = event.time_zone

    body: dict[str, Any] = {
        "summary": event.summary,
        "description": event.description,
        "start": start,
        "end": end,
    }
    if event.attendee_email:
        attendee = {"email": event.attendee_email}
        if event.attendee_name:
            attendee["displayName"] = event.attendee_name
        body["attendees"] = [attendee]
    return body


def _to_event(data: dict[str, Any]) -> CalendarEvent:
    event_id = data.get("id")
    if not event_id:
        raise ValueError("No event ID returned from Google Calendar API")
    start = (data.get("start") or {}).get("dateTime")
    end = (data.get("end") or {}).get("dateTime")
    return CalendarEvent(
        id=str(event_id),
        start=_parse_datetime(start) if start else None,
        end=_parse_datetime(end) if end else None,
        html_link=data.get("htmlLink"),
    )


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))
