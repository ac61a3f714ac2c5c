from __future__ import annotations

import logging
from datetime import datetime, time
from typing import Any

import httpx

from bookerbot.application.exceptions import StaleContextError, StoreError
from bookerbot.application.ports.contact_store import ContactStorePort
from bookerbot.core.config import settings
from bookerbot.domain.entities.appointment import Appointment, NewAppointment
from bookerbot.domain.entities.contact import (
    FAQ,
    BusinessHours,
    CalendarConnection,
    Channel,
    Client,
    Contact,
    ContactStatus,
    DayHours,
    Workflow,
    WorkflowStatus,
)
from bookerbot.domain.entities.message import Message, OutboundMessage
from bookerbot.domain.entities.reply import TurnWrite

CONTACT_SELECT = "*,workflows(*,clients(*))"


class SupabaseContactStore(ContactStorePort):
    """
    Contact store over Supabase's PostgREST API.

    The turn write goes through the `record_conversation_turn` SQL function
    (see supabase/record_conversation_turn.sql) so the outbound message and the
    contact update commit together, guarded by the record revision.
    """

    def __init__(
        self,
        url: str | None = None,
        service_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        base_url = url or settings.SUPABASE_URL
        key = service_key or settings.SUPABASE_SERVICE_KEY
        if not base_url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY are required for the Supabase store")
        self._base_url = f"{base_url.rstrip('/')}/rest/v1"
        self._headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.AsyncClient(timeout=10.0)
        self._logger = logging.getLogger(__name__)

    async def get_contact(self, contact_id: str) -> Contact | None:
        rows = await self._request(
            "GET", "/contacts", params={"id": f"eq.{contact_id}", "select": CONTACT_SELECT, "limit": "1"}
        )
        if not rows:
            return None
        return _contact_from_row(rows[0])

    async def get_messages(self, contact_id: str, limit: int = 50) -> list[Message]:
        rows = await self._request(
            "GET",
            "/messages",
            params={
                "contact_id": f"eq.{contact_id}",
                "select": "id,contact_id,direction,content,channel,created_at",
                "order": "created_at.desc",
                "limit": str(limit),
            },
        )
        messages = [
            Message(
                id=str(row["id"]),
                contact_id=str(row["contact_id"]),
                direction=row.get("direction") or "inbound",
                content=row.get("content") or "",
                created_at=_parse_datetime(row["created_at"]),
                channel=row.get("channel") or "sms",
            )
            for row in rows or []
        ]
        messages.reverse()
        return messages

    async def save_turn(self, turn: TurnWrite) -> None:
        applied = await self._request(
            "POST",
            "/rpc/record_conversation_turn",
            json={
                "p_contact_id": turn.contact_id,
                "p_expected_revision": turn.expected_revision,
                "p_conversation_context": turn.conversation_context,
                "p_last_message_at": turn.last_message_at.isoformat(),
                "p_status": turn.status.value if turn.status else None,
                "p_opted_out": turn.opted_out,
                "p_opted_out_at": turn.opted_out_at.isoformat() if turn.opted_out_at else None,
                "p_message": _message_row(turn.outbound) if turn.outbound else None,
            },
        )
        if applied is not True:
            raise StaleContextError(f"Conversation for {turn.contact_id} changed since it was loaded")

    async def insert_outbound_message(self, message: OutboundMessage) -> None:
        await self._request(
            "POST", "/messages", json=_message_row(message), headers={"Prefer": "return=minimal"}
        )

    async def get_calendar_connection(self, client_id: str) -> CalendarConnection | None:
        rows = await self._request(
            "GET", "/calendar_connections", params={"client_id": f"eq.{client_id}", "select": "*", "limit": "1"}
        )
        if not rows:
            return None
        row = rows[0]
        return CalendarConnection(
            client_id=str(row["client_id"]),
            calendar_id=row.get("calendar_id") or "primary",
            provider=row.get("provider") or "google",
            access_token=row.get("access_token"),
        )

    async def create_appointment(self, appointment: NewAppointment) -> Appointment:
        rows = await self._request(
            "POST",
            "/appointments",
            json={
                "contact_id": appointment.contact_id,
                "workflow_id": appointment.workflow_id,
                "client_id": appointment.client_id,
                "calendar_event_id": appointment.calendar_event_id,
                "start_time": appointment.start_time.isoformat(),
                "end_time": appointment.end_time.isoformat(),
                "status": appointment.status,
                "notes": appointment.notes,
            },
            headers={"Prefer": "return=representation"},
        )
        if not rows:
            raise StoreError("Failed to create appointment: no row returned")
        return _appointment_from_row(rows[0])

    async def update_appointment(
        self,
        appointment_id: str,
        start_time: datetime,
        end_time: datetime,
        calendar_event_id: str | None,
    ) -> Appointment:
        rows = await self._request(
            "PATCH",
            "/appointments",
            params={"id": f"eq.{appointment_id}"},
            json={
                "start_time": start_time.isoformat(),
                "end_time": end_time.isoformat(),
                "calendar_event_id": calendar_event_id,
            },
            headers={"Prefer": "return=representation"},
        )
        if not rows:
            raise StoreError(f"Appointment {appointment_id} not found")
        return _appointment_from_row(rows[0])

    async def get_latest_confirmed_appointment(self, contact_id: str) -> Appointment | None:
        rows = await self._request(
            "GET",
            "/appointments",
            params={
                "contact_id": f"eq.{contact_id}",
                "status": "eq.confirmed",
                "order": "start_time.desc",
                "limit": "1",
            },
        )
        if not rows:
            return None
        return _appointment_from_row(rows[0])

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(
                method,
                f"{self._base_url}{path}",
                params=params,
                json=json,
                headers={**self._headers, **(headers or {})},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            self._logger.error("Supabase request failed", extra={"path": path, "error": str(e)})
            raise StoreError(f"Supabase {method} {path} failed: {e}") from e

        if not response.content:
            return None
        return response.json()


def _message_row(message: OutboundMessage) -> dict[str, Any]:
    return {
        "contact_id": message.contact_id,
        "direction": "outbound",
        "channel": message.channel,
        "content": message.content,
        "status": message.status,
        "ai_generated": message.ai_generated,
        "tokens_used": message.tokens_used,
        "input_tokens": message.input_tokens,
        "output_tokens": message.output_tokens,
        "ai_model": message.ai_model,
        "ai_cost": message.ai_cost,
        "intent_detected": message.intent_detected,
    }


def _contact_from_row(row: dict[str, Any]) -> Contact:
    workflow_row = row.get("workflows") or {}
    client_row = workflow_row.get("clients") or {}
    client = Client(
        id=str(client_row.get("id", "")),
        name=client_row.get("brand_name") or client_row.get("name") or "",
        timezone=client_row.get("timezone") or settings.DEFAULT_TIMEZONE,
        business_hours=_business_hours(client_row.get("business_hours")),
        brand_summary=client_row.get("brand_summary"),
        brand_services=_strings(client_row.get("brand_services")),
        brand_target_audience=client_row.get("brand_target_audience"),
        brand_tone=client_row.get("brand_tone"),
        brand_faqs=tuple(
            FAQ(question=str(f.get("question", "")), answer=str(f.get("answer", "")))
            for f in client_row.get("brand_faqs") or []
            if isinstance(f, dict)
        ),
        brand_dos=_strings(client_row.get("brand_dos")),
        brand_donts=_strings(client_row.get("brand_donts")),
        brand_researched_at=_parse_datetime(client_row["brand_researched_at"])
        if client_row.get("brand_researched_at")
        else None,
    )
    workflow = Workflow(
        id=str(workflow_row.get("id", row.get("workflow_id", ""))),
        name=workflow_row.get("name") or "",
        client=client,
        status=WorkflowStatus(workflow_row.get("status") or "active"),
        channel=Channel(workflow_row.get("channel") or "sms"),
        instructions=workflow_row.get("instructions") or "",
        description=workflow_row.get("description"),
        opt_out_message=workflow_row.get("opt_out_message"),
        appointment_duration_minutes=workflow_row.get("appointment_duration_minutes")
        or settings.DEFAULT_APPOINTMENT_MINUTES,
        qualification_criteria=workflow_row.get("qualification_criteria"),
    )
    return Contact(
        id=str(row["id"]),
        workflow=workflow,
        phone=row.get("phone") or "",
        first_name=row.get("first_name"),
        last_name=row.get("last_name"),
        email=row.get("email"),
        status=ContactStatus(row.get("status") or "pending"),
        opted_out=bool(row.get("opted_out")),
        conversation_context=row.get("conversation_context"),
        last_message_at=_parse_datetime(row["last_message_at"]) if row.get("last_message_at") else None,
    )


def _appointment_from_row(row: dict[str, Any]) -> Appointment:
    return Appointment(
        id=str(row["id"]),
        contact_id=str(row["contact_id"]),
        workflow_id=str(row.get("workflow_id", "")),
        client_id=str(row.get("client_id", "")),
        start_time=_parse_datetime(row["start_time"]),
        end_time=_parse_datetime(row["end_time"]),
        calendar_event_id=row.get("calendar_event_id"),
        status=row.get("status") or "confirmed",
        notes=row.get("notes"),
    )


def _business_hours(raw: Any) -> BusinessHours | None:
    if not isinstance(raw, dict):
        return None
    hours: BusinessHours = {}
    for day, window in raw.items():
        if isinstance(window, dict) and window.get("start") and window.get("end"):
            try:
                hours[day.lower()] = DayHours(start=time.fromisoformat(window["start"]), end=time.fromisoformat(window["end"]))
            except ValueError:
                hours[day.lower()] = None
        else:
            hours[day.lower()] = None
    return hours


def _strings(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(str(item) for item in raw if isinstance(item, str) and item.strip())


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))
