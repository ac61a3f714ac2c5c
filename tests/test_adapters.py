from __future__ import annotations

import json
from datetime import datetime, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from bookerbot.application.use_cases.handoff import GENERIC_HANDOFF_MESSAGE, HANDOFF_MESSAGES, HandoffHandler
from bookerbot.domain.entities.appointment import CalendarEventInput
from bookerbot.domain.entities.conversation_context import ConversationContext, TurnState
from bookerbot.infrastructure.calendar.google_calendar import GoogleCalendar
from bookerbot.infrastructure.notify.twilio_notifier import TwilioNotifier
from tests.conftest import make_contact

START = datetime(2025, 1, 20, 10, tzinfo=timezone.utc)
END = datetime(2025, 1, 20, 10, 30, tzinfo=timezone.utc)


def _google(handler) -> GoogleCalendar:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GoogleCalendar(access_token="token-1", base_url="https://calendar.test/v3", client=client)


@pytest.mark.asyncio
async def test_google_free_busy_parses_periods():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer token-1"
        return httpx.Response(
            200,
            json={
                "calendars": {
                    "primary": {
                        "busy": [
                            {"start": "2025-01-20T10:00:00Z", "end": "2025-01-20T11:00:00Z"},
                            {"start": "garbage"},
                        ]
                    }
                }
            },
        )

    busy = await _google(handler).get_free_busy("primary", START, END)

    assert len(busy) == 1
    assert busy[0].start == START


@pytest.mark.asyncio
async def test_google_create_event_sends_invite():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"id": "evt_1", "start": {"dateTime": "2025-01-20T10:00:00Z"}, "htmlLink": "https://cal/evt_1"},
        )

    event = await _google(handler).create_event(
        "primary",
        CalendarEventInput(
            summary="Discovery Call - Sam",
            description="Booked via conversation",
            start=START,
            end=END,
            attendee_email="sam@example.com",
            attendee_name="Sam",
            time_zone="Europe/London",
        ),
    )

    body = json.loads(seen[0].content)
    assert event.id == "evt_1"
    assert event.html_link == "https://cal/evt_1"
    assert seen[0].url.params["sendUpdates"] == "all"
    assert body["attendees"] == [{"email": "sam@example.com", "displayName": "Sam"}]
    assert body["start"]["timeZone"] == "Europe/London"


@pytest.mark.asyncio
async def test_google_errors_propagate():
    calendar = _google(lambda request: httpx.Response(401, json={"error": "unauthorized"}))

    with pytest.raises(httpx.HTTPStatusError):
        await calendar.get_free_busy("primary", START, END)


@pytest.mark.asyncio
async def test_twilio_posts_form_message():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"sid": "SM1"})

    notifier = TwilioNotifier(
        account_sid="AC1",
        auth_token="secret",
        from_number="+15550000000",
        base_url="https://twilio.test/2010-04-01",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )

    await notifier.send_text("+447700900000", "Handoff needed")

    form = parse_qs(seen[0].content.decode())
    assert seen[0].url.path == "/2010-04-01/Accounts/AC1/Messages.json"
    assert form == {"To": ["+447700900000"], "From": ["+15550000000"], "Body": ["Handoff needed"]}


def test_handoff_message_lookup():
    handler = HandoffHandler(notifier=None, admin_phone=None, app_url="https://app.example.com/")

    assert handler.generate_handoff_message("Contact expressed frustration") == HANDOFF_MESSAGES[
        "Contact expressed frustration"
    ]
    assert handler.generate_handoff_message("frustration") == HANDOFF_MESSAGES["Contact expressed frustration"]
    assert handler.generate_handoff_message("Needs a site visit") == GENERIC_HANDOFF_MESSAGE
    assert handler.generate_handoff_message(None) == GENERIC_HANDOFF_MESSAGE


@pytest.mark.asyncio
async def test_handoff_without_admin_is_skipped():
    handler = HandoffHandler(notifier=None, admin_phone=None, app_url="https://app.example.com")

    assert await handler.notify_admin(make_contact(), "Contact requested human assistance") is False


class _BrokenNotifier:
    async def send_text(self, recipient: str, text: str) -> None:
        raise ConnectionError("sms gateway down")


@pytest.mark.asyncio
async def test_handoff_notification_failure_is_reported_not_raised():
    handler = HandoffHandler(notifier=_BrokenNotifier(), admin_phone="+447700900000", app_url="https://app.example.com")

    assert await handler.notify_admin(make_contact(), "Contact expressed frustration") is False


def test_auto_escalation_thresholds():
    handler = HandoffHandler(notifier=None, admin_phone=None, app_url="https://app.example.com")

    assert not handler.should_auto_escalate(ConversationContext(state=TurnState(turn_count=20)))
    assert handler.should_auto_escalate(ConversationContext(state=TurnState(turn_count=21)))
    assert handler.should_auto_escalate(ConversationContext(state=TurnState(escalation_attempts=2)))
