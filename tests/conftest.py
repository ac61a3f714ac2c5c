"""Shared test fixtures and helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

import pytest

from bookerbot.application.use_cases.booking import BookingUseCase
from bookerbot.application.use_cases.context_manager import ContextManager
from bookerbot.application.use_cases.detect_intent import IntentDetector
from bookerbot.application.use_cases.handoff import HandoffHandler
from bookerbot.application.use_cases.process_message import ProcessMessageUseCase
from bookerbot.application.use_cases.qualification import QualificationEngine
from bookerbot.application.utils.availability import format_slot
from bookerbot.application.utils.phrasing import PhraseVariation
from bookerbot.application.utils.prompt_builder import PromptBuilder
from bookerbot.domain.entities.booking_state import BookingState, TimeSlot
from bookerbot.domain.entities.contact import (
    CalendarConnection,
    Client,
    Contact,
    ContactStatus,
    Workflow,
    WorkflowStatus,
)
from bookerbot.domain.entities.conversation_context import ConversationContext
from bookerbot.infrastructure.calendar.mock_calendar import MockCalendar
from bookerbot.infrastructure.llm.mock_llm import MockLLM
from bookerbot.infrastructure.notify.logging_notifier import LoggingNotifier
from bookerbot.infrastructure.store.memory_store import MemoryContactStore

# Friday; London is on GMT in January so local time equals UTC
FIXED_NOW = datetime(2025, 1, 17, 9, 0, tzinfo=timezone.utc)
LONDON = ZoneInfo("Europe/London")
ADMIN_PHONE = "+447700900000"


def fixed_clock() -> datetime:
    return FIXED_NOW


def slot(day: int, hour: int, minute: int = 0, duration: int = 30) -> TimeSlot:
    """A January 2025 slot in London time, formatted the way offers display it."""
    start = datetime(2025, 1, day, hour, minute, tzinfo=LONDON)
    return TimeSlot(start=start, end=start + timedelta(minutes=duration), formatted=format_slot(start, LONDON))


def offered(*slots: TimeSlot, last: TimeSlot | None = None, attempts: int = 1) -> BookingState:
    return BookingState(
        is_active=True,
        offered_slots=tuple(slots),
        slots_offered_at=FIXED_NOW,
        offer_attempts=attempts,
        last_offered_slot=last,
    )


def blob(
    context: ConversationContext | None = None,
    booking_state: BookingState | None = None,
    revision: int = 0,
) -> dict[str, Any]:
    return ContextManager().serialize(context or ConversationContext(), booking_state, revision)


def make_contact(
    contact_id: str = "contact_1",
    status: ContactStatus = ContactStatus.IN_CONVERSATION,
    criteria: str | None = None,
    conversation_context: dict[str, Any] | None = None,
    workflow_status: WorkflowStatus = WorkflowStatus.ACTIVE,
    opted_out: bool = False,
    opt_out_message: str | None = None,
    last_message_at: datetime | None = None,
) -> Contact:
    client = Client(id="client_1", name="Acme Growth", timezone="Europe/London")
    workflow = Workflow(
        id="wf_1",
        name="Discovery Call",
        client=client,
        status=workflow_status,
        instructions="Find out whether they run a business.",
        opt_out_message=opt_out_message,
        qualification_criteria=criteria,
    )
    return Contact(
        id=contact_id,
        workflow=workflow,
        phone="+447700900123",
        first_name="Sam",
        last_name="Taylor",
        email="sam@example.com",
        status=status,
        opted_out=opted_out,
        conversation_context=conversation_context,
        last_message_at=last_message_at,
    )


@pytest.fixture
def store() -> MemoryContactStore:
    return MemoryContactStore(clock=fixed_clock)


@pytest.fixture
def calendar() -> MockCalendar:
    return MockCalendar()


@pytest.fixture
def llm() -> MockLLM:
    return MockLLM()


@pytest.fixture
def notifier() -> LoggingNotifier:
    return LoggingNotifier()


@pytest.fixture
def connected_store(store: MemoryContactStore) -> MemoryContactStore:
    store.add_connection(CalendarConnection(client_id="client_1", calendar_id="primary", provider="mock"))
    return store


def build_booking(store: MemoryContactStore, calendar: MockCalendar) -> BookingUseCase:
    return BookingUseCase(
        store=store,
        calendar_factory=lambda connection: calendar,
        phrases=PhraseVariation(seed=7),
        clock=fixed_clock,
    )


def build_use_case(
    store: MemoryContactStore,
    llm: MockLLM,
    calendar: MockCalendar | None = None,
    notifier: LoggingNotifier | None = None,
) -> ProcessMessageUseCase:
    return ProcessMessageUseCase(
        store=store,
        llm=llm,
        context_manager=ContextManager(clock=fixed_clock),
        intent_detector=IntentDetector(llm=llm),
        qualification_engine=QualificationEngine(llm=llm, clock=fixed_clock),
        booking=build_booking(store, calendar or MockCalendar()),
        handoff=HandoffHandler(notifier=notifier, admin_phone=ADMIN_PHONE, app_url="https://app.example.com"),
        prompt_builder=PromptBuilder(model="gpt-4o-mini", temperature=0.7),
        reply_model="gpt-4o-mini",
        clock=fixed_clock,
    )
