"""
End-to-end turns through ProcessMessageUseCase with in-memory adapters.
"""

from __future__ import annotations

from dataclasses import replace

import httpx
import pytest
from openai import AsyncOpenAI

from bookerbot.application.exceptions import (
    ContactHandedOffError,
    ContactNotFoundError,
    ContactOptedOutError,
    ErrorKind,
    WorkflowInactiveError,
)
from bookerbot.application.use_cases.booking import BOOKING_TOOLS
from bookerbot.application.use_cases.handoff import HANDOFF_MESSAGES
from bookerbot.application.use_cases.process_message import (
    BOOKING_HANDLER_MODEL,
    DEFAULT_OPT_OUT_MESSAGE,
    FALLBACK_MESSAGES,
)
from bookerbot.application.use_cases.context_manager import ContextManager
from bookerbot.domain.entities.appointment import Appointment
from bookerbot.domain.entities.contact import ContactStatus, WorkflowStatus
from bookerbot.domain.entities.conversation_context import (
    ConversationContext,
    QualificationState,
    QualificationStatus,
)
from bookerbot.domain.entities.generation import GenerationResult, TokenUsage, ToolCall
from bookerbot.domain.entities.intent import Intent
from bookerbot.infrastructure.calendar.mock_calendar import MockCalendar
from bookerbot.infrastructure.llm.mock_llm import MockLLM
from bookerbot.infrastructure.llm.openai_llm import OpenAILLM
from bookerbot.infrastructure.store.memory_store import MemoryContactStore
from tests.conftest import (
    ADMIN_PHONE,
    blob,
    build_use_case,
    fixed_clock,
    make_contact,
    offered,
    slot,
)

OWNS_BUSINESS = "Owns a business with at least 5 employees"
STARTS_SOON = "Looking to start within 3 months"


async def _stored(store: MemoryContactStore, contact_id: str = "contact_1"):
    contact = await store.get_contact(contact_id)
    return contact, ContextManager().load(contact.conversation_context)


@pytest.mark.asyncio
async def test_stop_opts_out_without_any_model_call(store, llm):
    store.add_contact(make_contact(status=ContactStatus.CONTACTED))
    use_case = build_use_case(store, llm)

    result = await use_case.handle("contact_1", "STOP")

    contact, loaded = await _stored(store)
    assert result.intent.intent == Intent.OPT_OUT
    assert result.response == DEFAULT_OPT_OUT_MESSAGE
    assert result.status_update == ContactStatus.OPTED_OUT
    assert llm.generate_calls == []
    assert llm.classify_calls == []
    assert contact.opted_out is True
    assert contact.status == ContactStatus.OPTED_OUT
    assert loaded.revision == 1
    assert store.outbound[-1].ai_generated is False
    assert store.outbound[-1].intent_detected == Intent.OPT_OUT

    with pytest.raises(ContactOptedOutError):
        await use_case.handle("contact_1", "hello?")


@pytest.mark.asyncio
async def test_workflow_opt_out_message_is_used(store, llm):
    store.add_contact(make_contact(opt_out_message="Done, you won't hear from us again."))

    result = await build_use_case(store, llm).handle("contact_1", "unsubscribe")

    assert result.response == "Done, you won't hear from us again."


@pytest.mark.asyncio
async def test_picking_an_offered_slot_books_it(connected_store, llm, calendar):
    state = offered(slot(20, 10), slot(20, 14), slot(21, 10))
    connected_store.add_contact(make_contact(conversation_context=blob(booking_state=state)))
    use_case = build_use_case(connected_store, llm, calendar)

    result = await use_case.handle("contact_1", "the first one")

    contact, loaded = await _stored(connected_store)
    appointments = connected_store.appointments_for("contact_1")
    assert result.appointment_created
    assert result.status_update == ContactStatus.BOOKED
    assert result.tokens_used == TokenUsage()
    assert "Monday, 20 Jan at 10:00 AM" in result.response
    assert llm.generate_calls == []
    assert [a.start_time for a in appointments] == [slot(20, 10).start]
    assert contact.status == ContactStatus.BOOKED
    assert loaded.revision == 1
    assert loaded.booking_state.is_active is False
    assert loaded.booking_state.selected_slot == slot(20, 10)
    assert store_outbound_model(connected_store) == BOOKING_HANDLER_MODEL
    assert connected_store.outbound[-1].intent_detected == Intent.CONFIRMATION


@pytest.mark.asyncio
async def test_yes_books_the_suggested_slot(connected_store, llm, calendar):
    state = offered(slot(21, 14), last=slot(21, 14))
    connected_store.add_contact(make_contact(conversation_context=blob(booking_state=state)))

    result = await build_use_case(connected_store, llm, calendar).handle("contact_1", "yeah that works")

    assert result.appointment_created
    assert [a.start_time for a in connected_store.appointments_for("contact_1")] == [slot(21, 14).start]


@pytest.mark.asyncio
async def test_model_tool_call_resolves_the_selection(connected_store, calendar):
    state = offered(slot(20, 10), slot(20, 14))
    connected_store.add_contact(make_contact(conversation_context=blob(booking_state=state)))
    tool_reply = GenerationResult(
        content="",
        usage=TokenUsage(input=50, output=5, total=55),
        stop_reason="tool_calls",
        tool_call=ToolCall("select_time_slot", {"slot_index": 2}),
        model="gpt-4o-mini",
    )
    llm = MockLLM(replies=[tool_reply])

    result = await build_use_case(connected_store, llm, calendar).handle("contact_1", "hmm the later one I think")

    assert result.appointment_created
    assert result.tokens_used.total == 55
    assert llm.generate_calls[0].tools == BOOKING_TOOLS
    assert [a.start_time for a in connected_store.appointments_for("contact_1")] == [slot(20, 14).start]
    assert store_outbound_model(connected_store) == "gpt-4o-mini"


@pytest.mark.asyncio
async def test_plain_model_reply_keeps_booking_pending(connected_store, calendar):
    state = offered(slot(20, 10), slot(20, 14))
    connected_store.add_contact(make_contact(conversation_context=blob(booking_state=state)))
    llm = MockLLM(replies=["Parking is free on site. Which of those times suits you?"])

    result = await build_use_case(connected_store, llm, calendar).handle("contact_1", "is there parking?")

    _, loaded = await _stored(connected_store)
    assert not result.appointment_created
    assert result.response.startswith("Parking is free")
    assert loaded.booking_state.awaiting_selection
    assert loaded.booking_state.offered_slots == state.offered_slots


@pytest.mark.asyncio
async def test_new_match_merges_with_prior_qualification(store):
    prior = ConversationContext(
        qualification=QualificationState(
            status=QualificationStatus.PARTIAL,
            criteria_matched=(OWNS_BUSINESS,),
            criteria_unknown=(STARTS_SOON,),
        )
    )
    store.add_contact(
        make_contact(criteria=f"- {OWNS_BUSINESS}\n- {STARTS_SOON}", conversation_context=blob(prior))
    )
    llm = MockLLM(replies=["Great, that timing works well for us."], criterion_statuses={STARTS_SOON: "matched"})

    result = await build_use_case(store, llm).handle("contact_1", "We're hoping to get going next month")

    qualification = result.context_update.qualification
    assert qualification.status == QualificationStatus.QUALIFIED
    assert qualification.criteria_matched == (OWNS_BUSINESS, STARTS_SOON)
    assert qualification.criteria_unknown == ()
    assert result.status_update == ContactStatus.QUALIFIED
    assert result.tokens_used.input == 100


@pytest.mark.asyncio
async def test_qualified_contact_with_calendar_is_offered_slots(connected_store, llm, calendar):
    connected_store.add_contact(make_contact())

    result = await build_use_case(connected_store, llm, calendar).handle("contact_1", "I'd like to book a call")

    _, loaded = await _stored(connected_store)
    assert result.intent.intent == Intent.BOOKING_INTEREST
    assert result.response.endswith("Which works for you?")
    assert llm.generate_calls == []
    assert loaded.booking_state.awaiting_selection
    assert len(loaded.booking_state.offered_slots) == 4


@pytest.mark.asyncio
async def test_first_reply_moves_pending_contact_into_conversation(store):
    store.add_contact(make_contact(status=ContactStatus.PENDING, criteria=OWNS_BUSINESS))
    llm = MockLLM(replies=["Nice to hear from you! What kind of business do you run?"])

    result = await build_use_case(store, llm).handle("contact_1", "hello")

    contact, loaded = await _stored(store)
    assert result.intent.intent == Intent.GREETING
    assert result.status_update == ContactStatus.IN_CONVERSATION
    assert contact.status == ContactStatus.IN_CONVERSATION
    assert loaded.context.state.turn_count == 1
    assert loaded.context.message_count == 1


@pytest.mark.asyncio
async def test_human_request_hands_off_and_notifies_admin(store, llm, notifier):
    store.add_contact(make_contact())

    result = await build_use_case(store, llm, notifier=notifier).handle("contact_1", "Can I speak to a real person please")

    contact, loaded = await _stored(store)
    assert result.should_escalate
    assert result.status_update == ContactStatus.HANDED_OFF
    assert result.response == HANDOFF_MESSAGES["Contact requested human assistance"]
    assert contact.status == ContactStatus.HANDED_OFF
    assert loaded.context.state.escalation_attempts == 1
    assert loaded.context.state.turn_count == 1
    recipient, text = notifier.sent[0]
    assert recipient == ADMIN_PHONE
    assert "Reason: Contact requested human assistance" in text
    assert "https://app.example.com/contacts/contact_1" in text

    with pytest.raises(ContactHandedOffError):
        await build_use_case(store, llm, notifier=notifier).handle("contact_1", "hello?")


@pytest.mark.asyncio
async def test_upstream_failure_after_retries_sends_fallback(store):
    """Three 500s from the provider end in a canned reply flagged for a human."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500, json={"error": {"message": "boom", "type": "server_error"}})

    client = AsyncOpenAI(
        api_key="test",
        base_url="http://llm.test/v1",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        max_retries=0,
    )
    llm = OpenAILLM(client=client, max_attempts=3, retry_delays=[0, 0])
    store.add_contact(make_contact())

    result = await build_use_case(store, llm).handle("contact_1", "Can you tell me more about pricing?")

    contact, _ = await _stored(store)
    assert len(calls) == 3
    assert result.error_kind == ErrorKind.AI_GENERATION_FAILED
    assert result.response == FALLBACK_MESSAGES[ErrorKind.AI_GENERATION_FAILED]
    assert result.should_escalate
    assert result.escalation_reason == "Processing failed: ai_generation_failed"
    assert result.tokens_used.total == 0
    assert result.intent.intent == Intent.UNCLEAR
    assert store.outbound[-1].ai_generated is False
    assert contact.conversation_context is None


@pytest.mark.asyncio
async def test_empty_model_reply_is_a_generation_failure(store):
    store.add_contact(make_contact())
    llm = MockLLM(replies=["   "])

    result = await build_use_case(store, llm).handle("contact_1", "hello")

    assert result.error_kind == ErrorKind.AI_GENERATION_FAILED


class _ConcurrentWriteStore(MemoryContactStore):
    """Another turn lands between this turn's read and its write."""

    async def get_messages(self, contact_id: str, limit: int = 50):
        contact = await self.get_contact(contact_id)
        self.add_contact(replace(contact, conversation_context=blob(revision=1)))
        return await super().get_messages(contact_id, limit)


@pytest.mark.asyncio
async def test_stale_revision_is_not_overwritten():
    store = _ConcurrentWriteStore(clock=fixed_clock)
    store.add_contact(make_contact())
    llm = MockLLM(replies=["Hi there!"])

    result = await build_use_case(store, llm).handle("contact_1", "hello")

    _, loaded = await _stored(store)
    assert result.error_kind == ErrorKind.DATABASE_ERROR
    assert result.response == FALLBACK_MESSAGES[ErrorKind.DATABASE_ERROR]
    assert loaded.revision == 1
    assert loaded.context.state.turn_count == 0
    assert store.outbound[-1].content == FALLBACK_MESSAGES[ErrorKind.DATABASE_ERROR]


@pytest.mark.asyncio
async def test_unknown_contact_is_raised(store, llm):
    with pytest.raises(ContactNotFoundError):
        await build_use_case(store, llm).handle("nobody", "hello")


@pytest.mark.asyncio
async def test_paused_workflow_is_raised(store, llm):
    store.add_contact(make_contact(workflow_status=WorkflowStatus.PAUSED))

    with pytest.raises(WorkflowInactiveError):
        await build_use_case(store, llm).handle("contact_1", "hello")


@pytest.mark.asyncio
async def test_reschedule_without_availability_still_resolves_pending_selection(connected_store, llm):
    """When fresh slots can't be loaded, the reply is matched against the slots already offered."""
    connected_store.add_appointment(
        Appointment(
            id="appt_1",
            contact_id="contact_1",
            workflow_id="wf_1",
            client_id="client_1",
            start_time=slot(17, 15).start,
            end_time=slot(17, 15).end,
        )
    )
    state = offered(slot(20, 10), slot(21, 14))
    connected_store.add_contact(
        make_contact(status=ContactStatus.BOOKED, conversation_context=blob(booking_state=state))
    )
    use_case = build_use_case(connected_store, llm, MockCalendar(fail_free_busy=True))

    result = await use_case.handle("contact_1", "Can we do tuesday instead")

    _, loaded = await _stored(connected_store)
    assert result.intent.intent == Intent.RESCHEDULE
    assert result.response == "On Tuesday I have 2:00 PM. Does that work?"
    assert llm.generate_calls == []
    assert loaded.booking_state.last_offered_slot == slot(21, 14)


def store_outbound_model(store: MemoryContactStore) -> str | None:
    return store.outbound[-1].ai_model
