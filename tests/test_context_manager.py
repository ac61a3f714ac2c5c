from __future__ import annotations

from bookerbot.application.use_cases.context_manager import ContextManager, ContextUpdate, determine_goal
from bookerbot.domain.entities.booking_state import BookingState
from bookerbot.domain.entities.conversation_context import (
    ConversationContext,
    ConversationGoal,
    ExtractedInfo,
    QualificationState,
    QualificationStatus,
    TurnState,
)
from bookerbot.domain.entities.intent import Intent
from tests.conftest import FIXED_NOW, fixed_clock, offered, slot


def _manager() -> ContextManager:
    return ContextManager(clock=fixed_clock)


def test_serialize_then_load_keeps_context_and_booking_state():
    """A stored blob loads back into the same context, booking state and revision."""
    manager = _manager()
    context = ConversationContext(
        extracted_info=ExtractedInfo(budget="5k", objections=("price",)),
        qualification=QualificationState(status=QualificationStatus.PARTIAL, criteria_matched=("Owns a business",)),
        state=TurnState(current_goal=ConversationGoal.QUALIFY_LEAD, turn_count=3, last_intent=Intent.QUESTION),
        summary="Partially qualified.",
        message_count=6,
    )
    booking = offered(slot(20, 10), slot(20, 14), last=slot(20, 14))

    raw = manager.serialize(context, booking, revision=4)
    loaded = manager.load(raw)

    assert raw["version"] == 1
    assert raw["revision"] == 4
    assert "offeredSlots" in raw["bookingState"]
    assert loaded.revision == 4
    assert loaded.context == context
    assert loaded.booking_state == booking
    assert loaded.booking_state.offered_slots[1].formatted == "Monday, 20 Jan at 2:00 PM"


def test_parse_never_raises_on_garbage():
    """Anything that isn't a usable blob falls back to defaults."""
    manager = _manager()

    for raw in (None, "nonsense", 42, [], {"state": "oops"}):
        assert manager.parse(raw) == ConversationContext()
        assert manager.parse_booking_state(raw) == BookingState()


def test_invalid_fields_fall_back_individually():
    """One bad field does not throw away its valid neighbours."""
    manager = _manager()
    raw = {
        "version": 1,
        "state": {"turnCount": "many", "currentGoal": "qualify_lead"},
        "qualification": {"status": "bogus", "criteriaMatched": ["A"]},
        "bookingState": {"isActive": "yes", "offerAttempts": 1},
    }

    context = manager.parse(raw)
    booking = manager.parse_booking_state(raw)

    assert context.state.turn_count == 0
    assert context.state.current_goal == ConversationGoal.QUALIFY_LEAD
    assert context.qualification.status == QualificationStatus.UNKNOWN
    assert context.qualification.criteria_matched == ("A",)
    assert booking.is_active is False
    assert booking.offer_attempts == 1


def test_unversioned_blob_is_migrated():
    """Blobs written before versioning load with revision 0."""
    raw = {
        "extractedInfo": {"budget": "10k", "isDecisionMaker": True},
        "qualification": {"status": "partial", "criteriaMatched": ["A"], "criteriaUnknown": ["B"]},
        "state": {"currentGoal": "qualify_lead", "turnCount": 3, "lastIntent": "question"},
        "summary": "Partially qualified (1 criteria met).",
        "messageCount": 6,
    }

    loaded = _manager().load(raw)

    assert loaded.revision == 0
    assert loaded.context.extracted_info.budget == "10k"
    assert loaded.context.extracted_info.is_decision_maker is True
    assert loaded.context.qualification.criteria_unknown == ("B",)
    assert loaded.context.state.turn_count == 3
    assert loaded.context.message_count == 6


def test_update_counts_turn_and_messages():
    updated = _manager().update(
        ConversationContext(),
        ContextUpdate(intent=Intent.QUESTION, user_message="How much?", ai_response="It depends."),
    )

    assert updated.state.turn_count == 1
    assert updated.message_count == 1
    assert updated.state.last_intent == Intent.QUESTION
    assert updated.state.last_message_at == FIXED_NOW
    assert updated.state.current_goal == ConversationGoal.ANSWER_QUESTION
    assert "Turn 1." in updated.summary


def test_newly_matched_criterion_completes_qualification():
    """A matched, B unknown; this turn matches B so both end up matched."""
    current = ConversationContext(
        qualification=QualificationState(
            status=QualificationStatus.PARTIAL,
            criteria_matched=("A",),
            criteria_unknown=("B",),
        )
    )

    updated = _manager().update(
        current,
        ContextUpdate(
            intent=Intent.POSITIVE_RESPONSE,
            user_message="Yes we do",
            ai_response="Great!",
            qualification_update=QualificationState(
                status=QualificationStatus.QUALIFIED,
                criteria_matched=("A", "B"),
            ),
            criteria=("A", "B"),
        ),
    )

    assert updated.qualification.status == QualificationStatus.QUALIFIED
    assert updated.qualification.criteria_matched == ("A", "B")
    assert updated.qualification.criteria_unknown == ()
    assert updated.qualification.criteria_missed == ()


def test_criteria_lists_stay_disjoint():
    """A criterion moving to missed leaves matched, and the status is derived again."""
    current = ConversationContext(
        qualification=QualificationState(
            status=QualificationStatus.PARTIAL,
            criteria_matched=("A",),
            criteria_unknown=("B",),
        )
    )

    updated = _manager().update(
        current,
        ContextUpdate(
            intent=Intent.NEGATIVE_RESPONSE,
            user_message="Actually no",
            ai_response="No worries.",
            qualification_update=QualificationState(
                status=QualificationStatus.PARTIAL,
                criteria_missed=("A",),
                criteria_unknown=("B",),
            ),
            criteria=("A", "B"),
        ),
    )

    qualification = updated.qualification
    assert qualification.criteria_missed == ("A",)
    assert "A" not in qualification.criteria_matched
    assert qualification.criteria_unknown == ("B",)
    assert qualification.status == QualificationStatus.DISQUALIFIED
    assert "does NOT meet" in updated.summary


def test_extracted_info_merge_keeps_old_values():
    current = ConversationContext(extracted_info=ExtractedInfo(budget="5k", objections=("price",)))

    updated = _manager().update(
        current,
        ContextUpdate(
            intent=Intent.OBJECTION,
            user_message="Timing is tight",
            ai_response="Understood.",
            extracted_info_update=ExtractedInfo(timeline="Q3", objections=("price", "timing")),
        ),
    )

    info = updated.extracted_info
    assert info.budget == "5k"
    assert info.timeline == "Q3"
    assert info.objections == ("price", "timing")


def test_goal_transitions():
    qualified = QualificationStatus.QUALIFIED
    unknown = QualificationStatus.UNKNOWN

    assert determine_goal(ConversationGoal.QUALIFY_LEAD, Intent.OPT_OUT, unknown) == ConversationGoal.CLOSING
    assert determine_goal(ConversationGoal.QUALIFY_LEAD, Intent.BOOKING_INTEREST, qualified) == ConversationGoal.OFFER_BOOKING
    assert determine_goal(ConversationGoal.QUALIFY_LEAD, Intent.BOOKING_INTEREST, unknown) == ConversationGoal.QUALIFY_LEAD
    assert determine_goal(ConversationGoal.OFFER_BOOKING, Intent.CONFIRMATION, qualified) == ConversationGoal.CONFIRM_BOOKING
    assert determine_goal(ConversationGoal.INITIAL_ENGAGEMENT, Intent.UNCLEAR, unknown) == ConversationGoal.QUALIFY_LEAD
    assert determine_goal(ConversationGoal.QUALIFY_LEAD, Intent.POSITIVE_RESPONSE, qualified) == ConversationGoal.OFFER_BOOKING


def test_escalation_and_follow_up_counters():
    manager = _manager()
    context = manager.increment_escalation_attempts(ConversationContext())
    context = manager.increment_follow_ups(context)

    assert context.state.escalation_attempts == 1
    assert context.state.follow_ups_sent == 1
    assert context.state.current_goal == ConversationGoal.FOLLOW_UP
