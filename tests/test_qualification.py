from __future__ import annotations

from datetime import timedelta

import pytest

from bookerbot.application.use_cases.qualification import (
    QualificationEngine,
    build_transcript,
    resolve_criterion,
)
from bookerbot.application.utils.knowledge import identify_criteria, parse_criteria
from bookerbot.domain.entities.conversation_context import (
    ConversationContext,
    ExtractedInfo,
    QualificationState,
    QualificationStatus,
)
from bookerbot.domain.entities.message import Message
from bookerbot.domain.entities.qualification import CriterionVerdict
from bookerbot.infrastructure.llm.mock_llm import MockLLM
from tests.conftest import FIXED_NOW, fixed_clock

OWNS_BUSINESS = "Owns a business with at least 5 employees"
STARTS_SOON = "Looking to start within 3 months"


def _partial() -> ConversationContext:
    return ConversationContext(
        qualification=QualificationState(
            status=QualificationStatus.PARTIAL,
            criteria_matched=(OWNS_BUSINESS,),
            criteria_unknown=(STARTS_SOON,),
        )
    )


@pytest.mark.asyncio
async def test_no_criteria_means_qualified():
    llm = MockLLM(qualification_error=RuntimeError("should not be called"))
    engine = QualificationEngine(llm=llm, clock=fixed_clock)

    assessment = await engine.assess((), ConversationContext(), [], "hi")

    assert assessment.status == QualificationStatus.QUALIFIED


@pytest.mark.asyncio
async def test_new_match_is_merged_with_prior_matches():
    """Criteria already met stay met when the model only reports the new one."""
    llm = MockLLM(criterion_statuses={STARTS_SOON: "matched"}, extracted_info=ExtractedInfo(timeline="next month"))
    engine = QualificationEngine(llm=llm, clock=fixed_clock)

    assessment = await engine.assess((OWNS_BUSINESS, STARTS_SOON), _partial(), [], "We want to start next month")

    assert assessment.status == QualificationStatus.QUALIFIED
    assert assessment.criteria_matched == (OWNS_BUSINESS, STARTS_SOON)
    assert assessment.criteria_unknown == ()
    assert assessment.extracted_info.timeline == "next month"


@pytest.mark.asyncio
async def test_missed_criterion_disqualifies():
    llm = MockLLM(criterion_statuses={STARTS_SOON: "missed"})
    engine = QualificationEngine(llm=llm, clock=fixed_clock)

    assessment = await engine.assess((OWNS_BUSINESS, STARTS_SOON), _partial(), [], "Not until next year")

    assert assessment.status == QualificationStatus.DISQUALIFIED
    assert assessment.criteria_missed == (STARTS_SOON,)
    assert assessment.criteria_matched == (OWNS_BUSINESS,)


@pytest.mark.asyncio
async def test_model_failure_keeps_prior_assessment():
    engine = QualificationEngine(llm=MockLLM(qualification_error=RuntimeError("boom")), clock=fixed_clock)

    assessment = await engine.assess((OWNS_BUSINESS, STARTS_SOON), _partial(), [], "hmm")

    assert assessment.status == QualificationStatus.PARTIAL
    assert assessment.criteria_matched == (OWNS_BUSINESS,)
    assert assessment.criteria_unknown == (STARTS_SOON,)


def test_verdicts_resolve_by_id_first():
    criteria = identify_criteria([OWNS_BUSINESS, STARTS_SOON])

    by_id = resolve_criterion(CriterionVerdict(status="matched", criterion_id="c2"), criteria)
    unknown_id = resolve_criterion(CriterionVerdict(status="matched", criterion_id="c9", criterion=OWNS_BUSINESS), criteria)

    assert by_id.text == STARTS_SOON
    assert unknown_id is None


def test_verdicts_without_id_fall_back_to_prefix_match():
    criteria = identify_criteria([OWNS_BUSINESS, STARTS_SOON])

    echoed = resolve_criterion(CriterionVerdict(status="matched", criterion="Looking to start within 3 months."), criteria)
    unrelated = resolve_criterion(CriterionVerdict(status="matched", criterion="Has a big budget"), criteria)

    assert echoed.text == STARTS_SOON
    assert unrelated is None


def test_criteria_parsing_strips_bullets():
    assert parse_criteria(f"- {OWNS_BUSINESS}\n\n* {STARTS_SOON}\n") == (OWNS_BUSINESS, STARTS_SOON)
    assert parse_criteria(None) == ()
    assert [c.id for c in identify_criteria(["a", "b"])] == ["c1", "c2"]


def test_transcript_appends_latest_message_once():
    history = [
        Message(id="1", contact_id="c", direction="outbound", content="Still interested?", created_at=FIXED_NOW),
        Message(id="2", contact_id="c", direction="inbound", content="Yes", created_at=FIXED_NOW),
    ]

    assert build_transcript(history, "Yes") == "Assistant: Still interested?\nContact: Yes"
    assert build_transcript(history, "We have 10 staff").endswith("Contact: We have 10 staff")


def _disqualified() -> ConversationContext:
    return ConversationContext(
        qualification=QualificationState(
            status=QualificationStatus.DISQUALIFIED,
            criteria_matched=(OWNS_BUSINESS,),
            criteria_missed=(STARTS_SOON,),
        )
    )


def test_requalification_on_changed_circumstances():
    engine = QualificationEngine(llm=MockLLM(), clock=fixed_clock)

    decision = engine.should_allow_requalification(_disqualified(), "Things have changed, we got budget", FIXED_NOW)

    assert decision.allow
    assert decision.reset_criteria == (STARTS_SOON,)


def test_requalification_after_a_week_of_silence():
    engine = QualificationEngine(llm=MockLLM(), clock=fixed_clock)

    decision = engine.should_allow_requalification(_disqualified(), "hello again", FIXED_NOW - timedelta(days=8))

    assert decision.allow


def test_no_requalification_for_recent_unchanged_contact():
    engine = QualificationEngine(llm=MockLLM(), clock=fixed_clock)

    assert not engine.should_allow_requalification(_disqualified(), "ok", FIXED_NOW - timedelta(days=1)).allow
    assert not engine.should_allow_requalification(_partial(), "things have changed", None).allow


def test_reset_moves_missed_criteria_back_to_unknown():
    engine = QualificationEngine(llm=MockLLM(), clock=fixed_clock)

    context = engine.reset_criteria_for_reassessment(_disqualified(), (STARTS_SOON,))

    assert context.qualification.status == QualificationStatus.PARTIAL
    assert context.qualification.criteria_missed == ()
    assert context.qualification.criteria_unknown == (STARTS_SOON,)
    assert context.qualification.criteria_matched == (OWNS_BUSINESS,)
