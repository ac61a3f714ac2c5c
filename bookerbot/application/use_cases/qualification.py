from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from bookerbot.application.ports.llm import LLMPort
from bookerbot.application.utils.knowledge import identify_criteria
from bookerbot.domain.entities.conversation_context import (
    ConversationContext,
    QualificationState,
    QualificationStatus,
    derive_qualification_status,
)
from bookerbot.domain.entities.message import Message
from bookerbot.domain.entities.qualification import (
    CriterionVerdict,
    QualificationAssessment,
    QualificationCriterion,
    RequalificationDecision,
)

REQUALIFY_AFTER = timedelta(days=7)
FUZZY_PREFIX_LENGTH = 20

CIRCUMSTANCE_CHANGE_PATTERNS = (
    re.compile(r"things?\s+(have\s+)?changed"),
    re.compile(r"situation\s+(is\s+)?different"),
    re.compile(r"actually\s+(now|i\s+do|i\s+can|i\s+am)"),
    re.compile(r"reconsidered"),
    re.compile(r"changed\s+my\s+mind"),
    re.compile(r"can\s+now"),
    re.compile(r"now\s+(i|we)\s+(have|can|am|are)"),
    re.compile(r"update[d]?\s+(on\s+)?my"),
    re.compile(r"new\s+(budget|timeline|situation)"),
    re.compile(r"got\s+(approval|budget|the\s+go-ahead)"),
    re.compile(r"able\s+to\s+(proceed|move\s+forward)"),
)


class QualificationEngine:
    def __init__(self, llm: LLMPort, clock: Callable[[], datetime] | None = None) -> None:
        self._llm = llm
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._logger = logging.getLogger(__name__)

    async def assess(
        self,
        criteria: Sequence[str],
        context: ConversationContext,
        message_history: Sequence[Message],
        latest_message: str,
    ) -> QualificationAssessment:
        prior = context.qualification
        if not criteria:
            return QualificationAssessment(
                status=QualificationStatus.QUALIFIED,
                extracted_info=context.extracted_info,
            )

        identified = identify_criteria(list(criteria))
        transcript = build_transcript(message_history, latest_message)
        try:
            verdict = await self._llm.assess_qualification(identified, transcript, prior)
        except Exception as e:
            self._logger.warning("Qualification assessment failed, keeping prior", extra={"error": str(e)})
            return _from_state(prior, context)

        fresh_matched: set[str] = set()
        fresh_missed: set[str] = set()
        for item in verdict.criteria:
            criterion = resolve_criterion(item, identified)
            if criterion is None:
                continue
            if item.status == "matched":
                fresh_matched.add(criterion.text)
                fresh_missed.discard(criterion.text)
            elif item.status == "missed":
                fresh_missed.add(criterion.text)
                fresh_matched.discard(criterion.text)

        matched: list[str] = []
        missed: list[str] = []
        unknown: list[str] = []
        for criterion in identified:
            text = criterion.text
            if text in fresh_matched:
                matched.append(text)
            elif text in fresh_missed:
                missed.append(text)
            elif text in prior.criteria_matched:
                matched.append(text)
            elif text in prior.criteria_missed:
                missed.append(text)
            else:
                unknown.append(text)

        status = derive_qualification_status(matched, missed, [c.text for c in identified])
        self._logger.info(
            "Qualification assessed",
            extra={"status": status, "matched": len(matched), "missed": len(missed)},
        )
        return QualificationAssessment(
            status=status,
            criteria_matched=tuple(matched),
            criteria_unknown=tuple(unknown),
            criteria_missed=tuple(missed),
            extracted_info=verdict.extracted_info,
        )

    def should_allow_requalification(
        self,
        context: ConversationContext,
        latest_message: str,
        last_message_at: datetime | None,
    ) -> RequalificationDecision:
        qualification = context.qualification
        if qualification.status != QualificationStatus.DISQUALIFIED:
            return RequalificationDecision(allow=False)

        reset = tuple(qualification.criteria_missed)
        if last_message_at is not None and self._clock() - last_message_at >= REQUALIFY_AFTER:
            return RequalificationDecision(allow=True, reset_criteria=reset)

        normalized = latest_message.lower()
        if any(pattern.search(normalized) for pattern in CIRCUMSTANCE_CHANGE_PATTERNS):
            return RequalificationDecision(allow=True, reset_criteria=reset)

        return RequalificationDecision(allow=False)

    def reset_criteria_for_reassessment(
        self,
        context: ConversationContext,
        criteria_to_reset: Sequence[str],
    ) -> ConversationContext:
        current = context.qualification
        resetting = set(criteria_to_reset)
        missed = tuple(c for c in current.criteria_missed if c not in resetting)
        unknown = tuple(dict.fromkeys([*current.criteria_unknown, *(c for c in current.criteria_missed if c in resetting)]))
        status = QualificationStatus.PARTIAL if current.criteria_matched else QualificationStatus.UNKNOWN
        qualification = QualificationState(
            status=status,
            criteria_matched=current.criteria_matched,
            criteria_unknown=unknown,
            criteria_missed=missed,
        )
        return replace(context, qualification=qualification)


def build_transcript(history: Sequence[Message], latest_message: str) -> str:
    lines = [
        f"{'Contact' if m.direction == 'inbound' else 'Assistant'}: {m.content}"
        for m in history
    ]
    if not lines or lines[-1] != f"Contact: {latest_message}":
        lines.append(f"Contact: {latest_message}")
    return "\n".join(lines)


def resolve_criterion(
    verdict: CriterionVerdict,
    criteria: Sequence[QualificationCriterion],
) -> QualificationCriterion | None:
    """Exact id match; fall back to prefix overlap only when the model omitted the id."""
    if verdict.criterion_id:
        for criterion in criteria:
            if criterion.id == verdict.criterion_id:
                return criterion
        return None

    echoed = (verdict.criterion or "").lower()
    if not echoed:
        return None
    for criterion in criteria:
        text = criterion.text.lower()
        if text[:FUZZY_PREFIX_LENGTH] in echoed or echoed[:FUZZY_PREFIX_LENGTH] in text:
            return criterion
    return None


def _from_state(state: QualificationState, context: ConversationContext) -> QualificationAssessment:
    return QualificationAssessment(
        status=state.status,
        criteria_matched=state.criteria_matched,
        criteria_unknown=state.criteria_unknown,
        criteria_missed=state.criteria_missed,
        extracted_info=context.extracted_info,
    )
