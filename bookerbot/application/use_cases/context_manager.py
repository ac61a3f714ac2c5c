from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

from bookerbot.application.dto.conversation_record import ConversationRecord, load_record
from bookerbot.domain.entities.booking_state import BookingState
from bookerbot.domain.entities.conversation_context import (
    ConversationContext,
    ConversationGoal,
    ExtractedInfo,
    QualificationState,
    QualificationStatus,
    TurnState,
    derive_qualification_status,
    ordered_union,
)
from bookerbot.domain.entities.intent import Intent


@dataclass(frozen=True)
class ContextUpdate:
    intent: Intent
    user_message: str
    ai_response: str
    qualification_update: QualificationState | None = None
    extracted_info_update: ExtractedInfo | None = None
    criteria: Sequence[str] | None = None


@dataclass(frozen=True)
class LoadedConversation:
    context: ConversationContext
    booking_state: BookingState
    revision: int


class ContextManager:
    """Parse, merge and serialize the per-contact conversation state. No I/O."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def parse(self, raw: Any) -> ConversationContext:
        return load_record(raw).to_context()

    def parse_booking_state(self, raw: Any) -> BookingState:
        return load_record(raw).to_booking_state()

    def load(self, raw: Any) -> LoadedConversation:
        record = load_record(raw)
        return LoadedConversation(
            context=record.to_context(),
            booking_state=record.to_booking_state(),
            revision=record.revision,
        )

    def serialize(
        self,
        context: ConversationContext,
        booking_state: BookingState | None = None,
        revision: int = 0,
    ) -> dict[str, Any]:
        return ConversationRecord.from_domain(context, booking_state, revision).dump()

    def update(self, current: ConversationContext, update: ContextUpdate) -> ConversationContext:
        now = self._clock()
        qualification = self._merge_qualification(
            current.qualification, update.qualification_update, update.criteria
        )
        extracted = self._merge_extracted_info(current.extracted_info, update.extracted_info_update)
        state = TurnState(
            current_goal=determine_goal(current.state.current_goal, update.intent, current.qualification.status),
            turn_count=current.state.turn_count + 1,
            last_intent=update.intent,
            escalation_attempts=current.state.escalation_attempts,
            follow_ups_sent=current.state.follow_ups_sent,
            last_message_at=now,
        )
        merged = ConversationContext(
            extracted_info=extracted,
            qualification=qualification,
            state=state,
            summary="",
            message_count=current.message_count + 1,
        )
        return replace(merged, summary=generate_summary(merged))

    def increment_escalation_attempts(self, context: ConversationContext) -> ConversationContext:
        state = replace(context.state, escalation_attempts=context.state.escalation_attempts + 1)
        return replace(context, state=state)

    def increment_follow_ups(self, context: ConversationContext) -> ConversationContext:
        state = replace(
            context.state,
            follow_ups_sent=context.state.follow_ups_sent + 1,
            current_goal=ConversationGoal.FOLLOW_UP,
        )
        return replace(context, state=state)

    def _merge_qualification(
        self,
        current: QualificationState,
        update: QualificationState | None,
        criteria: Sequence[str] | None,
    ) -> QualificationState:
        if update is None:
            return current

        matched = dict.fromkeys(ordered_union(current.criteria_matched, update.criteria_matched))
        missed = dict.fromkeys(ordered_union(current.criteria_missed, update.criteria_missed))
        unknown = dict.fromkeys(ordered_union(current.criteria_unknown, update.criteria_unknown))

        for criterion in update.criteria_matched:
            missed.pop(criterion, None)
            unknown.pop(criterion, None)
        for criterion in update.criteria_missed:
            matched.pop(criterion, None)
            unknown.pop(criterion, None)
        # only criteria flagged unknown by this update reopen; carried-over unknowns don't
        for criterion in update.criteria_unknown:
            if criterion not in current.criteria_unknown:
                matched.pop(criterion, None)
                missed.pop(criterion, None)

        if criteria is None:
            status = update.status
        else:
            status = derive_qualification_status(tuple(matched), tuple(missed), criteria)

        return QualificationState(
            status=status,
            criteria_matched=tuple(matched),
            criteria_unknown=tuple(unknown),
            criteria_missed=tuple(missed),
        )

    def _merge_extracted_info(self, current: ExtractedInfo, update: ExtractedInfo | None) -> ExtractedInfo:
        if update is None:
            return current
        return ExtractedInfo(
            is_decision_maker=_pick(update.is_decision_maker, current.is_decision_maker),
            has_active_need=_pick(update.has_active_need, current.has_active_need),
            budget=_pick(update.budget, current.budget),
            timeline=_pick(update.timeline, current.timeline),
            company_size=_pick(update.company_size, current.company_size),
            objections=ordered_union(current.objections, update.objections),
            preferred_contact_method=_pick(update.preferred_contact_method, current.preferred_contact_method),
            preferred_times=ordered_union(current.preferred_times, update.preferred_times),
            additional_notes=ordered_union(current.additional_notes, update.additional_notes),
        )


def determine_goal(current: ConversationGoal, intent: Intent, status: QualificationStatus) -> ConversationGoal:
    qualified = status == QualificationStatus.QUALIFIED

    if intent in (Intent.OPT_OUT, Intent.REQUEST_HUMAN):
        return ConversationGoal.CLOSING
    if intent == Intent.RESCHEDULE:
        return ConversationGoal.OFFER_BOOKING
    if intent == Intent.BOOKING_INTEREST and qualified:
        return ConversationGoal.OFFER_BOOKING
    if intent == Intent.QUESTION:
        return ConversationGoal.ANSWER_QUESTION
    if intent == Intent.OBJECTION:
        return ConversationGoal.HANDLE_OBJECTION
    if intent == Intent.CONFIRMATION and current == ConversationGoal.OFFER_BOOKING:
        return ConversationGoal.CONFIRM_BOOKING
    if intent == Intent.POSITIVE_RESPONSE:
        return ConversationGoal.OFFER_BOOKING if qualified else ConversationGoal.QUALIFY_LEAD
    if current == ConversationGoal.INITIAL_ENGAGEMENT:
        return ConversationGoal.QUALIFY_LEAD
    return current


def generate_summary(context: ConversationContext) -> str:
    parts: list[str] = []
    info = context.extracted_info
    qualification = context.qualification

    if qualification.status == QualificationStatus.QUALIFIED:
        parts.append("Contact is QUALIFIED.")
    elif qualification.status == QualificationStatus.PARTIAL:
        parts.append(f"Partially qualified ({len(qualification.criteria_matched)} criteria met).")
    elif qualification.status == QualificationStatus.DISQUALIFIED:
        parts.append("Contact does NOT meet qualification criteria.")

    if info.is_decision_maker:
        parts.append("Is a decision maker.")
    if info.has_active_need:
        parts.append("Has an active need.")
    if info.timeline:
        parts.append(f"Timeline: {info.timeline}.")
    if info.budget:
        parts.append(f"Budget: {info.budget}.")
    if info.objections:
        parts.append(f"Objections raised: {', '.join(info.objections)}.")
    if info.preferred_times:
        parts.append(f"Prefers: {', '.join(info.preferred_times)}.")

    goal = context.state.current_goal.replace("_", " ")
    parts.append(f"Turn {context.state.turn_count}. Goal: {goal}.")
    return " ".join(parts)


def _pick(new, old):
    return new if new is not None else old
