from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from bookerbot.domain.entities.intent import Intent


class ConversationGoal(StrEnum):
    INITIAL_ENGAGEMENT = "initial_engagement"
    QUALIFY_LEAD = "qualify_lead"
    HANDLE_OBJECTION = "handle_objection"
    ANSWER_QUESTION = "answer_question"
    OFFER_BOOKING = "offer_booking"
    CONFIRM_BOOKING = "confirm_booking"
    FOLLOW_UP = "follow_up"
    CLOSING = "closing"


class QualificationStatus(StrEnum):
    UNKNOWN = "unknown"
    PARTIAL = "partial"
    QUALIFIED = "qualified"
    DISQUALIFIED = "disqualified"


@dataclass(frozen=True)
class ExtractedInfo:
    is_decision_maker: bool | None = None
    has_active_need: bool | None = None
    budget: str | None = None
    timeline: str | None = None
    company_size: str | None = None
    objections: tuple[str, ...] = ()
    preferred_contact_method: str | None = None
    preferred_times: tuple[str, ...] = ()
    additional_notes: tuple[str, ...] = ()


@dataclass(frozen=True)
class QualificationState:
    status: QualificationStatus = QualificationStatus.UNKNOWN
    criteria_matched: tuple[str, ...] = ()
    criteria_unknown: tuple[str, ...] = ()
    criteria_missed: tuple[str, ...] = ()


@dataclass(frozen=True)
class TurnState:
    current_goal: ConversationGoal = ConversationGoal.INITIAL_ENGAGEMENT
    turn_count: int = 0
    last_intent: Intent = Intent.UNCLEAR
    escalation_attempts: int = 0
    follow_ups_sent: int = 0
    last_message_at: datetime | None = None


@dataclass(frozen=True)
class ConversationContext:
    extracted_info: ExtractedInfo = field(default_factory=ExtractedInfo)
    qualification: QualificationState = field(default_factory=QualificationState)
    state: TurnState = field(default_factory=TurnState)
    summary: str = ""
    message_count: int = 0


def ordered_union(*groups: Iterable[str]) -> tuple[str, ...]:
    """Deduplicate while keeping first-seen order."""
    seen: dict[str, None] = {}
    for group in groups:
        for item in group:
            seen.setdefault(item, None)
    return tuple(seen)


def derive_qualification_status(
    matched: Sequence[str],
    missed: Sequence[str],
    criteria: Sequence[str],
) -> QualificationStatus:
    if missed:
        return QualificationStatus.DISQUALIFIED
    if all(criterion in matched for criterion in criteria):
        return QualificationStatus.QUALIFIED
    if matched:
        return QualificationStatus.PARTIAL
    return QualificationStatus.UNKNOWN
