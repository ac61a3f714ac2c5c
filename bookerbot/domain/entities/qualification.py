from __future__ import annotations

from dataclasses import dataclass, field

from bookerbot.domain.entities.conversation_context import ExtractedInfo, QualificationStatus


@dataclass(frozen=True)
class QualificationCriterion:
    id: str
    text: str


@dataclass(frozen=True)
class CriterionVerdict:
    status: str  # "matched" | "missed" | "unknown"
    criterion_id: str | None = None
    criterion: str | None = None
    evidence: str | None = None


@dataclass(frozen=True)
class QualificationVerdict:
    criteria: tuple[CriterionVerdict, ...] = ()
    extracted_info: ExtractedInfo = field(default_factory=ExtractedInfo)


@dataclass(frozen=True)
class QualificationAssessment:
    status: QualificationStatus
    criteria_matched: tuple[str, ...] = ()
    criteria_unknown: tuple[str, ...] = ()
    criteria_missed: tuple[str, ...] = ()
    extracted_info: ExtractedInfo = field(default_factory=ExtractedInfo)


@dataclass(frozen=True)
class RequalificationDecision:
    allow: bool
    reset_criteria: tuple[str, ...] = ()
