from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class Intent(StrEnum):
    BOOKING_INTEREST = "booking_interest"
    QUESTION = "question"
    OBJECTION = "objection"
    POSITIVE_RESPONSE = "positive_response"
    NEGATIVE_RESPONSE = "negative_response"
    OPT_OUT = "opt_out"
    REQUEST_HUMAN = "request_human"
    CONFIRMATION = "confirmation"
    UNCLEAR = "unclear"
    GREETING = "greeting"
    THANKS = "thanks"
    RESCHEDULE = "reschedule"

    @classmethod
    def from_label(cls, label: object) -> Intent:
        """Map a free-text label into the closed set, defaulting to UNCLEAR."""
        if isinstance(label, str):
            try:
                return cls(label.strip().lower())
            except ValueError:
                pass
        return cls.UNCLEAR


@dataclass(frozen=True)
class IntentClassification:
    intent: Intent
    confidence: float
    entities: dict[str, str] = field(default_factory=dict)
    requires_escalation: bool = False
    escalation_reason: str | None = None


@dataclass(frozen=True)
class EscalationCheck:
    required: bool
    reason: str | None = None
