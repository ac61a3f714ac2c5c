from __future__ import annotations

import logging

from bookerbot.application.ports.llm import LLMPort
from bookerbot.application.utils.date_parser import (
    extract_relative_date,
    extract_time_of_day,
    extract_weekday,
)
from bookerbot.application.utils.message_rules import (
    BOOKING_KEYWORDS,
    FRUSTRATION_KEYWORDS,
    HUMAN_REQUEST_KEYWORDS,
    NEGATIVE_KEYWORDS,
    POSITIVE_KEYWORDS,
    RESCHEDULE_KEYWORDS,
    THANKS_KEYWORDS,
    TIME_SELECTION_PATTERNS,
    contains_keyword,
    is_greeting,
    is_opt_out,
    looks_like_question,
    matches_any,
    normalize_text,
)
from bookerbot.domain.entities.conversation_context import ConversationContext
from bookerbot.domain.entities.intent import EscalationCheck, Intent, IntentClassification

REASON_HUMAN_REQUESTED = "Contact requested human assistance"
REASON_TURN_LIMIT = "Conversation exceeded turn limit without resolution"
REASON_REPEATED_ESCALATION = "Multiple unresolved complex queries"
REASON_FRUSTRATION = "Contact expressed frustration"

MAX_TURNS_BEFORE_ESCALATION = 15
MAX_ESCALATION_ATTEMPTS = 2


class IntentDetector:
    def __init__(self, llm: LLMPort) -> None:
        self._llm = llm
        self._logger = logging.getLogger(__name__)

    async def detect(self, message: str, context: ConversationContext) -> IntentClassification:
        fast = self.detect_fast_path(message)
        if fast is not None:
            return fast

        try:
            classification = await self._llm.classify_intent(message, context.summary)
        except Exception as e:
            self._logger.warning("Intent classification failed", extra={"error": str(e)})
            return IntentClassification(intent=Intent.UNCLEAR, confidence=0.0)

        return IntentClassification(
            intent=Intent.from_label(classification.intent),
            confidence=max(0.0, min(1.0, float(classification.confidence))),
            entities=dict(classification.entities),
            requires_escalation=classification.requires_escalation,
            escalation_reason=classification.escalation_reason,
        )

    def detect_fast_path(self, message: str) -> IntentClassification | None:
        """Keyword and pattern rules, first match wins. None means ask the model."""
        normalized = normalize_text(message)

        if is_opt_out(normalized):
            return IntentClassification(intent=Intent.OPT_OUT, confidence=1.0)

        if contains_keyword(normalized, HUMAN_REQUEST_KEYWORDS):
            return IntentClassification(
                intent=Intent.REQUEST_HUMAN,
                confidence=0.95,
                requires_escalation=True,
                escalation_reason=REASON_HUMAN_REQUESTED,
            )

        if len(normalized) < 10 and contains_keyword(normalized, POSITIVE_KEYWORDS):
            return IntentClassification(intent=Intent.POSITIVE_RESPONSE, confidence=0.85)

        if len(normalized) < 20 and contains_keyword(normalized, NEGATIVE_KEYWORDS):
            return IntentClassification(intent=Intent.NEGATIVE_RESPONSE, confidence=0.85)

        if contains_keyword(normalized, RESCHEDULE_KEYWORDS, prefix=True):
            return IntentClassification(
                intent=Intent.RESCHEDULE,
                confidence=0.9,
                entities=extract_booking_entities(normalized),
            )

        if contains_keyword(normalized, BOOKING_KEYWORDS, prefix=True):
            return IntentClassification(
                intent=Intent.BOOKING_INTEREST,
                confidence=0.8,
                entities=extract_booking_entities(normalized),
            )

        if matches_any(normalized, TIME_SELECTION_PATTERNS):
            return IntentClassification(
                intent=Intent.BOOKING_INTEREST,
                confidence=0.85,
                entities=extract_booking_entities(normalized),
            )

        if looks_like_question(normalized):
            return IntentClassification(intent=Intent.QUESTION, confidence=0.75)

        if is_greeting(normalized):
            return IntentClassification(intent=Intent.GREETING, confidence=0.9)

        if contains_keyword(normalized, THANKS_KEYWORDS):
            return IntentClassification(intent=Intent.THANKS, confidence=0.9)

        return None

    def check_escalation_triggers(self, message: str, context: ConversationContext) -> EscalationCheck:
        normalized = normalize_text(message)

        if contains_keyword(normalized, HUMAN_REQUEST_KEYWORDS):
            return EscalationCheck(required=True, reason=REASON_HUMAN_REQUESTED)
        if context.state.turn_count > MAX_TURNS_BEFORE_ESCALATION:
            return EscalationCheck(required=True, reason=REASON_TURN_LIMIT)
        if context.state.escalation_attempts >= MAX_ESCALATION_ATTEMPTS:
            return EscalationCheck(required=True, reason=REASON_REPEATED_ESCALATION)
        if contains_keyword(normalized, FRUSTRATION_KEYWORDS):
            return EscalationCheck(required=True, reason=REASON_FRUSTRATION)

        return EscalationCheck(required=False)


def extract_booking_entities(text: str) -> dict[str, str]:
    entities: dict[str, str] = {}
    day = extract_weekday(text)
    if day:
        entities["preferredDay"] = day
    time_of_day = extract_time_of_day(text)
    if time_of_day:
        entities["preferredTime"] = time_of_day
    relative = extract_relative_date(text)
    if relative:
        entities["preferredDate"] = relative
    return entities
