from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from bookerbot.domain.entities.contact import ContactStatus
from bookerbot.domain.entities.conversation_context import ConversationContext
from bookerbot.domain.entities.generation import TokenUsage
from bookerbot.domain.entities.intent import IntentClassification
from bookerbot.domain.entities.message import OutboundMessage


@dataclass(frozen=True)
class ProcessMessageResult:
    response: str
    intent: IntentClassification
    context_update: ConversationContext | None
    tokens_used: TokenUsage = field(default_factory=TokenUsage)
    status_update: ContactStatus | None = None
    should_escalate: bool = False
    escalation_reason: str | None = None
    appointment_created: bool = False
    error_kind: str | None = None


@dataclass(frozen=True)
class TurnWrite:
    """Everything one turn persists, applied by the store as a single write."""

    contact_id: str
    conversation_context: dict[str, Any]
    expected_revision: int
    last_message_at: datetime
    outbound: OutboundMessage | None = None
    status: ContactStatus | None = None
    opted_out: bool | None = None
    opted_out_at: datetime | None = None
