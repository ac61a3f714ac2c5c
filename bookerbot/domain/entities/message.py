from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class Message:
    id: str
    contact_id: str
    direction: str  # "inbound" | "outbound"
    content: str
    created_at: datetime
    channel: str = "sms"


@dataclass(frozen=True)
class OutboundMessage:
    contact_id: str
    channel: str
    content: str
    status: str = "pending"
    ai_generated: bool = True
    tokens_used: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    ai_model: str | None = None
    ai_cost: float = 0.0
    intent_detected: str | None = None
