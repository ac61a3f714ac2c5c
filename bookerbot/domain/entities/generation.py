from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ChatMessage:
    role: str  # "user" | "assistant"
    content: str


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: dict[str, Any]


@dataclass(frozen=True)
class ToolCall:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TokenUsage:
    input: int = 0
    output: int = 0
    total: int = 0


@dataclass(frozen=True)
class GenerationRequest:
    model: str
    system_prompt: str
    messages: tuple[ChatMessage, ...]
    max_tokens: int
    temperature: float
    tools: tuple[ToolSpec, ...] = ()


@dataclass(frozen=True)
class GenerationResult:
    content: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    stop_reason: str | None = None
    tool_call: ToolCall | None = None
    model: str | None = None
