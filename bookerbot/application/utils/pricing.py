from __future__ import annotations

from bookerbot.domain.entities.generation import TokenUsage

# USD per million tokens: (input, output)
MODEL_PRICING = {
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4o": (2.50, 10.00),
    "gpt-4.1-mini": (0.40, 1.60),
    "gpt-4.1": (2.00, 8.00),
}
DEFAULT_PRICING_MODEL = "gpt-4o-mini"


def estimate_cost(model: str | None, usage: TokenUsage) -> float:
    input_price, output_price = MODEL_PRICING.get(model or "", MODEL_PRICING[DEFAULT_PRICING_MODEL])
    cost = (usage.input * input_price + usage.output * output_price) / 1_000_000
    return round(cost, 6)
