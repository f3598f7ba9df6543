"""Per-model pricing for cost estimation."""

from typing import Optional

# USD per 1K tokens
MODEL_PRICING = {
    "claude-3-5-haiku": {"input": 0.0008, "output": 0.004},
    "claude-3-5-sonnet": {"input": 0.003, "output": 0.015},
    "claude-sonnet-4": {"input": 0.003, "output": 0.015},
    "claude-3-opus": {"input": 0.015, "output": 0.075},
    "claude-3-haiku": {"input": 0.00025, "output": 0.00125},
    "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
    "gpt-4o": {"input": 0.0025, "output": 0.01},
    "default": {"input": 0.0008, "output": 0.004},
}


def get_model_pricing(model: Optional[str]) -> dict:
    """Pricing for a model, matched by prefix so dated snapshots resolve."""
    if model:
        if model in MODEL_PRICING:
            return MODEL_PRICING[model]
        # Longest prefix first: "claude-3-5-haiku-20241022" -> "claude-3-5-haiku"
        for name in sorted(MODEL_PRICING, key=len, reverse=True):
            if name != "default" and model.startswith(name):
                return MODEL_PRICING[name]
    return MODEL_PRICING["default"]


def estimate_cost(
    input_tokens: int,
    output_tokens: int = 0,
    model: Optional[str] = None,
) -> float:
    """Estimated USD cost of a call."""
    pricing = get_model_pricing(model)
    return (input_tokens / 1000) * pricing["input"] + (output_tokens / 1000) * pricing["output"]
