"""
Token cost estimation.

Prices are USD per 1M tokens. The active model is matched against the table
by longest prefix, so "gpt-4o-mini-2024-07-18" prices as "gpt-4o-mini" and
not as "gpt-4o" or "gpt-4".
"""

from dataclasses import dataclass

from email_intake.core.models import TokenUsage


@dataclass(frozen=True)
class ModelPricing:
    input: float
    output: float


PRICING: dict[str, ModelPricing] = {
    "gpt-5": ModelPricing(input=1.25, output=10.0),
    "gpt-5-mini": ModelPricing(input=0.25, output=2.0),
    "gpt-5-nano": ModelPricing(input=0.05, output=0.40),
    "gpt-4o": ModelPricing(input=2.5, output=10.0),
    "gpt-4o-mini": ModelPricing(input=0.15, output=0.60),
    "gpt-4-turbo": ModelPricing(input=10.0, output=30.0),
    "gpt-4": ModelPricing(input=30.0, output=60.0),
}

DEFAULT_TIER = "gpt-4o-mini"


def get_pricing(model: str) -> ModelPricing:
    """Return the price tier for a model, falling back to the default tier."""
    name = (model or "").lower()
    matches = [key for key in PRICING if name.startswith(key)]
    if not matches:
        return PRICING[DEFAULT_TIER]
    return PRICING[max(matches, key=len)]


def calculate_cost(usage: TokenUsage, model: str) -> float:
    """
    Estimate the USD cost of a token usage.

    Non-decreasing in both prompt and completion counts, and zero for zero usage.
    Negative counts are treated as zero.
    """
    pricing = get_pricing(model)
    prompt = max(usage.prompt, 0)
    completion = max(usage.completion, 0)
    return (prompt * pricing.input + completion * pricing.output) / 1_000_000
