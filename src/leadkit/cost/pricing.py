"""Per-model pricing and cost calculation.

Costs are a pure function of the model and the four token counts the
provider reports. Unknown models and missing usage are errors, never a
zero-cost default.
"""

from dataclasses import dataclass
from typing import Any

from leadkit.exceptions import PricingError


@dataclass(frozen=True)
class ModelPricing:
    """USD price per 1M tokens for one model."""

    input: float
    output: float
    cacheWrite: float
    cacheRead: float


# Fixed pricing table, per 1M tokens
MODEL_PRICING: dict[str, ModelPricing] = {
    "claude-sonnet-4-20250514": ModelPricing(input=3.00, output=15.00, cacheWrite=3.75, cacheRead=0.30),
    "claude-opus-4-20250514": ModelPricing(input=15.00, output=75.00, cacheWrite=18.75, cacheRead=1.50),
    "claude-3-5-sonnet-20241022": ModelPricing(input=3.00, output=15.00, cacheWrite=3.75, cacheRead=0.30),
    "claude-3-5-haiku-20241022": ModelPricing(input=0.80, output=4.00, cacheWrite=1.00, cacheRead=0.08),
    "claude-3-opus-20240229": ModelPricing(input=15.00, output=75.00, cacheWrite=18.75, cacheRead=1.50),
    "claude-3-haiku-20240307": ModelPricing(input=0.25, output=1.25, cacheWrite=0.30, cacheRead=0.03),
}


@dataclass(frozen=True)
class CostBreakdown:
    """Itemized cost of one request in USD."""

    input: float
    output: float
    cacheWrite: float = 0.0
    cacheRead: float = 0.0

    @property
    def total(self) -> float:
        """Sum of all line items."""
        return self.input + self.output + self.cacheWrite + self.cacheRead

    def toDict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "input": self.input,
            "output": self.output,
            "cacheWrite": self.cacheWrite,
            "cacheRead": self.cacheRead,
            "total": self.total,
        }


def getPricing(model: str) -> ModelPricing:
    """Look up pricing for a model.

    Raises:
        PricingError: If the model is not in the pricing table.
    """
    try:
        return MODEL_PRICING[model]
    except KeyError:
        raise PricingError(f"Unknown model pricing: {model}") from None


def calculateCost(
    model: str,
    inputTokens: int | None,
    outputTokens: int | None,
    cacheWriteTokens: int | None = 0,
    cacheReadTokens: int | None = 0,
) -> CostBreakdown:
    """Calculate the cost of one request.

    Args:
        model: Model identifier.
        inputTokens: Uncached input tokens.
        outputTokens: Generated tokens.
        cacheWriteTokens: Tokens written to the prompt cache.
        cacheReadTokens: Tokens served from the prompt cache.

    Returns:
        Itemized cost.

    Raises:
        PricingError: If the model is unknown or input/output usage is missing.
    """
    pricing = getPricing(model)
    if inputTokens is None or outputTokens is None:
        raise PricingError(f"Token usage missing for {model}; refusing to assume zero cost")

    counts = (inputTokens, outputTokens, cacheWriteTokens or 0, cacheReadTokens or 0)
    if any(c < 0 for c in counts):
        raise PricingError(f"Negative token count in usage: {counts}")

    return CostBreakdown(
        input=(counts[0] / 1_000_000) * pricing.input,
        output=(counts[1] / 1_000_000) * pricing.output,
        cacheWrite=(counts[2] / 1_000_000) * pricing.cacheWrite,
        cacheRead=(counts[3] / 1_000_000) * pricing.cacheRead,
    )
