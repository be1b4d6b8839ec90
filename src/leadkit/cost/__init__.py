"""Cost accounting for LLM usage.

Provides the pricing table, pure cost calculation and windowed
cost tracking.
"""

from leadkit.cost.costTracker import CostRecord, CostTracker, WindowStats
from leadkit.cost.pricing import (
    MODEL_PRICING,
    CostBreakdown,
    ModelPricing,
    calculateCost,
    getPricing,
)

__all__ = [
    "CostTracker",
    "CostRecord",
    "WindowStats",
    "CostBreakdown",
    "ModelPricing",
    "MODEL_PRICING",
    "calculateCost",
    "getPricing",
]
