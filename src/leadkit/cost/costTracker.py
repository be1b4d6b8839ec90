"""Cost tracking for LLM usage.

Keeps an append-only log of request costs and aggregates it over
rolling windows at read time.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from leadkit.cost.pricing import CostBreakdown

logger = logging.getLogger("leadkit.cost")

DAY_SECONDS = 24 * 60 * 60
WEEK_SECONDS = 7 * DAY_SECONDS


@dataclass(frozen=True)
class CostRecord:
    """Cost data for a single request.

    Attributes:
        timestamp: When the request completed (epoch seconds).
        cost: Itemized cost.
        model: Model used.
    """

    timestamp: float
    cost: CostBreakdown
    model: str = ""


@dataclass(frozen=True)
class WindowStats:
    """Aggregate over one time window.

    Attributes:
        count: Number of requests.
        totalCost: Sum of request totals in USD.
    """

    count: int
    totalCost: float

    def toDict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"count": self.count, "totalCost": round(self.totalCost, 6)}


class CostTracker:
    """Tracks costs of LLM requests.

    Records are never mutated or removed except by reset().

    Args:
        clock: Wall-clock function returning seconds.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._records: list[CostRecord] = []
        self._lock = threading.Lock()

    def record(self, cost: CostBreakdown, model: str = "") -> CostRecord:
        """Append a request's cost.

        Args:
            cost: Itemized cost.
            model: Model used for the request.

        Returns:
            The recorded entry.
        """
        entry = CostRecord(timestamp=self._clock(), cost=cost, model=model)
        with self._lock:
            self._records.append(entry)

        logger.info(f"Request cost: model={model or 'unknown'}, cost=${cost.total:.6f}")
        return entry

    def stats(self) -> dict[str, WindowStats]:
        """Aggregate the log over all time, the last 24h and the last 7 days.

        Returns:
            Mapping of window name to WindowStats.
        """
        now = self._clock()
        with self._lock:
            records = list(self._records)

        return {
            "total": _aggregate(records),
            "last24h": _aggregate(r for r in records if now - r.timestamp < DAY_SECONDS),
            "last7d": _aggregate(r for r in records if now - r.timestamp < WEEK_SECONDS),
        }

    def getStats(self) -> dict[str, Any]:
        """Get windowed statistics as plain dictionaries."""
        return {name: window.toDict() for name, window in self.stats().items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def reset(self) -> None:
        """Reset all records."""
        with self._lock:
            self._records = []
        logger.info("Cost tracker reset")


def _aggregate(records: Any) -> WindowStats:
    count = 0
    total = 0.0
    for r in records:
        count += 1
        total += r.cost.total
    return WindowStats(count=count, totalCost=total)
