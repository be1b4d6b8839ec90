"""Sliding-window admission control per (client key, context).

Each context under a client key owns an independent window of admission
timestamps. Admission never blocks; callers decide whether to wait,
queue or reject based on the returned retry hint.
"""

import asyncio
import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from leadkit.exceptions import ConfigurationError, InvalidArgumentError, RateLimitedError

logger = logging.getLogger("leadkit.limits")


@dataclass(frozen=True)
class ContextLimit:
    """Limit for one rate-limit context.

    Attributes:
        limit: Maximum admissions inside the window.
        windowSeconds: Length of the trailing window.
    """

    limit: int
    windowSeconds: float

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ConfigurationError(f"limit must be at least 1, got {self.limit}")
        if self.windowSeconds <= 0:
            raise ConfigurationError(
                f"windowSeconds must be positive, got {self.windowSeconds}"
            )


# Applied to contexts nobody configured
DEFAULT_CONTEXT_LIMIT = ContextLimit(limit=10, windowSeconds=60.0)


@dataclass
class RateLimiterConfig:
    """Per-context limits for a RateLimiter.

    Attributes:
        contexts: Limits keyed by context name.
        defaultLimit: Limit used for contexts not listed in `contexts`.
    """

    contexts: dict[str, ContextLimit] = field(default_factory=dict)
    defaultLimit: ContextLimit = DEFAULT_CONTEXT_LIMIT

    def limitFor(self, context: str) -> ContextLimit:
        """Get the configured limit for a context."""
        return self.contexts.get(context, self.defaultLimit)


@dataclass(frozen=True)
class AdmissionResult:
    """Outcome of an admission check.

    Attributes:
        allowed: Whether the request was admitted (and recorded).
        retryAfterMs: Milliseconds until a slot frees up, when denied.
        limit: The limit that was applied.
        remaining: Slots left in the window after this check.
    """

    allowed: bool
    retryAfterMs: int | None = None
    limit: int = 0
    remaining: int = 0

    def toDict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "allowed": self.allowed,
            "retryAfterMs": self.retryAfterMs,
            "limit": self.limit,
            "remaining": self.remaining,
        }


@dataclass
class _Window:
    timestamps: deque[float] = field(default_factory=deque)
    lastSeen: float = 0.0


class RateLimiter:
    """Sliding-window rate limiter keyed by (client key, context).

    Args:
        config: Context limits. Unconfigured contexts use a conservative default.
        clock: Monotonic clock returning seconds.
        sleep: Coroutine used by checkLimit to wait.
    """

    def __init__(
        self,
        config: RateLimiterConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._config = config or RateLimiterConfig()
        self._clock = clock
        self._sleep = sleep
        self._windows: dict[tuple[str, str], _Window] = {}
        self._lock = threading.Lock()

    @property
    def config(self) -> RateLimiterConfig:
        """Get the limiter configuration."""
        return self._config

    def admit(
        self,
        clientKey: str,
        context: str = "global",
        limit: ContextLimit | None = None,
    ) -> AdmissionResult:
        """Check and record an admission without blocking.

        Args:
            clientKey: Identity of the caller (API key name, client IP, user id).
            context: Rate-limit context under the client key.
            limit: Call-time limit overriding the configured one.

        Returns:
            AdmissionResult; when denied, retryAfterMs is the time until the
            oldest entry leaves the window.

        Raises:
            InvalidArgumentError: If the client key is empty or not a string.
        """
        self._validateKey(clientKey)
        contextLimit = limit or self._config.limitFor(context)
        windowSeconds = contextLimit.windowSeconds

        with self._lock:
            now = self._clock()
            window = self._windows.setdefault((clientKey, context), _Window())
            window.lastSeen = now
            self._prune(window, now - windowSeconds)

            if len(window.timestamps) >= contextLimit.limit:
                # Deque is ordered, so the head is the oldest entry
                oldest = window.timestamps[0]
                waitSeconds = oldest + windowSeconds - now
                retryAfterMs = max(1, math.ceil(waitSeconds * 1000))
                logger.debug(
                    f"Denied {clientKey}/{context}: "
                    f"{len(window.timestamps)}/{contextLimit.limit}, retry in {retryAfterMs}ms"
                )
                return AdmissionResult(
                    allowed=False,
                    retryAfterMs=retryAfterMs,
                    limit=contextLimit.limit,
                    remaining=0,
                )

            window.timestamps.append(now)
            return AdmissionResult(
                allowed=True,
                limit=contextLimit.limit,
                remaining=contextLimit.limit - len(window.timestamps),
            )

    async def checkLimit(
        self,
        clientKey: str,
        context: str = "global",
        limit: ContextLimit | None = None,
    ) -> AdmissionResult:
        """Admit, waiting out one denial before giving up.

        Sleeps for the retry hint once and re-admits once. A second denial
        raises instead of looping.

        Raises:
            RateLimitedError: If the request is still denied after waiting.
            InvalidArgumentError: If the client key is invalid.
        """
        result = self.admit(clientKey, context, limit)
        if result.allowed:
            return result

        waitMs = result.retryAfterMs or 0
        logger.info(f"Rate limited on {context}, waiting {waitMs / 1000:.2f}s")
        await self._sleep(waitMs / 1000)

        result = self.admit(clientKey, context, limit)
        if not result.allowed:
            raise RateLimitedError(result.retryAfterMs or 1, context=context)
        return result

    def getUsage(self, clientKey: str, context: str = "global") -> int:
        """Count admissions currently inside the window.

        Args:
            clientKey: Identity of the caller.
            context: Rate-limit context.

        Returns:
            Number of live entries.
        """
        self._validateKey(clientKey)
        windowSeconds = self._config.limitFor(context).windowSeconds
        with self._lock:
            window = self._windows.get((clientKey, context))
            if window is None:
                return 0
            self._prune(window, self._clock() - windowSeconds)
            return len(window.timestamps)

    def cleanup(self, maxIdleSeconds: float = 3600.0) -> int:
        """Drop windows that have been idle and are empty.

        Returns:
            Number of windows removed.
        """
        removed = 0
        with self._lock:
            now = self._clock()
            for key in list(self._windows):
                window = self._windows[key]
                windowSeconds = self._config.limitFor(key[1]).windowSeconds
                self._prune(window, now - windowSeconds)
                if not window.timestamps and now - window.lastSeen >= maxIdleSeconds:
                    del self._windows[key]
                    removed += 1
        if removed:
            logger.debug(f"Cleaned up {removed} idle rate-limit windows")
        return removed

    def reset(self) -> None:
        """Forget all windows."""
        with self._lock:
            self._windows.clear()

    @staticmethod
    def _prune(window: _Window, cutoff: float) -> None:
        while window.timestamps and window.timestamps[0] <= cutoff:
            window.timestamps.popleft()

    @staticmethod
    def _validateKey(clientKey: Any) -> None:
        if not isinstance(clientKey, str) or not clientKey.strip():
            raise InvalidArgumentError(
                "clientKey must be a non-empty string", field="clientKey"
            )


def rateLimitHeaders(result: AdmissionResult) -> dict[str, str]:
    """Build rate-limit response headers for an admission result.

    Args:
        result: Result of an admission check.

    Returns:
        Headers for client-side rate limit awareness.
    """
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
    }
    if not result.allowed and result.retryAfterMs is not None:
        retryAfterSeconds = max(1, math.ceil(result.retryAfterMs / 1000))
        headers["Retry-After"] = str(retryAfterSeconds)
        headers["X-RateLimit-Reset"] = str(int(time.time()) + retryAfterSeconds)
    return headers
