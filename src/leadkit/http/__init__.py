"""Outbound HTTP helpers: retry policy and invoker."""

from leadkit.http.retry import (
    RetryConfig,
    RetryingHttpInvoker,
    RetryOutcome,
    RetryState,
    isRetryableStatus,
    parseRetryAfter,
)

__all__ = [
    "RetryConfig",
    "RetryingHttpInvoker",
    "RetryOutcome",
    "RetryState",
    "isRetryableStatus",
    "parseRetryAfter",
]
