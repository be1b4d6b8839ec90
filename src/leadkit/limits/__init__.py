"""Rate limiting for leadkit clients and endpoints."""

from leadkit.limits.rateLimiter import (
    DEFAULT_CONTEXT_LIMIT,
    AdmissionResult,
    ContextLimit,
    RateLimiter,
    RateLimiterConfig,
    rateLimitHeaders,
)

__all__ = [
    "RateLimiter",
    "RateLimiterConfig",
    "ContextLimit",
    "AdmissionResult",
    "DEFAULT_CONTEXT_LIMIT",
    "rateLimitHeaders",
]
