"""leadkit exception hierarchy.

All leadkit exceptions inherit from LeadkitError for easy catching.
"""


class LeadkitError(Exception):
    """Base exception for all leadkit errors."""

    pass


class ConfigurationError(LeadkitError):
    """Raised when configuration is invalid or missing."""

    pass


class ValidationError(LeadkitError):
    """Raised for bad caller input. Never retried."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidArgumentError(ValidationError):
    """Raised when an argument cannot be used as given (e.g. blank client key)."""

    pass


class RateLimitedError(LeadkitError):
    """Raised when admission is denied by a rate limiter."""

    def __init__(self, retryAfterMs: int, context: str = "", message: str | None = None):
        self.retryAfterMs = retryAfterMs
        self.context = context
        super().__init__(
            message
            or f"Rate limit exceeded for '{context}', retry after {retryAfterMs}ms"
        )

    @property
    def retryAfterSeconds(self) -> int:
        """Retry hint rounded up to whole seconds."""
        return max(1, -(-self.retryAfterMs // 1000))


class UpstreamError(LeadkitError):
    """Base class for failures talking to a remote service."""

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message)


class UpstreamRejectedError(UpstreamError):
    """Raised when the remote returns a non-retryable 4xx."""

    def __init__(self, status: int, message: str):
        self.remoteMessage = message
        super().__init__(f"Upstream rejected request ({status}): {message}", status)


class NotFoundError(UpstreamRejectedError):
    """Raised when the remote reports 404 for a resource."""

    pass


class UpstreamRetryExhaustedError(UpstreamError):
    """Raised when the remote kept failing after all retry attempts."""

    def __init__(
        self,
        attempts: int,
        lastStatus: int | None = None,
        lastError: BaseException | None = None,
    ):
        self.attempts = attempts
        self.lastError = lastError
        detail = f"status {lastStatus}" if lastStatus else str(lastError)
        super().__init__(
            f"Upstream still failing after {attempts} attempts: {detail}", lastStatus
        )


class CacheBackendError(LeadkitError):
    """Raised by durable cache backends. Never surfaced past ResponseCache."""

    pass


class PricingError(LeadkitError):
    """Raised when a cost cannot be computed (unknown model or missing usage)."""

    pass
