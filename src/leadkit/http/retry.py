"""Retry handling for outbound API calls.

Wraps a single outbound call with exponential backoff, honoring
server-supplied Retry-After hints and separating retryable failures
(429, 5xx, transport errors) from fatal ones (other 4xx).
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, TypeVar

import httpx

from leadkit.exceptions import (
    ConfigurationError,
    NotFoundError,
    UpstreamRejectedError,
    UpstreamRetryExhaustedError,
)

logger = logging.getLogger("leadkit.http")

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        maxAttempts: Total attempts, including the first one.
        initialDelaySeconds: Delay before the first retry.
        multiplier: Growth factor for each further retry.
        maxDelaySeconds: Ceiling for computed delays.
        jitterFactor: Random jitter factor (0.0 to 1.0) added to computed delays.
        retryableErrors: Exception types treated as transport failures.
    """

    maxAttempts: int = 3
    initialDelaySeconds: float = 1.0
    multiplier: float = 2.0
    maxDelaySeconds: float = 60.0
    jitterFactor: float = 0.0
    retryableErrors: tuple[type[BaseException], ...] = field(
        default_factory=lambda: (httpx.TransportError,)
    )

    def __post_init__(self) -> None:
        if self.maxAttempts < 1:
            raise ConfigurationError("maxAttempts must be at least 1")
        if self.initialDelaySeconds < 0 or self.maxDelaySeconds < 0:
            raise ConfigurationError("retry delays must not be negative")
        if self.multiplier < 1:
            raise ConfigurationError("multiplier must be at least 1")
        if not 0.0 <= self.jitterFactor <= 1.0:
            raise ConfigurationError("jitterFactor must be between 0 and 1")


class RetryOutcome(str, Enum):
    """Terminal outcome of an invocation."""

    PENDING = "pending"
    SUCCESS = "success"
    RETRY_EXHAUSTED = "retry_exhausted"
    FATAL = "fatal"


@dataclass
class RetryState:
    """State of a single invocation.

    Attributes:
        attempt: Attempts made so far.
        delaySeconds: Most recent delay waited before a retry.
        outcome: Terminal outcome, PENDING while running.
        lastStatus: HTTP status of the last failed attempt.
        lastError: Description of the last failure.
    """

    attempt: int = 0
    delaySeconds: float = 0.0
    outcome: RetryOutcome = RetryOutcome.PENDING
    lastStatus: int | None = None
    lastError: str = ""

    def toDict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "attempt": self.attempt,
            "delaySeconds": self.delaySeconds,
            "outcome": self.outcome.value,
            "lastStatus": self.lastStatus,
            "lastError": self.lastError,
        }


def parseRetryAfter(headers: Mapping[str, str] | None) -> float | None:
    """Extract a retry delay from response headers.

    Understands `retry-after-ms`, and `Retry-After` as either delta
    seconds or an HTTP date.

    Args:
        headers: Response headers (case-insensitive lookup).

    Returns:
        Delay in seconds, or None when no usable hint is present.
    """
    if not headers:
        return None
    normalized = httpx.Headers(headers)

    retryAfterMs = normalized.get("retry-after-ms")
    if retryAfterMs:
        try:
            return max(0.0, float(retryAfterMs) / 1000)
        except ValueError:
            pass

    retryAfter = normalized.get("retry-after")
    if not retryAfter:
        return None
    try:
        return max(0.0, float(retryAfter))
    except ValueError:
        pass

    try:
        when = parsedate_to_datetime(retryAfter)
    except (TypeError, ValueError):
        logger.debug(f"Unparseable Retry-After header: {retryAfter!r}")
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def isRetryableStatus(status: int) -> bool:
    """429 and 5xx are retryable; everything else is final."""
    return status == 429 or status >= 500


class RetryingHttpInvoker:
    """Executes outbound calls with bounded exponential backoff.

    Operations return an `httpx.Response` or any other value. Responses
    with status >= 400 and raised exceptions carrying a status code (such
    as SDK status errors) are classified by status; exceptions listed in
    `RetryConfig.retryableErrors` are treated as transport failures.

    Args:
        config: Retry configuration.
        sleep: Coroutine used to wait between attempts.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._config = config or RetryConfig()
        self._sleep = sleep
        self._lastState = RetryState()

    @property
    def config(self) -> RetryConfig:
        """Get the retry configuration."""
        return self._config

    @property
    def lastState(self) -> RetryState:
        """State of the most recent invocation."""
        return self._lastState

    def calculateDelay(self, attempt: int) -> float:
        """Calculate delay before retrying after a failed attempt.

        Args:
            attempt: Failed attempt number (0-indexed).

        Returns:
            Delay in seconds.
        """
        delay = self._config.initialDelaySeconds * (self._config.multiplier ** attempt)
        delay = min(delay, self._config.maxDelaySeconds)

        if self._config.jitterFactor:
            delay += delay * self._config.jitterFactor * random.random()

        return delay

    async def invoke(
        self,
        operation: Callable[[], Awaitable[T]],
        admission: Callable[[], Awaitable[Any]] | None = None,
        description: str = "request",
    ) -> T:
        """Execute an operation with retry logic.

        Args:
            operation: Coroutine factory performing one attempt.
            admission: Coroutine factory run before every attempt; each
                retry is a new admission event.
            description: Label used in log messages.

        Returns:
            Result of the first successful attempt.

        Raises:
            UpstreamRejectedError: On a non-retryable 4xx (NotFoundError for 404).
            UpstreamRetryExhaustedError: When every attempt failed retryably.
            RateLimitedError: If admission is denied.
            Exception: Unclassifiable errors propagate unchanged.
        """
        state = RetryState()
        self._lastState = state
        maxAttempts = self._config.maxAttempts
        lastError: BaseException | None = None

        for attempt in range(maxAttempts):
            state.attempt = attempt + 1
            if admission is not None:
                await admission()

            headers: Mapping[str, str] | None = None
            try:
                result = await operation()
            except self._config.retryableErrors as e:
                status = None
                lastError = e
            except Exception as e:
                status = _statusOf(e)
                if status is None:
                    state.outcome = RetryOutcome.FATAL
                    state.lastError = str(e)
                    raise
                lastError = e
                headers = _headersOf(e)
                if not isRetryableStatus(status):
                    state.outcome = RetryOutcome.FATAL
                    state.lastStatus = status
                    raise _rejected(status, _messageOf(e)) from e
            else:
                if not (isinstance(result, httpx.Response) and result.status_code >= 400):
                    state.outcome = RetryOutcome.SUCCESS
                    return result
                status = result.status_code
                headers = result.headers
                lastError = None
                if not isRetryableStatus(status):
                    state.outcome = RetryOutcome.FATAL
                    state.lastStatus = status
                    raise _rejected(status, _responseMessage(result))

            state.lastStatus = status
            state.lastError = str(lastError) if lastError is not None else f"HTTP {status}"

            if attempt + 1 >= maxAttempts:
                break

            retryAfter = parseRetryAfter(headers) if status == 429 else None
            delay = retryAfter if retryAfter is not None else self.calculateDelay(attempt)
            state.delaySeconds = delay
            logger.warning(
                f"Retry {attempt + 1}/{maxAttempts - 1} for {description} "
                f"after {delay:.1f}s: {state.lastError}"
            )
            await self._sleep(delay)

        state.outcome = RetryOutcome.RETRY_EXHAUSTED
        logger.error(f"{description} failed after {maxAttempts} attempts: {state.lastError}")
        raise UpstreamRetryExhaustedError(maxAttempts, state.lastStatus, lastError) from lastError


def _statusOf(error: BaseException) -> int | None:
    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(getattr(error, "response", None), "status_code", None)
    return status if isinstance(status, int) else None


def _headersOf(error: BaseException) -> Mapping[str, str] | None:
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    return headers if isinstance(headers, Mapping) else None


def _messageOf(error: BaseException) -> str:
    message = getattr(error, "message", None)
    return message if isinstance(message, str) and message else str(error)


def _responseMessage(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        for key in ("errorMessage", "message", "error"):
            if isinstance(body.get(key), str):
                return body[key]
    return response.reason_phrase


def _rejected(status: int, message: str) -> UpstreamRejectedError:
    if status == 404:
        return NotFoundError(status, message)
    return UpstreamRejectedError(status, message)
