"""Tests for sliding-window admission control."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from leadkit.exceptions import ConfigurationError, InvalidArgumentError, RateLimitedError
from leadkit.limits import (
    AdmissionResult,
    ContextLimit,
    RateLimiter,
    RateLimiterConfig,
    rateLimitHeaders,
)


def makeLimiter(clock, sleep=None, limit=3, windowSeconds=10.0) -> RateLimiter:
    config = RateLimiterConfig(contexts={"chat": ContextLimit(limit, windowSeconds)})
    if sleep is None:
        return RateLimiter(config, clock=clock)
    return RateLimiter(config, clock=clock, sleep=sleep)


class TestContextLimit:
    """Tests for ContextLimit validation."""

    def test_rejects_zero_limit(self):
        """A limit below one is a configuration error."""
        with pytest.raises(ConfigurationError):
            ContextLimit(limit=0, windowSeconds=10)

    def test_rejects_non_positive_window(self):
        """A window must have positive length."""
        with pytest.raises(ConfigurationError):
            ContextLimit(limit=5, windowSeconds=0)

    def test_unconfigured_context_uses_default(self):
        """Contexts nobody configured fall back to the default limit."""
        config = RateLimiterConfig(defaultLimit=ContextLimit(7, 30.0))
        assert config.limitFor("anything") == ContextLimit(7, 30.0)


class TestAdmit:
    """Tests for RateLimiter.admit."""

    def test_admits_up_to_limit(self, clock):
        """Admissions inside the limit are allowed and counted down."""
        limiter = makeLimiter(clock)

        results = [limiter.admit("1.2.3.4", "chat") for _ in range(3)]

        assert all(r.allowed for r in results)
        assert [r.remaining for r in results] == [2, 1, 0]

    def test_concurrent_admissions_respect_limit(self, clock):
        """Threads racing on one key never admit more than the limit."""
        limiter = makeLimiter(clock, limit=25)

        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(lambda _: limiter.admit("1.2.3.4", "chat"), range(200)))

        assert sum(r.allowed for r in results) == 25
        assert limiter.getUsage("1.2.3.4", "chat") == 25

    def test_denies_admission_over_limit(self, clock):
        """The limit+1-th admission is denied with a positive retry hint."""
        limiter = makeLimiter(clock)
        for _ in range(3):
            limiter.admit("1.2.3.4", "chat")

        result = limiter.admit("1.2.3.4", "chat")

        assert not result.allowed
        assert result.retryAfterMs > 0
        assert result.remaining == 0

    def test_retry_hint_tracks_oldest_entry(self, clock):
        """The hint is the time until the oldest admission leaves the window."""
        limiter = makeLimiter(clock)
        limiter.admit("k", "chat")
        clock.advance(4)
        limiter.admit("k", "chat")
        limiter.admit("k", "chat")

        result = limiter.admit("k", "chat")

        assert result.retryAfterMs == 6000

    def test_denied_key_recovers_after_hint(self, clock):
        """After the hint elapses the key is admitted again."""
        limiter = makeLimiter(clock)
        for _ in range(3):
            limiter.admit("k", "chat")
        denied = limiter.admit("k", "chat")

        clock.advance(denied.retryAfterMs / 1000)

        assert limiter.admit("k", "chat").allowed

    def test_denial_is_not_recorded(self, clock):
        """Denied admissions do not extend the lockout."""
        limiter = makeLimiter(clock)
        for _ in range(3):
            limiter.admit("k", "chat")
        for _ in range(5):
            limiter.admit("k", "chat")

        assert limiter.getUsage("k", "chat") == 3

    def test_keys_are_independent(self, clock):
        """One client's window does not affect another's."""
        limiter = makeLimiter(clock, limit=1)
        limiter.admit("a", "chat")

        assert not limiter.admit("a", "chat").allowed
        assert limiter.admit("b", "chat").allowed

    def test_contexts_are_independent(self, clock):
        """Contexts under one key have separate windows."""
        limiter = makeLimiter(clock, limit=1)
        limiter.admit("a", "chat")

        assert limiter.admit("a", "lead-form").allowed

    def test_call_time_limit_overrides_config(self, clock):
        """A limit passed to admit replaces the configured one."""
        limiter = makeLimiter(clock, limit=10)
        override = ContextLimit(1, 60.0)
        limiter.admit("a", "chat", override)

        assert not limiter.admit("a", "chat", override).allowed

    @pytest.mark.parametrize("badKey", ["", "   ", None, 42])
    def test_rejects_invalid_client_key(self, clock, badKey):
        """Blank or non-string keys are invalid arguments."""
        limiter = makeLimiter(clock)
        with pytest.raises(InvalidArgumentError):
            limiter.admit(badKey, "chat")


class TestCheckLimit:
    """Tests for the waiting admission path."""

    async def test_allowed_without_sleeping(self, clock, sleep):
        """An open window admits immediately."""
        limiter = makeLimiter(clock, sleep)

        result = await limiter.checkLimit("k", "chat")

        assert result.allowed
        assert sleep.calls == []

    async def test_waits_once_then_admits(self, clock, sleep):
        """A denial is waited out once when the window frees up."""

        async def advancingSleep(seconds):
            sleep.calls.append(seconds)
            clock.advance(seconds)

        limiter = makeLimiter(clock, advancingSleep, limit=1, windowSeconds=2.0)
        limiter.admit("k", "chat")

        result = await limiter.checkLimit("k", "chat")

        assert result.allowed
        assert sleep.calls == [2.0]

    async def test_second_denial_raises(self, clock, sleep):
        """If the window is still full after waiting, RateLimitedError is raised."""
        limiter = makeLimiter(clock, sleep, limit=1)
        limiter.admit("k", "chat")

        with pytest.raises(RateLimitedError) as excInfo:
            await limiter.checkLimit("k", "chat")

        assert excInfo.value.retryAfterMs > 0
        assert excInfo.value.context == "chat"
        assert len(sleep.calls) == 1


class TestMaintenance:
    """Tests for usage, cleanup and reset."""

    def test_usage_drops_as_window_slides(self, clock):
        """Entries leave the window once they are older than it."""
        limiter = makeLimiter(clock)
        limiter.admit("k", "chat")
        clock.advance(5)
        limiter.admit("k", "chat")
        clock.advance(6)

        assert limiter.getUsage("k", "chat") == 1

    def test_cleanup_drops_idle_windows(self, clock):
        """Idle, empty windows are removed."""
        limiter = makeLimiter(clock)
        limiter.admit("k", "chat")
        clock.advance(7200)

        assert limiter.cleanup(maxIdleSeconds=3600) == 1
        assert limiter.getUsage("k", "chat") == 0

    def test_cleanup_keeps_active_windows(self, clock):
        """Windows with live entries survive cleanup."""
        limiter = makeLimiter(clock)
        limiter.admit("k", "chat")

        assert limiter.cleanup(maxIdleSeconds=0) == 0

    def test_reset(self, clock):
        """Reset forgets every window."""
        limiter = makeLimiter(clock, limit=1)
        limiter.admit("k", "chat")
        limiter.reset()

        assert limiter.admit("k", "chat").allowed


class TestRateLimitHeaders:
    """Tests for response header generation."""

    def test_allowed_headers(self):
        """Allowed results report limit and remaining only."""
        headers = rateLimitHeaders(AdmissionResult(allowed=True, limit=5, remaining=4))

        assert headers == {"X-RateLimit-Limit": "5", "X-RateLimit-Remaining": "4"}

    def test_denied_headers_round_up_retry_after(self):
        """Denied results carry Retry-After in whole seconds."""
        headers = rateLimitHeaders(
            AdmissionResult(allowed=False, retryAfterMs=1500, limit=5, remaining=0)
        )

        assert headers["Retry-After"] == "2"
        assert "X-RateLimit-Reset" in headers
