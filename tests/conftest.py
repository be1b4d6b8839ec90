"""Shared pytest fixtures for leadkit tests."""

import os

import pytest

from leadkit.config import resetSettings
from leadkit.http.retry import RetryConfig
from leadkit.testing import FakeAnthropicServer, FakeCrmServer

ENV_PREFIXES = ("LEADKIT_", "FUB_", "ANTHROPIC_", "TURNSTILE_")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Clear leadkit and API key env vars before each test."""
    for key in list(os.environ.keys()):
        if key.startswith(ENV_PREFIXES):
            monkeypatch.delenv(key)
    resetSettings()
    yield
    resetSettings()


class FakeSleep:
    """Records requested sleeps instead of waiting."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fastRetry() -> RetryConfig:
    """Three attempts with small, deterministic delays."""
    return RetryConfig(maxAttempts=3, initialDelaySeconds=0.01, multiplier=2.0, maxDelaySeconds=1.0)


@pytest.fixture
def crmServer() -> FakeCrmServer:
    return FakeCrmServer()


@pytest.fixture
def anthropicServer() -> FakeAnthropicServer:
    return FakeAnthropicServer()
