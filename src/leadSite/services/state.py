"""Process-scoped client state and request-scoped client sessions."""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable

import httpx
from flask import current_app

from leadkit.cache.backends import FileCacheBackend
from leadkit.cache.responseCache import ResponseCache
from leadkit.config import Settings
from leadkit.cost.costTracker import CostTracker
from leadkit.crm.client import CrmClient
from leadkit.limits.rateLimiter import RateLimiter
from leadkit.llm.client import LlmClient
from leadSite.services.captcha import TurnstileVerifier

HttpClientFactory = Callable[[], httpx.AsyncClient]


@dataclass
class SiteState:
    """State shared by every request of one app.

    Limiter windows, caches and the cost log live here for the lifetime
    of the process. HTTP clients are created per request.

    Attributes:
        settings: leadkit settings.
        siteLimiter: Inbound limits keyed by visitor (lead form, chat).
        crmLimiter: Outbound CRM limits.
        crmCache: Cached CRM reads.
        llmCache: Cached chat responses.
        costTracker: Chat cost log.
        crmHttpFactory: Builds the httpx client for CRM calls (None for default).
        anthropicHttpFactory: Builds the httpx client for the SDK (None for default).
        turnstileHttpFactory: Builds the httpx client for CAPTCHA checks (None for default).
    """

    settings: Settings
    siteLimiter: RateLimiter
    crmLimiter: RateLimiter
    crmCache: ResponseCache
    llmCache: ResponseCache
    costTracker: CostTracker
    crmHttpFactory: HttpClientFactory | None = None
    anthropicHttpFactory: HttpClientFactory | None = None
    turnstileHttpFactory: HttpClientFactory | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "SiteState":
        """Build state from settings, with a durable cache tier when cacheDir is set."""
        crmBackend = llmBackend = None
        if settings.cacheDir is not None:
            crmBackend = FileCacheBackend(settings.cacheDir / "crm")
            llmBackend = FileCacheBackend(settings.cacheDir / "llm")

        return cls(
            settings=settings,
            siteLimiter=RateLimiter(settings.siteRateLimits()),
            crmLimiter=RateLimiter(settings.crmRateLimits()),
            crmCache=ResponseCache(settings.crmCacheConfig(), backend=crmBackend),
            llmCache=ResponseCache(settings.llmCacheConfig(), backend=llmBackend),
            costTracker=CostTracker(),
        )


def get_state() -> SiteState:
    """State of the current app."""
    return current_app.extensions["leadkit"]


@asynccontextmanager
async def crm_session(state: SiteState) -> AsyncIterator[CrmClient]:
    """Request-scoped CRM client over the shared limiter and cache."""
    httpClient = state.crmHttpFactory() if state.crmHttpFactory else None
    try:
        client = CrmClient.fromSettings(
            state.settings,
            rateLimiter=state.crmLimiter,
            cache=state.crmCache,
            httpClient=httpClient,
        )
        try:
            yield client
        finally:
            await client.aclose()
    finally:
        if httpClient is not None:
            await httpClient.aclose()


@asynccontextmanager
async def llm_session(state: SiteState, client_key: str) -> AsyncIterator[LlmClient]:
    """Request-scoped chat client admitting under the visitor's key."""
    httpClient = state.anthropicHttpFactory() if state.anthropicHttpFactory else None
    try:
        client = LlmClient.fromSettings(
            state.settings,
            clientKey=client_key,
            rateLimiter=state.siteLimiter,
            costTracker=state.costTracker,
            responseCache=state.llmCache,
            httpClient=httpClient,
        )
        try:
            yield client
        finally:
            await client.aclose()
    finally:
        if httpClient is not None:
            await httpClient.aclose()


@asynccontextmanager
async def turnstile_session(state: SiteState) -> AsyncIterator[TurnstileVerifier | None]:
    """Request-scoped CAPTCHA verifier, or None when no secret is configured."""
    if not state.settings.turnstileSecretKey:
        yield None
        return

    httpClient = state.turnstileHttpFactory() if state.turnstileHttpFactory else None
    try:
        yield TurnstileVerifier(state.settings.turnstileSecretKey, httpClient=httpClient)
    finally:
        if httpClient is not None:
            await httpClient.aclose()
