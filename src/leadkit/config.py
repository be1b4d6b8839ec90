"""leadkit configuration settings using pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from leadkit.cache.responseCache import CacheConfig
from leadkit.http.retry import RetryConfig
from leadkit.limits.rateLimiter import ContextLimit, RateLimiterConfig


class Settings(BaseSettings):
    """leadkit configuration settings.

    Settings are loaded from environment variables with LEADKIT_ prefix,
    or from a .env file in the current directory. API keys use their
    conventional unprefixed names.

    Attributes:
        anthropicApiKey: Anthropic API key for the chat assistant.
        fubApiKey: Follow Up Boss API key.
        fubSystemKey: Optional Follow Up Boss system key (raises rate limits).
        crmBaseUrl: Base URL of the CRM API.
        anthropicBaseUrl: Optional override of the Anthropic API URL.
        turnstileSecretKey: Optional Turnstile secret; enables the lead form CAPTCHA.
        defaultModel: Default model for chat responses.
        enableResponseCache: Toggle for the local response caches.
        enablePromptCaching: Toggle for provider-side prompt caching.
        enableRateLimiting: Toggle for outbound and inbound rate limiting.
        enableCostTracking: Toggle for LLM cost accounting.
        crmCacheTtlSeconds: TTL for cached CRM reads.
        llmCacheTtlSeconds: TTL for cached chat responses.
        cacheMaxEntries: In-process cache capacity per cache.
        cacheDir: Optional directory for the durable cache tier.
        crmGlobalLimit: CRM read limit per window (without system key).
        crmPeopleLimit: CRM person-write limit per window.
        crmEventsLimit: CRM event-write limit per window.
        crmWindowSeconds: CRM rate-limit window length.
        chatRequestsPerMinute: Chat requests allowed per client per minute.
        leadFormPerHour: Lead form submissions allowed per client per hour.
        retryMaxAttempts: Total attempts per outbound call.
        retryInitialDelaySeconds: First backoff delay.
        retryMaxDelaySeconds: Backoff ceiling.
        retryMultiplier: Backoff growth factor.
        logLevel: Logging level.
    """

    model_config = SettingsConfigDict(
        env_prefix="LEADKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # API Configuration
    anthropicApiKey: str = Field(
        default="",
        alias="ANTHROPIC_API_KEY",
        description="Anthropic API key",
    )
    fubApiKey: str = Field(
        default="",
        alias="FUB_API_KEY",
        description="Follow Up Boss API key",
    )
    fubSystemKey: str | None = Field(
        default=None,
        alias="FUB_SYSTEM_KEY",
        description="Follow Up Boss system key",
    )
    crmBaseUrl: str = Field(
        default="https://api.followupboss.com/v1",
        description="CRM API base URL",
    )
    anthropicBaseUrl: str | None = Field(
        default=None,
        description="Anthropic API base URL override (e.g. a gateway)",
    )
    turnstileSecretKey: str | None = Field(
        default=None,
        alias="TURNSTILE_SECRET_KEY",
        description="Cloudflare Turnstile secret (CAPTCHA on the lead form)",
    )

    # Model Configuration
    defaultModel: str = Field(
        default="claude-sonnet-4-20250514",
        description="Default model for chat responses",
    )

    # Feature toggles
    enableResponseCache: bool = True
    enablePromptCaching: bool = True
    enableRateLimiting: bool = True
    enableCostTracking: bool = True

    # Caching
    crmCacheTtlSeconds: float = Field(default=60.0, gt=0)
    llmCacheTtlSeconds: float = Field(default=3600.0, gt=0)
    cacheMaxEntries: int = Field(default=100, ge=1)
    cacheDir: Path | None = Field(
        default=None,
        description="Directory for the durable cache tier (disabled when unset)",
    )

    # Rate limits
    crmGlobalLimit: int = Field(default=125, ge=1)
    crmPeopleLimit: int = Field(default=25, ge=1)
    crmEventsLimit: int = Field(default=100, ge=1)
    crmWindowSeconds: float = Field(default=10.0, gt=0)
    chatRequestsPerMinute: int = Field(default=10, ge=1)
    leadFormPerHour: int = Field(default=5, ge=1)

    # Retry policy
    retryMaxAttempts: int = Field(default=3, ge=1)
    retryInitialDelaySeconds: float = Field(default=1.0, ge=0)
    retryMaxDelaySeconds: float = Field(default=60.0, ge=0)
    retryMultiplier: float = Field(default=2.0, ge=1)

    # Logging
    logLevel: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    def retryConfig(self) -> RetryConfig:
        """Build the retry policy for outbound calls."""
        return RetryConfig(
            maxAttempts=self.retryMaxAttempts,
            initialDelaySeconds=self.retryInitialDelaySeconds,
            maxDelaySeconds=self.retryMaxDelaySeconds,
            multiplier=self.retryMultiplier,
        )

    def crmCacheConfig(self) -> CacheConfig:
        """Build the cache policy for CRM reads."""
        return CacheConfig(
            ttlSeconds=self.crmCacheTtlSeconds,
            maxEntries=self.cacheMaxEntries,
            keyPrefix="crm:",
            enabled=self.enableResponseCache,
        )

    def llmCacheConfig(self) -> CacheConfig:
        """Build the cache policy for chat responses."""
        return CacheConfig(
            ttlSeconds=self.llmCacheTtlSeconds,
            maxEntries=self.cacheMaxEntries,
            keyPrefix="claude:response:",
            enabled=self.enableResponseCache,
        )

    def crmRateLimits(self) -> RateLimiterConfig:
        """Build CRM rate-limit contexts.

        A system key doubles the global and events allowances.
        """
        multiplier = 2 if self.fubSystemKey else 1
        return RateLimiterConfig(
            contexts={
                "global": ContextLimit(self.crmGlobalLimit * multiplier, self.crmWindowSeconds),
                "people": ContextLimit(self.crmPeopleLimit, self.crmWindowSeconds),
                "events": ContextLimit(self.crmEventsLimit * multiplier, self.crmWindowSeconds),
            }
        )

    def siteRateLimits(self) -> RateLimiterConfig:
        """Build inbound rate-limit contexts for the website endpoints."""
        return RateLimiterConfig(
            contexts={
                "lead-form": ContextLimit(self.leadFormPerHour, 3600.0),
                "chat": ContextLimit(self.chatRequestsPerMinute, 60.0),
            }
        )


@lru_cache
def getSettings() -> Settings:
    """Get cached settings instance.

    Returns:
        Singleton Settings instance.
    """
    return Settings()


def resetSettings() -> None:
    """Reset cached settings (useful for testing)."""
    getSettings.cache_clear()
