"""Anthropic chat client with prompt caching, response caching and cost tracking.

Provides a wrapper around the Anthropic Messages API with:
- Per-client chat admission through the sliding-window rate limiter
- Provider-side prompt caching using cache_control
- A local request/response cache keyed by conversation fingerprint
- Cost accounting from reported token usage
- Bounded retries on 429/5xx through the retrying invoker
- Streaming of text increments
"""

import asyncio
import dataclasses
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping

import httpx
from anthropic import APIConnectionError, AsyncAnthropic

from leadkit.cache.responseCache import ResponseCache
from leadkit.config import Settings
from leadkit.cost.costTracker import CostTracker
from leadkit.cost.pricing import MODEL_PRICING, CostBreakdown, calculateCost
from leadkit.exceptions import ConfigurationError, PricingError, RateLimitedError
from leadkit.http.retry import RetryConfig, RetryingHttpInvoker
from leadkit.limits.rateLimiter import ContextLimit, RateLimiter, RateLimiterConfig
from leadkit.llm.models import ChatRequest, ChatResponse, TokenUsage

logger = logging.getLogger("leadkit.llm")

DEFAULT_MODEL = "claude-sonnet-4-20250514"
CHAT_CONTEXT = "chat"
DEFAULT_CHAT_LIMIT = ContextLimit(limit=10, windowSeconds=60.0)


class LlmClient:
    """Async wrapper for the Anthropic API.

    SDK retries are disabled; the invoker owns retry policy.

    Args:
        apiKey: Anthropic API key (required unless anthropicClient is given).
        clientKey: Rate-limit identity of the caller.
        rateLimiter: Shared limiter; a private one is created when omitted.
        costTracker: Shared cost tracker; a private one is created when omitted.
        responseCache: Optional local response cache.
        retryConfig: Retry policy.
        defaultModel: Model used when a request names none.
        enablePromptCaching: Mark system prompts as cacheable.
        enableCostTracking: Price and record each response.
        enableRateLimiting: Admit each request through the limiter.
        chatLimit: Call-time chat limit overriding the limiter's configuration.
        anthropicClient: Pre-built AsyncAnthropic client (not closed by this client).
        httpClient: httpx.AsyncClient handed to the SDK.
        baseUrl: Override of the API base URL.
        sleep: Coroutine used for backoff waits.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        apiKey: str | None = None,
        clientKey: str = "anonymous",
        rateLimiter: RateLimiter | None = None,
        costTracker: CostTracker | None = None,
        responseCache: ResponseCache | None = None,
        retryConfig: RetryConfig | None = None,
        defaultModel: str = DEFAULT_MODEL,
        enablePromptCaching: bool = True,
        enableCostTracking: bool = True,
        enableRateLimiting: bool = True,
        chatLimit: ContextLimit | None = None,
        anthropicClient: AsyncAnthropic | None = None,
        httpClient: httpx.AsyncClient | None = None,
        baseUrl: str | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        timeout: float = 60.0,
    ):
        if anthropicClient is None:
            if not apiKey:
                raise ConfigurationError(
                    "Anthropic API key not configured. Set ANTHROPIC_API_KEY."
                )
            anthropicClient = AsyncAnthropic(
                api_key=apiKey,
                base_url=baseUrl,
                max_retries=0,
                timeout=timeout,
                http_client=httpClient,
            )
            self._ownsClient = True
        else:
            self._ownsClient = False

        self._client = anthropicClient
        self._clientKey = clientKey
        self._limiter = rateLimiter or RateLimiter(
            RateLimiterConfig(contexts={CHAT_CONTEXT: chatLimit or DEFAULT_CHAT_LIMIT})
        )
        self._chatLimit = chatLimit
        self._costTracker = costTracker if costTracker is not None else CostTracker()
        self._cache = responseCache
        self._defaultModel = defaultModel
        self._enablePromptCaching = enablePromptCaching
        self._enableCostTracking = enableCostTracking
        self._enableRateLimiting = enableRateLimiting

        retry = retryConfig or RetryConfig()
        if APIConnectionError not in retry.retryableErrors:
            retry = dataclasses.replace(
                retry, retryableErrors=(*retry.retryableErrors, APIConnectionError)
            )
        self._invoker = RetryingHttpInvoker(retry, sleep=sleep)

    @classmethod
    def fromSettings(
        cls,
        settings: Settings,
        clientKey: str = "anonymous",
        rateLimiter: RateLimiter | None = None,
        costTracker: CostTracker | None = None,
        responseCache: ResponseCache | None = None,
        httpClient: httpx.AsyncClient | None = None,
    ) -> "LlmClient":
        """Build a client from application settings."""
        return cls(
            apiKey=settings.anthropicApiKey,
            clientKey=clientKey,
            rateLimiter=rateLimiter,
            costTracker=costTracker,
            responseCache=responseCache if settings.enableResponseCache else None,
            retryConfig=settings.retryConfig(),
            defaultModel=settings.defaultModel,
            enablePromptCaching=settings.enablePromptCaching,
            enableCostTracking=settings.enableCostTracking,
            enableRateLimiting=settings.enableRateLimiting,
            chatLimit=ContextLimit(settings.chatRequestsPerMinute, 60.0),
            httpClient=httpClient,
            baseUrl=settings.anthropicBaseUrl,
        )

    @property
    def costTracker(self) -> CostTracker:
        """The cost tracker."""
        return self._costTracker

    @property
    def responseCache(self) -> ResponseCache | None:
        """The local response cache, if any."""
        return self._cache

    async def __aenter__(self) -> "LlmClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the SDK client if this instance created it."""
        if self._ownsClient:
            await self._client.close()

    async def sendMessage(self, request: ChatRequest | Mapping[str, Any]) -> ChatResponse:
        """Send a single-shot chat request.

        Args:
            request: The chat request.

        Returns:
            Response with content, usage and cost.

        Raises:
            RateLimitedError: If the caller is over its chat limit.
            UpstreamRejectedError: If the provider rejects the request.
            UpstreamRetryExhaustedError: If the provider keeps failing.
            PricingError: If usage cannot be priced.
        """
        request = _coerceRequest(request)
        self._admit()
        model = request.model or self._defaultModel

        cacheKey = None
        if self._cache is not None and request.useResponseCache:
            cacheKey = f"{model}:{request.fingerprint()}"
            entry = await self._cache.get(cacheKey)
            if entry is not None:
                logger.debug(f"Response cache hit for {model}")
                return ChatResponse.model_validate(
                    {
                        **entry.value,
                        "cached": True,
                        "cacheAgeSeconds": entry.ageSeconds(time.time()),
                    }
                )

        params = self._buildParams(request, model)
        logger.debug(f"Calling {model} with {len(request.messages)} messages")
        response = await self._invoker.invoke(
            lambda: self._client.messages.create(**params),
            admission=self._readmission(),
            description=f"Claude {model}",
        )

        content = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        responseModel = response.model or model

        cost = None
        if self._enableCostTracking:
            cost = self.calculateCost(_pricedModel(responseModel, model), response.usage)
            self._costTracker.record(cost, responseModel)

        result = ChatResponse(
            content=content,
            usage=TokenUsage.fromApi(response.usage),
            cost=cost,
            model=responseModel,
            stopReason=response.stop_reason or "unknown",
        )

        if cacheKey is not None:
            await self._cache.put(
                cacheKey, result.model_dump(mode="json", exclude={"cached", "cacheAgeSeconds"})
            )
        return result

    async def streamMessage(self, request: ChatRequest | Mapping[str, Any]) -> AsyncIterator[str]:
        """Stream a response as text increments.

        The sequence is single-pass. Abandoning iteration (or calling
        aclose() on the iterator) closes the underlying HTTP response.
        Usage is costed once the provider signals completion; a stream
        that never reports usage is logged and not costed.

        Args:
            request: The chat request.

        Yields:
            Text deltas in arrival order.

        Raises:
            RateLimitedError: If the caller is over its chat limit.
        """
        request = _coerceRequest(request)
        self._admit()
        model = request.model or self._defaultModel
        params = self._buildParams(request, model)

        stream = await self._invoker.invoke(
            lambda: self._client.messages.create(**params, stream=True),
            admission=self._readmission(),
            description=f"Claude {model} stream",
        )

        startUsage: Any = None
        finalUsage: Any = None
        responseModel = model
        try:
            async for event in stream:
                if event.type == "message_start":
                    startUsage = getattr(event.message, "usage", None)
                    responseModel = getattr(event.message, "model", None) or model
                elif event.type == "content_block_delta":
                    if event.delta.type == "text_delta":
                        yield event.delta.text
                elif event.type == "message_delta":
                    finalUsage = getattr(event, "usage", None)
                elif event.type == "message_stop":
                    break
        finally:
            await stream.close()

        self._recordStreamCost(responseModel, model, startUsage, finalUsage)

    @staticmethod
    def calculateCost(model: str, usage: Any) -> CostBreakdown:
        """Price a provider usage report.

        Args:
            model: Model identifier.
            usage: SDK usage object or dict.

        Raises:
            PricingError: If the model is unknown or usage is missing.
        """
        if usage is None:
            raise PricingError(f"No usage reported for {model}")
        tokens = TokenUsage.fromApi(usage)
        get = usage.get if isinstance(usage, dict) else lambda name: getattr(usage, name, None)
        return calculateCost(
            model,
            get("input_tokens"),
            get("output_tokens"),
            tokens.cacheCreationInputTokens,
            tokens.cacheReadInputTokens,
        )

    def getCostStats(self) -> dict[str, Any]:
        """Windowed cost statistics."""
        return self._costTracker.getStats()

    def resetCostTracking(self) -> None:
        """Clear the cost log."""
        self._costTracker.reset()

    def _admit(self) -> None:
        if not self._enableRateLimiting:
            return
        result = self._limiter.admit(self._clientKey, CHAT_CONTEXT, self._chatLimit)
        if not result.allowed:
            logger.warning(f"Chat rate limit exceeded for {self._clientKey}")
            raise RateLimitedError(result.retryAfterMs or 1, context=CHAT_CONTEXT)

    def _readmission(self) -> Callable[[], Awaitable[None]] | None:
        """Admission hook that re-admits every retry after the first attempt."""
        if not self._enableRateLimiting:
            return None
        attempts = 0

        async def admission() -> None:
            nonlocal attempts
            attempts += 1
            if attempts > 1:
                self._admit()

        return admission

    def _buildParams(self, request: ChatRequest, model: str) -> dict[str, Any]:
        params: dict[str, Any] = {
            "model": model,
            "max_tokens": request.maxTokens,
            "temperature": request.temperature,
            "messages": request.apiMessages(),
        }

        if request.systemPrompt:
            if self._enablePromptCaching and request.enableCache:
                params["system"] = [
                    {
                        "type": "text",
                        "text": request.systemPrompt,
                        "cache_control": {"type": "ephemeral"},
                    }
                ]
            else:
                params["system"] = request.systemPrompt
        return params

    def _recordStreamCost(
        self,
        responseModel: str,
        requestedModel: str,
        startUsage: Any,
        finalUsage: Any,
    ) -> None:
        if not self._enableCostTracking:
            return
        if startUsage is None:
            logger.warning(f"Stream from {responseModel} reported no usage; cost not recorded")
            return

        usage = {
            "input_tokens": getattr(startUsage, "input_tokens", None),
            "output_tokens": getattr(finalUsage, "output_tokens", None)
            if finalUsage is not None
            else getattr(startUsage, "output_tokens", None),
            "cache_creation_input_tokens": getattr(startUsage, "cache_creation_input_tokens", 0),
            "cache_read_input_tokens": getattr(startUsage, "cache_read_input_tokens", 0),
        }
        cost = self.calculateCost(_pricedModel(responseModel, requestedModel), usage)
        self._costTracker.record(cost, responseModel)


def _pricedModel(responseModel: str, requestedModel: str) -> str:
    return responseModel if responseModel in MODEL_PRICING else requestedModel


def _coerceRequest(request: ChatRequest | Mapping[str, Any]) -> ChatRequest:
    if isinstance(request, ChatRequest):
        return request
    return ChatRequest.parse(dict(request))
