"""Chat request and response models using Pydantic."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from leadkit.cache.fingerprint import computeFingerprint
from leadkit.cost.pricing import CostBreakdown
from leadkit.exceptions import ValidationError


class ChatMessage(BaseModel):
    """One conversation turn."""

    role: Literal["user", "assistant"]
    content: str = Field(min_length=1)


class ChatRequest(BaseModel):
    """A chat completion request.

    Attributes:
        messages: Conversation so far, oldest first.
        model: Model override (defaults to the client's model).
        maxTokens: Response token limit.
        temperature: Sampling temperature.
        systemPrompt: Optional system/context prompt.
        enableCache: Mark the system prompt for provider-side caching.
        useResponseCache: Consult the local response cache.
    """

    model_config = ConfigDict(extra="ignore")

    messages: list[ChatMessage] = Field(min_length=1)
    model: str | None = None
    maxTokens: int = Field(default=4096, ge=1)
    temperature: float = Field(default=1.0, ge=0.0, le=1.0)
    systemPrompt: str | None = None
    enableCache: bool = True
    useResponseCache: bool = True

    @classmethod
    def parse(cls, data: Any) -> "ChatRequest":
        """Validate a raw request body.

        Raises:
            ValidationError: With the first problem found.
        """
        if not isinstance(data, dict):
            raise ValidationError("Chat payload must be a JSON object")
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            first = e.errors()[0]
            fieldName = ".".join(str(p) for p in first["loc"]) or None
            raise ValidationError(f"{fieldName}: {first['msg']}", field=fieldName) from e

    def fingerprint(self) -> str:
        """Content fingerprint of the conversation and system prompt."""
        return computeFingerprint(self.messages, self.systemPrompt)

    def apiMessages(self) -> list[dict[str, str]]:
        """Messages in the provider's wire format."""
        return [{"role": m.role, "content": m.content} for m in self.messages]


class TokenUsage(BaseModel):
    """Token counts reported by the provider."""

    inputTokens: int = 0
    outputTokens: int = 0
    cacheCreationInputTokens: int = 0
    cacheReadInputTokens: int = 0

    @classmethod
    def fromApi(cls, usage: Any) -> "TokenUsage":
        """Build from an SDK usage object or dict."""
        if isinstance(usage, dict):
            get = usage.get
        else:
            get = lambda name: getattr(usage, name, None)  # noqa: E731
        return cls(
            inputTokens=get("input_tokens") or 0,
            outputTokens=get("output_tokens") or 0,
            cacheCreationInputTokens=get("cache_creation_input_tokens") or 0,
            cacheReadInputTokens=get("cache_read_input_tokens") or 0,
        )


class ChatResponse(BaseModel):
    """A completed chat response.

    Attributes:
        content: Concatenated text blocks.
        usage: Token usage.
        cost: Itemized cost, None when cost tracking is disabled.
        model: Model that produced the response.
        stopReason: Provider stop reason.
        cached: Whether this came from the local response cache.
        cacheAgeSeconds: Age of the cached entry, when cached.
    """

    content: str
    usage: TokenUsage
    cost: CostBreakdown | None = None
    model: str
    stopReason: str = "unknown"
    cached: bool = False
    cacheAgeSeconds: float | None = None

    def toDict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        data = self.model_dump(mode="json", exclude={"cost"})
        data["cost"] = self.cost.toDict() if self.cost else None
        return data
