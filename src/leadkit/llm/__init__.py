"""LLM integration: Anthropic chat client, models and prompt templates."""

from leadkit.llm.client import CHAT_CONTEXT, DEFAULT_MODEL, LlmClient
from leadkit.llm.models import ChatMessage, ChatRequest, ChatResponse, TokenUsage
from leadkit.llm.prompts import TEMPLATES, PromptTemplate, getTemplate

__all__ = [
    "LlmClient",
    "CHAT_CONTEXT",
    "DEFAULT_MODEL",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "TokenUsage",
    "PromptTemplate",
    "TEMPLATES",
    "getTemplate",
]
