"""leadkit - resilient CRM and LLM clients for a lead-generation website.

This package provides rate-limited, cached, retrying clients for a
Follow Up Boss style CRM and the Anthropic Messages API, plus the lead
capture pipeline and bulk CRM automation built on them.

Example:
    >>> from leadkit import CrmClient, LeadCapturePipeline, LeadSubmission
    >>> async with CrmClient(apiKey="...") as crm:
    ...     lead = LeadSubmission.parse({"name": "Jane Doe", "email": "jane@example.com"})
    ...     result = await LeadCapturePipeline(crm).run(lead)
"""

__version__ = "0.1.0"

__all__ = [
    # Limits
    "RateLimiter",
    "RateLimiterConfig",
    "ContextLimit",
    # HTTP
    "RetryConfig",
    "RetryingHttpInvoker",
    # Cache
    "ResponseCache",
    "CacheConfig",
    "computeFingerprint",
    # Cost
    "CostTracker",
    "calculateCost",
    # CRM
    "CrmClient",
    "Person",
    "PeopleFilter",
    "LeadSubmission",
    "LeadCapturePipeline",
    "AutomationFacade",
    # LLM
    "LlmClient",
    "ChatRequest",
    "ChatResponse",
    # Config
    "Settings",
    "getSettings",
    # Logging
    "configureLogging",
    "getLogger",
    "LogLevel",
    # Exceptions
    "LeadkitError",
    "ConfigurationError",
    "ValidationError",
    "InvalidArgumentError",
    "RateLimitedError",
    "UpstreamError",
    "UpstreamRejectedError",
    "NotFoundError",
    "UpstreamRetryExhaustedError",
    "CacheBackendError",
    "PricingError",
]

_EXPORTS = {
    "RateLimiter": "leadkit.limits",
    "RateLimiterConfig": "leadkit.limits",
    "ContextLimit": "leadkit.limits",
    "RetryConfig": "leadkit.http",
    "RetryingHttpInvoker": "leadkit.http",
    "ResponseCache": "leadkit.cache",
    "CacheConfig": "leadkit.cache",
    "computeFingerprint": "leadkit.cache",
    "CostTracker": "leadkit.cost",
    "calculateCost": "leadkit.cost",
    "CrmClient": "leadkit.crm",
    "Person": "leadkit.crm",
    "PeopleFilter": "leadkit.crm",
    "LeadSubmission": "leadkit.crm",
    "LeadCapturePipeline": "leadkit.crm",
    "AutomationFacade": "leadkit.crm",
    "LlmClient": "leadkit.llm",
    "ChatRequest": "leadkit.llm",
    "ChatResponse": "leadkit.llm",
    "Settings": "leadkit.config",
    "getSettings": "leadkit.config",
    "configureLogging": "leadkit.logging",
    "getLogger": "leadkit.logging",
    "LogLevel": "leadkit.logging",
}


def __getattr__(name: str):
    """Lazy import to keep `import leadkit` light."""
    if name in _EXPORTS:
        import importlib

        return getattr(importlib.import_module(_EXPORTS[name]), name)

    from leadkit import exceptions

    if hasattr(exceptions, name) and name in __all__:
        return getattr(exceptions, name)

    raise AttributeError(f"module 'leadkit' has no attribute '{name}'")
