"""Services shared by the website routes."""

from leadSite.services.captcha import TurnstileVerifier
from leadSite.services.state import (
    SiteState,
    crm_session,
    get_state,
    llm_session,
    turnstile_session,
)
from leadSite.services.streaming import AsyncStreamBridge, is_end, sse_event
from leadSite.services.webhooks import WebhookProcessor

__all__ = [
    "SiteState",
    "get_state",
    "crm_session",
    "llm_session",
    "turnstile_session",
    "TurnstileVerifier",
    "AsyncStreamBridge",
    "is_end",
    "sse_event",
    "WebhookProcessor",
]
