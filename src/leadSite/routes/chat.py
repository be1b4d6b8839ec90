"""Chat assistant routes."""

import asyncio
from typing import Any, AsyncIterator

from flask import Blueprint, Response, current_app, jsonify, request

from leadkit.exceptions import LeadkitError
from leadkit.llm.models import ChatRequest, ChatResponse
from leadkit.llm.prompts import TEMPLATES, getTemplate
from leadSite.routes.helpers import error_response, get_client_id
from leadSite.services.state import SiteState, get_state, llm_session
from leadSite.services.streaming import AsyncStreamBridge

chat_bp = Blueprint("chat", __name__)

CHAT_MAX_TOKENS = 4096


def build_chat_request(body: Any) -> ChatRequest:
    """Build a chat request from a JSON body.

    Visitors choose only the messages and a template name. The model,
    token budget and system prompt are fixed by the server.

    Raises:
        ValidationError: If the body is not a valid chat request.
    """
    if not isinstance(body, dict):
        return ChatRequest.parse(body)

    template = getTemplate(body.get("templateType"))
    return ChatRequest.parse(
        {
            "messages": body.get("messages"),
            "systemPrompt": template.system,
            "maxTokens": CHAT_MAX_TOKENS,
            "enableCache": template.cacheable,
        }
    )


async def _send(state: SiteState, client_id: str, chat_request: ChatRequest) -> ChatResponse:
    async with llm_session(state, client_id) as llm:
        return await llm.sendMessage(chat_request)


async def _stream(state: SiteState, client_id: str, chat_request: ChatRequest) -> AsyncIterator[str]:
    async with llm_session(state, client_id) as llm:
        chunks = llm.streamMessage(chat_request)
        try:
            async for chunk in chunks:
                yield chunk
        finally:
            await chunks.aclose()


@chat_bp.route("/chat", methods=["POST"])
def chat():
    """Answer a chat message, as JSON or as a server-sent event stream."""
    state = get_state()
    client_id = get_client_id()
    body = request.get_json(silent=True)

    try:
        chat_request = build_chat_request(body)
    except LeadkitError as e:
        return error_response(e)

    if isinstance(body, dict) and body.get("stream"):
        return _stream_response(state, client_id, chat_request)

    try:
        response = asyncio.run(_send(state, client_id, chat_request))
    except LeadkitError as e:
        return error_response(e, rate_limited_status=429)

    return jsonify(
        {
            "response": response.content,
            "usage": response.usage.model_dump(),
            "cost": response.cost.toDict() if response.cost else None,
            "model": response.model,
            "cached": response.cached,
            "cacheAge": response.cacheAgeSeconds,
        }
    )


def _stream_response(state: SiteState, client_id: str, chat_request: ChatRequest):
    bridge = AsyncStreamBridge(_stream(state, client_id, chat_request))
    # Admission and the upstream call happen on the first pull
    try:
        first = bridge.next()
    except LeadkitError as e:
        bridge.close()
        return error_response(e, rate_limited_status=429)
    except Exception:
        bridge.close()
        raise

    return Response(
        bridge.events(first),
        mimetype="text/event-stream",
        headers={"X-Accel-Buffering": "no"},
    )


@chat_bp.route("/chat", methods=["GET"])
def chat_stats():
    """Cost, cache and template statistics."""
    state = get_state()
    current_app.logger.debug("Chat stats requested")
    return jsonify(
        {
            "costs": state.costTracker.getStats(),
            "cache": state.llmCache.getStats(),
            "templates": {
                name: {"estimatedTokens": template.estimatedTokens, "cacheable": template.cacheable}
                for name, template in TEMPLATES.items()
            },
        }
    )
