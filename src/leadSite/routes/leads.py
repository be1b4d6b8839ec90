"""Lead capture route."""

import math
from typing import Any

from flask import Blueprint, Response, current_app, jsonify, request

from leadkit.crm.leadCapture import LeadCapturePipeline, LeadSubmission
from leadkit.exceptions import LeadkitError
from leadkit.limits.rateLimiter import rateLimitHeaders
from leadSite.routes.helpers import error_response, get_client_id
from leadSite.services.captcha import TurnstileVerifier
from leadSite.services.state import crm_session, get_state, turnstile_session

leads_bp = Blueprint("leads", __name__)

LEAD_FORM_CONTEXT = "lead-form"


@leads_bp.route("/capture", methods=["POST"])
async def capture_lead():
    """Capture a website lead into the CRM."""
    state = get_state()
    client_id = get_client_id()

    headers = {}
    if state.settings.enableRateLimiting:
        admission = state.siteLimiter.admit(client_id, LEAD_FORM_CONTEXT)
        headers = rateLimitHeaders(admission)
        if not admission.allowed:
            minutes = max(1, math.ceil((admission.retryAfterMs or 0) / 60000))
            current_app.logger.warning(f"Lead form rate limit exceeded for {client_id}")
            response = jsonify(
                {
                    "success": False,
                    "error": f"Too many submissions. Please try again in {minutes} minutes.",
                }
            )
            response.status_code = 429
            response.headers.update(headers)
            return response

    body = request.get_json(silent=True)
    async with turnstile_session(state) as verifier:
        if verifier is not None:
            refusal = await _check_captcha(verifier, body, client_id)
            if refusal is not None:
                refusal.headers.update(headers)
                return refusal

    try:
        submission = LeadSubmission.parse(body)
        async with crm_session(state) as crm:
            pipeline = LeadCapturePipeline(crm, siteHost=current_app.config["SITE_HOST"])
            result = await pipeline.run(
                submission,
                referer=request.headers.get("Referer"),
                query=request.args.to_dict(),
            )
    except LeadkitError as e:
        return error_response(e)

    if result.failures:
        current_app.logger.warning(
            f"Lead {result.personId} captured with {len(result.failures)} failed follow-ups"
        )

    response = jsonify(
        {
            "success": True,
            "personId": result.personId,
            "isNew": result.isNew,
            "message": result.message,
        }
    )
    response.headers.update(headers)
    return response


async def _check_captcha(verifier: TurnstileVerifier, body: Any, client_id: str) -> Response | None:
    """Refusal response for a missing or failed CAPTCHA, else None."""
    token = body.get("turnstileToken") if isinstance(body, dict) else None
    if not token:
        response = jsonify({"success": False, "error": "CAPTCHA verification required"})
        response.status_code = 400
        return response

    remote_ip = client_id if client_id != "anonymous" else None
    if not await verifier.verify(token, remoteIp=remote_ip):
        current_app.logger.warning(f"CAPTCHA failed for {client_id}")
        response = jsonify({"success": False, "error": "CAPTCHA verification failed. Please try again."})
        response.status_code = 403
        return response
    return None
