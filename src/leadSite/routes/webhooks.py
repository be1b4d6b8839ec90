"""CRM webhook route."""

from flask import Blueprint, current_app, jsonify, request

from leadkit.exceptions import ConfigurationError, LeadkitError, ValidationError
from leadSite.routes.helpers import error_response
from leadSite.services.state import crm_session, get_state, llm_session
from leadSite.services.webhooks import WebhookProcessor

webhooks_bp = Blueprint("webhooks", __name__)


@webhooks_bp.route("/fub", methods=["POST"])
async def fub_webhook():
    """Process a Follow Up Boss webhook."""
    state = get_state()
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return error_response(ValidationError("Webhook payload must be a JSON object"))
    event = payload.get("event", "")
    data = payload.get("data") or {}
    if not isinstance(data, dict):
        return error_response(ValidationError("Webhook data must be a JSON object", field="data"))
    current_app.logger.info(f"Webhook received: {event}")

    try:
        async with crm_session(state) as crm:
            if state.settings.anthropicApiKey:
                async with llm_session(state, "webhooks") as llm:
                    outcomes = await WebhookProcessor(crm, llm).dispatch(event, data)
            else:
                outcomes = await WebhookProcessor(crm).dispatch(event, data)
    except (ConfigurationError, ValidationError) as e:
        return error_response(e)
    except LeadkitError as e:
        # Handler failures never fail the webhook
        current_app.logger.error(f"Webhook {event} failed: {e}")
        return jsonify({"success": True, "processed": False})

    return jsonify(
        {
            "success": True,
            "processed": True,
            "outcomes": [o.toDict() for o in outcomes],
        }
    )
