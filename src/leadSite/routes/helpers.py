"""Request identity and error mapping shared by the API routes."""

from flask import Response, current_app, jsonify, request

from leadkit.exceptions import (
    ConfigurationError,
    LeadkitError,
    RateLimitedError,
    UpstreamRejectedError,
    UpstreamRetryExhaustedError,
    ValidationError,
)


def get_client_id() -> str:
    """Rate-limit identity of the caller.

    First hop of X-Forwarded-For, then X-Real-IP, else "anonymous".
    """
    forwarded = request.headers.get("X-Forwarded-For", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop
    real_ip = request.headers.get("X-Real-IP", "").strip()
    return real_ip or "anonymous"


def error_response(error: LeadkitError, rate_limited_status: int = 503) -> Response:
    """Map a leadkit error to a JSON error response.

    Args:
        error: The error raised while serving the request.
        rate_limited_status: Status for RateLimitedError. Outbound limits
            are the server's problem (503); inbound limits are the caller's (429).
    """
    headers = {}
    if isinstance(error, ValidationError):
        status = 400
    elif isinstance(error, RateLimitedError):
        status = rate_limited_status
        headers["Retry-After"] = str(error.retryAfterSeconds)
    elif isinstance(error, UpstreamRetryExhaustedError):
        status = 503
    elif isinstance(error, UpstreamRejectedError):
        status = 502
    else:
        status = 500

    if status >= 500:
        current_app.logger.error(f"{request.path} failed: {error}")
    else:
        current_app.logger.info(f"{request.path} refused ({status}): {error}")

    body = {"success": False, "error": _public_message(error)}
    if isinstance(error, ValidationError) and error.field:
        body["field"] = error.field

    response = jsonify(body)
    response.status_code = status
    response.headers.update(headers)
    return response


def _public_message(error: LeadkitError) -> str:
    if isinstance(error, (ValidationError, RateLimitedError)):
        return str(error)
    if isinstance(error, ConfigurationError):
        return "Service is not configured"
    return "Upstream service unavailable. Please try again later."
