"""Cloudflare Turnstile verification for the lead form."""

import logging

import httpx

logger = logging.getLogger("leadSite.captcha")

TURNSTILE_VERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"


class TurnstileVerifier:
    """Checks Turnstile tokens against the siteverify endpoint.

    Verification fails closed: an unreachable or erroring endpoint
    counts as a failed check.

    Args:
        secretKey: Turnstile secret key.
        httpClient: Optional client (created per call when omitted).
        verifyUrl: Siteverify endpoint.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        secretKey: str,
        httpClient: httpx.AsyncClient | None = None,
        verifyUrl: str = TURNSTILE_VERIFY_URL,
        timeout: float = 10.0,
    ):
        self._secretKey = secretKey
        self._http = httpClient
        self._verifyUrl = verifyUrl
        self._timeout = timeout

    async def verify(self, token: str, remoteIp: str | None = None) -> bool:
        """Whether the token passes verification."""
        payload = {"secret": self._secretKey, "response": token}
        if remoteIp:
            payload["remoteip"] = remoteIp

        try:
            if self._http is not None:
                response = await self._http.post(self._verifyUrl, json=payload, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self._verifyUrl, json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Turnstile verification error: {e}")
            return False

        if not isinstance(data, dict) or data.get("success") is not True:
            codes = data.get("error-codes", []) if isinstance(data, dict) else []
            logger.info(f"Turnstile rejected token: {codes}")
            return False
        return True
