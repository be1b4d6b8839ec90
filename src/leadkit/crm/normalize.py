"""Normalization of contact identifiers for deduplication."""

import re
from typing import Any

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalizeEmail(email: str | None) -> str | None:
    """Lowercase and trim an email address.

    Returns:
        Normalized email, or None when blank.
    """
    if not email:
        return None
    normalized = email.strip().lower()
    return normalized or None


def normalizePhone(phone: str | None) -> str | None:
    """Reduce a phone number to its digits.

    A leading North American country code is dropped from 11-digit
    numbers, so "+1 (702) 555-1234" and "702-555-1234" match. Other
    international prefixes are kept as-is.

    Returns:
        Digit string, or None when no digits remain.
    """
    if not phone:
        return None
    digits = re.sub(r"\D", "", phone)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits or None


def isValidEmail(email: str) -> bool:
    """Loose shape check for an email address."""
    return bool(EMAIL_PATTERN.match(email.strip()))


def coerceContactValues(values: Any) -> list[dict[str, Any]] | None:
    """Coerce email/phone shorthand into the structured multi-value form.

    Accepts a single string, a list of strings, a list of dicts, or a
    list of models exposing `model_dump`.

    Returns:
        List of {"value": ..., ...} dicts, or None when values is None.
    """
    if values is None:
        return None
    if isinstance(values, str):
        values = [values]

    coerced: list[dict[str, Any]] = []
    for item in values:
        if isinstance(item, str):
            if item.strip():
                coerced.append({"value": item.strip()})
        elif isinstance(item, dict):
            coerced.append(item)
        elif hasattr(item, "model_dump"):
            coerced.append(item.model_dump(exclude_none=True))
        else:
            raise TypeError(f"Unsupported contact value: {item!r}")
    return coerced
