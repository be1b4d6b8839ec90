"""Request fingerprints using xxHash for fast, non-crypto hashing.

A fingerprint identifies a chat request by its semantic content so that
identical requests share a cached response.
"""

import json
from typing import Any, Iterable

import xxhash


def computeFingerprint(
    messages: Iterable[Any],
    systemPrompt: str | None = None,
) -> str:
    """Compute a fingerprint over an ordered conversation.

    The hash covers the system prompt followed by each (role, content)
    turn in order. Every field is length-prefixed, so separators inside
    content cannot make two different conversations collide.

    Args:
        messages: Turns as dicts or objects with `role` and `content`.
        systemPrompt: Optional system/context prompt.

    Returns:
        Hex string of the xxHash64 digest.

    Example:
        >>> a = computeFingerprint([{"role": "user", "content": "hi"}], "sys")
        >>> b = computeFingerprint([{"role": "user", "content": "hi"}], "sys")
        >>> a == b
        True
    """
    hasher = xxhash.xxh64()
    _feed(hasher, systemPrompt or "")

    for message in messages:
        role, content = _turn(message)
        _feed(hasher, role)
        _feed(hasher, content)

    return hasher.hexdigest()


def _turn(message: Any) -> tuple[str, str]:
    if isinstance(message, dict):
        role = message.get("role", "")
        content = message.get("content", "")
    else:
        role = getattr(message, "role", "")
        content = getattr(message, "content", "")

    if not isinstance(content, str):
        # Structured content blocks
        content = json.dumps(content, sort_keys=True, separators=(",", ":"), default=str)
    return str(role), content


def _feed(hasher: "xxhash.xxh64", text: str) -> None:
    data = text.encode("utf-8")
    hasher.update(f"{len(data)}:".encode("ascii"))
    hasher.update(data)
