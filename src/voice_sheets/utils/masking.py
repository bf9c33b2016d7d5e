"""Masking of credentials in audit details and request logs."""

from __future__ import annotations

from typing import Any

MASK = "***"
_MAX_DEPTH = 20

# Matched as lower-case substrings of a key, so "apiKey" and "access_token" hit.
SENSITIVE_KEY_MARKERS: tuple[str, ...] = (
    "password",
    "secret",
    "token",
    "apikey",
    "credential",
    "authorization",
    "cookie",
)


def is_sensitive_key(key: object) -> bool:
    lowered = str(key).lower()
    return any(marker in lowered for marker in SENSITIVE_KEY_MARKERS)


def redact_sensitive_fields(value: Any, *, depth: int = 0) -> Any:
    """Return a copy of ``value`` with sensitive dict entries replaced by ``MASK``.

    Audit details are arbitrary intent parameters plus backend results, so
    nesting is walked through dicts, lists and tuples. Anything nested deeper
    than the limit is masked wholesale.
    """
    if depth >= _MAX_DEPTH:
        return MASK
    if isinstance(value, dict):
        return {
            key: MASK if is_sensitive_key(key) else redact_sensitive_fields(item, depth=depth + 1)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact_sensitive_fields(item, depth=depth + 1) for item in value]
    return value
