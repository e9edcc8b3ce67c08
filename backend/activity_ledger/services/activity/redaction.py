"""Recursive redaction of sensitive-looking keys in free-form metadata."""

from __future__ import annotations

import re
from typing import Any

REDACTED = "[REDACTED]"

SENSITIVE_KEY = re.compile(
    r"password|secret|token|authorization|auth|apikey|api_key|card|ssn",
    re.IGNORECASE,
)


def is_sensitive(key: object) -> bool:
    return SENSITIVE_KEY.search(str(key)) is not None


def redact(value: Any) -> Any:
    """
    Return a copy of ``value`` with every sensitive key's value replaced.

    Mappings are tested key by key; a matching key has its whole value
    (scalar or subtree) replaced by ``REDACTED``. Lists and tuples are
    mapped element-wise. Everything else is returned as is.
    """
    if isinstance(value, dict):
        return {
            key: REDACTED if is_sensitive(key) else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list | tuple):
        return [redact(item) for item in value]
    return value
