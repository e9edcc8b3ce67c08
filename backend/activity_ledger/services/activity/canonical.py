"""
Canonical serialization and hashing of activity payloads.

This module is the only place that decides which bytes are hashed. The
recorder and the chain verifier both go through ``hash_payload`` so the
two can never disagree about the canonical form of a record.

Canonical form: JSON with the keys of every object sorted at every
depth, arrays kept in order, compact separators, ASCII-only output and
no NaN/Infinity.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

# Columns covered by hash_self. ``id`` and ``at`` are assigned by the
# store after the hash is computed; the two hash columns are the output.
HASHED_FIELDS: tuple[str, ...] = (
    "request_id",
    "actor_id",
    "actor_role",
    "action",
    "subject_type",
    "subject_id",
    "target_type",
    "target_id",
    "severity",
    "ip",
    "user_agent",
    "meta",
    "diff",
)


def _default(value: Any) -> Any:
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, set | frozenset):
        return sorted(value, key=repr)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json_value(value: Any) -> Any:
    """
    Reduce an arbitrary value to plain JSON types.

    Tuples become lists, non-string keys become strings, datetimes and
    UUIDs become strings. The result survives a JSON column round-trip
    unchanged, which is what makes write-time and verify-time hashes agree.

    Raises:
        ValueError: on NaN/Infinity.
        TypeError: on values with no JSON representation.
    """
    return json.loads(json.dumps(value, default=_default, allow_nan=False))


def canonicalize(value: Any) -> str:
    """Serialize ``value`` so structurally equal inputs give identical output."""
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        allow_nan=False,
        default=_default,
    )


def digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hashable_payload(record: Mapping[str, Any] | Any) -> dict[str, Any]:
    """
    Project a record (mapping or ORM row) onto the hashed fields.

    Anything else the record carries, including ``id``, ``at``,
    ``hash_prev`` and ``hash_self``, is ignored.
    """
    if isinstance(record, Mapping):
        return {name: record.get(name) for name in HASHED_FIELDS}
    return {name: getattr(record, name) for name in HASHED_FIELDS}


def hash_payload(record: Mapping[str, Any] | Any) -> str:
    """Return the ``hash_self`` for a record."""
    return digest(canonicalize(hashable_payload(record)))
