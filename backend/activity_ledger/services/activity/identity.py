"""
Deterministic mapping of arbitrary identifiers onto UUID-shaped strings.

Some parts of the system mint UUIDs, others use ad hoc strings such as
``"order-1042"`` or numeric keys. Normalizing both into one shape lets
them share indexed columns and be joined across events.

MD5 is used for speed and stability, not secrecy. A derived identifier
is fine for deduplication and lookups but is not collision resistant
against crafted input and must never act as a capability.
"""

from __future__ import annotations

import hashlib
import re

CANONICAL_ID = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_canonical(raw: str) -> bool:
    return CANONICAL_ID.match(raw) is not None


def normalize_id(raw: str | int | None) -> str | None:
    """
    Return ``raw`` unchanged if it is already canonical, else a derived ID.

    ``None`` and the empty string both map to ``None``.
    """
    if raw is None:
        return None
    text = str(raw)
    if not text:
        return None
    if is_canonical(text):
        return text
    h = hashlib.md5(text.encode("utf-8"), usedforsecurity=False).hexdigest()
    return f"{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:32]}"
