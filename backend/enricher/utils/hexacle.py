"""Address fingerprint ("hexacle") hashing.

The fingerprint is the join key between staged rows and the reference
contacts store: numero, voie, ville and cod_post concatenated, stripped of
whitespace and punctuation and upper-cased.
"""

from __future__ import annotations

import re
from datetime import datetime

MAX_HASH_LENGTH = 255

_WHITESPACE = re.compile(r"\s+")
_SEPARATORS = re.compile(r"[-.:]")


def sanitize_hexacle(value: str | None) -> str:
    """Normalize a raw value into fingerprint form. Idempotent."""
    if not value:
        return ""
    cleaned = _WHITESPACE.sub("", value.strip())
    cleaned = _SEPARATORS.sub("", cleaned)
    return cleaned.upper()[:MAX_HASH_LENGTH]


def _concat(*parts: str | None) -> str:
    return "".join(part or "" for part in parts)


def compute_hexacle_hash(
    numero: str | None,
    voie: str | None,
    ville: str | None,
    cod_post: str | None,
) -> str:
    """Deterministic fingerprint used as the reference lookup key."""
    return sanitize_hexacle(_concat(numero, voie, ville, cod_post))


def compute_salted_hash(
    numero: str | None,
    voie: str | None,
    ville: str | None,
    cod_post: str | None,
    *,
    now: datetime | None = None,
) -> str:
    """Time-salted variant kept for audit. Never use it as a join key."""
    stamp = (now or datetime.now()).isoformat()
    return sanitize_hexacle(stamp + _concat(numero, voie, ville, cod_post))


def is_usable_hash(value: str | None) -> bool:
    return bool(value)
