"""French phone number normalization for blacklist matching."""

from __future__ import annotations

import re

MIN_PHONE_DIGITS = 9

_NON_DIGITS = re.compile(r"\D")


def normalize_phone_number(raw: object) -> str | None:
    """Reduce a phone number to its trunk-stripped digits.

    ``+33 6 12 34 56 78`` and ``06 12 34 56 78`` both become ``612345678``.
    Returns None when fewer than nine digits remain.
    """
    if raw is None:
        return None
    digits = _NON_DIGITS.sub("", str(raw))
    if digits.startswith("33") and len(digits) > 10:
        digits = "0" + digits[2:]
    if digits.startswith("0") and len(digits) == 10:
        digits = digits[1:]
    if len(digits) < MIN_PHONE_DIGITS:
        return None
    return digits


def phone_variants(raw: object) -> set[str]:
    """Trunk-stripped and trunk-prefixed forms of a number."""
    normalized = normalize_phone_number(raw)
    if normalized is None:
        return set()
    return {normalized, "0" + normalized}
