"""Typed conversion of CSV cell values for the contacts loader."""

from __future__ import annotations

import logging
import math
import re
from datetime import date, datetime
from typing import Any

logger = logging.getLogger(__name__)

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1
MAX_STRING_LENGTH = 255

TRUE_VALUES = frozenset({"true", "1", "yes", "oui", "y", "vrai"})
FALSE_VALUES = frozenset({"false", "0", "no", "non", "n", "faux"})

SUPPORTED_TYPES = ("string", "integer", "boolean", "date", "datetime")

_SLASH_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_DASH_DATE = re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})$")
_TIME = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


class ConversionError(ValueError):
    """Raised when a cell cannot be converted to its declared type."""


def to_integer(value: str) -> int:
    try:
        number = float(value.replace(",", "."))
    except ValueError as exc:
        raise ConversionError(f"'{value}' is not a number") from exc
    if math.isnan(number) or math.isinf(number):
        raise ConversionError(f"'{value}' is not a finite number")
    result = math.floor(number)
    if result < INT32_MIN or result > INT32_MAX:
        raise ConversionError(f"'{value}' is out of integer range")
    return result


def to_boolean(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ConversionError(f"'{value}' is not a boolean")


def to_date(value: str) -> date:
    """Parse DD/MM/YYYY (MM/DD/YYYY when day-first is impossible), YYYY-MM-DD or DD-MM-YYYY."""
    text = value.strip()

    match = _SLASH_DATE.match(text)
    if match:
        first, second, year = (int(part) for part in match.groups())
        day, month = (first, second) if second <= 12 else (second, first)
        return _build_date(year, month, day, value)

    match = _ISO_DATE.match(text)
    if match:
        year, month, day = (int(part) for part in match.groups())
        return _build_date(year, month, day, value)

    match = _DASH_DATE.match(text)
    if match:
        day, month, year = (int(part) for part in match.groups())
        return _build_date(year, month, day, value)

    raise ConversionError(f"'{value}' is not a supported date format")


def _build_date(year: int, month: int, day: int, raw: str) -> date:
    try:
        return date(year, month, day)
    except ValueError as exc:
        raise ConversionError(f"'{raw}' is not a valid date") from exc


def to_datetime(value: str) -> datetime:
    """Parse a date with an optional HH:MM[:SS] part, or any ISO-8601 timestamp."""
    text = value.strip()
    date_part, _, time_part = text.partition(" ")
    try:
        parsed_date = to_date(date_part)
    except ConversionError:
        try:
            return datetime.fromisoformat(text)
        except ValueError as exc:
            raise ConversionError(f"'{value}' is not a supported datetime format") from exc

    if not time_part.strip():
        return datetime(parsed_date.year, parsed_date.month, parsed_date.day)

    match = _TIME.match(time_part.strip())
    if not match:
        raise ConversionError(f"'{value}' has an invalid time part")
    hour, minute, second = match.groups()
    try:
        return datetime(
            parsed_date.year,
            parsed_date.month,
            parsed_date.day,
            int(hour),
            int(minute),
            int(second or 0),
        )
    except ValueError as exc:
        raise ConversionError(f"'{value}' has an invalid time part") from exc


_CONVERTERS = {
    "integer": to_integer,
    "boolean": to_boolean,
    "date": to_date,
    "datetime": to_datetime,
}


def convert_value(value: Any, data_type: str, *, column: str | None = None) -> Any:
    """Convert a raw cell; failures are logged and coerced to None."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    converter = _CONVERTERS.get(data_type)
    if converter is None:
        return text[:MAX_STRING_LENGTH]

    try:
        return converter(text)
    except ConversionError as e:
        logger.warning(f"Could not convert column {column or '?'} to {data_type}: {e}")
        return None
