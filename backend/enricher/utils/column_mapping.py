"""Map arbitrary CSV headers onto the canonical staging columns."""

from __future__ import annotations

import json
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict


class ImportColumn(str, Enum):
    HEXACLE = "hexacle"
    NUMERO = "numero"
    VOIE = "voie"
    VILLE = "ville"
    COD_POST = "cod_post"
    COD_INSEE = "cod_insee"


SUPPORTED_COLUMNS = frozenset(column.value for column in ImportColumn)

# Fixed order of the reference file layout, also used for headerless files
DEFAULT_HEADERS = ("HEXACLE", "NUMERO", "VOIE", "VILLE", "COD_POST", "COD_INSEE")

ColumnMapping = Mapping[ImportColumn, str]


class MappingError(ValueError):
    """Raised when a mapping configuration cannot be used."""


class ImportRecord(BaseModel):
    """One normalized input row. Empty values are stored as None."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    hexacle: str | None = None
    numero: str | None = None
    voie: str | None = None
    ville: str | None = None
    cod_post: str | None = None
    cod_insee: str | None = None


def _normalize_key(column: str) -> str:
    return column.strip().lower()


def parse_mapping(mapping_json: str | None) -> ColumnMapping:
    """Parse ``{"<source header>": "<destination column>"}`` JSON.

    Unsupported destinations are dropped. Raises MappingError when the text
    is empty or malformed, when a destination is not a non-blank string, or
    when nothing supported remains.
    """
    if not mapping_json or not mapping_json.strip():
        raise MappingError("Mapping configuration is empty.")

    try:
        parsed = json.loads(mapping_json)
    except json.JSONDecodeError as exc:
        raise MappingError("Mapping configuration is not valid JSON.") from exc

    if not isinstance(parsed, dict):
        raise MappingError("Mapping configuration must be an object.")

    return build_mapping(parsed)


def build_mapping(pairs: Mapping[str, Any]) -> ColumnMapping:
    """Validate an already-decoded ``{source: destination}`` object."""
    mapping: dict[ImportColumn, str] = {}
    for source_column, destination in pairs.items():
        if not isinstance(destination, str) or not destination.strip():
            raise MappingError(f'Invalid destination column for source "{source_column}".')

        normalized = _normalize_key(destination)
        if normalized not in SUPPORTED_COLUMNS:
            continue
        mapping[ImportColumn(normalized)] = str(source_column).strip()

    if not mapping:
        raise MappingError(
            "Mapping configuration does not contain any supported destination columns."
        )
    return MappingProxyType(mapping)


DEFAULT_MAPPING: ColumnMapping = build_mapping({header: header for header in DEFAULT_HEADERS})


def _normalize_value(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        trimmed = value.strip()
        return trimmed or None
    return str(value)


def map_row(row: Mapping[str, Any], mapping: ColumnMapping, source_id: int | str) -> ImportRecord:
    """Project a raw CSV row onto an ImportRecord using case-insensitive headers."""
    lookup = {_normalize_key(key): value for key, value in row.items() if isinstance(key, str)}

    values = {
        destination.value: _normalize_value(lookup.get(_normalize_key(source_column)))
        for destination, source_column in mapping.items()
    }
    return ImportRecord(source_id=str(source_id), **values)


def has_mapped_value(record: ImportRecord, mapping: ColumnMapping) -> bool:
    return any(getattr(record, destination.value) is not None for destination in mapping)
