"""Load the reference contacts store from a mapped CSV file."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from sqlalchemy.orm import Session

from enricher.db.bulk import BatchInsertResult, persist_batch
from enricher.db.models.contact import Contact
from enricher.schemas.contacts import ContactColumnMapping, ContactImportResult
from enricher.services.csv_reader import iter_chunks, iter_csv_rows
from enricher.utils.hexacle import compute_hexacle_hash, sanitize_hexacle
from enricher.utils.value_conversion import convert_value

logger = logging.getLogger(__name__)

IGNORED_COLUMNS = frozenset({"id", "source_id", "created_at"})
CONTACT_COLUMNS = frozenset(
    column.name for column in Contact.__table__.columns if column.name not in IGNORED_COLUMNS
)


def _usable_mappings(column_mappings: Iterable[ContactColumnMapping | Mapping[str, Any]]) -> list[ContactColumnMapping]:
    usable = []
    for raw in column_mappings:
        mapping = raw if isinstance(raw, ContactColumnMapping) else ContactColumnMapping(**raw)
        db_column = mapping.db_column.strip().lower()
        if db_column in IGNORED_COLUMNS:
            continue
        if db_column not in CONTACT_COLUMNS:
            logger.warning(f"Ignoring mapping to unknown contact column {mapping.db_column}")
            continue
        usable.append(mapping.model_copy(update={"db_column": db_column}))
    return usable


def build_contact(row: Mapping[str, Any], mappings: list[ContactColumnMapping]) -> Contact:
    """Convert one CSV row into a Contact using the typed mappings."""
    lookup = {key.strip().lower(): value for key, value in row.items() if isinstance(key, str)}
    values: dict[str, Any] = {}
    for mapping in mappings:
        raw = lookup.get(mapping.csv_header.strip().lower())
        values[mapping.db_column] = convert_value(raw, mapping.data_type, column=mapping.db_column)

    if values.get("hexacle_hash"):
        values["hexacle_hash"] = sanitize_hexacle(str(values["hexacle_hash"]))
    else:
        values["hexacle_hash"] = compute_hexacle_hash(
            "", values.get("address"), values.get("city"), values.get("postal_code")
        ) or None
    return Contact(**values)


def import_contacts(
    file_path: str | Path,
    column_mappings: Iterable[ContactColumnMapping | Mapping[str, Any]],
    db: Session,
    *,
    delimiter: str = ";",
    batch_size: int = 100,
    error_sample_size: int = 10,
) -> ContactImportResult:
    """Insert contacts in batches, keeping valid rows when a batch fails."""
    path = Path(file_path)
    try:
        mappings = _usable_mappings(column_mappings)
    except ValueError as e:
        return ContactImportResult(success=False, message=f"Invalid column mapping: {e}", errors=[str(e)])
    if not mappings:
        return ContactImportResult(success=False, message="No usable column mapping")

    total_rows = 0
    outcome = BatchInsertResult()
    try:
        rows = iter_csv_rows(path, delimiter=delimiter, has_headers=True)
        for chunk in iter_chunks(rows, batch_size):
            contacts = [build_contact(row, mappings) for row in chunk]
            total_rows += len(chunk)
            batch_result = persist_batch(
                db,
                contacts,
                describe=lambda obj, index, base=total_rows - len(chunk): f"Row {base + index}",
                sample_size=error_sample_size,
            )
            db.commit()
            outcome.merge(batch_result, error_sample_size)
    except ValueError as e:
        db.rollback()
        logger.error(f"Contacts import from {path} failed: {e}")
        return ContactImportResult(
            success=False,
            total_rows=total_rows,
            inserted=outcome.inserted,
            errors=(outcome.errors + [str(e)])[:error_sample_size],
            message=str(e),
        )

    logger.info(f"Imported {outcome.inserted}/{total_rows} contacts from {path.name}")
    return ContactImportResult(
        success=True,
        total_rows=total_rows,
        inserted=outcome.inserted,
        errors=outcome.errors[:error_sample_size],
        message=f"Imported {outcome.inserted} of {total_rows} rows",
    )
