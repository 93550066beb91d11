"""Batch write helpers that keep valid rows when a batch flush fails."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import insert as generic_insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

DEFAULT_ERROR_SAMPLE = 10


@dataclass
class BatchInsertResult:
    inserted: int = 0
    errors: list[str] = field(default_factory=list)
    error_count: int = 0

    def merge(self, other: "BatchInsertResult", sample_size: int = DEFAULT_ERROR_SAMPLE) -> None:
        self.inserted += other.inserted
        self.error_count += other.error_count
        room = sample_size - len(self.errors)
        if room > 0:
            self.errors.extend(other.errors[:room])


def persist_batch(
    db: Session,
    objects: Sequence[Any],
    *,
    describe=lambda obj, index: f"row {index}",
    sample_size: int = DEFAULT_ERROR_SAMPLE,
) -> BatchInsertResult:
    """Flush a batch of ORM objects inside a savepoint.

    When the batch flush fails, each object is retried in its own savepoint
    so already-valid rows are kept. The caller owns the outer commit.
    """
    result = BatchInsertResult()
    if not objects:
        return result

    try:
        with db.begin_nested():
            db.add_all(objects)
            db.flush()
        result.inserted = len(objects)
        return result
    except SQLAlchemyError as e:
        logger.warning(f"Batch insert of {len(objects)} rows failed, retrying row by row: {e}")

    for index, obj in enumerate(objects, start=1):
        try:
            with db.begin_nested():
                db.add(obj)
                db.flush()
            result.inserted += 1
        except SQLAlchemyError as e:
            result.error_count += 1
            message = f"{describe(obj, index)}: {e.__class__.__name__}: {e}"
            logger.warning(f"Skipping {message}")
            if len(result.errors) < sample_size:
                result.errors.append(message)
    return result


def insert_ignore(db: Session, model, rows: list[dict[str, Any]], conflict_columns: list[str]) -> int:
    """Insert rows, silently skipping ones that hit a unique constraint.

    Returns the number of rows actually inserted.
    """
    if not rows:
        return 0

    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(model).values(rows).on_conflict_do_nothing(index_elements=conflict_columns)
    elif dialect == "sqlite":
        stmt = sqlite_insert(model).values(rows).on_conflict_do_nothing(index_elements=conflict_columns)
    else:
        stmt = generic_insert(model).values(rows).prefix_with("IGNORE")

    result = db.execute(stmt)
    return max(result.rowcount or 0, 0)
