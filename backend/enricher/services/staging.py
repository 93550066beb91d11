"""Load mapped rows into job-scoped staging and fingerprint them."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import bindparam, select, update
from sqlalchemy.orm import Session

from enricher.db.bulk import BatchInsertResult, persist_batch
from enricher.db.models.staging_record import StagingRecord
from enricher.services.csv_reader import iter_chunks, iter_csv_rows
from enricher.utils.column_mapping import ColumnMapping, has_mapped_value, map_row
from enricher.utils.hexacle import compute_hexacle_hash, compute_salted_hash

logger = logging.getLogger(__name__)

_staging = StagingRecord.__table__

# Rows that already carry a fingerprint are left untouched
_HASH_UPDATE = (
    update(_staging)
    .where(_staging.c.id == bindparam("row_id"), _staging.c.temp_hexacle_hash == "")
    .values(temp_hexacle_hash=bindparam("hexacle"), temps_hexacle_hash=bindparam("salted"))
)


@dataclass
class StagingLoadResult:
    rows_read: int = 0
    skipped: int = 0
    insert: BatchInsertResult = field(default_factory=BatchInsertResult)

    @property
    def staged(self) -> int:
        return self.insert.inserted


def _json_safe_row(row: dict) -> dict[str, Any]:
    # csv.DictReader stores overflow cells under a None key
    return {key: value for key, value in row.items() if isinstance(key, str)}


def load_file_into_staging(
    db: Session,
    *,
    job_id: str,
    file_name: str,
    file_path: Path,
    mapping: ColumnMapping,
    delimiter: str = ";",
    has_headers: bool | None = None,
    batch_size: int = 500,
    error_sample_size: int = 10,
    should_stop: Callable[[], bool] | None = None,
    on_batch: Callable[[StagingLoadResult], None] | None = None,
) -> StagingLoadResult:
    """Stream a reference file through the column mapping into staging.

    Rows without any mapped value are skipped. Each batch is committed;
    failing rows are collected without losing the rest of the batch.
    """
    result = StagingLoadResult()
    rows = iter_csv_rows(file_path, delimiter=delimiter, has_headers=has_headers)

    for chunk in iter_chunks(rows, batch_size):
        if should_stop and should_stop():
            break

        records: list[StagingRecord] = []
        for row in chunk:
            result.rows_read += 1
            record = map_row(row, mapping, result.rows_read)
            if not has_mapped_value(record, mapping):
                result.skipped += 1
                continue
            records.append(
                StagingRecord(
                    job_id=job_id,
                    file_name=file_name,
                    temp_hexacle_hash="",
                    temps_hexacle_hash="",
                    hexacle_original=record.hexacle,
                    numero=record.numero,
                    voie=record.voie,
                    ville=record.ville,
                    cod_post=record.cod_post,
                    cod_insee=record.cod_insee,
                    raw_data=_json_safe_row(row),
                )
            )

        batch_result = persist_batch(
            db,
            records,
            describe=lambda obj, index: f"{file_name} batch row {index}",
            sample_size=error_sample_size,
        )
        db.commit()
        result.insert.merge(batch_result, error_sample_size)

        if on_batch:
            on_batch(result)

    logger.info(
        f"Staged {result.staged}/{result.rows_read} rows from {file_name} "
        f"({result.skipped} empty, {result.insert.error_count} failed)"
    )
    return result


def generate_hashes(
    db: Session,
    job_id: str,
    *,
    batch_size: int = 500,
    should_stop: Callable[[], bool] | None = None,
    on_batch: Callable[[int], None] | None = None,
) -> int:
    """Fingerprint every staged row of a job that has no hash yet.

    Only rows with an empty ``temp_hexacle_hash`` are touched, so running it
    again is a no-op for rows already hashed. Returns the rows processed.
    """
    processed = 0
    last_id = 0

    while True:
        if should_stop and should_stop():
            break

        rows = db.execute(
            select(
                StagingRecord.id,
                StagingRecord.numero,
                StagingRecord.voie,
                StagingRecord.ville,
                StagingRecord.cod_post,
            )
            .where(
                StagingRecord.job_id == job_id,
                StagingRecord.temp_hexacle_hash == "",
                StagingRecord.id > last_id,
            )
            .order_by(StagingRecord.id)
            .limit(batch_size)
        ).all()
        if not rows:
            break
        last_id = rows[-1].id

        now = datetime.now()
        values = [
            {
                "row_id": row.id,
                "hexacle": compute_hexacle_hash(row.numero, row.voie, row.ville, row.cod_post),
                "salted": compute_salted_hash(
                    row.numero, row.voie, row.ville, row.cod_post, now=now
                ),
            }
            for row in rows
        ]
        db.execute(_HASH_UPDATE, values)
        db.commit()

        processed += len(rows)
        if on_batch:
            on_batch(processed)

    logger.info(f"Job {job_id}: fingerprinted {processed} staged row(s)")
    return processed
