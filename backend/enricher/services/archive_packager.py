"""Bundle a job's enriched rows into a downloadable ZIP archive."""

from __future__ import annotations

import csv
import logging
import tempfile
import zipfile
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from enricher.db.models.enrichment_result import EnrichmentResult

logger = logging.getLogger(__name__)

SUMMARY_FILE_NAME = "enrichment_summary.txt"
EXCLUDED_FIELDS = frozenset({"id", "is_blacklisted", "blacklist_reason", "original_data"})
READ_BATCH_SIZE = 500

PROCESSING_STEPS = (
    "Extracted rows from the CSV files of the upload",
    "Computed the hexacle hash of each row (number + street + city + postal code)",
    "Looked up matches in the reference contacts database",
    "Enriched matching rows with the reference contact fields",
    "Applied the mobile phone blacklist",
    "Generated the enriched archive",
)


@dataclass
class PackageResult:
    file_path: Path
    download_url: str
    size_bytes: int
    file_counts: dict[str, int] = field(default_factory=dict)
    failed_groups: list[str] = field(default_factory=list)
    original_rows: int = 0
    final_rows: int = 0
    filtered_rows: int = 0

    @property
    def warning(self) -> str | None:
        if not self.failed_groups:
            return None
        return f"{len(self.failed_groups)} file(s) could not be packaged: {', '.join(self.failed_groups)}"


def enriched_file_name(file_name: str) -> str:
    return f"{Path(file_name).stem}_enriched.csv"


def build_output_row(reference_data: dict | None, enriched_data: dict | None) -> dict[str, Any]:
    """Merge the original row with the contact fields, minus bookkeeping keys."""
    merged = {**(reference_data or {}), **(enriched_data or {})}
    return {key: value for key, value in merged.items() if key not in EXCLUDED_FIELDS}


def _iter_group_rows(db: Session, job_id: str, file_name: str) -> Iterator[dict[str, Any]]:
    last_id = 0
    while True:
        batch = db.execute(
            select(EnrichmentResult.id, EnrichmentResult.reference_data, EnrichmentResult.enriched_data)
            .where(
                EnrichmentResult.job_id == job_id,
                EnrichmentResult.file_name == file_name,
                EnrichmentResult.found_match.is_(True),
                EnrichmentResult.is_blacklisted.is_(False),
                EnrichmentResult.id > last_id,
            )
            .order_by(EnrichmentResult.id)
            .limit(READ_BATCH_SIZE)
        ).all()
        if not batch:
            return
        last_id = batch[-1].id
        for row in batch:
            yield build_output_row(row.reference_data, row.enriched_data)


def write_group_csv(db: Session, job_id: str, file_name: str, target: Path) -> int:
    """Write one group to ``target`` and return the number of data rows.

    The header is the sorted union of all row keys, so rows are read twice
    instead of being held in memory.
    """
    fields: set[str] = set()
    for row in _iter_group_rows(db, job_id, file_name):
        fields.update(row)
    header = sorted(fields)

    count = 0
    with target.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(
            handle,
            fieldnames=header,
            delimiter=",",
            quoting=csv.QUOTE_MINIMAL,
            lineterminator="\n",
            restval="",
        )
        writer.writeheader()
        for row in _iter_group_rows(db, job_id, file_name):
            writer.writerow({key: "" if value is None else value for key, value in row.items()})
            count += 1
    return count


def build_summary(
    job_id: str,
    file_counts: dict[str, int],
    original_rows: int,
    final_rows: int,
    filtered_rows: int,
    *,
    generated_at: datetime | None = None,
) -> str:
    generated_at = generated_at or datetime.now(timezone.utc)
    lines = [
        "DATA ENRICHMENT REPORT",
        "======================",
        "",
        f"Job ID: {job_id}",
        f"Generated at: {generated_at.isoformat()}",
        "",
        "OVERALL STATISTICS:",
        f"- Original rows: {original_rows}",
        f"- Final rows: {final_rows}",
        f"- Rows removed (blacklist): {filtered_rows}",
        "",
        "GENERATED FILES:",
    ]
    lines.extend(f"- {name}: {count} rows" for name, count in file_counts.items())
    lines.extend(["", "PROCESSING STEPS:"])
    lines.extend(f"{index}. {step}" for index, step in enumerate(PROCESSING_STEPS, start=1))
    lines.extend(
        [
            "",
            "NOTES:",
            "- Rows whose phone numbers are in the mobile blacklist were removed",
            "- Enriched rows include every field available in the reference database",
            "- Matching is done on the normalized address",
        ]
    )
    return "\n".join(lines) + "\n"


def package_results(
    db: Session,
    job_id: str,
    source_file_name: str,
    *,
    results_dir: Path,
    download_base_url: str,
) -> PackageResult:
    """Write ``<stem>_enriched.zip`` for a job and return where it lives."""
    base_filter = (EnrichmentResult.job_id == job_id,)
    original_rows = db.execute(
        select(func.count()).select_from(EnrichmentResult).where(*base_filter)
    ).scalar_one()
    filtered_rows = db.execute(
        select(func.count())
        .select_from(EnrichmentResult)
        .where(*base_filter, EnrichmentResult.is_blacklisted.is_(True))
    ).scalar_one()
    group_names = db.execute(
        select(EnrichmentResult.file_name)
        .where(
            *base_filter,
            EnrichmentResult.found_match.is_(True),
            EnrichmentResult.is_blacklisted.is_(False),
        )
        .distinct()
        .order_by(EnrichmentResult.file_name)
    ).scalars().all()

    archive_name = f"{Path(source_file_name).stem}_enriched.zip"
    job_dir = Path(results_dir) / job_id
    job_dir.mkdir(parents=True, exist_ok=True)
    archive_path = job_dir / archive_name

    file_counts: dict[str, int] = {}
    failed_groups: list[str] = []

    with tempfile.TemporaryDirectory(prefix=f"package_{job_id}_") as tmp:
        with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for group in group_names:
                csv_name = enriched_file_name(group)
                tmp_path = Path(tmp) / csv_name
                try:
                    count = write_group_csv(db, job_id, group, tmp_path)
                except Exception as e:
                    logger.error(f"Job {job_id}: failed to package {group}: {e}", exc_info=True)
                    failed_groups.append(group)
                    continue
                archive.write(tmp_path, arcname=csv_name)
                file_counts[csv_name] = count

            final_rows = sum(file_counts.values())
            archive.writestr(
                SUMMARY_FILE_NAME,
                build_summary(job_id, file_counts, original_rows, final_rows, filtered_rows),
            )

    result = PackageResult(
        file_path=archive_path,
        download_url=f"{download_base_url.rstrip('/')}/{job_id}/{archive_name}",
        size_bytes=archive_path.stat().st_size,
        file_counts=file_counts,
        failed_groups=failed_groups,
        original_rows=original_rows,
        final_rows=final_rows,
        filtered_rows=filtered_rows,
    )
    if result.warning:
        logger.warning(f"Job {job_id}: {result.warning}")
    logger.info(f"Job {job_id}: archive {archive_path} written ({result.size_bytes} bytes, {final_rows} rows)")
    return result
