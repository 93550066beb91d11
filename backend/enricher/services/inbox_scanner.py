"""Poll the inbox directory and submit one enrichment job per new file."""

from __future__ import annotations

import fnmatch
import logging
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from enricher.db.models.processed_file import ProcessedFile
from enricher.services.job_service import submit_enrichment_job
from enricher.storage.local_storage import stage_local_file

logger = logging.getLogger(__name__)


@dataclass
class ScanSummary:
    files_found: int = 0
    submitted: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    job_ids: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


def list_candidates(inbox_dir: Path, patterns: Sequence[str]) -> list[Path]:
    """Regular files of the inbox whose name matches one of the glob patterns."""
    if not inbox_dir.is_dir():
        return []
    return sorted(
        path
        for path in inbox_dir.iterdir()
        if path.is_file()
        and not path.name.startswith(".")
        and any(fnmatch.fnmatch(path.name.lower(), pattern.lower()) for pattern in patterns)
    )


def already_processed(db: Session, file_name: str, file_size: int) -> bool:
    return (
        db.execute(
            select(ProcessedFile.id).where(
                ProcessedFile.file_name == file_name,
                ProcessedFile.file_size == file_size,
            )
        ).first()
        is not None
    )


def _record(db: Session, path: Path, size: int, *, job_id: str | None, status: str, error: str | None = None) -> None:
    db.add(
        ProcessedFile(
            file_name=path.name,
            file_size=size,
            job_id=job_id,
            status=status,
            error_message=error,
        )
    )
    try:
        db.commit()
    except IntegrityError:
        # Another scan recorded the same file first
        db.rollback()
        logger.warning(f"File {path.name} ({size} bytes) was already recorded")


def scan_inbox(
    db: Session,
    inbox_dir: Path,
    patterns: Sequence[str],
    *,
    enqueue: bool = True,
) -> ScanSummary:
    """Submit every unseen (name, size) pair found in ``inbox_dir``."""
    summary = ScanSummary()
    candidates = list_candidates(inbox_dir, patterns)
    summary.files_found = len(candidates)

    for path in candidates:
        size = path.stat().st_size
        if already_processed(db, path.name, size):
            summary.skipped += 1
            continue

        try:
            staged = stage_local_file(path, path.name)
        except OSError as e:
            message = f"{path.name}: could not stage file: {e}"
            logger.error(message)
            summary.errors.append(message)
            _record(db, path, size, job_id=None, status="failed", error=str(e))
            continue

        result = submit_enrichment_job(
            db,
            staged,
            file_name=path.name,
            source="inbox",
            enqueue=enqueue,
        )
        if result.success:
            summary.submitted += 1
            summary.job_ids.append(result.job_id)
            _record(db, path, size, job_id=result.job_id, status="submitted")
            logger.info(f"Submitted inbox file {path.name} as job {result.job_id}")
        else:
            message = f"{path.name}: {result.error or result.message}"
            summary.errors.append(message)
            _record(db, path, size, job_id=result.job_id, status="failed", error=result.error)
            logger.warning(f"Inbox file {path.name} was not submitted: {result.error}")

    logger.info(
        f"Inbox scan of {inbox_dir}: {summary.files_found} found, {summary.submitted} submitted, "
        f"{summary.skipped} skipped, {len(summary.errors)} error(s)"
    )
    return summary
