"""Enrichment job lifecycle: submission, state transitions, counters and status."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from enricher.db.models.enrichment_job import COUNTER_FIELDS, EnrichmentJob, JobState
from enricher.schemas.job import JobStatus, OperationResult
from enricher.services.progress_tracker import fetch_progress, publish_progress
from enricher.storage import local_storage
from enricher.utils.column_mapping import MappingError, parse_mapping

logger = logging.getLogger(__name__)

ENRICHMENT_QUEUE = "enrichment"

ALLOWED_TRANSITIONS = {
    JobState.PENDING: frozenset({JobState.PROCESSING, JobState.FAILED}),
    JobState.PROCESSING: frozenset({JobState.COMPLETED, JobState.FAILED}),
    JobState.COMPLETED: frozenset(),
    JobState.FAILED: frozenset(),
}


class InvalidTransition(ValueError):
    """Raised when a job is moved to a state it cannot reach."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def transition(job: EnrichmentJob, new_status: str, *, error_message: str | None = None) -> None:
    """Move a job along pending -> processing -> completed|failed.

    Terminal states are final. Timestamps are set on entry.
    """
    allowed = ALLOWED_TRANSITIONS.get(job.status, frozenset())
    if new_status not in allowed:
        raise InvalidTransition(f"Job {job.id} cannot go from {job.status} to {new_status}")

    job.status = new_status
    if new_status == JobState.PROCESSING:
        job.started_at = _now()
    elif new_status in JobState.TERMINAL:
        job.completed_at = _now()
    if error_message is not None:
        job.error_message = error_message


def update_counters(job: EnrichmentJob, **counters: int) -> None:
    """Apply counter values without ever moving one backwards.

    Counters of a terminal job are frozen.
    """
    if job.is_terminal:
        logger.warning(f"Ignoring counter update on terminal job {job.id}")
        return

    for name, value in counters.items():
        if name not in COUNTER_FIELDS:
            raise ValueError(f"Unknown job counter: {name}")
        current = getattr(job, name) or 0
        if value < current:
            logger.warning(f"Job {job.id}: refusing to decrease {name} from {current} to {value}")
            continue
        setattr(job, name, value)


def fail_job(db: Session, job: EnrichmentJob, error_message: str) -> None:
    """Mark a job failed and commit, keeping whatever counters were committed."""
    if job.is_terminal:
        return
    transition(job, JobState.FAILED, error_message=error_message)
    db.commit()


def create_job(
    db: Session,
    *,
    file_path: Path,
    file_name: str,
    mapping: dict[str, str] | None = None,
    delimiter: str | None = None,
    has_headers: bool | None = None,
    source: str = "upload",
) -> EnrichmentJob:
    job = EnrichmentJob(
        status=JobState.PENDING,
        file_name=file_name,
        file_path=str(file_path),
        source=source,
        mapping=mapping,
        delimiter=delimiter,
        has_headers=has_headers,
    )
    db.add(job)
    db.flush()
    return job


def submit_enrichment_job(
    db: Session,
    file_path: str | Path,
    *,
    file_name: str | None = None,
    mapping_json: str | None = None,
    delimiter: str | None = None,
    has_headers: bool | None = None,
    source: str = "upload",
    enqueue: bool = True,
) -> OperationResult:
    """Validate the input, create a pending job and hand it to the worker queue.

    An invalid mapping or a missing file creates no job.
    """
    path = Path(file_path)
    file_name = file_name or path.name

    mapping: dict[str, str] | None = None
    if mapping_json is not None and mapping_json.strip():
        try:
            parsed = parse_mapping(mapping_json)
        except MappingError as exc:
            logger.warning(f"Rejected mapping for {file_name}: {exc}")
            return OperationResult(success=False, message="Invalid column mapping", error=str(exc))
        mapping = {source_column: destination.value for destination, source_column in parsed.items()}

    if not path.exists():
        return OperationResult(
            success=False,
            message="Input file not found",
            error=f"File not found: {path}",
        )

    try:
        job = create_job(
            db,
            file_path=path.resolve(),
            file_name=file_name,
            mapping=mapping,
            delimiter=delimiter,
            has_headers=has_headers,
            source=source,
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Database error creating enrichment job for {file_name}: {exc}", exc_info=True)
        return OperationResult(success=False, message="Failed to create enrichment job", error=str(exc))

    publish_progress(job.id, 0.0, "Queued", status=JobState.PENDING)

    if enqueue:
        try:
            from enricher.workers.tasks.enrichment import process_enrichment_job_task

            process_enrichment_job_task.apply_async(args=(job.id,), queue=ENRICHMENT_QUEUE)
        except Exception as exc:
            logger.error(f"Error enqueueing enrichment job {job.id}: {exc}", exc_info=True)
            fail_job(db, job, f"Failed to enqueue job: {exc}")
            return OperationResult(
                success=False,
                message="Failed to start enrichment",
                error=str(exc),
                job_id=job.id,
            )

    logger.info(f"Created enrichment job {job.id} for file {file_name}")
    return OperationResult(
        success=True,
        message=f"Enrichment started for {file_name}",
        job_id=job.id,
    )


def serialize_job(job: EnrichmentJob, progress_payload: dict | None = None) -> JobStatus:
    """Combine DB state and the cached progress snapshot.

    Terminal jobs always report their database state.
    """
    progress_payload = progress_payload or {}
    if job.is_terminal:
        progress_payload = {
            key: value for key, value in progress_payload.items() if key in ("message", "meta")
        }
        progress = 1.0 if job.status == JobState.COMPLETED else None
    else:
        progress = progress_payload.get("progress")

    if progress is None and job.total_records:
        progress = min(job.processed_records / job.total_records, 1.0)

    message = progress_payload.get("message")
    if not message:
        total_display = job.total_records if job.total_records else "?"
        message = f"Processed {job.processed_records}/{total_display} records"

    status = job.status if job.is_terminal else progress_payload.get("status") or job.status

    live_meta = progress_payload.get("meta") or {}
    if job.is_terminal:
        meta = {**live_meta, **(job.meta or {})}
    else:
        meta = {**(job.meta or {}), **live_meta}

    return JobStatus(
        id=job.id,
        status=status,
        file_name=job.file_name,
        progress=progress,
        message=message,
        total_records=job.total_records,
        processed_records=job.processed_records,
        matched_records=job.matched_records,
        enriched_records=job.enriched_records,
        filtered_records=job.filtered_records,
        final_records=job.final_records,
        error_message=job.error_message,
        result_download_url=job.result_download_url,
        result_size_bytes=job.result_size_bytes,
        cancel_requested=bool(job.cancel_requested),
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        meta=meta,
    )


def get_job_status(db: Session, job_id: str) -> JobStatus | None:
    """Latest status and counters of a job, or None when it does not exist."""
    job = db.get(EnrichmentJob, job_id)
    if job is None:
        return None
    db.refresh(job)
    return serialize_job(job, fetch_progress(job_id))


def list_jobs(db: Session, *, status: str | None = None, limit: int = 50) -> list[JobStatus]:
    """Most recent jobs first, optionally filtered by status."""
    query = select(EnrichmentJob)
    if status:
        query = query.where(EnrichmentJob.status == status)
    query = query.order_by(EnrichmentJob.created_at.desc(), EnrichmentJob.id).limit(limit)
    return [serialize_job(job) for job in db.execute(query).scalars().all()]


def cancel_job(db: Session, job_id: str) -> OperationResult:
    """Cancel a pending job at once, or ask a running one to stop at its next boundary."""
    job = db.get(EnrichmentJob, job_id)
    if job is None:
        return OperationResult(success=False, message="Job not found", error=f"Unknown job {job_id}")

    if job.is_terminal:
        return OperationResult(
            success=False,
            message=f"Job is already {job.status}",
            error="Cannot cancel a finished job",
            job_id=job.id,
        )

    if job.status == JobState.PENDING:
        transition(job, JobState.FAILED, error_message="Cancelled")
        job.cancel_requested = True
        db.commit()
        publish_progress(job.id, 0.0, "Cancelled", status=JobState.FAILED)
        local_storage.delete_upload(job.file_path)
        logger.info(f"Cancelled pending job {job.id}")
        return OperationResult(success=True, message="Job cancelled", job_id=job.id)

    job.cancel_requested = True
    db.commit()
    logger.info(f"Cancellation requested for running job {job.id}")
    return OperationResult(success=True, message="Cancellation requested", job_id=job.id)
