"""Drive an enrichment job through its stages and record the outcome."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from enricher.core.config import Settings, get_settings
from enricher.core.errors import JobCancelled, PipelineError
from enricher.db.models.enrichment_job import EnrichmentJob, JobState
from enricher.db.models.staging_record import StagingRecord
from enricher.db.session import SessionLocal
from enricher.schemas.job import JobStatus
from enricher.services import archive_extraction, archive_packager, blacklist, staging
from enricher.services.csv_reader import count_rows
from enricher.services.job_service import fail_job, serialize_job, transition, update_counters
from enricher.services.progress_tracker import publish_progress
from enricher.services.reference_matcher import MatchStats, SqlReferenceStore, match_staged_records
from enricher.services.webhook_service import EVENT_COMPLETED, EVENT_FAILED, build_job_payload, trigger_webhooks
from enricher.storage import local_storage
from enricher.utils.column_mapping import DEFAULT_MAPPING, ColumnMapping, MappingError, build_mapping
from enricher.utils.memory_monitor import force_gc, log_memory_status

logger = logging.getLogger(__name__)

# Share of the progress bar reached when each stage finishes
STAGE_PROGRESS = {
    "extract": 0.05,
    "blacklist_import": 0.10,
    "staging": 0.30,
    "hashing": 0.45,
    "matching": 0.75,
    "filtering": 0.85,
    "packaging": 0.95,
}


@dataclass(frozen=True)
class PipelineConfig:
    """Settings snapshot taken when a job starts."""

    default_delimiter: str = ";"
    staging_batch_size: int = 500
    blacklist_batch_size: int = 1000
    match_batch_size: int = 500
    error_sample_size: int = 10
    blacklist_file_prefix: str = "blacklist_mobile"
    results_dir: Path = Path("storage/results")
    download_base_url: str = "/download/enrichment_results"
    async_webhooks: bool = True

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "PipelineConfig":
        settings = settings or get_settings()
        return cls(
            default_delimiter=settings.default_delimiter,
            staging_batch_size=settings.staging_batch_size,
            blacklist_batch_size=settings.blacklist_batch_size,
            match_batch_size=settings.match_batch_size,
            error_sample_size=settings.error_sample_size,
            blacklist_file_prefix=settings.blacklist_file_prefix,
            results_dir=Path(settings.results_dir),
            download_base_url=settings.download_base_url,
            async_webhooks=settings.async_webhooks,
        )


class EnrichmentPipeline:
    """Runs one job: extract, load blacklist, stage, hash, match, filter, package.

    Each stage commits before the next one starts, so counters committed
    before a failure stay visible on the job.
    """

    def __init__(
        self,
        config: PipelineConfig,
        session_factory: Callable[[], Session] = SessionLocal,
        store_factory: Callable[[Session], SqlReferenceStore] = SqlReferenceStore,
    ):
        self.config = config
        self.session_factory = session_factory
        self.store_factory = store_factory
        self._extracted: archive_extraction.ExtractedFiles | None = None

    def run(self, job_id: str) -> JobStatus | None:
        db = self.session_factory()
        self._extracted = None
        try:
            job = db.get(EnrichmentJob, job_id)
            if job is None:
                logger.error(f"Enrichment job {job_id} not found")
                return None
            if job.status != JobState.PENDING:
                logger.warning(f"Job {job_id} is {job.status}, not starting it again")
                return serialize_job(job)

            transition(job, JobState.PROCESSING)
            db.commit()
            log_memory_status(f"Job {job_id} start")
            self._publish(job, 0.0, "Processing started")

            try:
                self._execute(db, job)
            except JobCancelled as exc:
                self._fail(db, job_id, str(exc))
            except MemoryError as exc:
                logger.error(f"Job {job_id} ran out of memory: {exc}")
                self._fail(db, job_id, f"Out of memory: {exc}")
            except Exception as exc:
                logger.error(f"Job {job_id} failed: {exc}", exc_info=True)
                self._fail(db, job_id, str(exc) or exc.__class__.__name__)

            job = db.get(EnrichmentJob, job_id)
            db.refresh(job)
            if job.is_terminal:
                local_storage.delete_upload(job.file_path)
            return serialize_job(job)
        finally:
            if self._extracted is not None:
                archive_extraction.cleanup_extracted(self._extracted)
            force_gc()
            db.close()

    def _execute(self, db: Session, job: EnrichmentJob) -> None:
        config = self.config
        job_id = job.id
        meta: dict[str, Any] = dict(job.meta or {})

        mapping = self._resolve_mapping(job)
        delimiter = job.delimiter or config.default_delimiter
        has_headers = job.has_headers
        if has_headers is None and job.mapping:
            has_headers = True

        # Retrieve input and separate blacklist files
        extracted = self._extracted = archive_extraction.extract_and_separate(
            Path(job.file_path),
            job.file_name,
            blacklist_prefix=config.blacklist_file_prefix,
        )
        meta["reference_files"] = [extracted.display_name(path) for path in extracted.reference_files]
        meta["blacklist_files"] = [extracted.display_name(path) for path in extracted.blacklist_files]
        self._checkpoint(db, job, meta, "extract", "Archive extracted")

        # Blacklist files shipped with the upload
        blacklist_stats = []
        for path in extracted.blacklist_files:
            source_name = extracted.display_name(path)
            stats = blacklist.ingest_blacklist_file(
                db,
                path,
                source_name,
                batch_size=config.blacklist_batch_size,
                delimiter=delimiter,
            )
            blacklist_stats.append({"file": source_name, **stats.as_dict()})
            self._raise_if_cancelled(db, job_id)
        meta["blacklist_import"] = blacklist_stats
        self._checkpoint(db, job, meta, "blacklist_import", "Blacklist loaded")

        # Staging
        total = sum(
            count_rows(path, delimiter=delimiter, has_headers=has_headers)
            for path in extracted.reference_files
        )
        update_counters(job, total_records=total)
        db.commit()

        staged_total = 0
        skipped_total = 0
        staging_errors: list[str] = []
        for path in extracted.reference_files:
            result = staging.load_file_into_staging(
                db,
                job_id=job_id,
                file_name=extracted.display_name(path),
                file_path=path,
                mapping=mapping,
                delimiter=delimiter,
                has_headers=has_headers,
                batch_size=config.staging_batch_size,
                error_sample_size=config.error_sample_size,
                should_stop=lambda: self._cancel_requested(db, job_id),
            )
            self._raise_if_cancelled(db, job_id)
            staged_total += result.staged
            skipped_total += result.skipped
            room = config.error_sample_size - len(staging_errors)
            staging_errors.extend(result.insert.errors[:max(room, 0)])
            self._publish(
                job,
                STAGE_PROGRESS["extract"] + 0.2 * (staged_total / total if total else 1),
                f"Staged {staged_total}/{total} records",
            )
        meta["staging"] = {"staged": staged_total, "skipped": skipped_total, "errors": staging_errors}
        self._checkpoint(db, job, meta, "staging", f"Staged {staged_total} records")

        # Fingerprints
        staging.generate_hashes(
            db,
            job_id,
            batch_size=config.staging_batch_size,
            should_stop=lambda: self._cancel_requested(db, job_id),
        )
        self._raise_if_cancelled(db, job_id)
        self._checkpoint(db, job, meta, "hashing", "Fingerprints computed")

        # Reference matching
        def on_match_batch(stats: MatchStats) -> None:
            update_counters(
                job,
                processed_records=stats.processed,
                matched_records=stats.matched,
                enriched_records=stats.matched,
            )
            db.commit()
            share = stats.processed / staged_total if staged_total else 1
            self._publish(
                job,
                STAGE_PROGRESS["hashing"] + 0.3 * min(share, 1),
                f"Matched {stats.matched}/{stats.processed} records",
            )

        match_stats = match_staged_records(
            db,
            job_id,
            store=self.store_factory(db),
            batch_size=config.match_batch_size,
            should_stop=lambda: self._cancel_requested(db, job_id),
            on_batch=on_match_batch,
        )
        self._raise_if_cancelled(db, job_id)
        meta["matching"] = {"failed": match_stats.failed}
        self._checkpoint(db, job, meta, "matching", f"{match_stats.matched} match(es) found")

        # Blacklist filtering
        flagged = blacklist.apply_blacklist_filter(
            db,
            job_id,
            batch_size=config.match_batch_size,
            should_stop=lambda: self._cancel_requested(db, job_id),
            on_batch=lambda checked, flagged_so_far: self._record_filtered(db, job, flagged_so_far),
        )
        self._raise_if_cancelled(db, job_id)
        update_counters(job, filtered_records=flagged)
        self._checkpoint(db, job, meta, "filtering", f"{flagged} record(s) blacklisted")

        # Packaging
        package = archive_packager.package_results(
            db,
            job_id,
            job.file_name,
            results_dir=config.results_dir,
            download_base_url=config.download_base_url,
        )
        meta["files"] = package.file_counts
        if package.warning:
            meta["warning"] = package.warning

        db.execute(delete(StagingRecord).where(StagingRecord.job_id == job_id))

        job.result_file_path = str(package.file_path)
        job.result_download_url = package.download_url
        job.result_size_bytes = package.size_bytes
        update_counters(job, final_records=max(job.matched_records - job.filtered_records, 0))
        job.meta = meta
        transition(job, JobState.COMPLETED)
        db.commit()

        log_memory_status(f"Job {job_id} complete")
        self._publish(job, 1.0, "Enrichment complete", status=JobState.COMPLETED)
        trigger_webhooks(
            EVENT_COMPLETED,
            build_job_payload(job, EVENT_COMPLETED),
            db,
            async_dispatch=config.async_webhooks,
        )
        logger.info(
            f"Job {job_id} completed: {job.final_records} final / {job.matched_records} matched "
            f"/ {job.total_records} total"
        )

    def _resolve_mapping(self, job: EnrichmentJob) -> ColumnMapping:
        if not job.mapping:
            return DEFAULT_MAPPING
        try:
            return build_mapping(job.mapping)
        except MappingError as exc:
            raise PipelineError(f"Invalid column mapping: {exc}") from exc

    def _record_filtered(self, db: Session, job: EnrichmentJob, flagged: int) -> None:
        update_counters(job, filtered_records=flagged)
        db.commit()

    def _checkpoint(self, db: Session, job: EnrichmentJob, meta: dict, stage: str, message: str) -> None:
        """Commit stage results, publish progress and honour cancellation."""
        job.meta = dict(meta)
        db.commit()
        self._publish(job, STAGE_PROGRESS[stage], message)
        self._raise_if_cancelled(db, job.id)

    def _cancel_requested(self, db: Session, job_id: str) -> bool:
        return bool(
            db.execute(
                select(EnrichmentJob.cancel_requested).where(EnrichmentJob.id == job_id)
            ).scalar_one_or_none()
        )

    def _raise_if_cancelled(self, db: Session, job_id: str) -> None:
        if self._cancel_requested(db, job_id):
            logger.info(f"Job {job_id} cancelled by request")
            raise JobCancelled()

    def _publish(self, job: EnrichmentJob, progress: float, message: str, *, status: str | None = None) -> None:
        publish_progress(
            job.id,
            progress,
            message,
            status=status or job.status,
            meta={
                "total": job.total_records,
                "processed": job.processed_records,
                "matched": job.matched_records,
                "filtered": job.filtered_records,
            },
        )

    def _fail(self, db: Session, job_id: str, error_message: str) -> None:
        db.rollback()
        job = db.get(EnrichmentJob, job_id)
        db.refresh(job)
        fail_job(db, job, error_message)
        self._publish(job, 1.0, f"Enrichment failed: {error_message}", status=JobState.FAILED)
        trigger_webhooks(
            EVENT_FAILED,
            build_job_payload(job, EVENT_FAILED),
            db,
            async_dispatch=self.config.async_webhooks,
        )


def run_enrichment_job(job_id: str, config: PipelineConfig | None = None) -> JobStatus | None:
    """Entry point used by the worker task."""
    return EnrichmentPipeline(config or PipelineConfig.from_settings()).run(job_id)
