"""Match staged fingerprints against the reference contacts store."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from enricher.db.models.contact import Contact
from enricher.db.models.enrichment_result import EnrichmentResult
from enricher.db.models.staging_record import StagingRecord
from enricher.utils.batching import chunked
from enricher.utils.hexacle import is_usable_hash

logger = logging.getLogger(__name__)

IN_CLAUSE_SIZE = 500


class SqlReferenceStore:
    """Reference lookups over the ``contacts`` table.

    When several contacts share a fingerprint the lowest id wins. Empty
    fingerprints never match.
    """

    def __init__(self, db: Session):
        self.db = db

    def lookup(self, hexacle_hash: str) -> dict | None:
        if not is_usable_hash(hexacle_hash):
            return None
        contact = self.db.execute(
            select(Contact).where(Contact.hexacle_hash == hexacle_hash).order_by(Contact.id).limit(1)
        ).scalar_one_or_none()
        return contact.to_enrichment_dict() if contact else None

    def lookup_many(self, hashes: Iterable[str]) -> dict[str, dict]:
        wanted = sorted({value for value in hashes if is_usable_hash(value)})
        found: dict[str, dict] = {}
        for chunk in chunked(wanted, IN_CLAUSE_SIZE):
            contacts = self.db.execute(
                select(Contact).where(Contact.hexacle_hash.in_(chunk)).order_by(Contact.id)
            ).scalars()
            for contact in contacts:
                found.setdefault(contact.hexacle_hash, contact.to_enrichment_dict())
        return found


@dataclass
class MatchStats:
    processed: int = 0
    matched: int = 0
    failed: int = 0


def match_staged_records(
    db: Session,
    job_id: str,
    *,
    store: SqlReferenceStore | None = None,
    batch_size: int = 500,
    should_stop: Callable[[], bool] | None = None,
    on_batch: Callable[[MatchStats], None] | None = None,
) -> MatchStats:
    """Write one EnrichmentResult per hashed staging row of the job.

    Lookups are done with one query per batch. A record that fails to
    persist is logged and skipped; counters only include successes.
    """
    store = store or SqlReferenceStore(db)
    stats = MatchStats()
    last_id = 0

    while True:
        if should_stop and should_stop():
            break

        staged = db.execute(
            select(StagingRecord)
            .where(
                StagingRecord.job_id == job_id,
                StagingRecord.temp_hexacle_hash != "",
                StagingRecord.id > last_id,
            )
            .order_by(StagingRecord.id)
            .limit(batch_size)
            # Hashes were written with a bulk UPDATE, refresh any cached rows
            .execution_options(populate_existing=True)
        ).scalars().all()
        if not staged:
            break
        last_id = staged[-1].id

        matches = store.lookup_many(record.temp_hexacle_hash for record in staged)

        for record in staged:
            enriched = matches.get(record.temp_hexacle_hash)
            try:
                with db.begin_nested():
                    db.add(
                        EnrichmentResult(
                            job_id=job_id,
                            staging_id=record.id,
                            file_name=record.file_name,
                            temp_hexacle_hash=record.temp_hexacle_hash,
                            temps_hexacle_hash=record.temps_hexacle_hash,
                            found_match=enriched is not None,
                            enriched_data=enriched,
                            reference_data=record.raw_data or {},
                        )
                    )
                    db.flush()
            except SQLAlchemyError as e:
                stats.failed += 1
                logger.warning(f"Job {job_id}: could not record match for staging row {record.id}: {e}")
                continue

            stats.processed += 1
            if enriched is not None:
                stats.matched += 1

        db.commit()
        if on_batch:
            on_batch(stats)

    logger.info(
        f"Job {job_id}: matched {stats.matched}/{stats.processed} record(s), {stats.failed} failed"
    )
    return stats
