"""Phone blacklist ingestion, lookup and result suppression."""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection, Iterable, Mapping
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from enricher.db.bulk import insert_ignore
from enricher.db.models.blacklist_entry import BlacklistEntry
from enricher.db.models.enrichment_result import EnrichmentResult
from enricher.services.csv_reader import iter_chunks, iter_csv_rows
from enricher.utils.batching import chunked
from enricher.utils.phone import normalize_phone_number, phone_variants

logger = logging.getLogger(__name__)

BLACKLIST_HEADER_KEYWORDS = ("PHONE", "MOBILE", "NUMERO", "TELEPHONE")
PHONE_COLUMNS = ("phone", "mobile", "numero", "telephone")
SUPPRESSED_FIELDS = ("mobile_phone", "landline_phone")
BLACKLIST_REASON = "Phone number {phone} is blacklisted"
IN_CLAUSE_SIZE = 500


@dataclass
class BlacklistImportStats:
    total: int = 0
    inserted: int = 0
    duplicates: int = 0
    invalid: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class BlacklistStore:
    """Database-backed blacklist keyed by trunk-stripped phone numbers."""

    def __init__(self, db: Session):
        self.db = db

    def contains(self, phone: str | None) -> bool:
        normalized = normalize_phone_number(phone)
        if normalized is None:
            return False
        return bool(
            self.db.execute(
                select(BlacklistEntry.id).where(BlacklistEntry.phone_number == normalized).limit(1)
            ).first()
        )

    def __contains__(self, phone: object) -> bool:
        return self.contains(phone if isinstance(phone, str) else None)

    def insert_if_absent(self, phone: str, source_file: str | None = None) -> bool:
        """Add a number unless it is already present. Returns True on insert."""
        normalized = normalize_phone_number(phone)
        if normalized is None:
            return False
        inserted = insert_ignore(
            self.db,
            BlacklistEntry,
            [{"phone_number": normalized, "source_file": source_file}],
            ["phone_number"],
        )
        return inserted > 0

    def matching(self, phones: Iterable[str]) -> set[str]:
        """Return the subset of ``phones`` present in the blacklist."""
        candidates = sorted({phone for phone in phones if phone})
        found: set[str] = set()
        for chunk in chunked(candidates, IN_CLAUSE_SIZE):
            found.update(
                self.db.execute(
                    select(BlacklistEntry.phone_number).where(BlacklistEntry.phone_number.in_(chunk))
                ).scalars()
            )
        return found


def _extract_phone(row: Mapping[str, Any]) -> Any:
    lookup = {key.strip().lower(): value for key, value in row.items() if isinstance(key, str)}
    for column in PHONE_COLUMNS:
        value = lookup.get(column)
        if value:
            return value
    return None


def ingest_blacklist_file(
    db: Session,
    file_path: Path,
    source_file: str,
    *,
    batch_size: int = 1000,
    delimiter: str = ";",
    has_headers: bool | None = None,
    on_batch: Callable[[BlacklistImportStats], None] | None = None,
) -> BlacklistImportStats:
    """Stream a blacklist file into ``mobile_blacklist``.

    Numbers are normalized and de-duplicated for the whole run; numbers
    already stored are skipped by the insert. Each batch is committed.
    """
    stats = BlacklistImportStats()
    seen: set[str] = set()

    rows = iter_csv_rows(
        file_path,
        delimiter=delimiter,
        has_headers=has_headers,
        fallback_headers=("phone",),
        header_keywords=BLACKLIST_HEADER_KEYWORDS,
    )

    for chunk in iter_chunks(rows, batch_size):
        batch: list[dict[str, Any]] = []
        for row in chunk:
            stats.total += 1
            phone = normalize_phone_number(_extract_phone(row))
            if phone is None:
                stats.invalid += 1
                continue
            if phone in seen:
                stats.duplicates += 1
                continue
            seen.add(phone)
            batch.append({"phone_number": phone, "source_file": source_file})

        inserted = insert_ignore(db, BlacklistEntry, batch, ["phone_number"])
        stats.inserted += inserted
        stats.duplicates += len(batch) - inserted
        db.commit()

        if on_batch:
            on_batch(stats)

    logger.info(
        f"Blacklist {source_file}: {stats.inserted} numbers added, "
        f"{stats.duplicates} duplicates, {stats.invalid} invalid (total {stats.total})"
    )
    return stats


def is_suppressed(enriched_data: Mapping[str, Any] | None, blacklist: Collection[str]) -> str | None:
    """Return the blacklisted number found in the contact fields, if any.

    Both the trunk-stripped and ``0``-prefixed forms of the mobile and
    landline numbers are checked.
    """
    if not enriched_data:
        return None
    for field in SUPPRESSED_FIELDS:
        for variant in sorted(phone_variants(enriched_data.get(field))):
            if variant in blacklist:
                return variant
    return None


def apply_blacklist_filter(
    db: Session,
    job_id: str,
    *,
    batch_size: int = 500,
    should_stop: Callable[[], bool] | None = None,
    on_batch: Callable[[int, int], None] | None = None,
) -> int:
    """Flag matched results of a job whose phone numbers are blacklisted.

    Returns the number of rows flagged by this run. Each batch is committed.
    """
    store = BlacklistStore(db)
    flagged_total = 0
    checked = 0
    last_id = 0

    while True:
        if should_stop and should_stop():
            break

        results = db.execute(
            select(EnrichmentResult.id, EnrichmentResult.enriched_data)
            .where(
                EnrichmentResult.job_id == job_id,
                EnrichmentResult.found_match.is_(True),
                EnrichmentResult.is_blacklisted.is_(False),
                EnrichmentResult.id > last_id,
            )
            .order_by(EnrichmentResult.id)
            .limit(batch_size)
        ).all()
        if not results:
            break
        last_id = results[-1].id
        checked += len(results)

        candidates: set[str] = set()
        for row in results:
            for field in SUPPRESSED_FIELDS:
                candidates |= phone_variants((row.enriched_data or {}).get(field))
        blacklisted = store.matching(candidates)

        if blacklisted:
            for row in results:
                phone = is_suppressed(row.enriched_data, blacklisted)
                if phone is None:
                    continue
                db.execute(
                    update(EnrichmentResult)
                    .where(EnrichmentResult.id == row.id)
                    .values(is_blacklisted=True, blacklist_reason=BLACKLIST_REASON.format(phone=phone))
                )
                flagged_total += 1
        db.commit()

        if on_batch:
            on_batch(checked, flagged_total)

    logger.info(f"Job {job_id}: {flagged_total} result(s) flagged as blacklisted")
    return flagged_total


def count_blacklist(db: Session) -> int:
    return db.execute(select(func.count()).select_from(BlacklistEntry)).scalar_one()


def clear_blacklist(db: Session) -> int:
    """Delete every blacklist entry and return how many were removed."""
    deleted = count_blacklist(db)
    db.execute(delete(BlacklistEntry))
    db.commit()
    logger.info(f"Cleared {deleted} blacklist entries")
    return deleted
