from datetime import date

from sqlalchemy import select

from enricher.db.models.enrichment_result import EnrichmentResult
from enricher.db.models.staging_record import StagingRecord
from enricher.services.reference_matcher import SqlReferenceStore, match_staged_records
from enricher.services.staging import generate_hashes, load_file_into_staging
from enricher.utils.column_mapping import DEFAULT_MAPPING

PARIS_HASH = "12RUEDEPARISPARIS75001"


def test_lookup_returns_contact_fields(db_session, add_contact):
    add_contact(
        "12 Rue de Paris",
        "Paris",
        "75001",
        first_name="Marie",
        mobile_phone="0612345678",
        date_of_birth=date(1980, 3, 5),
    )
    store = SqlReferenceStore(db_session)

    found = store.lookup(PARIS_HASH)

    assert found["first_name"] == "Marie"
    assert found["date_of_birth"] == "1980-03-05"
    assert "id" not in found
    assert store.lookup("UNKNOWN") is None


def test_empty_hash_never_matches(db_session, add_contact):
    add_contact("", "", "")
    store = SqlReferenceStore(db_session)

    assert store.lookup("") is None
    assert store.lookup_many(["", ""]) == {}


def test_lookup_many_prefers_lowest_id(db_session, add_contact):
    add_contact("12 Rue de Paris", "Paris", "75001", first_name="First")
    add_contact("12 Rue de Paris", "Paris", "75001", first_name="Second")
    store = SqlReferenceStore(db_session)

    found = store.lookup_many([PARIS_HASH, "NOPE"])

    assert list(found) == [PARIS_HASH]
    assert found[PARIS_HASH]["first_name"] == "First"


def test_match_writes_one_result_per_record(db_session, add_contact, reference_csv):
    add_contact("12 Rue de Paris", "Paris", "75001", first_name="Marie", last_name="Durand")
    load_file_into_staging(
        db_session,
        job_id="job-1",
        file_name="reference.csv",
        file_path=reference_csv,
        mapping=DEFAULT_MAPPING,
    )
    generate_hashes(db_session, "job-1")

    stats = match_staged_records(db_session, "job-1", batch_size=2)

    assert stats.processed == 3
    assert stats.matched == 1
    results = db_session.execute(
        select(EnrichmentResult).where(EnrichmentResult.job_id == "job-1").order_by(EnrichmentResult.id)
    ).scalars().all()
    assert len(results) == 3
    matched = [result for result in results if result.found_match]
    assert len(matched) == 1
    assert matched[0].temp_hexacle_hash == PARIS_HASH
    assert matched[0].enriched_data["last_name"] == "Durand"
    assert matched[0].reference_data["HEXACLE"] == "H1"
    for result in results:
        assert (result.enriched_data is not None) == result.found_match


def test_match_ignores_unhashed_rows(db_session, add_contact):
    db_session.add(StagingRecord(job_id="job-1", file_name="a.csv", temp_hexacle_hash=""))
    db_session.commit()

    stats = match_staged_records(db_session, "job-1")

    assert stats.processed == 0
