from sqlalchemy import select, update

from enricher.db.bulk import persist_batch
from enricher.db.models.staging_record import StagingRecord
from enricher.services.csv_reader import count_rows, detect_headers, iter_csv_rows
from enricher.services import staging
from enricher.services.staging import generate_hashes, load_file_into_staging
from enricher.utils.column_mapping import DEFAULT_MAPPING, parse_mapping


def _staged(db_session, job_id="job-1"):
    db_session.expire_all()
    return db_session.execute(
        select(StagingRecord).where(StagingRecord.job_id == job_id).order_by(StagingRecord.id)
    ).scalars().all()


def test_detect_headers(reference_csv, write_csv):
    headerless = write_csv("plain.csv", ["H1;12;Rue de Paris;Paris;75001;75101"])

    assert detect_headers(reference_csv) is True
    assert detect_headers(headerless) is False


def test_headerless_rows_are_read_positionally(write_csv):
    path = write_csv("plain.csv", ["H1;12;Rue de Paris;Paris;75001;75101", "", "H2;5;Avenue Foch;Lyon;69006;69386"])

    rows = list(iter_csv_rows(path))

    assert len(rows) == 2
    assert rows[0]["VOIE"] == "Rue de Paris"
    assert rows[1]["COD_POST"] == "69006"
    assert count_rows(path) == 2


def test_load_file_into_staging_with_default_mapping(db_session, reference_csv):
    result = load_file_into_staging(
        db_session,
        job_id="job-1",
        file_name="reference.csv",
        file_path=reference_csv,
        mapping=DEFAULT_MAPPING,
        batch_size=2,
    )

    assert result.rows_read == 3
    assert result.staged == 3
    rows = _staged(db_session)
    assert [row.hexacle_original for row in rows] == ["H1", "H2", "H3"]
    assert all(row.temp_hexacle_hash == "" for row in rows)
    assert rows[0].raw_data["VILLE"] == "Paris"


def test_load_file_into_staging_skips_rows_without_mapped_values(db_session, write_csv):
    path = write_csv("custom.csv", ["Rue,Ville,Autre", "Rue Haute,Lille,x", ",,y"])
    mapping = parse_mapping('{"Rue":"voie","Ville":"ville"}')

    result = load_file_into_staging(
        db_session,
        job_id="job-1",
        file_name="custom.csv",
        file_path=path,
        mapping=mapping,
        delimiter=",",
        has_headers=True,
    )

    assert result.staged == 1
    assert result.skipped == 1
    assert _staged(db_session)[0].ville == "Lille"


def test_generate_hashes_is_idempotent(db_session, reference_csv):
    load_file_into_staging(
        db_session,
        job_id="job-1",
        file_name="reference.csv",
        file_path=reference_csv,
        mapping=DEFAULT_MAPPING,
    )

    assert generate_hashes(db_session, "job-1", batch_size=2) == 3
    first = {row.id: row.temp_hexacle_hash for row in _staged(db_session)}
    assert first[min(first)] == "12RUEDEPARISPARIS75001"
    assert all(row.temps_hexacle_hash for row in _staged(db_session))

    assert generate_hashes(db_session, "job-1") == 0
    assert {row.id: row.temp_hexacle_hash for row in _staged(db_session)} == first


def test_generate_hashes_is_scoped_to_the_job(db_session, reference_csv):
    for job_id in ("job-1", "job-2"):
        load_file_into_staging(
            db_session,
            job_id=job_id,
            file_name="reference.csv",
            file_path=reference_csv,
            mapping=DEFAULT_MAPPING,
        )

    generate_hashes(db_session, "job-1")

    assert all(row.temp_hexacle_hash for row in _staged(db_session, "job-1"))
    assert all(row.temp_hexacle_hash == "" for row in _staged(db_session, "job-2"))


def test_generate_hashes_does_not_overwrite_a_hash_written_meanwhile(db_session, reference_csv, monkeypatch):
    load_file_into_staging(
        db_session,
        job_id="job-1",
        file_name="reference.csv",
        file_path=reference_csv,
        mapping=DEFAULT_MAPPING,
    )
    first_id = _staged(db_session)[0].id
    original = staging.compute_hexacle_hash
    written = []

    def hash_after_other_writer(*parts):
        if not written:
            db_session.execute(
                update(StagingRecord).where(StagingRecord.id == first_id).values(temp_hexacle_hash="OTHERWORKER")
            )
            written.append(first_id)
        return original(*parts)

    monkeypatch.setattr(staging, "compute_hexacle_hash", hash_after_other_writer)

    generate_hashes(db_session, "job-1")

    rows = {row.id: row.temp_hexacle_hash for row in _staged(db_session)}
    assert rows[first_id] == "OTHERWORKER"
    assert all(value and value != "OTHERWORKER" for row_id, value in rows.items() if row_id != first_id)


def test_persist_batch_keeps_valid_rows_when_one_fails(db_session):
    records = [
        StagingRecord(job_id="job-1", file_name="a.csv", voie="Rue A"),
        StagingRecord(job_id="job-1", file_name=None, voie="Rue B"),
        StagingRecord(job_id="job-1", file_name="a.csv", voie="Rue C"),
    ]

    result = persist_batch(db_session, records)
    db_session.commit()

    assert result.inserted == 2
    assert result.error_count == 1
    assert len(result.errors) == 1
    assert "row 2" in result.errors[0]
    assert [row.voie for row in _staged(db_session)] == ["Rue A", "Rue C"]
