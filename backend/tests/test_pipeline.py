import zipfile

import pytest

from enricher.db.models.enrichment_job import EnrichmentJob, JobState
from enricher.db.models.staging_record import StagingRecord
from enricher.db.models.webhook import Webhook
from enricher.db.session import SessionLocal
from enricher.services import webhook_service
from enricher.services.job_service import cancel_job, create_job, get_job_status, submit_enrichment_job
from enricher.services.pipeline import EnrichmentPipeline, PipelineConfig
from enricher.storage.local_storage import stage_local_file


@pytest.fixture
def config(tmp_path):
    return PipelineConfig(
        staging_batch_size=2,
        match_batch_size=2,
        blacklist_batch_size=2,
        results_dir=tmp_path / "results",
        download_base_url="/download/enrichment_results",
        async_webhooks=False,
    )


@pytest.fixture
def delivered(monkeypatch):
    events = []
    monkeypatch.setattr(
        webhook_service,
        "dispatch_event",
        lambda webhook, payload, db=None: events.append(payload) or {"success": True},
    )
    return events


def _submit(db_session, path, **kwargs) -> str:
    job = create_job(db_session, file_path=path, file_name=path.name, **kwargs)
    db_session.commit()
    return job.id


def _reload(db_session, job_id) -> EnrichmentJob:
    db_session.expire_all()
    return db_session.get(EnrichmentJob, job_id)


def test_end_to_end_match_and_no_match(db_session, add_contact, reference_csv, config, delivered):
    add_contact("12 Rue de Paris", "Paris", "75001", first_name="Marie", mobile_phone="0611111111")
    db_session.add(Webhook(url="https://hooks.example.com/done", event="enrichment.completed"))
    db_session.commit()
    job_id = _submit(db_session, reference_csv)

    status = EnrichmentPipeline(config, session_factory=SessionLocal).run(job_id)

    assert status.status == JobState.COMPLETED
    job = _reload(db_session, job_id)
    assert job.total_records == 3
    assert job.processed_records == 3
    assert job.matched_records == 1
    assert job.enriched_records == 1
    assert job.filtered_records == 0
    assert job.final_records == 1
    assert job.completed_at is not None
    assert job.result_download_url == f"/download/enrichment_results/{job_id}/reference_enriched.zip"
    assert job.result_size_bytes > 0
    assert db_session.query(StagingRecord).filter_by(job_id=job_id).count() == 0

    with zipfile.ZipFile(job.result_file_path) as archive:
        content = archive.read("reference_enriched.csv").decode("utf-8").splitlines()
    assert len(content) == 2
    assert "Marie" in content[1]

    assert [event["event"] for event in delivered] == ["enrichment.completed"]
    assert delivered[0]["data"]["job_id"] == job_id


def test_archive_with_blacklist_file(db_session, add_contact, write_csv, tmp_path, config):
    add_contact("12 Rue de Paris", "Paris", "75001", first_name="Marie", mobile_phone="0612345678")
    add_contact("5 Avenue Foch", "Lyon", "69006", first_name="Paul", mobile_phone="0622222222")
    reference = write_csv(
        "clients.csv",
        [
            "H1;12;Rue de Paris;Paris;75001;75101",
            "H2;5;Avenue Foch;Lyon;69006;69386",
        ],
    )
    blacklist = write_csv("blacklist_mobile.csv", ["+33 6 12 34 56 78"])
    upload = tmp_path / "batch.zip"
    with zipfile.ZipFile(upload, "w") as archive:
        archive.write(reference, arcname="data/clients.csv")
        archive.write(blacklist, arcname="blacklist_mobile.csv")
        archive.writestr("readme.txt", "ignored")
    job_id = _submit(db_session, upload)

    EnrichmentPipeline(config).run(job_id)

    job = _reload(db_session, job_id)
    assert job.status == JobState.COMPLETED, job.error_message
    assert job.matched_records == 2
    assert job.filtered_records == 1
    assert job.final_records == 1
    assert job.meta["blacklist_files"] == ["blacklist_mobile.csv"]
    assert job.meta["files"] == {"clients_enriched.csv": 1}
    with zipfile.ZipFile(job.result_file_path) as archive:
        content = archive.read("clients_enriched.csv").decode("utf-8")
    assert "Paul" in content
    assert "Marie" not in content
    assert not (tmp_path / "batch_extracted").exists()


def test_custom_mapping_with_comma_delimiter(db_session, add_contact, write_csv, config):
    add_contact("12 Rue de Paris", "Paris", "75001", first_name="Marie")
    path = write_csv("custom.csv", ["num,street,town,zip", "12,Rue de Paris,Paris,75001"])
    job_id = _submit(
        db_session,
        path,
        mapping={"num": "numero", "street": "voie", "town": "ville", "zip": "cod_post"},
        delimiter=",",
    )

    EnrichmentPipeline(config).run(job_id)

    job = _reload(db_session, job_id)
    assert job.status == JobState.COMPLETED, job.error_message
    assert job.matched_records == 1


def test_missing_input_fails_job(db_session, tmp_path, config, delivered):
    db_session.add(Webhook(url="https://hooks.example.com/failed", event="enrichment.failed"))
    job = EnrichmentJob(file_name="gone.csv", file_path=str(tmp_path / "gone.csv"))
    db_session.add(job)
    db_session.commit()

    status = EnrichmentPipeline(config).run(job.id)

    assert status.status == JobState.FAILED
    assert "not found" in status.error_message
    assert [event["event"] for event in delivered] == ["enrichment.failed"]


def test_failure_keeps_committed_counters(db_session, reference_csv, config, monkeypatch):
    from enricher.services import pipeline

    def explode(*args, **kwargs):
        raise RuntimeError("reference store unavailable")

    monkeypatch.setattr(pipeline, "match_staged_records", explode)
    job_id = _submit(db_session, reference_csv)

    EnrichmentPipeline(config).run(job_id)

    job = _reload(db_session, job_id)
    assert job.status == JobState.FAILED
    assert job.error_message == "reference store unavailable"
    assert job.total_records == 3
    status = get_job_status(db_session, job_id)
    assert status.total_records == 3


def test_cancellation_is_honoured_at_stage_boundary(db_session, reference_csv, config):
    job_id = _submit(db_session, reference_csv)
    job = db_session.get(EnrichmentJob, job_id)
    job.cancel_requested = True
    db_session.commit()

    EnrichmentPipeline(config).run(job_id)

    job = _reload(db_session, job_id)
    assert job.status == JobState.FAILED
    assert job.error_message == "Cancelled by request"
    assert job.result_download_url is None


def test_only_pending_jobs_are_started(db_session, reference_csv, config):
    job_id = _submit(db_session, reference_csv)
    job = db_session.get(EnrichmentJob, job_id)
    job.status = JobState.COMPLETED
    db_session.commit()

    status = EnrichmentPipeline(config).run(job_id)

    assert status.status == JobState.COMPLETED
    assert _reload(db_session, job_id).total_records == 0


def test_unknown_job_returns_none(config):
    assert EnrichmentPipeline(config).run("missing") is None


def test_config_snapshot_from_settings():
    from enricher.core.config import get_settings

    settings = get_settings()
    config = PipelineConfig.from_settings(settings)

    assert config.default_delimiter == ";"
    assert config.match_batch_size == settings.match_batch_size
    assert str(config.results_dir) == settings.results_dir
    assert config.async_webhooks is False


def _submit_staged(db_session, source, file_name):
    staged = stage_local_file(source, file_name)
    result = submit_enrichment_job(db_session, staged, file_name=file_name, enqueue=False)
    assert result.success, result.error
    return result.job_id, staged


def test_staged_upload_keeps_original_name_and_is_removed(db_session, add_contact, reference_csv, config):
    add_contact("12 Rue de Paris", "Paris", "75001", first_name="Marie")
    job_id, staged = _submit_staged(db_session, reference_csv, "clients.csv")

    EnrichmentPipeline(config).run(job_id)

    job = _reload(db_session, job_id)
    assert job.status == JobState.COMPLETED, job.error_message
    assert job.meta["reference_files"] == ["clients.csv"]
    assert job.result_download_url.endswith(f"/{job_id}/clients_enriched.zip")
    with zipfile.ZipFile(job.result_file_path) as archive:
        assert "clients_enriched.csv" in archive.namelist()
    assert not staged.exists()
    assert reference_csv.exists()


def test_completed_status_reports_stored_packaging_warning(db_session, add_contact, reference_csv, config, monkeypatch):
    from enricher.services import archive_packager

    def broken_disk(db, job_id, file_name, target):
        raise OSError("disk full")

    monkeypatch.setattr(archive_packager, "write_group_csv", broken_disk)
    add_contact("12 Rue de Paris", "Paris", "75001", first_name="Marie")
    job_id = _submit(db_session, reference_csv)

    EnrichmentPipeline(config).run(job_id)

    status = get_job_status(db_session, job_id)
    assert status.status == JobState.COMPLETED
    assert "reference.csv" in status.meta["warning"]
    assert status.meta["files"] == {}
    assert status.meta["staging"]["staged"] == 3


def test_cancelling_pending_job_removes_staged_upload(db_session, reference_csv):
    job_id, staged = _submit_staged(db_session, reference_csv, "clients.csv")

    assert cancel_job(db_session, job_id).success

    assert not staged.exists()
    assert _reload(db_session, job_id).status == JobState.FAILED
