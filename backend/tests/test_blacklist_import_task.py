from enricher.db.session import SessionLocal
from enricher.services.blacklist import count_blacklist
from enricher.services.progress_tracker import fetch_progress
from enricher.workers.tasks.blacklist_import import import_blacklist


def test_import_blacklist_outside_a_job(write_csv):
    path = write_csv("blacklist_mobile.csv", ["mobile", "06 12 34 56 78", "0622222222", "0622222222"])

    result = import_blacklist(str(path))

    assert result["success"] is True
    assert result["inserted"] == 2
    assert result["duplicates"] == 1
    with SessionLocal() as session:
        assert count_blacklist(session) == 2
    assert fetch_progress("blacklist:blacklist_mobile.csv")["status"] == "completed"


def test_import_blacklist_missing_file(tmp_path):
    result = import_blacklist(str(tmp_path / "missing.csv"))

    assert result["success"] is False
