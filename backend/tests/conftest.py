"""Shared fixtures: throwaway SQLite database, fake Redis and sample files."""
import os
import sys
import tempfile
from pathlib import Path

import pytest

BACKEND = Path(__file__).resolve().parents[1]
if str(BACKEND) not in sys.path:
    sys.path.insert(0, str(BACKEND))

# Settings are read once at import time, so point them at a scratch area first
_SCRATCH = Path(tempfile.mkdtemp(prefix="enricher-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_SCRATCH / 'test.db'}"
os.environ["UPLOADS_DIR"] = str(_SCRATCH / "uploads")
os.environ["RESULTS_DIR"] = str(_SCRATCH / "results")
os.environ["INBOX_DIR"] = str(_SCRATCH / "inbox")
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["ASYNC_WEBHOOKS"] = "false"

import fakeredis  # noqa: E402

import enricher.db.models  # noqa: E402,F401
from enricher.db.base import Base  # noqa: E402
from enricher.db.models.contact import Contact  # noqa: E402
from enricher.db.session import SessionLocal, engine  # noqa: E402
from enricher.services import progress_tracker  # noqa: E402

REFERENCE_HEADER = "HEXACLE;NUMERO;VOIE;VILLE;COD_POST;COD_INSEE"


@pytest.fixture(autouse=True)
def database():
    """Fresh schema for every test."""
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture
def db_session():
    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch: pytest.MonkeyPatch):
    client = fakeredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr(progress_tracker, "redis_client", client)
    return client


@pytest.fixture
def add_contact(db_session):
    """Insert a reference contact whose fingerprint is derived from its address."""
    from enricher.utils.hexacle import compute_hexacle_hash

    def _add(address: str, city: str, postal_code: str, **fields) -> Contact:
        contact = Contact(
            address=address,
            city=city,
            postal_code=postal_code,
            hexacle_hash=compute_hexacle_hash("", address, city, postal_code),
            **fields,
        )
        db_session.add(contact)
        db_session.commit()
        return contact

    return _add


@pytest.fixture
def write_csv(tmp_path: Path):
    def _write(name: str, lines: list[str]) -> Path:
        path = tmp_path / name
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write


@pytest.fixture
def reference_csv(write_csv):
    return write_csv(
        "reference.csv",
        [
            REFERENCE_HEADER,
            "H1;12;Rue de Paris;Paris;75001;75101",
            "H2;5;Avenue Foch;Lyon;69006;69386",
            "H3;8;Rue Nationale;Lille;59000;59350",
        ],
    )
