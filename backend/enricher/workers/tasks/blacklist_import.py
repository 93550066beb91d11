"""Celery task importing a standalone blacklist file."""

from __future__ import annotations

import logging
from pathlib import Path

from enricher.core.config import get_settings
from enricher.db.session import get_fresh_session
from enricher.services.blacklist import ingest_blacklist_file
from enricher.services.progress_tracker import publish_progress
from enricher.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


def import_blacklist(file_path: str, file_name: str | None = None) -> dict:
    """Ingest a blacklist file outside of any enrichment job."""
    settings = get_settings()
    path = Path(file_path)
    file_name = file_name or path.name
    if not path.exists():
        return {"success": False, "message": f"File not found: {path}"}

    session = get_fresh_session()
    progress_key = f"blacklist:{file_name}"
    try:
        stats = ingest_blacklist_file(
            session,
            path,
            file_name,
            batch_size=settings.blacklist_batch_size,
            delimiter=settings.default_delimiter,
            on_batch=lambda current: publish_progress(
                progress_key,
                0.0,
                f"Read {current.total} numbers",
                status="processing",
                meta=current.as_dict(),
            ),
        )
    except Exception as exc:
        session.rollback()
        logger.error(f"Blacklist import of {file_name} failed: {exc}", exc_info=True)
        publish_progress(progress_key, 1.0, "Blacklist import failed", status="failed", meta={"error": str(exc)})
        return {"success": False, "message": str(exc)}
    finally:
        session.close()

    publish_progress(progress_key, 1.0, "Blacklist import complete", status="completed", meta=stats.as_dict())
    return {
        "success": True,
        "message": f"{stats.inserted} numbers added, {stats.duplicates} duplicates skipped",
        **stats.as_dict(),
    }


@celery_app.task(bind=True, name="enricher.workers.tasks.import_blacklist")
def import_blacklist_task(self, file_path: str, file_name: str | None = None) -> dict:
    return import_blacklist(file_path, file_name)
