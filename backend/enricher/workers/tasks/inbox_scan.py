"""Scheduled scan of the inbox directory."""

from __future__ import annotations

import logging
from pathlib import Path

from enricher.core.config import get_settings
from enricher.db.session import get_db
from enricher.services.inbox_scanner import scan_inbox
from enricher.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="enricher.workers.tasks.scan_inbox")
def scan_inbox_task(self) -> dict:
    settings = get_settings()
    try:
        with get_db() as session:
            summary = scan_inbox(session, Path(settings.inbox_dir), settings.inbox_patterns)
    except Exception as exc:
        logger.error(f"Inbox scan failed: {exc}", exc_info=True)
        raise
    return summary.as_dict()
