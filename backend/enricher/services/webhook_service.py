"""Fan out job lifecycle events to registered webhooks."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from enricher.db.models.enrichment_job import EnrichmentJob
from enricher.db.models.webhook import Webhook
from enricher.services.webhook_dispatch import dispatch_event

logger = logging.getLogger(__name__)

EVENT_COMPLETED = "enrichment.completed"
EVENT_FAILED = "enrichment.failed"
SUPPORTED_EVENTS = (EVENT_COMPLETED, EVENT_FAILED)


def trigger_webhooks(
    event_type: str,
    payload: dict[str, Any],
    db: Session,
    async_dispatch: bool = True,
) -> int:
    """Send an event to every enabled webhook subscribed to it.

    Delivery failures are logged and never propagate to the caller.
    Returns the number of webhooks targeted.
    """
    try:
        webhooks = db.execute(
            select(Webhook).where(Webhook.event == event_type, Webhook.enabled.is_(True))
        ).scalars().all()
    except Exception as e:
        logger.error(f"Could not load webhooks for event {event_type}: {e}", exc_info=True)
        return 0

    if not webhooks:
        logger.debug(f"No enabled webhooks found for event {event_type}")
        return 0

    logger.info(f"Triggering {len(webhooks)} webhook(s) for event {event_type}")
    for webhook in webhooks:
        try:
            if async_dispatch:
                from enricher.workers.tasks.webhook_dispatch_async import dispatch_webhook_async

                dispatch_webhook_async.delay(webhook.id, payload)
            else:
                result = dispatch_event(webhook, payload, db)
                if not result.get("success"):
                    logger.warning(f"Webhook {webhook.id} delivery failed: {result.get('error')}")
        except Exception as e:
            logger.error(
                f"Error triggering webhook {webhook.id} for event {event_type}: {e}",
                exc_info=True,
            )
    return len(webhooks)


def build_job_payload(job: EnrichmentJob, event_type: str) -> dict[str, Any]:
    return {
        "event": event_type,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": {
            "job_id": job.id,
            "status": job.status,
            "file_name": job.file_name,
            "total_records": job.total_records,
            "processed_records": job.processed_records,
            "matched_records": job.matched_records,
            "enriched_records": job.enriched_records,
            "filtered_records": job.filtered_records,
            "final_records": job.final_records,
            "result_download_url": job.result_download_url,
            "error_message": job.error_message,
        },
    }
