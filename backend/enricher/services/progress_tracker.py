"""Shared helpers for publishing job progress snapshots to Redis."""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Any

from redis.exceptions import RedisError

from enricher.core.config import get_settings
from enricher.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)

settings = get_settings()
redis_client = create_redis_client(settings.redis_url, decode_responses=True)
PROGRESS_PREFIX = "jobs:progress:"
PROGRESS_TTL = timedelta(hours=24)


def _key(job_id: str) -> str:
    return f"{PROGRESS_PREFIX}{job_id}"


def publish_progress(
    job_id: str,
    progress: float,
    message: str | None = None,
    *,
    status: str | None = None,
    meta: dict[str, Any] | None = None,
) -> None:
    """Persist the latest snapshot so status readers see live stage progress."""
    payload = {
        "job_id": job_id,
        "progress": max(0.0, min(progress, 1.0)),
        "message": message,
        "status": status,
        "meta": meta or {},
    }
    try:
        redis_client.set(
            _key(job_id),
            json.dumps(payload, default=str),
            ex=int(PROGRESS_TTL.total_seconds()),
        )
    except RedisError as e:
        # Redis availability should not break a job.
        logger.debug(f"Could not publish progress for job {job_id}: {e}")


def fetch_progress(job_id: str) -> dict[str, Any]:
    """Return the latest snapshot, or an empty dict when none is available."""
    try:
        raw = redis_client.get(_key(job_id))
    except RedisError:
        return {}
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return {}
