"""Celery task running the enrichment pipeline for one job."""

from __future__ import annotations

import logging

from enricher.services.pipeline import PipelineConfig, run_enrichment_job
from enricher.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="enricher.workers.tasks.process_enrichment_job")
def process_enrichment_job_task(self, job_id: str) -> dict:
    """Run every stage of a job; failures are recorded on the job row."""
    logger.info(f"Starting enrichment job {job_id} (task {self.request.id})")
    status = run_enrichment_job(job_id, PipelineConfig.from_settings())
    if status is None:
        return {"job_id": job_id, "status": "missing"}
    return status.model_dump(mode="json")
