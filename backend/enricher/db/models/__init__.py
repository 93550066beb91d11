"""Database models package."""
from enricher.db.models.blacklist_entry import BlacklistEntry
from enricher.db.models.contact import Contact
from enricher.db.models.enrichment_job import EnrichmentJob, JobState
from enricher.db.models.enrichment_result import EnrichmentResult
from enricher.db.models.processed_file import ProcessedFile
from enricher.db.models.staging_record import StagingRecord
from enricher.db.models.webhook import Webhook

__all__ = [
    "BlacklistEntry",
    "Contact",
    "EnrichmentJob",
    "EnrichmentResult",
    "JobState",
    "ProcessedFile",
    "StagingRecord",
    "Webhook",
]
