"""Track enrichment job lifecycle and progress counters."""

import uuid

from sqlalchemy import Boolean, Column, Integer, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from enricher.db.base import Base, JSONType


class JobState:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    ACTIVE = frozenset({PENDING, PROCESSING})
    TERMINAL = frozenset({COMPLETED, FAILED})


COUNTER_FIELDS = (
    "total_records",
    "processed_records",
    "matched_records",
    "enriched_records",
    "filtered_records",
    "final_records",
)


class EnrichmentJob(Base):
    __tablename__ = "enrichment_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    status = Column(String(32), nullable=False, default=JobState.PENDING, index=True)
    file_name = Column(String(255), nullable=False)
    file_path = Column(Text, nullable=False)
    source = Column(String(64), nullable=False, default="upload")

    # Ingestion options
    mapping = Column(JSONType)
    delimiter = Column(String(4))
    has_headers = Column(Boolean)

    # Progress counters
    total_records = Column(Integer, nullable=False, default=0)
    processed_records = Column(Integer, nullable=False, default=0)
    matched_records = Column(Integer, nullable=False, default=0)
    enriched_records = Column(Integer, nullable=False, default=0)
    filtered_records = Column(Integer, nullable=False, default=0)
    final_records = Column(Integer, nullable=False, default=0)

    # Result artifact
    result_file_path = Column(Text)
    result_download_url = Column(Text)
    result_size_bytes = Column(Integer)

    error_message = Column(Text)
    cancel_requested = Column(Boolean, nullable=False, default=False)
    meta = Column(JSONType)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def is_terminal(self) -> bool:
        return self.status in JobState.TERMINAL
