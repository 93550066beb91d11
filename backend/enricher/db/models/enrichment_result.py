"""Outcome of matching one staged row against the reference store."""

from sqlalchemy import Boolean, Column, Index, Integer, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from enricher.db.base import Base, JSONType


class EnrichmentResult(Base):
    __tablename__ = "enrichment_results"

    id = Column(Integer, primary_key=True)
    job_id = Column(String(36), nullable=False, index=True)
    staging_id = Column(Integer)
    file_name = Column(String(255), nullable=False)
    temp_hexacle_hash = Column(String(255), nullable=False)
    temps_hexacle_hash = Column(String(255))
    found_match = Column(Boolean, nullable=False, default=False)
    enriched_data = Column(JSONType)
    reference_data = Column(JSONType, nullable=False)
    is_blacklisted = Column(Boolean, nullable=False, default=False)
    blacklist_reason = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_enrichment_results_job_match", job_id, found_match),
    )
