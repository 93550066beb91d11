"""Job-scoped staging rows awaiting fingerprinting and matching."""

from sqlalchemy import Column, Index, Integer, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from enricher.db.base import Base, JSONType


class StagingRecord(Base):
    __tablename__ = "temp_reference_data"

    id = Column(Integer, primary_key=True)
    job_id = Column(String(36), nullable=False, index=True)
    file_name = Column(String(255), nullable=False)
    temp_hexacle_hash = Column(String(255), nullable=False, default="")
    temps_hexacle_hash = Column(String(255), nullable=False, default="")
    hexacle_original = Column(String(255))
    numero = Column(String(255))
    voie = Column(String(255))
    ville = Column(String(255))
    cod_post = Column(String(255))
    cod_insee = Column(String(255))
    raw_data = Column(JSONType)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_temp_reference_data_job_hash", job_id, temp_hexacle_hash),
    )
