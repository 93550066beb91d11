"""Files already picked up by the inbox scanner."""

from sqlalchemy import Column, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from enricher.db.base import Base


class ProcessedFile(Base):
    __tablename__ = "processed_files"

    id = Column(Integer, primary_key=True)
    file_name = Column(String(255), nullable=False)
    file_size = Column(Integer, nullable=False)
    job_id = Column(String(36))
    status = Column(String(32), nullable=False, default="submitted")
    error_message = Column(Text)
    processed_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (UniqueConstraint("file_name", "file_size", name="uq_processed_files_name_size"),)
