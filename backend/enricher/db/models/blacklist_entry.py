"""Opted-out phone numbers, stored trunk-stripped."""

from sqlalchemy import Column, Integer, String
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from enricher.db.base import Base


class BlacklistEntry(Base):
    __tablename__ = "mobile_blacklist"

    id = Column(Integer, primary_key=True)
    phone_number = Column(String(32), nullable=False, unique=True)
    source_file = Column(String(255))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
