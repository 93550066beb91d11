"""SQLAlchemy model for the reference contacts store."""

from sqlalchemy import Column, Date, Integer, String
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from enricher.db.base import Base

# Business fields copied into enriched rows on a match
CONTACT_FIELDS = (
    "civility",
    "first_name",
    "last_name",
    "email",
    "mobile_phone",
    "landline_phone",
    "address",
    "address_complement",
    "postal_code",
    "city",
    "department",
    "date_of_birth",
    "age",
)


class Contact(Base):
    __tablename__ = "contacts"

    id = Column(Integer, primary_key=True)
    hexacle_hash = Column(String(255), index=True)
    civility = Column(String(32))
    first_name = Column(String(255))
    last_name = Column(String(255))
    email = Column(String(255))
    mobile_phone = Column(String(32))
    landline_phone = Column(String(32))
    address = Column(String(255))
    address_complement = Column(String(255))
    postal_code = Column(String(16))
    city = Column(String(255))
    department = Column(String(255))
    date_of_birth = Column(Date)
    age = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def to_enrichment_dict(self) -> dict:
        """Serialize business fields to JSON-safe values."""
        payload = {}
        for field in CONTACT_FIELDS:
            value = getattr(self, field)
            if hasattr(value, "isoformat"):
                value = value.isoformat()
            payload[field] = value
        return payload
