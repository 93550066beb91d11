"""Reference contacts import payloads."""

from pydantic import BaseModel, Field, field_validator

from enricher.utils.value_conversion import SUPPORTED_TYPES


class ContactColumnMapping(BaseModel):
    csv_header: str
    db_column: str
    data_type: str = Field("string", description="string|integer|boolean|date|datetime")

    @field_validator("data_type")
    @classmethod
    def check_data_type(cls, v: str) -> str:
        value = v.strip().lower()
        if value not in SUPPORTED_TYPES:
            raise ValueError(f"Unsupported data type: {v}")
        return value


class ContactImportResult(BaseModel):
    success: bool
    total_rows: int = 0
    inserted: int = 0
    errors: list[str] = Field(default_factory=list)
    message: str | None = None
