"""Job status and operation result payloads."""

from datetime import datetime

from pydantic import BaseModel, Field


class OperationResult(BaseModel):
    success: bool
    message: str
    error: str | None = None
    job_id: str | None = None


class JobStatus(BaseModel):
    id: str
    status: str = Field(..., description="pending|processing|completed|failed")
    file_name: str | None = None
    progress: float | None = Field(None, description="0-1 range for progress bars")
    message: str | None = None
    total_records: int = 0
    processed_records: int = 0
    matched_records: int = 0
    enriched_records: int = 0
    filtered_records: int = 0
    final_records: int = 0
    error_message: str | None = None
    result_download_url: str | None = None
    result_size_bytes: int | None = None
    cancel_requested: bool = False
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    meta: dict | None = None

    model_config = {"from_attributes": True}
