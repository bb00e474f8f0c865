"""Import job status payloads."""

from pydantic import BaseModel, Field


class ImportErrorRead(BaseModel):
    row: int = Field(..., description="1-based source line; 0 marks the cancellation entry")
    message: str


class ImportJobStatus(BaseModel):
    job_id: str
    status: str = Field(..., description="idle|preparing|processing|paused|completed|error")
    mode: str | None = Field(None, description="create|update_by_sku|upsert")
    current: int = 0
    total: int = 0
    percentage: int = Field(0, description="0-100, rounded half up")
    success_count: int = 0
    updated_count: int = 0
    error_count: int = 0
    message: str | None = None
    errors_preview: list[ImportErrorRead] = Field(default_factory=list)
    sequence: int = 0
