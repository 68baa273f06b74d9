"""
API request and response type definitions.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from jobqueue.constants import DEFAULT_PRIORITY, PAYLOAD_DATA_KEY
from jobqueue.types.job import JobRecord


class EnqueueJobRequest(BaseModel):
    """Request body for enqueuing a new job."""

    kind: str = Field(..., min_length=1, description="Registered payload kind")
    data: dict[str, Any] = Field(default_factory=dict, description="Payload fields")
    priority: int = Field(default=DEFAULT_PRIORITY, description="Larger runs first")
    run_at: datetime | None = Field(
        default=None, description="Earliest execution time (defaults to now)"
    )


class JobResponse(BaseModel):
    """Full job details response."""

    id: int
    kind: str
    name: str
    data: dict[str, Any]
    priority: int
    attempts: int
    last_error: str | None
    run_at: datetime
    locked_at: datetime | None
    locked_by: str | None
    failed_at: datetime | None
    created_at: datetime | None
    updated_at: datetime | None

    @classmethod
    def from_record(cls, job: JobRecord) -> "JobResponse":
        return cls(
            id=job.id,
            kind=job.kind,
            name=job.name,
            data=job.handler.get(PAYLOAD_DATA_KEY) or {},
            priority=job.priority,
            attempts=job.attempts,
            last_error=job.last_error,
            run_at=job.run_at,
            locked_at=job.locked_at,
            locked_by=job.locked_by,
            failed_at=job.failed_at,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class JobListResponse(BaseModel):
    """Paginated list of jobs."""

    jobs: list[JobResponse]
    total: int
    page: int
    page_size: int
    has_next: bool


class RetryJobRequest(BaseModel):
    """Request body for retrying a permanently failed job."""

    reset_attempts: bool = Field(
        default=True, description="Reset attempt counter to 0"
    )


class JobStatsResponse(BaseModel):
    """Job counts by scheduling state."""

    total: int
    ready: int
    scheduled: int
    locked: int
    failed: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    timestamp: datetime
