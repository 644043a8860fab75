"""
API request and response type definitions.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from jobrelay.clock import as_utc
from jobrelay.constants import DEFAULT_MAX_RETRIES, JobState, LogLevel


class CreateJobRequest(BaseModel):
    """Request body for queueing a new job."""

    job_type: str = Field(..., min_length=1, description="Job type, also the worker endpoint name")
    payload: Any = Field(default=None, description="Opaque payload forwarded to the worker")
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=1, le=20, description="Maximum attempts")


class CreateJobResponse(BaseModel):
    """Response body after queueing a job."""

    id: UUID
    state: JobState
    message: str = "Job queued successfully"


class CancelJobResponse(BaseModel):
    """Response body after a cancel request."""

    id: UUID
    state: JobState
    canceled: bool


class JobResponse(BaseModel):
    """Full job details response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: str
    job_type: str
    payload: Any
    state: JobState
    retries: int
    max_retries: int
    created_at: datetime
    updated_at: datetime
    last_run_at: datetime | None
    next_run_at: datetime | None
    locked_at: datetime | None

    @field_validator("created_at", "updated_at", "last_run_at", "next_run_at", "locked_at")
    @classmethod
    def normalize_timestamps(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


class JobListResponse(BaseModel):
    """Paginated list of jobs."""

    jobs: list[JobResponse]
    total: int
    page: int
    page_size: int
    has_next: bool


class JobLogResponse(BaseModel):
    """One audit trail entry."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_id: UUID | None
    message: str
    level: LogLevel
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, value: datetime) -> datetime:
        return as_utc(value)


class JobConfigRequest(BaseModel):
    """Request body for configuring a job type."""

    enabled: bool
    concurrency_limit: int = Field(default=1, gt=0)


class JobConfigResponse(BaseModel):
    """Stored configuration of a job type."""

    model_config = ConfigDict(from_attributes=True)

    job_type: str
    enabled: bool
    concurrency_limit: int


class AuthRequest(BaseModel):
    """Authentication request."""

    api_key: str = Field(..., description="API key for authentication")
    owner_id: str = Field(..., description="Owner identifier")


class TokenResponse(BaseModel):
    """JWT token response."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: str | None = None
