"""
API request and response type definitions.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from jobsync.constants import JobStatus, JobType
from jobsync.types.sync import SyncAction


class CreateJobRequest(BaseModel):
    """Request body for enqueueing a job."""

    type: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="Job type tag",
        examples=[JobType.SEND_EMAIL, JobType.GENERATE_REPORT],
    )
    payload: dict[str, Any] = Field(default_factory=dict, description="Job payload data")
    max_attempts: int | None = Field(
        default=None, ge=1, le=10, description="Maximum attempts, defaults to the server setting"
    )
    scheduled_at: datetime | None = Field(
        default=None, description="Schedule job for future execution"
    )


class CreateJobResponse(BaseModel):
    """Response body after enqueueing a job."""

    id: UUID
    status: JobStatus = JobStatus.PENDING
    message: str = "Job enqueued"


class BatchCreateJobsRequest(BaseModel):
    """Request body for enqueueing several jobs at once."""

    jobs: list[CreateJobRequest] = Field(..., min_length=1, max_length=100)


class BatchCreateJobsResponse(BaseModel):
    """Response body after a batch enqueue."""

    ids: list[UUID]
    count: int


class JobResponse(BaseModel):
    """Full job details response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str | None
    type: str
    payload: dict[str, Any]
    status: JobStatus
    scheduled_at: datetime
    attempts: int
    max_attempts: int
    error: str | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None


class JobListResponse(BaseModel):
    """Paginated list of jobs."""

    jobs: list[JobResponse]
    total: int
    page: int
    page_size: int
    has_next: bool


class JobActionResponse(BaseModel):
    """Response body after cancelling or retrying a job."""

    id: UUID
    status: JobStatus
    message: str


class JobStatsResponse(BaseModel):
    """Job counts by status for a tenant."""

    pending: int
    processing: int
    completed: int
    failed: int
    total: int
    queue_depth: int


class ProcessJobsResponse(BaseModel):
    """Outcome of a cron-triggered dispatcher pass."""

    claimed: int
    completed: int
    retried: int
    failed: int


class SyncActionsResponse(BaseModel):
    """
    Actions a reconnecting client missed.

    When complete is False the client must reload its full state.
    """

    actions: list[SyncAction]
    complete: bool
    watermark: int


class AuthRequest(BaseModel):
    """Authentication request."""

    api_key: str = Field(..., description="API key for authentication")
    tenant_id: str = Field(..., description="Tenant identifier")
    user_id: str | None = Field(default=None, description="Acting user")


class TokenResponse(BaseModel):
    """JWT token response."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    tenant_id: str
    user_id: str | None = None


class IdentityResponse(BaseModel):
    """Identity a token is bound to."""

    tenant_id: str
    user_id: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    sync_log: str
    timestamp: datetime
