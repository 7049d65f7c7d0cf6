"""
Job-related type definitions for internal use.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from jobsync.constants import DEFAULT_MAX_ATTEMPTS, MAX_ATTEMPTS_LIMIT


class EnqueueJobOptions(BaseModel):
    """
    A job to be inserted into the queue.
    Used for batch enqueueing.
    """

    type: str = Field(..., min_length=1, max_length=64)
    payload: dict[str, Any] = Field(default_factory=dict)
    tenant_id: str | None = None
    scheduled_at: datetime | None = None
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1, le=MAX_ATTEMPTS_LIMIT)


class JobResult(BaseModel):
    """
    Result of job execution.
    Returned by job handlers after processing.

    Setting retry to False on a failure dead-letters the job immediately,
    regardless of the attempts left.
    """

    success: bool
    output: dict[str, Any] | None = None
    error: str | None = None
    retry: bool = True
    duration_ms: float | None = None


class JobStats(BaseModel):
    """Count of jobs per status."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.processing + self.completed + self.failed


@dataclass
class JobContext:
    """
    Context passed to job handlers during execution.
    Contains job metadata and utilities for the handler.
    """

    job_id: UUID
    job_type: str
    tenant_id: str | None
    attempt: int
    max_attempts: int
    payload: dict[str, Any]
    worker_id: str
    started_at: datetime | None = None

    @property
    def is_last_attempt(self) -> bool:
        """Check if this is the last retry attempt."""
        return self.attempt >= self.max_attempts

    @property
    def remaining_attempts(self) -> int:
        """Get remaining retry attempts."""
        return max(0, self.max_attempts - self.attempt)


@dataclass
class DispatchReport:
    """Counts from a single claim-and-dispatch pass."""

    claimed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
