"""
SQLAlchemy database models.
Defines the job_queue table.
"""

from datetime import datetime
from uuid import UUID as PyUUID
from uuid import uuid4

from sqlalchemy import (
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from jobsync.constants import DEFAULT_MAX_ATTEMPTS, TERMINAL_STATUSES, JobStatus
from jobsync.utils import utcnow


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    A unit of deferred work.

    This is the authoritative source of truth for job state.
    All job lifecycle transitions are managed through this table.

    Key constraints:
    - status transitions follow the state machine in JobStatus
    - a job in PROCESSING is owned by exactly one dispatcher, guaranteed
      by the SKIP LOCKED claim rather than by an owner column
    - only terminal rows are ever deleted, by retention cleanup
    """

    __tablename__ = "job_queue"

    id: Mapped[PyUUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
        nullable=False,
    )

    tenant_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )

    type: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )

    payload: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
    )

    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="job_status", create_constraint=True, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=JobStatus.PENDING,
    )

    # Scheduling
    scheduled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    # Retry tracking
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_MAX_ATTEMPTS,
    )
    error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        # Claim scans only ever look at pending rows
        Index(
            "ix_job_queue_pending_scheduled",
            "status",
            "scheduled_at",
            postgresql_where=text("status = 'pending'"),
        ),
        # Stale processing recovery
        Index(
            "ix_job_queue_processing_started",
            "started_at",
            postgresql_where=text("status = 'processing'"),
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def remaining_attempts(self) -> int:
        return max(0, self.max_attempts - self.attempts)

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, type={self.type}, tenant={self.tenant_id}, "
            f"status={self.status}, attempts={self.attempts}/{self.max_attempts})"
        )
