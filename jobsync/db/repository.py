"""
Job repository for database operations.
Implements the core data access patterns for the job queue.
"""

import logging
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, delete, func, insert, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobsync.config import Settings, get_settings
from jobsync.constants import (
    CANCELLED_ERROR,
    DEFAULT_CLAIM_LIMIT,
    DEFAULT_MAX_ATTEMPTS,
    STALE_JOB_ERROR,
    TERMINAL_STATUSES,
    JobStatus,
)
from jobsync.db.connection import get_session_context
from jobsync.db.models import Job
from jobsync.retry import decide_failure
from jobsync.types.job import EnqueueJobOptions, JobStats
from jobsync.utils import utcnow

logger = logging.getLogger(__name__)


# The claim is a single statement: rows locked by a concurrent claimant are
# skipped instead of waited on, so any number of dispatchers can poll at once.
CLAIM_JOBS_SQL = text("""
    UPDATE job_queue
    SET
        status = :processing_status,
        started_at = :now,
        attempts = attempts + 1
    WHERE id IN (
        SELECT id FROM job_queue
        WHERE status = :pending_status
        AND scheduled_at <= :now
        ORDER BY scheduled_at ASC
        LIMIT :limit
        FOR UPDATE SKIP LOCKED
    )
    RETURNING *
""")


class JobRepository:
    """
    Repository for job database operations.

    Implements atomic operations for:
    - Single and batch enqueueing
    - Claiming with FOR UPDATE SKIP LOCKED
    - Completion, failure with retry/backoff, cancellation and manual retry
    - Stats, stale job recovery and retention cleanup
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
            settings: Optional settings override.
        """
        self._session = session
        self._settings = settings or get_settings()

    @property
    def session(self) -> AsyncSession:
        return self._session

    async def enqueue_job(
        self,
        type: str,
        payload: dict[str, Any],
        tenant_id: str | None = None,
        scheduled_at: datetime | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> UUID:
        """
        Insert a new pending job.

        Args:
            type: The job type, used to route to a handler.
            payload: Opaque handler input.
            tenant_id: Optional tenant identifier.
            scheduled_at: Earliest execution time. Defaults to now.
            max_attempts: Attempt budget before the job is dead-lettered.

        Returns:
            The new job id.
        """
        ids = await self.enqueue_jobs([
            EnqueueJobOptions(
                type=type,
                payload=payload,
                tenant_id=tenant_id,
                scheduled_at=scheduled_at,
                max_attempts=max_attempts,
            )
        ])
        return ids[0]

    async def enqueue_jobs(self, jobs: Sequence[EnqueueJobOptions]) -> list[UUID]:
        """
        Insert several pending jobs in one multi-row INSERT.

        Either every row is inserted or none is.

        Args:
            jobs: The jobs to insert.

        Returns:
            The new job ids, in input order.
        """
        if not jobs:
            return []

        now = utcnow()
        rows = [
            {
                "tenant_id": job.tenant_id,
                "type": job.type,
                "payload": job.payload,
                "status": JobStatus.PENDING,
                "scheduled_at": job.scheduled_at or now,
                "attempts": 0,
                "max_attempts": job.max_attempts,
                "created_at": now,
            }
            for job in jobs
        ]

        stmt = insert(Job).returning(Job.id, sort_by_parameter_order=True)
        result = await self._session.execute(stmt, rows)
        ids = list(result.scalars().all())

        logger.info(
            f"Enqueued {len(ids)} jobs",
            extra={"job_count": len(ids), "job_types": sorted({j.type for j in jobs})}
        )
        return ids

    async def get_job(self, job_id: UUID, for_update: bool = False) -> Job | None:
        """
        Get a job by ID.

        Args:
            job_id: The job UUID.
            for_update: Lock the row until the transaction ends.

        Returns:
            The Job or None if not found.
        """
        stmt = (
            select(Job)
            .where(Job.id == job_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_jobs(
        self,
        tenant_id: str,
        status: JobStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[Job], int]:
        """
        List jobs for a tenant with optional filtering.

        Args:
            tenant_id: The tenant identifier.
            status: Optional status filter.
            limit: Maximum number of jobs to return.
            offset: Offset for pagination.

        Returns:
            Tuple of (jobs, total_count).
        """
        base_filter = Job.tenant_id == tenant_id
        if status is not None:
            base_filter = and_(base_filter, Job.status == status)

        count_stmt = select(func.count()).select_from(Job).where(base_filter)
        count_result = await self._session.execute(count_stmt)
        total = count_result.scalar() or 0

        stmt = (
            select(Job)
            .where(base_filter)
            .order_by(Job.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        jobs = result.scalars().all()

        return jobs, total

    async def fetch_jobs_for_processing(self, limit: int = DEFAULT_CLAIM_LIMIT) -> list[Job]:
        """
        Claim up to `limit` due pending jobs using FOR UPDATE SKIP LOCKED.

        This is the critical path for job distribution. Selected rows move to
        PROCESSING with started_at set and attempts incremented, in the same
        statement that selects them.

        Args:
            limit: Maximum number of jobs to claim.

        Returns:
            The claimed jobs, oldest scheduled first.
        """
        if limit <= 0:
            return []

        now = utcnow()
        result = await self._session.execute(
            CLAIM_JOBS_SQL,
            {
                "processing_status": JobStatus.PROCESSING.value,
                "pending_status": JobStatus.PENDING.value,
                "now": now,
                "limit": limit,
            }
        )
        rows = result.fetchall()

        if rows:
            logger.info(
                f"Claimed {len(rows)} jobs",
                extra={"job_count": len(rows)}
            )

        # RETURNING bypasses the identity map, so build detached Job objects
        jobs = []
        for row in rows:
            jobs.append(Job(
                id=row.id,
                tenant_id=row.tenant_id,
                type=row.type,
                payload=row.payload,
                status=JobStatus(row.status),
                scheduled_at=row.scheduled_at,
                attempts=row.attempts,
                max_attempts=row.max_attempts,
                error=row.error,
                created_at=row.created_at,
                started_at=row.started_at,
                completed_at=row.completed_at,
            ))
        jobs.sort(key=lambda job: job.scheduled_at)
        return jobs

    async def complete_job(self, job_id: UUID) -> Job | None:
        """
        Mark a processing job as completed.

        Idempotent: completing a job that is already completed, or that no
        longer exists, is a no-op.

        Args:
            job_id: The job UUID.

        Returns:
            The updated Job, or None if no transition happened.
        """
        now = utcnow()
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.status == JobStatus.PROCESSING,
                )
            )
            .values(
                status=JobStatus.COMPLETED,
                completed_at=now,
            )
            .returning(Job)
        )

        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job:
            logger.info(
                "Job completed",
                extra={"job_id": str(job_id), "attempts": job.attempts}
            )
        else:
            logger.debug(
                "Complete ignored, job not processing",
                extra={"job_id": str(job_id)}
            )

        return job

    async def fail_job(
        self,
        job_id: UUID,
        error: str,
        retry: bool = True,
    ) -> Job | None:
        """
        Report a failed attempt. Either reschedule with backoff or dead-letter.

        The attempt counter was already incremented by the claim, so it is
        left untouched here.

        Args:
            job_id: The job UUID.
            error: Error message of the failed attempt.
            retry: Whether another attempt is allowed.

        Returns:
            The updated Job, or None if the job is missing or not processing.
        """
        job = await self.get_job(job_id, for_update=True)
        if job is None:
            logger.warning("Fail ignored, job not found", extra={"job_id": str(job_id)})
            return None

        if job.status != JobStatus.PROCESSING:
            logger.warning(
                "Fail ignored, job not processing",
                extra={"job_id": str(job_id), "status": job.status.value}
            )
            return None

        now = utcnow()
        decision = decide_failure(
            status=job.status,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            retry_requested=retry,
            now=now,
            base_seconds=self._settings.retry_base_delay_seconds,
            max_seconds=self._settings.retry_max_delay_seconds,
        )

        values: dict[str, Any] = {"status": decision.status, "error": error}
        if decision.will_retry:
            values["scheduled_at"] = decision.scheduled_at
            logger.info(
                "Job rescheduled for retry",
                extra={
                    "job_id": str(job_id),
                    "attempts": job.attempts,
                    "scheduled_at": decision.scheduled_at.isoformat(),
                }
            )
        else:
            values["completed_at"] = now
            logger.warning(
                f"Job failed permanently after {job.attempts} attempts",
                extra={"job_id": str(job_id), "error": error, "retry_requested": retry}
            )

        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.status == JobStatus.PROCESSING,
                )
            )
            .values(**values)
            .returning(Job)
        )

        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def cancel_job(self, job_id: UUID) -> bool:
        """
        Cancel a pending job.

        Jobs already claimed run to natural completion or failure.

        Args:
            job_id: The job UUID.

        Returns:
            True if the job was pending and is now failed.
        """
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.status == JobStatus.PENDING,
                )
            )
            .values(
                status=JobStatus.FAILED,
                error=CANCELLED_ERROR,
                completed_at=utcnow(),
            )
        )

        result = await self._session.execute(stmt)
        cancelled = result.rowcount > 0

        if cancelled:
            logger.info("Job cancelled", extra={"job_id": str(job_id)})

        return cancelled

    async def retry_job(self, job_id: UUID) -> bool:
        """
        Manually retry a failed job, bypassing the backoff schedule.

        Args:
            job_id: The job UUID.

        Returns:
            True if the job was failed and is now pending.
        """
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.status == JobStatus.FAILED,
                )
            )
            .values(
                status=JobStatus.PENDING,
                attempts=0,
                scheduled_at=utcnow(),
                error=None,
                completed_at=None,
                started_at=None,
            )
        )

        result = await self._session.execute(stmt)
        retried = result.rowcount > 0

        if retried:
            logger.info("Job queued for manual retry", extra={"job_id": str(job_id)})

        return retried

    async def requeue_stale_jobs(self, stale_after: timedelta) -> tuple[int, int]:
        """
        Recover jobs stuck in PROCESSING, e.g. after a dispatcher crash.

        Jobs with attempts left go back to PENDING immediately; the others
        are dead-lettered.

        Args:
            stale_after: How long a job may stay in PROCESSING.

        Returns:
            Tuple of (requeued, failed) counts.
        """
        now = utcnow()
        cutoff = now - stale_after
        stale = and_(
            Job.status == JobStatus.PROCESSING,
            Job.started_at < cutoff,
        )

        failed_result = await self._session.execute(
            update(Job)
            .where(stale, Job.attempts >= Job.max_attempts)
            .values(status=JobStatus.FAILED, error=STALE_JOB_ERROR, completed_at=now)
            .execution_options(synchronize_session=False)
        )
        requeued_result = await self._session.execute(
            update(Job)
            .where(stale, Job.attempts < Job.max_attempts)
            .values(status=JobStatus.PENDING, error=STALE_JOB_ERROR, scheduled_at=now)
            .execution_options(synchronize_session=False)
        )

        requeued, failed = requeued_result.rowcount, failed_result.rowcount
        if requeued or failed:
            logger.warning(
                f"Recovered {requeued + failed} stale jobs",
                extra={"requeued": requeued, "failed": failed}
            )
        return requeued, failed

    async def cleanup_old_jobs(
        self,
        retention_days: int | None = None,
    ) -> int:
        """
        Delete completed and failed jobs older than the retention window.

        Pending and processing jobs are never deleted, whatever their age.

        Args:
            retention_days: Age in days after which terminal jobs are deleted.

        Returns:
            Number of deleted jobs.
        """
        if retention_days is None:
            retention_days = self._settings.job_retention_days

        cutoff = utcnow() - timedelta(days=retention_days)
        stmt = (
            delete(Job)
            .where(
                and_(
                    Job.status.in_(list(TERMINAL_STATUSES)),
                    func.coalesce(Job.completed_at, Job.created_at) < cutoff,
                )
            )
            .execution_options(synchronize_session=False)
        )

        result = await self._session.execute(stmt)
        count = result.rowcount

        if count > 0:
            logger.info(
                f"Deleted {count} old jobs",
                extra={"retention_days": retention_days}
            )

        return count

    async def get_queue_depth(self, tenant_id: str | None = None) -> int:
        """
        Get the number of pending jobs.

        Args:
            tenant_id: Optional tenant filter.

        Returns:
            Number of pending jobs.
        """
        filters = [Job.status == JobStatus.PENDING]
        if tenant_id is not None:
            filters.append(Job.tenant_id == tenant_id)

        stmt = select(func.count()).select_from(Job).where(and_(*filters))
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def get_job_stats(self, tenant_id: str | None = None) -> JobStats:
        """
        Get job counts by status.

        Args:
            tenant_id: Optional tenant filter.

        Returns:
            JobStats with every status present, zero when absent.
        """
        stmt = (
            select(Job.status, func.count())
            .group_by(Job.status)
        )
        if tenant_id is not None:
            stmt = stmt.where(Job.tenant_id == tenant_id)

        result = await self._session.execute(stmt)
        counts = {JobStatus(status).value: count for status, count in result.all()}
        return JobStats(**counts)


@asynccontextmanager
async def open_repository(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    settings: Settings | None = None,
) -> AsyncGenerator[JobRepository]:
    """
    Open a session and yield a repository bound to it.

    Commits on clean exit and rolls back on error. Without a session factory
    the application-wide one from init_db() is used.

    Args:
        session_factory: Optional explicit session factory.
        settings: Optional settings override for the repository.

    Yields:
        JobRepository: A repository bound to a fresh session.
    """
    if session_factory is None:
        async with get_session_context() as session:
            yield JobRepository(session, settings)
        return

    async with session_factory() as session:
        try:
            yield JobRepository(session, settings)
            await session.commit()
        except Exception:
            await session.rollback()
            raise
