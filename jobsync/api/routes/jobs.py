"""
Job management routes.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from jobsync.api.auth import CurrentUser
from jobsync.config import get_settings
from jobsync.constants import API_V1_PREFIX, JobStatus
from jobsync.db import get_async_session
from jobsync.db.models import Job
from jobsync.db.repository import JobRepository
from jobsync.observability.metrics import get_metrics
from jobsync.types.api import (
    BatchCreateJobsRequest,
    BatchCreateJobsResponse,
    CreateJobRequest,
    CreateJobResponse,
    JobActionResponse,
    JobListResponse,
    JobResponse,
    JobStatsResponse,
)
from jobsync.types.job import EnqueueJobOptions

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_V1_PREFIX}/jobs", tags=["Jobs"])


async def _get_owned_job(repo: JobRepository, job_id: UUID, tenant_id: str) -> Job:
    """Load a job, raising 404 if missing and 403 if owned by another tenant."""
    job = await repo.get_job(job_id)

    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )

    if job.tenant_id != tenant_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied",
        )

    return job


@router.post(
    "",
    response_model=CreateJobResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Enqueue a job",
    description="Add a job to the queue for the authenticated tenant.",
)
async def create_job(
    request: CreateJobRequest,
    current_user: CurrentUser,
    session: AsyncSession = Depends(get_async_session),
) -> CreateJobResponse:
    """
    Enqueue a single job.

    Args:
        request: Job creation request.
        current_user: Authenticated user context.
        session: Database session.

    Returns:
        CreateJobResponse with the new job id.
    """
    settings = get_settings()
    repo = JobRepository(session)
    job_id = await repo.enqueue_job(
        type=request.type,
        payload=request.payload,
        tenant_id=current_user.tenant_id,
        scheduled_at=request.scheduled_at,
        max_attempts=request.max_attempts or settings.default_max_attempts,
    )

    await session.commit()

    get_metrics().record_job_enqueued(request.type)

    return CreateJobResponse(id=job_id)


@router.post(
    "/batch",
    response_model=BatchCreateJobsResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Enqueue several jobs",
    description="Add several jobs in one all-or-nothing insert.",
)
async def create_jobs(
    request: BatchCreateJobsRequest,
    current_user: CurrentUser,
    session: AsyncSession = Depends(get_async_session),
) -> BatchCreateJobsResponse:
    """Enqueue a batch of jobs for the authenticated tenant."""
    settings = get_settings()
    repo = JobRepository(session)
    ids = await repo.enqueue_jobs([
        EnqueueJobOptions(
            type=job.type,
            payload=job.payload,
            tenant_id=current_user.tenant_id,
            scheduled_at=job.scheduled_at,
            max_attempts=job.max_attempts or settings.default_max_attempts,
        )
        for job in request.jobs
    ])

    await session.commit()

    metrics = get_metrics()
    for job in request.jobs:
        metrics.record_job_enqueued(job.type)

    return BatchCreateJobsResponse(ids=ids, count=len(ids))


@router.get(
    "",
    response_model=JobListResponse,
    summary="List jobs",
    description="List jobs for the authenticated tenant with optional filtering.",
)
async def list_jobs(
    current_user: CurrentUser,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    status: JobStatus | None = Query(default=None),
    session: AsyncSession = Depends(get_async_session),
) -> JobListResponse:
    """
    List jobs for the current tenant.

    Args:
        current_user: Authenticated user context.
        page: Page number (1-indexed).
        page_size: Number of items per page.
        status: Optional status filter.
        session: Database session.

    Returns:
        JobListResponse with paginated jobs.
    """
    repo = JobRepository(session)
    offset = (page - 1) * page_size

    jobs, total = await repo.list_jobs(
        tenant_id=current_user.tenant_id,
        status=status,
        limit=page_size,
        offset=offset,
    )

    return JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=total,
        page=page,
        page_size=page_size,
        has_next=(page * page_size) < total,
    )


# Declared before /{job_id} so "stats" is not parsed as a job id
@router.get(
    "/stats/summary",
    response_model=JobStatsResponse,
    summary="Get job statistics",
    description="Get job counts by status for the tenant.",
)
async def get_job_stats(
    current_user: CurrentUser,
    session: AsyncSession = Depends(get_async_session),
) -> JobStatsResponse:
    """Get job statistics for the current tenant."""
    repo = JobRepository(session)
    stats = await repo.get_job_stats(tenant_id=current_user.tenant_id)

    return JobStatsResponse(
        pending=stats.pending,
        processing=stats.processing,
        completed=stats.completed,
        failed=stats.failed,
        total=stats.total,
        queue_depth=stats.pending,
    )


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Get job details",
    description="Get detailed information about a specific job.",
)
async def get_job(
    job_id: UUID,
    current_user: CurrentUser,
    session: AsyncSession = Depends(get_async_session),
) -> JobResponse:
    """
    Get job details by ID.

    Raises:
        HTTPException: If job not found or not owned by tenant.
    """
    repo = JobRepository(session)
    job = await _get_owned_job(repo, job_id, current_user.tenant_id)
    return JobResponse.model_validate(job)


@router.post(
    "/{job_id}/cancel",
    response_model=JobActionResponse,
    summary="Cancel a pending job",
    description="Mark a pending job as failed. Claimed jobs cannot be cancelled.",
)
async def cancel_job(
    job_id: UUID,
    current_user: CurrentUser,
    session: AsyncSession = Depends(get_async_session),
) -> JobActionResponse:
    """
    Cancel a pending job.

    Raises:
        HTTPException: 404/403 for unknown or foreign jobs, 409 if the job
            is no longer pending.
    """
    repo = JobRepository(session)
    job = await _get_owned_job(repo, job_id, current_user.tenant_id)

    if not await repo.cancel_job(job_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Only pending jobs can be cancelled (current status: {job.status})",
        )

    await session.commit()

    logger.info(
        "Job cancelled",
        extra={"job_id": str(job_id), "tenant_id": current_user.tenant_id}
    )

    return JobActionResponse(
        id=job_id,
        status=JobStatus.FAILED,
        message="Job cancelled",
    )


@router.post(
    "/{job_id}/retry",
    response_model=JobActionResponse,
    summary="Retry a failed job",
    description="Reset a failed job to pending with a fresh attempt budget.",
)
async def retry_job(
    job_id: UUID,
    current_user: CurrentUser,
    session: AsyncSession = Depends(get_async_session),
) -> JobActionResponse:
    """
    Retry a failed job.

    Raises:
        HTTPException: 404/403 for unknown or foreign jobs, 409 if the job
            is not failed.
    """
    repo = JobRepository(session)
    job = await _get_owned_job(repo, job_id, current_user.tenant_id)

    if not await repo.retry_job(job_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Only failed jobs can be retried (current status: {job.status})",
        )

    await session.commit()

    logger.info(
        "Job retried",
        extra={"job_id": str(job_id), "tenant_id": current_user.tenant_id}
    )

    return JobActionResponse(
        id=job_id,
        status=JobStatus.PENDING,
        message="Job queued for retry",
    )
