"""
Internal routes called by the scheduler, not by clients.
"""

import logging

from fastapi import APIRouter, Depends

from jobsync.api.auth import verify_cron_secret
from jobsync.api.dependencies import get_dispatcher
from jobsync.types.api import ProcessJobsResponse
from jobsync.worker.main import Dispatcher

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/internal",
    tags=["Internal"],
    dependencies=[Depends(verify_cron_secret)],
)


@router.post(
    "/jobs/process",
    response_model=ProcessJobsResponse,
    summary="Process one batch of jobs",
    description="Claim one batch of due jobs and run it to completion.",
)
async def process_jobs(
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> ProcessJobsResponse:
    """Run a single dispatcher pass for serverless or cron deployments."""
    report = await dispatcher.run_once()

    logger.info(
        "Cron dispatch finished",
        extra={
            "claimed": report.claimed,
            "completed": report.completed,
            "retried": report.retried,
            "failed": report.failed,
        }
    )

    return ProcessJobsResponse(
        claimed=report.claimed,
        completed=report.completed,
        retried=report.retried,
        failed=report.failed,
    )
