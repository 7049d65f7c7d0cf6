"""
Health check routes.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from jobsync import __version__
from jobsync.api.dependencies import get_sync_log
from jobsync.db import get_async_session
from jobsync.observability.metrics import get_metrics
from jobsync.sync.log import SyncLog
from jobsync.types.api import HealthResponse
from jobsync.utils import utcnow

router = APIRouter(tags=["Health"])


async def _database_healthy(session: AsyncSession) -> bool:
    try:
        await session.execute(text("SELECT 1"))
    except Exception:
        return False
    return True


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the API, database and sync log.",
)
async def health_check(
    session: AsyncSession = Depends(get_async_session),
    log: SyncLog = Depends(get_sync_log),
) -> HealthResponse:
    """
    Perform a health check.

    The sync log is best-effort, so an unreachable log degrades the service
    rather than failing it.
    """
    db_status = "healthy" if await _database_healthy(session) else "unhealthy"
    log_status = "healthy" if await log.ping() else "unhealthy"

    return HealthResponse(
        status="healthy" if db_status == log_status == "healthy" else "degraded",
        version=__version__,
        database=db_status,
        sync_log=log_status,
        timestamp=utcnow(),
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if the service is ready to receive traffic.",
)
async def readiness_check(
    session: AsyncSession = Depends(get_async_session),
) -> dict:
    """Kubernetes readiness probe endpoint."""
    return {"ready": await _database_healthy(session)}


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the service is alive.",
)
async def liveness_check() -> dict:
    """Kubernetes liveness probe endpoint."""
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics.",
)
async def metrics() -> Response:
    """Expose Prometheus metrics."""
    metrics_collector = get_metrics()
    return Response(
        content=metrics_collector.get_metrics(),
        media_type=metrics_collector.get_content_type(),
    )
