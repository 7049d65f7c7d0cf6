"""
Reaper for queue housekeeping.

The reaper runs periodically to:
1. Return jobs stuck in PROCESSING (a dispatcher crashed or lost its
   database connection mid-job) to the queue, or dead-letter them when
   they have no attempts left
2. Delete completed and failed jobs older than the retention window
3. Publish the queue depth gauge
"""

import asyncio
import logging
import signal
from dataclasses import dataclass
from datetime import timedelta

from jobsync.config import Settings, get_settings
from jobsync.db import close_db, init_db
from jobsync.db.repository import open_repository
from jobsync.observability.logging import setup_logging
from jobsync.observability.metrics import MetricsCollector, get_metrics
from jobsync.observability.tracing import setup_tracing, shutdown_tracing
from jobsync.worker.main import RepositoryScope

logger = logging.getLogger(__name__)


@dataclass
class ReaperReport:
    """Counts from a single reaper pass."""

    requeued: int = 0
    failed: int = 0
    deleted: int = 0
    queue_depth: int = 0


class Reaper:
    """Periodic stale-job recovery and retention cleanup."""

    def __init__(
        self,
        repository_scope: RepositoryScope | None = None,
        interval_seconds: int | None = None,
        stale_after_seconds: int | None = None,
        retention_days: int | None = None,
        metrics: MetricsCollector | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            repository_scope: Factory of committing repository scopes.
            interval_seconds: Seconds between reaper runs.
            stale_after_seconds: How long a job may stay in PROCESSING.
            retention_days: Age after which terminal jobs are deleted.
            metrics: Metrics collector.
            settings: Settings override.
        """
        settings = settings or get_settings()
        self._repository_scope = repository_scope or (
            lambda: open_repository(settings=settings)
        )
        self.interval = interval_seconds or settings.reaper_interval_seconds
        self.stale_after = timedelta(
            seconds=stale_after_seconds or settings.job_stale_after_seconds
        )
        self.retention_days = (
            retention_days if retention_days is not None
            else settings.job_retention_days
        )
        self._running = False
        self._stop_event = asyncio.Event()
        self._metrics = metrics or get_metrics()

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(f"Reaper starting with interval {self.interval}s")
        self._running = True
        self._stop_event.clear()

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except TimeoutError:
                pass

        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._running = False
        self._stop_event.set()

    async def run_once(self) -> ReaperReport:
        """
        Run the reaper once (for testing or cron-style execution).

        Returns:
            Counts of recovered, dead-lettered and deleted jobs.
        """
        async with self._repository_scope() as repo:
            requeued, failed = await repo.requeue_stale_jobs(self.stale_after)

        async with self._repository_scope() as repo:
            deleted = await repo.cleanup_old_jobs(self.retention_days)
            depth = await repo.get_queue_depth()

        self._metrics.record_jobs_requeued(requeued, failed)
        self._metrics.record_jobs_cleaned(deleted)
        self._metrics.update_queue_depth("all", depth)

        if requeued or failed or deleted:
            logger.info(
                "Reaper pass finished",
                extra={"requeued": requeued, "failed": failed, "deleted": deleted}
            )

        return ReaperReport(
            requeued=requeued,
            failed=failed,
            deleted=deleted,
            queue_depth=depth,
        )


async def run_async() -> None:
    """Run the reaper asynchronously."""
    setup_logging("reaper")
    setup_tracing()
    await init_db()

    reaper = Reaper()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(reaper.stop())
        )

    try:
        await reaper.start()
    finally:
        await close_db()
        shutdown_tracing()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
