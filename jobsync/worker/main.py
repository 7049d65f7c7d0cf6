"""
Dispatcher process for executing jobs.

The dispatcher claims due jobs from the queue, runs each one in its own
task, and records the outcome through the retry/backoff state machine.
Any number of dispatchers can run against the same database; the SKIP
LOCKED claim keeps them from ever owning the same job.
"""

import asyncio
import logging
import os
import signal
import time
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from uuid import UUID

from jobsync.config import Settings, get_settings
from jobsync.constants import SPAN_CLAIM_JOBS, SPAN_EXECUTE_JOB, JobStatus
from jobsync.db import close_db, init_db
from jobsync.db.models import Job
from jobsync.db.repository import JobRepository, open_repository
from jobsync.observability.logging import bind_context, setup_logging
from jobsync.observability.metrics import MetricsCollector, get_metrics
from jobsync.observability.tracing import get_tracer, setup_tracing, shutdown_tracing
from jobsync.types.job import DispatchReport, JobContext, JobResult
from jobsync.worker.handlers import (
    HandlerRegistry,
    default_registry,
    execute_job,
    load_handler_modules,
)

logger = logging.getLogger(__name__)

RepositoryScope = Callable[[], AbstractAsyncContextManager[JobRepository]]

OUTCOME_COMPLETED = "completed"
OUTCOME_RETRYING = "retrying"
OUTCOME_FAILED = "failed"
OUTCOME_UNRECORDED = "unrecorded"


class Dispatcher:
    """
    Job dispatcher that polls for and executes jobs.

    Features:
    - Atomic claiming using FOR UPDATE SKIP LOCKED
    - Every job runs in its own task, bounded by `concurrency`, so a slow
      handler never delays claiming or other jobs
    - Per-job deadline; an overrun counts as a retryable failure
    - Graceful shutdown on SIGTERM/SIGINT, waiting for in-flight jobs
    """

    def __init__(
        self,
        repository_scope: RepositoryScope | None = None,
        registry: HandlerRegistry | None = None,
        worker_id: str | None = None,
        batch_size: int | None = None,
        concurrency: int | None = None,
        poll_interval: float | None = None,
        job_timeout: float | None = None,
        metrics: MetricsCollector | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            repository_scope: Callable returning an async context manager that
                yields a JobRepository and commits on exit. Defaults to the
                application session factory.
            registry: Handler registry. Defaults to the process-wide one.
            worker_id: Unique dispatcher identifier. Defaults to hostname + PID.
            batch_size: Maximum jobs claimed per poll.
            concurrency: Maximum jobs executing at once.
            poll_interval: Seconds between polls when the queue is empty.
            job_timeout: Seconds a handler may run.
            metrics: Metrics collector.
            settings: Settings override.
        """
        settings = settings or get_settings()

        self._repository_scope = repository_scope or (
            lambda: open_repository(settings=settings)
        )
        self.registry = registry or default_registry
        self.worker_id = (
            worker_id or settings.worker_id or f"{os.uname().nodename}-{os.getpid()}"
        )
        self.batch_size = batch_size or settings.worker_batch_size
        self.concurrency = concurrency or settings.worker_concurrency
        self.poll_interval = (
            poll_interval if poll_interval is not None
            else settings.worker_poll_interval_seconds
        )
        self.job_timeout = (
            job_timeout if job_timeout is not None else settings.job_timeout_seconds
        )

        self._running = False
        self._stop_event = asyncio.Event()
        self._in_flight: dict[UUID, asyncio.Task] = {}
        self._metrics = metrics or get_metrics()

    @property
    def in_flight(self) -> int:
        """Number of jobs currently executing."""
        return len(self._in_flight)

    async def start(self) -> None:
        """Run the claim loop until stop() is called."""
        logger.info(
            "Dispatcher starting",
            extra={
                "worker_id": self.worker_id,
                "batch_size": self.batch_size,
                "concurrency": self.concurrency,
                "job_types": self.registry.job_types(),
            }
        )

        self._running = True
        self._stop_event.clear()

        while self._running:
            free_slots = self.concurrency - len(self._in_flight)
            claimed = 0

            if free_slots > 0:
                jobs = await self._claim(min(free_slots, self.batch_size))
                for job in jobs:
                    self._spawn(job)
                claimed = len(jobs)

            if claimed == 0:
                await self._idle()

        # Wait for current jobs to complete
        if self._in_flight:
            logger.info(f"Waiting for {len(self._in_flight)} jobs to complete")
            await asyncio.gather(*self._in_flight.values(), return_exceptions=True)

        logger.info("Dispatcher stopped", extra={"worker_id": self.worker_id})

    async def stop(self) -> None:
        """Stop the dispatcher gracefully."""
        logger.info("Dispatcher stopping", extra={"worker_id": self.worker_id})
        self._running = False
        self._stop_event.set()

    async def run_once(self) -> DispatchReport:
        """
        Claim one batch and process it to completion.

        Used by the cron endpoint and in tests.

        Returns:
            Counts of claimed jobs and their outcomes.
        """
        jobs = await self._claim(self.batch_size)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(job: Job) -> str:
            async with semaphore:
                return await self._process(job)

        outcomes = await asyncio.gather(*(bounded(job) for job in jobs))

        return DispatchReport(
            claimed=len(jobs),
            completed=outcomes.count(OUTCOME_COMPLETED),
            retried=outcomes.count(OUTCOME_RETRYING),
            failed=outcomes.count(OUTCOME_FAILED),
        )

    async def _idle(self) -> None:
        """
        Wait for the next poll.

        Returns early on stop, and when every slot is busy, as soon as one
        job finishes.
        """
        stop_waiter = asyncio.ensure_future(self._stop_event.wait())
        waiters: set[asyncio.Future] = {stop_waiter}
        if len(self._in_flight) >= self.concurrency:
            waiters.update(self._in_flight.values())

        try:
            await asyncio.wait(
                waiters,
                timeout=self.poll_interval,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            stop_waiter.cancel()

    async def _claim(self, limit: int) -> list[Job]:
        """
        Claim up to `limit` jobs. A failed claim means no jobs this tick.
        """
        try:
            with get_tracer().start_as_current_span(SPAN_CLAIM_JOBS) as span:
                async with self._repository_scope() as repo:
                    jobs = await repo.fetch_jobs_for_processing(limit)
                span.set_attribute("worker_id", self.worker_id)
                span.set_attribute("job_count", len(jobs))
        except Exception as e:
            logger.exception(
                f"Failed to claim jobs: {e}",
                extra={"worker_id": self.worker_id}
            )
            return []

        if jobs:
            self._metrics.record_jobs_claimed(self.worker_id, len(jobs))
            logger.info(
                f"Claimed {len(jobs)} jobs",
                extra={"worker_id": self.worker_id}
            )
        return jobs

    def _spawn(self, job: Job) -> None:
        task = asyncio.create_task(self._process(job))
        self._in_flight[job.id] = task

        def forget(_: asyncio.Task, job_id: UUID = job.id) -> None:
            self._in_flight.pop(job_id, None)

        task.add_done_callback(forget)

    async def _process(self, job: Job) -> str:
        """
        Execute a claimed job and record its outcome.

        Args:
            job: The claimed job.

        Returns:
            The outcome label: completed, retrying, failed or unrecorded.
        """
        context = JobContext(
            job_id=job.id,
            job_type=job.type,
            tenant_id=job.tenant_id,
            attempt=job.attempts,
            max_attempts=job.max_attempts,
            payload=job.payload or {},
            worker_id=self.worker_id,
            started_at=job.started_at,
        )
        # Runs in its own task, so this context is private to the job
        bind_context(job_id=str(job.id), job_type=job.type)

        logger.info(
            "Executing job",
            extra={
                "job_id": str(job.id),
                "job_type": job.type,
                "tenant_id": job.tenant_id,
                "attempt": context.attempt,
            }
        )

        start_time = time.monotonic()
        try:
            with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
                span.set_attribute("job_id", str(job.id))
                span.set_attribute("job_type", job.type)
                span.set_attribute("attempt", context.attempt)

                result = await execute_job(context, self.registry, self.job_timeout)
                span.set_attribute("success", result.success)
        except Exception as e:
            # Whatever went wrong, the attempt is still recorded as a failure
            logger.exception(
                f"Job execution crashed: {e}",
                extra={"job_id": str(job.id), "job_type": job.type}
            )
            result = JobResult(success=False, error=f"Dispatcher error: {e}")

        duration = time.monotonic() - start_time

        try:
            async with self._repository_scope() as repo:
                if result.success:
                    await repo.complete_job(job.id)
                    outcome = OUTCOME_COMPLETED
                else:
                    updated = await repo.fail_job(
                        job.id,
                        result.error or "Unknown error",
                        retry=result.retry,
                    )
                    if updated is not None and updated.status == JobStatus.PENDING:
                        outcome = OUTCOME_RETRYING
                    else:
                        outcome = OUTCOME_FAILED
        except Exception as e:
            # The job stays in processing until the reaper recovers it
            logger.exception(
                f"Failed to record job outcome: {e}",
                extra={"job_id": str(job.id), "success": result.success}
            )
            outcome = OUTCOME_UNRECORDED

        if outcome != OUTCOME_COMPLETED:
            logger.warning(
                "Job attempt failed",
                extra={
                    "job_id": str(job.id),
                    "error": result.error,
                    "attempt": context.attempt,
                    "outcome": outcome,
                }
            )

        self._metrics.record_job_finished(
            job_type=job.type,
            status=outcome,
            duration_seconds=duration,
        )
        return outcome


async def run_async() -> None:
    """Run the dispatcher asynchronously."""
    settings = get_settings()
    setup_logging("dispatcher")
    setup_tracing()
    load_handler_modules(settings.worker_handler_modules)
    await init_db()

    dispatcher = Dispatcher(settings=settings)
    bind_context(worker_id=dispatcher.worker_id)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(dispatcher.stop())
        )

    try:
        await dispatcher.start()
    finally:
        await close_db()
        shutdown_tracing()


def run() -> None:
    """Run the dispatcher."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
