"""
Unit tests for the dispatcher, against an in-memory repository.

Database behaviour of the claim itself is covered in
tests/integration/test_worker.py.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta
from uuid import UUID, uuid4

import pytest

from jobsync.constants import JobStatus
from jobsync.db.models import Job
from jobsync.observability.metrics import MetricsCollector
from jobsync.retry import decide_failure
from jobsync.types.job import JobContext, JobResult
from jobsync.utils import utcnow
from jobsync.worker.handlers import HandlerRegistry
from jobsync.worker.main import Dispatcher


class FakeJobRepository:
    """The subset of JobRepository the dispatcher uses, kept in memory."""

    def __init__(self):
        self.jobs: dict[UUID, Job] = {}
        self.claim_limits: list[int] = []
        self.fail_claims = False

    def add(self, job_type: str, max_attempts: int = 3) -> UUID:
        job = Job(
            id=uuid4(),
            tenant_id="test-tenant",
            type=job_type,
            payload={},
            status=JobStatus.PENDING,
            scheduled_at=utcnow() - timedelta(seconds=1),
            attempts=0,
            max_attempts=max_attempts,
            created_at=utcnow(),
        )
        self.jobs[job.id] = job
        return job.id

    async def fetch_jobs_for_processing(self, limit: int) -> list[Job]:
        self.claim_limits.append(limit)
        if self.fail_claims:
            raise ConnectionError("database unavailable")

        now = utcnow()
        due = sorted(
            (j for j in self.jobs.values()
             if j.status == JobStatus.PENDING and j.scheduled_at <= now),
            key=lambda j: j.scheduled_at,
        )[:limit]
        for job in due:
            job.status = JobStatus.PROCESSING
            job.started_at = now
            job.attempts += 1
        return due

    async def complete_job(self, job_id: UUID) -> Job | None:
        job = self.jobs.get(job_id)
        if job is None or job.status != JobStatus.PROCESSING:
            return None
        job.status = JobStatus.COMPLETED
        job.completed_at = utcnow()
        return job

    async def fail_job(self, job_id: UUID, error: str, retry: bool = True) -> Job | None:
        job = self.jobs.get(job_id)
        if job is None or job.status != JobStatus.PROCESSING:
            return None
        decision = decide_failure(
            job.status, job.attempts, job.max_attempts, retry, utcnow(), 60
        )
        job.status = decision.status
        job.error = error
        if decision.will_retry:
            job.scheduled_at = decision.scheduled_at
        else:
            job.completed_at = utcnow()
        return job


@pytest.fixture
def repo() -> FakeJobRepository:
    return FakeJobRepository()


@pytest.fixture
def make_dispatcher(repo: FakeJobRepository, handler_registry, metrics: MetricsCollector):
    @asynccontextmanager
    async def scope():
        yield repo

    def factory(**kwargs) -> Dispatcher:
        kwargs.setdefault("batch_size", 10)
        kwargs.setdefault("concurrency", 10)
        kwargs.setdefault("poll_interval", 0.01)
        kwargs.setdefault("job_timeout", 5)
        return Dispatcher(
            repository_scope=scope,
            registry=handler_registry,
            worker_id="test-dispatcher",
            metrics=metrics,
            **kwargs,
        )

    return factory


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout=timeout)


class TestDispatcherRunOnce:
    """Tests for a single claim-and-process pass."""

    async def test_outcomes_are_recorded(
        self,
        repo: FakeJobRepository,
        handler_registry: HandlerRegistry,
        make_dispatcher,
    ):
        """Test success completes, failure retries and unknown types dead-letter."""

        @handler_registry.register("send_email")
        async def send_email(context: JobContext) -> JobResult:
            return JobResult(success=True)

        @handler_registry.register("send_sms")
        async def send_sms(context: JobContext) -> JobResult:
            return JobResult(success=False, error="gateway 503")

        ok = repo.add("send_email")
        flaky = repo.add("send_sms")
        unknown = repo.add("teleport")

        report = await make_dispatcher().run_once()

        assert report.claimed == 3
        assert report.completed == 1
        assert report.retried == 1
        assert report.failed == 1
        assert repo.jobs[ok].status == JobStatus.COMPLETED
        assert repo.jobs[flaky].status == JobStatus.PENDING
        assert repo.jobs[flaky].scheduled_at > utcnow() + timedelta(seconds=100)
        assert repo.jobs[unknown].status == JobStatus.FAILED
        assert repo.jobs[unknown].attempts == 1
        assert "No handler registered for job type: teleport" == repo.jobs[unknown].error

    async def test_timeout_counts_as_retryable_failure(
        self,
        repo: FakeJobRepository,
        handler_registry: HandlerRegistry,
        make_dispatcher,
    ):
        """Test a handler over its deadline is rescheduled."""

        @handler_registry.register("generate_report")
        async def generate_report(context: JobContext) -> JobResult:
            await asyncio.sleep(5)
            return JobResult(success=True)

        job_id = repo.add("generate_report")

        report = await make_dispatcher(job_timeout=0.05).run_once()

        assert report.retried == 1
        assert repo.jobs[job_id].status == JobStatus.PENDING
        assert "timed out" in repo.jobs[job_id].error

    async def test_handler_return_values_are_recorded(
        self,
        repo: FakeJobRepository,
        handler_registry: HandlerRegistry,
        make_dispatcher,
    ):
        """Test a None return completes the job and a stray value fails it."""

        @handler_registry.register("send_reminder")
        async def send_reminder(context: JobContext) -> None:
            return None

        @handler_registry.register("sync_calendar")
        async def sync_calendar(context: JobContext):
            return "done"

        done = repo.add("send_reminder")
        broken = repo.add("sync_calendar")

        report = await make_dispatcher().run_once()

        assert report.completed == 1
        assert report.failed == 1
        assert repo.jobs[done].status == JobStatus.COMPLETED
        assert repo.jobs[broken].status == JobStatus.FAILED
        assert repo.jobs[broken].error == "Handler returned str"

    async def test_execution_crash_is_recorded_as_failure(
        self,
        repo: FakeJobRepository,
        make_dispatcher,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """Test an error outside the handler still reaches fail_job."""

        async def crash(*args, **kwargs):
            raise RuntimeError("registry corrupted")

        monkeypatch.setattr("jobsync.worker.main.execute_job", crash)
        first = repo.add("send_email")
        second = repo.add("send_email")

        report = await make_dispatcher().run_once()

        assert report.claimed == 2
        assert report.retried == 2
        for job_id in (first, second):
            assert repo.jobs[job_id].status == JobStatus.PENDING
            assert repo.jobs[job_id].error == "Dispatcher error: registry corrupted"

    async def test_claim_failure_means_no_jobs(

        self,
        repo: FakeJobRepository,
        make_dispatcher,
    ):
        """Test a failing claim is swallowed and reported as an empty pass."""
        repo.add("send_email")
        repo.fail_claims = True

        report = await make_dispatcher().run_once()

        assert report.claimed == 0


class TestDispatcherLoop:
    """Tests for the long-running claim loop."""

    async def test_slow_job_does_not_block_others(
        self,
        repo: FakeJobRepository,
        handler_registry: HandlerRegistry,
        make_dispatcher,
    ):
        """Test a fast job claimed after a slow one finishes first."""
        release = asyncio.Event()

        @handler_registry.register("sync_calendar")
        async def slow(context: JobContext) -> JobResult:
            await release.wait()
            return JobResult(success=True)

        @handler_registry.register("send_email")
        async def fast(context: JobContext) -> JobResult:
            return JobResult(success=True)

        dispatcher = make_dispatcher()
        loop_task = asyncio.create_task(dispatcher.start())

        slow_id = repo.add("sync_calendar")
        await wait_until(lambda: repo.jobs[slow_id].status == JobStatus.PROCESSING)
        fast_id = repo.add("send_email")
        await wait_until(lambda: repo.jobs[fast_id].status == JobStatus.COMPLETED)

        assert repo.jobs[slow_id].status == JobStatus.PROCESSING

        release.set()
        await wait_until(lambda: repo.jobs[slow_id].status == JobStatus.COMPLETED)
        await dispatcher.stop()
        await asyncio.wait_for(loop_task, timeout=2)

    async def test_concurrency_bounds_claims(
        self,
        repo: FakeJobRepository,
        handler_registry: HandlerRegistry,
        make_dispatcher,
    ):
        """Test the loop never claims more jobs than it has free slots."""
        release = asyncio.Event()

        @handler_registry.register("workflow_step")
        async def blocked(context: JobContext) -> JobResult:
            await release.wait()
            return JobResult(success=True)

        for _ in range(5):
            repo.add("workflow_step")

        dispatcher = make_dispatcher(concurrency=2, batch_size=10)
        loop_task = asyncio.create_task(dispatcher.start())

        await wait_until(lambda: dispatcher.in_flight == 2)
        await asyncio.sleep(0.05)
        processing = [j for j in repo.jobs.values() if j.status == JobStatus.PROCESSING]

        assert len(processing) == 2
        assert max(repo.claim_limits) == 2

        release.set()
        await wait_until(
            lambda: all(j.status == JobStatus.COMPLETED for j in repo.jobs.values())
        )
        await dispatcher.stop()
        await asyncio.wait_for(loop_task, timeout=2)

    async def test_stop_waits_for_in_flight_jobs(
        self,
        repo: FakeJobRepository,
        handler_registry: HandlerRegistry,
        make_dispatcher,
    ):
        """Test graceful shutdown lets running jobs finish."""

        @handler_registry.register("send_reminder")
        async def reminder(context: JobContext) -> JobResult:
            await asyncio.sleep(0.1)
            return JobResult(success=True)

        job_id = repo.add("send_reminder")
        dispatcher = make_dispatcher()
        loop_task = asyncio.create_task(dispatcher.start())

        await wait_until(lambda: repo.jobs[job_id].status == JobStatus.PROCESSING)
        await dispatcher.stop()
        await asyncio.wait_for(loop_task, timeout=2)

        assert repo.jobs[job_id].status == JobStatus.COMPLETED

    async def test_loop_survives_claim_failures(
        self,
        repo: FakeJobRepository,
        handler_registry: HandlerRegistry,
        make_dispatcher,
    ):
        """Test the loop keeps polling after the store comes back."""

        @handler_registry.register("send_email")
        async def send_email(context: JobContext) -> JobResult:
            return JobResult(success=True)

        job_id = repo.add("send_email")
        repo.fail_claims = True
        dispatcher = make_dispatcher()
        loop_task = asyncio.create_task(dispatcher.start())

        await wait_until(lambda: len(repo.claim_limits) >= 3)
        repo.fail_claims = False
        await wait_until(lambda: repo.jobs[job_id].status == JobStatus.COMPLETED)

        await dispatcher.stop()
        await asyncio.wait_for(loop_task, timeout=2)
