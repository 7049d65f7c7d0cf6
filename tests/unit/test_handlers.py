"""
Unit tests for the handler registry and job execution.
"""

import asyncio
from uuid import uuid4

import pytest

from jobsync.types.job import JobContext, JobResult
from jobsync.worker.handlers import HandlerRegistry, execute_job


class TestJobHandlers:
    """Tests for job handlers."""

    @pytest.fixture
    def registry(self) -> HandlerRegistry:
        registry = HandlerRegistry()

        @registry.register("send_email")
        async def send_email(context: JobContext) -> JobResult:
            return JobResult(success=True, output={"sent_to": context.payload["to"]})

        @registry.register("explode")
        async def explode(context: JobContext) -> JobResult:
            raise RuntimeError("smtp down")

        @registry.register("hang")
        async def hang(context: JobContext) -> JobResult:
            await asyncio.sleep(10)
            return JobResult(success=True)

        @registry.register("refuse")
        async def refuse(context: JobContext) -> JobResult:
            return JobResult(success=False, error="bad address", retry=False)

        @registry.register("fire_and_forget")
        async def fire_and_forget(context: JobContext) -> None:
            return None

        @registry.register("wrong_return")
        async def wrong_return(context: JobContext):
            return {"sent": True}

        return registry

    def make_context(self, job_type: str, attempt: int = 1) -> JobContext:
        return JobContext(
            job_id=uuid4(),
            job_type=job_type,
            tenant_id="test-tenant",
            attempt=attempt,
            max_attempts=3,
            payload={"to": "guest@example.com"},
            worker_id="test-worker",
        )

    def test_registry_lists_types(self, registry: HandlerRegistry):
        """Test registered types are listed and membership works."""
        assert registry.job_types() == [
            "explode", "fire_and_forget", "hang", "refuse", "send_email", "wrong_return",
        ]
        assert "send_email" in registry
        assert "send_sms" not in registry
        assert registry.get("send_sms") is None

    async def test_execute_success(self, registry: HandlerRegistry):
        """Test a successful handler result is passed through with a duration."""
        result = await execute_job(self.make_context("send_email"), registry)

        assert result.success is True
        assert result.output == {"sent_to": "guest@example.com"}
        assert result.duration_ms is not None

    async def test_unknown_type_is_not_retryable(self, registry: HandlerRegistry):
        """Test a job type without a handler is dead-lettered."""
        result = await execute_job(self.make_context("send_sms"), registry)

        assert result.success is False
        assert result.retry is False
        assert result.error == "No handler registered for job type: send_sms"

    async def test_exception_is_retryable_failure(self, registry: HandlerRegistry):
        """Test a raising handler becomes a retryable failure."""
        result = await execute_job(self.make_context("explode"), registry)

        assert result.success is False
        assert result.retry is True
        assert "smtp down" in result.error

    async def test_timeout_is_retryable_failure(self, registry: HandlerRegistry):
        """Test a handler exceeding its deadline is cancelled and retried."""
        result = await execute_job(self.make_context("hang"), registry, timeout=0.05)

        assert result.success is False
        assert result.retry is True
        assert "timed out" in result.error

    async def test_handler_can_refuse_retry(self, registry: HandlerRegistry):
        """Test retry=False from a handler is preserved."""
        result = await execute_job(self.make_context("refuse"), registry)

        assert result.success is False
        assert result.retry is False

    async def test_none_return_is_success(self, registry: HandlerRegistry):
        """Test a handler that returns nothing completed its job."""
        result = await execute_job(self.make_context("fire_and_forget"), registry)

        assert result.success is True
        assert result.duration_ms is not None

    async def test_unexpected_return_is_terminal_failure(self, registry: HandlerRegistry):
        """Test a handler returning something other than JobResult fails the job."""
        result = await execute_job(self.make_context("wrong_return"), registry)

        assert result.success is False
        assert result.retry is False
        assert result.error == "Handler returned dict"

    def test_context_attempt_helpers(self):
        """Test last-attempt detection."""
        assert not self.make_context("send_email", attempt=2).is_last_attempt
        assert self.make_context("send_email", attempt=3).is_last_attempt
        assert self.make_context("send_email", attempt=3).remaining_attempts == 0
