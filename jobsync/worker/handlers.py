"""
Job handler registry and execution.

Job handlers must be idempotent - they may be executed multiple times
for the same job when a dispatcher crashes mid-job or a retry follows a
timeout whose side effects already happened.
"""

import asyncio
import importlib
import logging
import time
from collections.abc import Awaitable, Callable

from jobsync.types.job import JobContext, JobResult

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[JobContext], Awaitable[JobResult | None]]


class HandlerRegistry:
    """
    Maps job types to handler coroutines.

    Example:
        registry = HandlerRegistry()

        @registry.register("send_email")
        async def handle_send_email(context: JobContext) -> JobResult:
            ...
    """

    def __init__(self) -> None:
        self._handlers: dict[str, JobHandler] = {}

    def register(self, job_type: str) -> Callable[[JobHandler], JobHandler]:
        """
        Decorator to register a handler for a job type.

        Registering a type twice replaces the earlier handler.
        """
        def decorator(handler: JobHandler) -> JobHandler:
            self._handlers[job_type] = handler
            logger.info(f"Registered handler for job type: {job_type}")
            return handler
        return decorator

    def get(self, job_type: str) -> JobHandler | None:
        return self._handlers.get(job_type)

    def job_types(self) -> list[str]:
        """List all registered job types."""
        return sorted(self._handlers)

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


default_registry = HandlerRegistry()


def register_handler(job_type: str) -> Callable[[JobHandler], JobHandler]:
    """Register a handler in the process-wide default registry."""
    return default_registry.register(job_type)


def load_handler_modules(module_names: str | list[str]) -> None:
    """
    Import modules whose import side effect registers handlers.

    Args:
        module_names: Dotted module paths, as a list or a comma separated
            string.
    """
    if isinstance(module_names, str):
        module_names = [name.strip() for name in module_names.split(",")]

    for name in module_names:
        if name:
            importlib.import_module(name)
            logger.info(f"Loaded handler module: {name}")


async def execute_job(
    context: JobContext,
    registry: HandlerRegistry | None = None,
    timeout: float | None = None,
) -> JobResult:
    """
    Execute a job using the handler registered for its type.

    Never raises for handler problems: they are converted into a failed
    JobResult. An unknown job type or a return value that is not a
    JobResult is not retryable; exceptions and timeouts are. A handler
    that returns None succeeded.

    Args:
        context: The job context.
        registry: Registry to look the handler up in. Defaults to the
            process-wide registry.
        timeout: Seconds the handler may run before it is cancelled.

    Returns:
        JobResult from the handler, with duration_ms filled in.
    """
    registry = registry or default_registry
    handler = registry.get(context.job_type)

    if handler is None:
        logger.error(
            f"No handler for job type: {context.job_type}",
            extra={"job_id": str(context.job_id)}
        )
        return JobResult(
            success=False,
            error=f"No handler registered for job type: {context.job_type}",
            retry=False,
        )

    start = time.monotonic()
    try:
        result = await asyncio.wait_for(handler(context), timeout=timeout)
    except TimeoutError:
        logger.warning(
            f"Handler timed out after {timeout}s",
            extra={"job_id": str(context.job_id), "job_type": context.job_type}
        )
        result = JobResult(
            success=False,
            error=f"Handler timed out after {timeout}s",
        )
    except Exception as e:
        logger.exception(
            "Handler raised exception",
            extra={"job_id": str(context.job_id), "job_type": context.job_type}
        )
        result = JobResult(
            success=False,
            error=f"Handler exception: {e}",
        )

    if result is None:
        result = JobResult(success=True)
    elif not isinstance(result, JobResult):
        logger.error(
            f"Handler returned {type(result).__name__}, expected JobResult",
            extra={"job_id": str(context.job_id), "job_type": context.job_type}
        )
        result = JobResult(
            success=False,
            error=f"Handler returned {type(result).__name__}",
            retry=False,
        )

    if result.duration_ms is None:
        result = result.model_copy(
            update={"duration_ms": (time.monotonic() - start) * 1000}
        )
    return result
