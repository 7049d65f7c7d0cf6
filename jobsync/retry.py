"""
Retry and backoff policy.

Pure functions with no I/O: the repository reads the job, asks this module what
should happen next, and writes the answer back.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from jobsync.constants import MAX_RETRY_DELAY_SECONDS, JobStatus
from jobsync.exceptions import InvalidTransitionError


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of a reported job failure."""

    status: JobStatus
    scheduled_at: datetime | None = None

    @property
    def will_retry(self) -> bool:
        return self.status == JobStatus.PENDING


def next_status(
    status: JobStatus,
    attempts: int,
    max_attempts: int,
    retry_requested: bool,
) -> JobStatus:
    """
    Decide the status a failed job moves to.

    Args:
        status: Current job status. Only PROCESSING jobs can fail.
        attempts: Attempts made so far, including the one that just failed.
        max_attempts: Attempt budget for the job.
        retry_requested: Whether the caller allows another attempt.

    Returns:
        PENDING if another attempt is allowed, FAILED otherwise.

    Raises:
        InvalidTransitionError: If the job is not PROCESSING.
    """
    if status != JobStatus.PROCESSING:
        raise InvalidTransitionError(status, "fail")

    if retry_requested and attempts < max_attempts:
        return JobStatus.PENDING
    return JobStatus.FAILED


def backoff_delay(
    attempts: int,
    base_seconds: float,
    max_seconds: float | None = None,
) -> timedelta:
    """
    Exponential backoff: base * 2^attempts, capped.

    With the default 60s base the first retry waits 2 minutes, the second 4.
    The delay never exceeds MAX_RETRY_DELAY_SECONDS, whatever `max_seconds` says.
    """
    ceiling = MAX_RETRY_DELAY_SECONDS
    if max_seconds is not None:
        ceiling = min(ceiling, max_seconds)

    # Any exponent past 2^40 is far beyond the ceiling
    exponent = min(max(attempts, 0), 40)
    return timedelta(seconds=min(base_seconds * 2 ** exponent, ceiling))


def decide_failure(
    status: JobStatus,
    attempts: int,
    max_attempts: int,
    retry_requested: bool,
    now: datetime,
    base_seconds: float,
    max_seconds: float | None = None,
) -> RetryDecision:
    """Combine the state transition and the backoff schedule."""
    new_status = next_status(status, attempts, max_attempts, retry_requested)
    if new_status == JobStatus.PENDING:
        return RetryDecision(
            status=new_status,
            scheduled_at=now + backoff_delay(attempts, base_seconds, max_seconds),
        )
    return RetryDecision(status=new_status)
