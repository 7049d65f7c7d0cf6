"""
Domain exceptions.
"""

from jobsync.constants import JobStatus


class JobSyncError(Exception):
    """Base class for all jobsync errors."""


class InvalidTransitionError(JobSyncError):
    """Raised when a job status change is not allowed by the state machine."""

    def __init__(self, current: JobStatus, attempted: str):
        self.current = current
        self.attempted = attempted
        super().__init__(f"Cannot {attempted} a job in status '{current}'")


class SyncLogUnavailableError(JobSyncError):
    """Raised when the sync action log backend cannot be read or written."""


class FullRefetchRequired(JobSyncError):
    """
    Raised to a subscriber when incremental replay can no longer be trusted.

    The client must reload its full state instead of applying deltas.
    """

    def __init__(self, tenant_id: str, reason: str):
        self.tenant_id = tenant_id
        self.reason = reason
        super().__init__(f"Full refetch required for tenant {tenant_id}: {reason}")
