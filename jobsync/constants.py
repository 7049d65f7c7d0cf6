"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING -> PROCESSING (claimed by a dispatcher)
    - PROCESSING -> COMPLETED (handler succeeded)
    - PROCESSING -> PENDING (retry with backoff)
    - PROCESSING -> FAILED (retries exhausted or retry refused)

    Operator overrides:
    - PENDING -> FAILED (cancel)
    - FAILED -> PENDING (manual retry)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED}
)


class JobType(StrEnum):
    """Job types known to the product. The store accepts any tag."""

    SEND_EMAIL = "send_email"
    SEND_SMS = "send_sms"
    SEND_WHATSAPP = "send_whatsapp"
    WORKFLOW_STEP = "workflow_step"
    GENERATE_REPORT = "generate_report"
    SEND_REMINDER = "send_reminder"
    CLEANUP_SESSIONS = "cleanup_sessions"
    PROCESS_RSVP = "process_rsvp"
    SYNC_CALENDAR = "sync_calendar"


class SyncActionType(StrEnum):
    """Kind of mutation a sync action describes."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


# Default values
DEFAULT_MAX_ATTEMPTS = 3
MAX_ATTEMPTS_LIMIT = 100
MAX_RETRY_DELAY_SECONDS = 7 * 24 * 60 * 60
DEFAULT_CLAIM_LIMIT = 10
DEFAULT_RETENTION_DAYS = 7
CANCELLED_ERROR = "Cancelled by user"
STALE_JOB_ERROR = "Processing deadline exceeded"

# Sync log
SYNC_LOG_CAPACITY = 1000
SYNC_LOG_TTL_SECONDS = 24 * 60 * 60
SYNC_KEY_TEMPLATE = "sync:{tenant_id}:actions"

# API constants
API_V1_PREFIX = "/v1"
CRON_SECRET_HEADER = "Authorization"

# Metrics names
METRIC_QUEUE_DEPTH = "job_queue_depth"
METRIC_JOBS_ENQUEUED = "jobs_enqueued_total"
METRIC_JOBS_CLAIMED = "jobs_claimed_total"
METRIC_JOBS_FINISHED = "jobs_finished_total"
METRIC_JOB_DURATION = "job_duration_seconds"
METRIC_JOBS_CLEANED = "jobs_cleaned_total"
METRIC_JOBS_REQUEUED = "jobs_requeued_total"
METRIC_SYNC_STORED = "sync_actions_stored_total"
METRIC_SYNC_DROPPED = "sync_actions_dropped_total"
METRIC_SYNC_DELIVERED = "sync_actions_delivered_total"

# Trace span names
SPAN_CLAIM_JOBS = "claim_jobs"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_STORE_SYNC_ACTION = "store_sync_action"

# WebSocket message types
WS_MESSAGE_SYNC = "sync"
WS_MESSAGE_REFETCH = "refetch"
WS_MESSAGE_PONG = "pong"
