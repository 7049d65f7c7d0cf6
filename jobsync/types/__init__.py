"""
Type definitions for jobsync.
Contains input/output type definitions for all functions, grouped by module.
"""

from jobsync.types.api import (
    AuthRequest,
    BatchCreateJobsRequest,
    BatchCreateJobsResponse,
    CreateJobRequest,
    CreateJobResponse,
    HealthResponse,
    IdentityResponse,
    JobActionResponse,
    JobListResponse,
    JobResponse,
    JobStatsResponse,
    ProcessJobsResponse,
    SyncActionsResponse,
    TokenResponse,
)
from jobsync.types.job import (
    DispatchReport,
    EnqueueJobOptions,
    JobContext,
    JobResult,
    JobStats,
)
from jobsync.types.sync import CatchUpResult, SyncAction

__all__ = [
    # API types
    "CreateJobRequest",
    "CreateJobResponse",
    "BatchCreateJobsRequest",
    "BatchCreateJobsResponse",
    "JobResponse",
    "JobListResponse",
    "JobActionResponse",
    "JobStatsResponse",
    "ProcessJobsResponse",
    "SyncActionsResponse",
    "TokenResponse",
    "IdentityResponse",
    "AuthRequest",
    "HealthResponse",
    # Job types
    "EnqueueJobOptions",
    "JobResult",
    "JobContext",
    "JobStats",
    "DispatchReport",
    # Sync types
    "SyncAction",
    "CatchUpResult",
]
