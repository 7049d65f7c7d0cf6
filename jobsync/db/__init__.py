"""
Job store: the job_queue model, session lifecycle and the repository.
"""

from jobsync.db.connection import (
    close_db,
    create_session_factory,
    get_async_session,
    get_engine,
    get_session_context,
    init_db,
)
from jobsync.db.models import Base, Job
from jobsync.db.repository import JobRepository, open_repository

__all__ = [
    "Base",
    "Job",
    "JobRepository",
    "open_repository",
    "init_db",
    "close_db",
    "get_engine",
    "create_session_factory",
    "get_session_context",
    "get_async_session",
]
