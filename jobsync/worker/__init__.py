"""
Worker module.
Contains the job dispatcher and the handler registry.
"""

from jobsync.worker.handlers import (
    HandlerRegistry,
    JobHandler,
    default_registry,
    execute_job,
    register_handler,
)
from jobsync.worker.main import Dispatcher, run

__all__ = [
    "Dispatcher",
    "HandlerRegistry",
    "JobHandler",
    "default_registry",
    "execute_job",
    "register_handler",
    "run",
]
