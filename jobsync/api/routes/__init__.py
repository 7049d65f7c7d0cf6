"""
API routes module.
"""

from jobsync.api.routes.auth import router as auth_router
from jobsync.api.routes.health import router as health_router
from jobsync.api.routes.internal import router as internal_router
from jobsync.api.routes.jobs import router as jobs_router
from jobsync.api.routes.sync import router as sync_router

__all__ = [
    "jobs_router",
    "auth_router",
    "health_router",
    "internal_router",
    "sync_router",
]
