"""
HTTP and WebSocket surface: job management, cron dispatch and sync delivery.
"""

from jobsync.api.main import create_app, run

__all__ = ["create_app", "run"]
