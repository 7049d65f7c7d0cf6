"""
Accessors for the long-lived objects created in the application lifespan.
"""

from fastapi import Request

from jobsync.sync.broadcast import Broadcaster
from jobsync.sync.log import SyncLog
from jobsync.worker.main import Dispatcher


def get_sync_log(request: Request) -> SyncLog:
    return request.app.state.sync_log


def get_broadcaster(request: Request) -> Broadcaster:
    return request.app.state.broadcaster


def get_dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher
