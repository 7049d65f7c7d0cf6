"""
Sync action log, broadcaster and subscribers.
"""

from jobsync.sync.broadcast import Broadcaster
from jobsync.sync.log import (
    InMemorySyncLog,
    RedisSyncLog,
    SyncLog,
    build_sync_log,
    create_redis_client,
)
from jobsync.sync.subscriber import Subscription, catch_up, subscribe_to_company

__all__ = [
    "SyncLog",
    "RedisSyncLog",
    "InMemorySyncLog",
    "build_sync_log",
    "create_redis_client",
    "Broadcaster",
    "Subscription",
    "subscribe_to_company",
    "catch_up",
]
