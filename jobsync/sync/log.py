"""
Per-tenant sync action log.

A bounded, lossy, ordered log: each tenant keeps at most the most recent
`capacity` actions, and the whole tenant log expires `ttl_seconds` after its
last write. It exists so reconnecting clients can replay recent mutations. It
is not a durable event store.

Writes never raise to the caller. A failed write is logged and reported as
False so the broadcaster can count the drop.
"""

import bisect
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.asyncio import from_url as redis_from_url
from redis.exceptions import RedisError

from jobsync.config import Settings, get_settings
from jobsync.constants import SYNC_KEY_TEMPLATE, SYNC_LOG_CAPACITY, SYNC_LOG_TTL_SECONDS
from jobsync.exceptions import SyncLogUnavailableError
from jobsync.types.sync import SyncAction

logger = logging.getLogger(__name__)


def sync_key(tenant_id: str) -> str:
    """Storage key of a tenant's action log."""
    return SYNC_KEY_TEMPLATE.format(tenant_id=tenant_id)


class SyncLog(ABC):
    """
    Storage contract shared by the Redis and in-memory logs.

    Subclasses provide the raw append/range primitives; ordering, decoding,
    tenant filtering and error policy live here.
    """

    def __init__(
        self,
        capacity: int = SYNC_LOG_CAPACITY,
        ttl_seconds: int = SYNC_LOG_TTL_SECONDS,
    ):
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds

    @abstractmethod
    async def _append(self, key: str, member: str, score: int) -> None:
        """Add a member, trim to capacity and refresh the key expiry."""

    @abstractmethod
    async def _range_after(self, key: str, since: int) -> list[str]:
        """Members with score strictly greater than `since`, ascending."""

    @abstractmethod
    async def count(self, tenant_id: str) -> int:
        """Number of actions currently retained for a tenant."""

    async def ping(self) -> bool:
        """Whether the backend is reachable."""
        return True

    async def close(self) -> None:
        """Release backend connections."""

    async def store_sync_action(self, action: SyncAction) -> bool:
        """
        Append an action to its tenant's log.

        Args:
            action: The action to store.

        Returns:
            True if stored, False if the backend failed.
        """
        try:
            await self._append(
                sync_key(action.tenant_id),
                action.model_dump_json(),
                action.timestamp,
            )
        except Exception as e:
            logger.error(
                f"Failed to store sync action: {e}",
                extra={"action_id": action.id, "tenant_id": action.tenant_id}
            )
            return False
        return True

    async def fetch_since(self, tenant_id: str, since: int) -> list[SyncAction]:
        """
        Read a tenant's actions newer than a watermark.

        Args:
            tenant_id: The tenant to read.
            since: Watermark in epoch ms, exclusive.

        Returns:
            Actions with timestamp > since, ascending.

        Raises:
            SyncLogUnavailableError: If the backend cannot be read.
        """
        members = await self._range_after(sync_key(tenant_id), since)

        actions = []
        for member in members:
            try:
                action = SyncAction.model_validate_json(member)
            except ValidationError:
                logger.warning(
                    "Skipping malformed sync action",
                    extra={"tenant_id": tenant_id}
                )
                continue
            if action.tenant_id != tenant_id:
                continue
            actions.append(action)

        actions.sort(key=lambda a: a.timestamp)
        return actions

    async def get_missed_actions(self, tenant_id: str, since: int) -> list[SyncAction]:
        """
        Best-effort variant of fetch_since that returns [] on failure.

        Because of capacity and TTL eviction the result can be an incomplete
        history; see subscriber.catch_up for gap detection.
        """
        try:
            return await self.fetch_since(tenant_id, since)
        except SyncLogUnavailableError as e:
            logger.error(
                f"Failed to get missed actions: {e}",
                extra={"tenant_id": tenant_id, "since": since}
            )
            return []


class RedisSyncLog(SyncLog):
    """
    Sync log kept in one Redis sorted set per tenant, scored by timestamp.

    The append is three commands sent in one non-transactional pipeline. A
    crash between them can leave the set briefly over capacity or with a
    stale expiry, which the next append corrects.
    """

    def __init__(
        self,
        redis: Redis,
        capacity: int = SYNC_LOG_CAPACITY,
        ttl_seconds: int = SYNC_LOG_TTL_SECONDS,
    ):
        super().__init__(capacity, ttl_seconds)
        self._redis = redis

    async def _append(self, key: str, member: str, score: int) -> None:
        async with self._redis.pipeline(transaction=False) as pipe:
            pipe.zadd(key, {member: score})
            # rank 0 is the oldest; keep the newest `capacity` members
            pipe.zremrangebyrank(key, 0, -(self.capacity + 1))
            pipe.expire(key, self.ttl_seconds)
            await pipe.execute()

    async def _range_after(self, key: str, since: int) -> list[str]:
        try:
            members = await self._redis.zrangebyscore(key, f"({since}", "+inf")
        except (RedisError, OSError) as e:
            raise SyncLogUnavailableError(str(e)) from e
        return [m.decode() if isinstance(m, bytes) else m for m in members]

    async def count(self, tenant_id: str) -> int:
        try:
            return await self._redis.zcard(sync_key(tenant_id))
        except (RedisError, OSError) as e:
            raise SyncLogUnavailableError(str(e)) from e

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except (RedisError, OSError):
            return False

    async def close(self) -> None:
        await self._redis.aclose()


class InMemorySyncLog(SyncLog):
    """
    Process-local sync log with the same capacity and expiry semantics.

    Suitable for a single API instance and for tests. Members are ordered by
    (score, member) like a Redis sorted set.
    """

    def __init__(
        self,
        capacity: int = SYNC_LOG_CAPACITY,
        ttl_seconds: int = SYNC_LOG_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(capacity, ttl_seconds)
        self._clock = clock
        self._entries: dict[str, list[tuple[int, str]]] = {}
        self._expires_at: dict[str, float] = {}

    def _live_entries(self, key: str) -> list[tuple[int, str]]:
        expires_at = self._expires_at.get(key)
        if expires_at is not None and self._clock() >= expires_at:
            self._entries.pop(key, None)
            self._expires_at.pop(key, None)
        return self._entries.get(key, [])

    async def _append(self, key: str, member: str, score: int) -> None:
        entries = self._entries.setdefault(key, self._live_entries(key))
        # Same member replaces its score, as ZADD does
        entries[:] = [entry for entry in entries if entry[1] != member]
        bisect.insort(entries, (score, member))
        if len(entries) > self.capacity:
            del entries[: len(entries) - self.capacity]
        self._expires_at[key] = self._clock() + self.ttl_seconds

    async def _range_after(self, key: str, since: int) -> list[str]:
        entries = self._live_entries(key)
        start = bisect.bisect_right([score for score, _ in entries], since)
        return [member for _, member in entries[start:]]

    async def count(self, tenant_id: str) -> int:
        return len(self._live_entries(sync_key(tenant_id)))


def create_redis_client(url: str) -> Redis:
    """Create an asyncio Redis client that returns str responses."""
    return redis_from_url(
        url,
        decode_responses=True,
        socket_timeout=5,
        socket_connect_timeout=5,
    )


def build_sync_log(
    settings: Settings | None = None,
    redis: Redis | None = None,
) -> SyncLog:
    """
    Build the sync log configured in settings.

    Without a Redis URL the log falls back to process memory, which only
    works when a single API instance serves every subscriber.
    """
    settings = settings or get_settings()

    if redis is None and settings.redis_url:
        redis = create_redis_client(settings.redis_url)

    if redis is not None:
        logger.info("Sync log using Redis")
        return RedisSyncLog(
            redis,
            capacity=settings.sync_log_capacity,
            ttl_seconds=settings.sync_log_ttl_seconds,
        )

    logger.warning("REDIS_URL not set, sync log kept in process memory")
    return InMemorySyncLog(
        capacity=settings.sync_log_capacity,
        ttl_seconds=settings.sync_log_ttl_seconds,
    )
