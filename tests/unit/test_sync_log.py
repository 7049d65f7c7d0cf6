"""
Unit tests for the in-memory sync log.

The Redis implementation shares the same base class; its storage commands
are covered in tests/integration/test_redis_sync_log.py.
"""

import pytest

from jobsync.constants import SyncActionType
from jobsync.exceptions import SyncLogUnavailableError
from jobsync.sync.log import InMemorySyncLog, SyncLog, sync_key
from jobsync.types.sync import SyncAction


def make_action(tenant_id: str, timestamp: int, **kwargs) -> SyncAction:
    return SyncAction(
        type=kwargs.pop("type", SyncActionType.UPDATE),
        module=kwargs.pop("module", "guests"),
        entity_id=kwargs.pop("entity_id", f"guest-{timestamp}"),
        tenant_id=tenant_id,
        user_id=kwargs.pop("user_id", "user-1"),
        timestamp=timestamp,
        query_paths=kwargs.pop("query_paths", ["guests.list"]),
        **kwargs,
    )


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestInMemorySyncLog:
    """Tests for InMemorySyncLog."""

    async def test_store_and_read_in_timestamp_order(self, sync_log: InMemorySyncLog):
        """Test actions come back sorted by timestamp regardless of write order."""
        for ts in (300, 100, 200):
            assert await sync_log.store_sync_action(make_action("c1", ts)) is True

        actions = await sync_log.get_missed_actions("c1", 0)

        assert [a.timestamp for a in actions] == [100, 200, 300]

    async def test_since_is_exclusive(self, sync_log: InMemorySyncLog):
        """Test get_missed_actions(T) returns timestamps strictly greater than T."""
        for ts in (1000, 2000, 3000):
            await sync_log.store_sync_action(make_action("c1", ts))

        actions = await sync_log.get_missed_actions("c1", 2000)

        assert [a.timestamp for a in actions] == [3000]

    async def test_log_bound(self):
        """Test only the most recent `capacity` actions are kept."""
        log = InMemorySyncLog(capacity=1000)
        for ts in range(1, 1006):
            await log.store_sync_action(make_action("c1", ts))

        actions = await log.get_missed_actions("c1", 0)

        assert await log.count("c1") == 1000
        assert len(actions) == 1000
        assert actions[0].timestamp == 6
        assert actions[-1].timestamp == 1005

    async def test_tenant_isolation(self, sync_log: InMemorySyncLog):
        """Test a tenant never sees another tenant's actions."""
        await sync_log.store_sync_action(make_action("c1", 100))
        await sync_log.store_sync_action(make_action("c2", 200))

        assert [a.tenant_id for a in await sync_log.get_missed_actions("c1", 0)] == ["c1"]
        assert [a.tenant_id for a in await sync_log.get_missed_actions("c2", 0)] == ["c2"]

    async def test_foreign_member_in_key_is_filtered(self, sync_log: InMemorySyncLog):
        """Test an action stored under the wrong key is not returned."""
        stray = make_action("c2", 100)
        await sync_log._append(sync_key("c1"), stray.model_dump_json(), stray.timestamp)

        assert await sync_log.get_missed_actions("c1", 0) == []

    async def test_malformed_member_is_skipped(self, sync_log: InMemorySyncLog):
        """Test undecodable entries are skipped rather than failing the read."""
        await sync_log._append(sync_key("c1"), "not json", 50)
        await sync_log.store_sync_action(make_action("c1", 100))

        actions = await sync_log.get_missed_actions("c1", 0)

        assert [a.timestamp for a in actions] == [100]

    async def test_same_timestamp_actions_are_all_kept(self, sync_log: InMemorySyncLog):
        """Test distinct actions sharing a millisecond are not collapsed."""
        await sync_log.store_sync_action(make_action("c1", 100, entity_id="a"))
        await sync_log.store_sync_action(make_action("c1", 100, entity_id="b"))

        actions = await sync_log.get_missed_actions("c1", 99)

        assert sorted(a.entity_id for a in actions) == ["a", "b"]

    async def test_log_expires_after_last_write(self):
        """Test the whole tenant log disappears ttl seconds after its last write."""
        clock = FakeClock()
        log = InMemorySyncLog(ttl_seconds=60, clock=clock)
        await log.store_sync_action(make_action("c1", 100))

        clock.now += 30
        await log.store_sync_action(make_action("c1", 200))
        clock.now += 59
        assert await log.count("c1") == 2

        clock.now += 1
        assert await log.count("c1") == 0
        assert await log.get_missed_actions("c1", 0) == []


class BrokenSyncLog(SyncLog):
    """Log whose backend always fails."""

    async def _append(self, key, member, score):
        raise ConnectionError("backend down")

    async def _range_after(self, key, since):
        raise SyncLogUnavailableError("backend down")

    async def count(self, tenant_id):
        return 0


class TestSyncLogFailures:
    """Tests for the error policy shared by every backend."""

    async def test_store_never_raises(self):
        """Test a failed write is reported as False."""
        assert await BrokenSyncLog().store_sync_action(make_action("c1", 1)) is False

    async def test_get_missed_actions_returns_empty(self):
        """Test a failed read degrades to an empty list."""
        assert await BrokenSyncLog().get_missed_actions("c1", 0) == []

    async def test_fetch_since_raises(self):
        """Test the raising variant surfaces the failure."""
        with pytest.raises(SyncLogUnavailableError):
            await BrokenSyncLog().fetch_since("c1", 0)
