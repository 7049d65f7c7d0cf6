"""
Unit tests for the broadcaster.
"""

from jobsync.constants import SyncActionType
from jobsync.observability.metrics import MetricsCollector
from jobsync.sync.broadcast import Broadcaster
from jobsync.sync.log import InMemorySyncLog
from jobsync.utils import now_ms


class UnwritableSyncLog(InMemorySyncLog):
    async def _append(self, key, member, score):
        raise ConnectionError("redis unavailable")


class TestBroadcaster:
    """Tests for Broadcaster.broadcast_sync."""

    async def test_broadcast_stores_action(
        self,
        sync_log: InMemorySyncLog,
        metrics: MetricsCollector,
    ):
        """Test a broadcast is stamped, stored and readable by the tenant."""
        broadcaster = Broadcaster(sync_log, metrics=metrics)
        before = now_ms()

        action = await broadcaster.broadcast_sync(
            type=SyncActionType.INSERT,
            module="guests",
            entity_id="guest-1",
            tenant_id="c1",
            user_id="user-1",
            query_paths=["guests.list", "dashboard.stats"],
            client_id="tab-9",
            payload={"name": "Ada"},
        )

        assert action is not None
        assert action.timestamp >= before
        assert action.client_id == "tab-9"
        assert action.data == {"name": "Ada"}
        assert await sync_log.get_missed_actions("c1", before - 1) == [action]
        assert broadcaster.dropped_count == 0
        assert metrics.sync_stored.labels(module="guests")._value.get() == 1

    async def test_broadcast_ids_are_unique(self, sync_log: InMemorySyncLog):
        """Test every broadcast gets its own id."""
        broadcaster = Broadcaster(sync_log)

        first = await broadcaster.broadcast_sync("update", "gifts", "g1", "c1", "u1")
        second = await broadcaster.broadcast_sync("update", "gifts", "g1", "c1", "u1")

        assert first.id != second.id

    async def test_failed_store_is_counted_not_raised(self, metrics: MetricsCollector):
        """Test a backend failure drops the action and increments the counter."""
        broadcaster = Broadcaster(UnwritableSyncLog(), metrics=metrics)

        action = await broadcaster.broadcast_sync(
            type=SyncActionType.DELETE,
            module="vendors",
            entity_id="v1",
            tenant_id="c1",
            user_id="user-1",
        )

        assert action is None
        assert broadcaster.dropped_count == 1
        assert metrics.sync_dropped.labels(module="vendors")._value.get() == 1

    async def test_invalid_action_is_dropped(self, sync_log: InMemorySyncLog):
        """Test an unknown action type is dropped rather than raised."""
        broadcaster = Broadcaster(sync_log)

        action = await broadcaster.broadcast_sync("upsert", "guests", "g1", "c1", "u1")

        assert action is None
        assert broadcaster.dropped_count == 1
