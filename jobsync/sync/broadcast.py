"""
Broadcaster: records data mutations in the tenant sync log.
"""

import logging
from typing import Any

from jobsync.constants import SPAN_STORE_SYNC_ACTION, SyncActionType
from jobsync.observability.metrics import MetricsCollector
from jobsync.observability.tracing import get_tracer
from jobsync.sync.log import SyncLog
from jobsync.types.sync import SyncAction
from jobsync.utils import now_ms

logger = logging.getLogger(__name__)


class Broadcaster:
    """
    Best-effort writer for sync actions.

    A broadcast is called after the business mutation has committed, so it
    must never fail the caller. Actions the log could not store are counted
    in `dropped_count` and in the dropped-actions metric.
    """

    def __init__(self, log: SyncLog, metrics: MetricsCollector | None = None):
        self._log = log
        self._metrics = metrics
        self.dropped_count = 0

    async def broadcast_sync(
        self,
        type: SyncActionType | str,
        module: str,
        entity_id: str,
        tenant_id: str,
        user_id: str,
        query_paths: list[str] | None = None,
        client_id: str | None = None,
        payload: dict[str, Any] | None = None,
        tool_name: str | None = None,
    ) -> SyncAction | None:
        """
        Build a sync action stamped with the current time and store it.

        Args:
            type: insert, update or delete.
            module: Entity family, e.g. "contacts".
            entity_id: Id of the mutated entity.
            tenant_id: Tenant whose clients receive the action.
            user_id: User who made the change.
            query_paths: Client query keys to invalidate.
            client_id: Originating client, so it can skip its own echo.
            payload: Optional entity snapshot.
            tool_name: Set when an automated tool made the change.

        Returns:
            The stored action, or None if it was dropped.
        """
        try:
            action = SyncAction(
                type=type,
                module=module,
                entity_id=entity_id,
                tenant_id=tenant_id,
                client_id=client_id,
                user_id=user_id,
                timestamp=now_ms(),
                data=payload,
                query_paths=query_paths or [],
                tool_name=tool_name,
            )
        except ValueError as e:
            logger.error(
                f"Invalid sync action: {e}",
                extra={"module": module, "tenant_id": tenant_id}
            )
            self._record_drop(module)
            return None

        with get_tracer().start_as_current_span(SPAN_STORE_SYNC_ACTION) as span:
            span.set_attribute("tenant_id", tenant_id)
            span.set_attribute("module", module)
            stored = await self._log.store_sync_action(action)
            span.set_attribute("stored", stored)
        if not stored:
            self._record_drop(module)
            return None

        if self._metrics is not None:
            self._metrics.record_sync_stored(module)

        logger.debug(
            "Sync action broadcast",
            extra={
                "action_id": action.id,
                "tenant_id": tenant_id,
                "module": module,
                "action_type": str(action.type),
            }
        )
        return action

    def _record_drop(self, module: str) -> None:
        self.dropped_count += 1
        if self._metrics is not None:
            self._metrics.record_sync_dropped(module)
