"""
Polling subscriber for a tenant's sync log.

Each connected client runs its own cooperative loop: read everything newer
than its watermark, deliver it in order, advance the watermark, sleep. The
loop stops when its cancellation event is set, and gives up with
FullRefetchRequired when the log stays unreadable.
"""

import asyncio
import logging
from collections.abc import AsyncIterator

from jobsync.config import get_settings
from jobsync.exceptions import FullRefetchRequired, SyncLogUnavailableError
from jobsync.observability.metrics import MetricsCollector
from jobsync.sync.log import SyncLog
from jobsync.types.sync import CatchUpResult, SyncAction
from jobsync.utils import now_ms

logger = logging.getLogger(__name__)


class Subscription:
    """A tenant's view of the sync log."""

    def __init__(self, log: SyncLog, tenant_id: str):
        self._log = log
        self.tenant_id = tenant_id

    async def poll(self, since: int) -> tuple[list[SyncAction], int]:
        """
        Read actions newer than a watermark.

        Args:
            since: Watermark in epoch ms, exclusive.

        Returns:
            The actions in timestamp order and the watermark to use next.

        Raises:
            SyncLogUnavailableError: If the log cannot be read.
        """
        actions = await self._log.fetch_since(self.tenant_id, since)
        watermark = max([since, *(action.timestamp for action in actions)])
        return actions, watermark


async def _pause(seconds: float, cancel: asyncio.Event | None) -> None:
    if cancel is None:
        await asyncio.sleep(seconds)
        return
    try:
        await asyncio.wait_for(cancel.wait(), timeout=seconds)
    except TimeoutError:
        pass


async def subscribe_to_company(
    log: SyncLog,
    tenant_id: str,
    cancel: asyncio.Event | None = None,
    since: int | None = None,
    poll_interval: float | None = None,
    error_backoff: float | None = None,
    max_consecutive_errors: int | None = None,
    metrics: MetricsCollector | None = None,
) -> AsyncIterator[SyncAction]:
    """
    Yield a tenant's sync actions as they are logged.

    Args:
        log: The sync log to poll.
        tenant_id: Tenant to follow.
        cancel: Set to stop the loop. Checked once per iteration.
        since: Reconnect watermark. Defaults to now, so only new actions
            are delivered.
        poll_interval: Seconds between successful polls.
        error_backoff: Seconds to wait after a failed poll.
        max_consecutive_errors: Failed polls in a row before giving up.
        metrics: Optional metrics collector.

    Yields:
        Actions in non-decreasing timestamp order. An action can be
        delivered more than once across reconnects.

    Raises:
        FullRefetchRequired: When the log stays unreadable.
    """
    settings = get_settings()
    if poll_interval is None:
        poll_interval = settings.sync_poll_interval_seconds
    if error_backoff is None:
        error_backoff = settings.sync_error_backoff_seconds
    if max_consecutive_errors is None:
        max_consecutive_errors = settings.sync_max_consecutive_errors

    subscription = Subscription(log, tenant_id)
    watermark = now_ms() if since is None else since
    consecutive_errors = 0

    while cancel is None or not cancel.is_set():
        try:
            actions, next_watermark = await subscription.poll(watermark)
        except SyncLogUnavailableError as e:
            consecutive_errors += 1
            logger.warning(
                f"Sync poll failed: {e}",
                extra={"tenant_id": tenant_id, "consecutive_errors": consecutive_errors}
            )
            if consecutive_errors >= max_consecutive_errors:
                raise FullRefetchRequired(
                    tenant_id, f"{consecutive_errors} consecutive poll failures"
                ) from e
            await _pause(error_backoff, cancel)
            continue

        consecutive_errors = 0
        for action in actions:
            yield action

        # advanced only after the whole batch is handed over
        watermark = next_watermark
        if actions and metrics is not None:
            metrics.record_sync_delivered(len(actions))

        await _pause(poll_interval, cancel)


async def catch_up(
    log: SyncLog,
    tenant_id: str,
    since: int,
    now: int | None = None,
) -> CatchUpResult:
    """
    Replay what a reconnecting client missed and say whether it is enough.

    The result is incomplete when the watermark is unset, older than the
    log's expiry window, when the log filled to capacity (older actions may
    have been evicted), or when the log could not be read.

    Args:
        log: The sync log.
        tenant_id: The client's tenant.
        since: The client's last seen timestamp in epoch ms.
        now: Current time in epoch ms, for tests.

    Returns:
        CatchUpResult with the actions and the completeness flag.
    """
    now = now_ms() if now is None else now

    try:
        actions = await log.fetch_since(tenant_id, since)
    except SyncLogUnavailableError as e:
        logger.error(
            f"Catch-up read failed: {e}",
            extra={"tenant_id": tenant_id, "since": since}
        )
        return CatchUpResult(actions=[], complete=False, watermark=since)

    complete = (
        since > 0
        and now - since <= log.ttl_seconds * 1000
        and len(actions) < log.capacity
    )
    watermark = max([since, *(action.timestamp for action in actions)])

    return CatchUpResult(actions=actions, complete=complete, watermark=watermark)
