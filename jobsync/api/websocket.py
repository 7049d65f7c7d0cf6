"""
WebSocket delivery of tenant sync actions.

Each connection runs two tasks: one forwards actions from a polling
subscriber, the other reads client messages (ping, disconnect). Closing
either side stops both.
"""

import asyncio
import json
import logging

from fastapi import WebSocket, WebSocketDisconnect

from jobsync.constants import WS_MESSAGE_PONG, WS_MESSAGE_REFETCH, WS_MESSAGE_SYNC
from jobsync.exceptions import FullRefetchRequired
from jobsync.observability.metrics import MetricsCollector, get_metrics
from jobsync.sync.log import SyncLog
from jobsync.sync.subscriber import catch_up, subscribe_to_company
from jobsync.types.sync import SyncAction

logger = logging.getLogger(__name__)


async def _send_action(websocket: WebSocket, action: SyncAction) -> None:
    await websocket.send_json({
        "type": WS_MESSAGE_SYNC,
        "action": action.model_dump(mode="json"),
    })


async def _send_refetch(websocket: WebSocket, reason: str) -> None:
    await websocket.send_json({"type": WS_MESSAGE_REFETCH, "reason": reason})


async def _forward_actions(
    websocket: WebSocket,
    log: SyncLog,
    tenant_id: str,
    cancel: asyncio.Event,
    since: int | None,
    metrics: MetricsCollector,
) -> None:
    try:
        async for action in subscribe_to_company(
            log, tenant_id, cancel=cancel, since=since, metrics=metrics
        ):
            await _send_action(websocket, action)
    except FullRefetchRequired as e:
        logger.warning(
            "Sync subscriber escalated to full refetch",
            extra={"tenant_id": tenant_id, "reason": e.reason}
        )
        await _send_refetch(websocket, e.reason)
        await websocket.close()


async def _receive_messages(websocket: WebSocket) -> None:
    while True:
        data = await websocket.receive_text()

        try:
            message = json.loads(data)
        except json.JSONDecodeError as e:
            await websocket.send_json({
                "type": "error",
                "message": f"Invalid message: {e}",
            })
            continue

        if isinstance(message, dict) and message.get("action") == "ping":
            await websocket.send_json({"type": WS_MESSAGE_PONG})


async def sync_websocket_handler(
    websocket: WebSocket,
    log: SyncLog,
    tenant_id: str,
    since: int | None = None,
    metrics: MetricsCollector | None = None,
) -> None:
    """
    Handle a WebSocket connection for sync updates.

    Args:
        websocket: The WebSocket connection.
        log: The sync log to read.
        tenant_id: The tenant whose actions are delivered.
        since: Reconnect watermark. Missed actions are replayed first, and a
            refetch message is sent if the history is incomplete.
        metrics: Optional metrics collector.
    """
    metrics = metrics or get_metrics()
    await websocket.accept()
    logger.info("WebSocket connected", extra={"tenant_id": tenant_id})

    cancel = asyncio.Event()
    start_from = since

    try:
        if since is not None:
            result = await catch_up(log, tenant_id, since)
            for action in result.actions:
                await _send_action(websocket, action)
            if result.actions:
                metrics.record_sync_delivered(len(result.actions))
            if not result.complete:
                await _send_refetch(websocket, "history incomplete")
            start_from = result.watermark
    except WebSocketDisconnect:
        logger.info("WebSocket disconnected", extra={"tenant_id": tenant_id})
        return

    sender = asyncio.create_task(
        _forward_actions(websocket, log, tenant_id, cancel, start_from, metrics)
    )
    receiver = asyncio.create_task(_receive_messages(websocket))

    try:
        await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        cancel.set()
        receiver.cancel()
        sender.cancel()
        results = await asyncio.gather(sender, receiver, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception) and not isinstance(
                result, (WebSocketDisconnect, asyncio.CancelledError)
            ):
                logger.warning(
                    f"WebSocket task ended with error: {result}",
                    extra={"tenant_id": tenant_id}
                )

    logger.info("WebSocket disconnected", extra={"tenant_id": tenant_id})
