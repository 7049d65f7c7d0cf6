"""
Sync routes: catch-up over HTTP and live delivery over WebSocket.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, status

from jobsync.api.auth import CurrentUser, decode_token
from jobsync.api.dependencies import get_sync_log
from jobsync.api.websocket import sync_websocket_handler
from jobsync.constants import API_V1_PREFIX
from jobsync.observability.metrics import get_metrics
from jobsync.sync.log import SyncLog
from jobsync.sync.subscriber import catch_up
from jobsync.types.api import SyncActionsResponse

router = APIRouter(tags=["Sync"])


@router.get(
    f"{API_V1_PREFIX}/sync/actions",
    response_model=SyncActionsResponse,
    summary="Get missed sync actions",
    description=(
        "Return the tenant's actions newer than `since` (epoch ms). "
        "complete=false means the client must reload its full state."
    ),
)
async def get_missed_actions(
    current_user: CurrentUser,
    since: int = Query(..., ge=0, description="Last seen timestamp, epoch ms"),
    log: SyncLog = Depends(get_sync_log),
) -> SyncActionsResponse:
    """Catch a reconnecting client up from its watermark."""
    result = await catch_up(log, current_user.tenant_id, since)

    if result.actions:
        get_metrics().record_sync_delivered(len(result.actions))

    return SyncActionsResponse(
        actions=result.actions,
        complete=result.complete,
        watermark=result.watermark,
    )


@router.websocket("/ws/sync")
async def sync_websocket(
    websocket: WebSocket,
    token: str = Query(...),
    since: int | None = Query(default=None, ge=0),
):
    """
    Live sync stream for the token's tenant.

    Browsers cannot set headers on a WebSocket handshake, so the JWT is
    passed as a query parameter.
    """
    try:
        token_data = decode_token(token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await sync_websocket_handler(
        websocket,
        log=websocket.app.state.sync_log,
        tenant_id=token_data.tenant_id,
        since=since,
    )
