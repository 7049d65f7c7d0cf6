"""
Sync action type definitions.
"""

from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from jobsync.constants import SyncActionType


class SyncAction(BaseModel):
    """
    A data mutation to be broadcast to every connected client of a tenant.

    Actions are immutable once created. Clients treat them as "something
    changed, re-fetch these queries" hints rather than authoritative deltas.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    type: SyncActionType
    module: str
    entity_id: str
    tenant_id: str
    client_id: str | None = None
    user_id: str
    timestamp: int = Field(..., ge=0, description="Origin wall-clock time, epoch ms")
    data: dict[str, Any] | None = None
    query_paths: list[str] = Field(default_factory=list)
    tool_name: str | None = None


class CatchUpResult(BaseModel):
    """
    Actions recovered for a reconnecting client.

    When complete is False the log may have evicted actions the client
    never saw, and the client must reload its full state.
    """

    actions: list[SyncAction]
    complete: bool
    watermark: int
