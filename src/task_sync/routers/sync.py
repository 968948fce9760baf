from __future__ import annotations

from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query

from ..dependencies import get_sync_engine
from ..schemas import (
    RequeueRequest,
    RequeueResult,
    SyncQueueItemOut,
    SyncResultOut,
    SyncStatusOut,
)
from ..sync_engine import SyncEngine

router = APIRouter(
    prefix="/api/v1/sync",
    tags=["sync"],
)


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=SyncResultOut,
    summary="Run Sync",
    description=(
        "Run one reconciliation pass against the remote service and return its outcome.\n\n"
        "An unreachable service yields success=false with zero synced and failed items; "
        "the queue is left untouched. Concurrent calls are serialized."
    ),
    responses={200: {"description": "Pass completed (check success for item failures)"}},
)
def run_sync(engine: SyncEngine = Depends(get_sync_engine)) -> SyncResultOut:
    """
    Trigger a sync pass.
    """
    result = engine.sync()
    return SyncResultOut(**asdict(result))


# PUBLIC_INTERFACE
@router.get(
    "/status",
    response_model=SyncStatusOut,
    summary="Sync Status",
    description="Reachability of the remote service plus outbox and task counters.",
)
def sync_status(engine: SyncEngine = Depends(get_sync_engine)) -> SyncStatusOut:
    return SyncStatusOut(**engine.status())


# PUBLIC_INTERFACE
@router.get(
    "/queue",
    response_model=List[SyncQueueItemOut],
    summary="List Queue",
    description="Pending outbox entries in delivery order, dead letters included.",
)
def list_queue(
    limit: int = Query(100, ge=0, le=1000, description="Maximum number of entries to return"),
    engine: SyncEngine = Depends(get_sync_engine),
) -> List[SyncQueueItemOut]:
    return [SyncQueueItemOut(**item) for item in engine.sync_queue.list_items(limit=limit)]


# PUBLIC_INTERFACE
@router.post(
    "/dead-letters/requeue",
    response_model=RequeueResult,
    summary="Requeue Dead Letters",
    description=(
        "Reset the retry counter of entries that hit the retry limit so the next pass "
        "delivers them again. Omit item_ids to requeue every dead letter."
    ),
)
def requeue_dead_letters(
    payload: Optional[RequeueRequest] = Body(default=None),
    engine: SyncEngine = Depends(get_sync_engine),
) -> RequeueResult:
    item_ids = payload.item_ids if payload else None
    return RequeueResult(requeued=engine.requeue_dead_letters(item_ids))
