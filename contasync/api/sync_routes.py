"""
Sync API routes.

POST   /api/sync           : Trigger immediate sync
GET    /api/sync/status    : Sync state snapshot for status displays
POST   /api/sync/online    : Report connectivity changes (reconnect triggers sync)
GET    /api/sync/changelog : View recent change log entries
GET    /api/sync/summary   : Change log totals per action and actor
"""

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from contasync.sync.changelog import ChangeAction
from contasync.sync.services import SyncServices

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


def get_services(request: Request) -> SyncServices:
    services = getattr(request.app.state, "sync_services", None)
    if services is None:
        raise HTTPException(status_code=400, detail="Sync engine not initialized")
    return services


# ── Request/Response Models ─────────────────────────────────────────────

class SyncResultOut(BaseModel):
    outcome: str
    uploaded: int
    downloaded: int
    applied: int
    conflicts: int
    error: Optional[str] = None


class StatusResponse(BaseModel):
    is_online: bool
    last_sync_watermark: Optional[str] = None
    pending_count: int
    sync_in_progress: bool
    last_error: Optional[str] = None
    phase: str
    degraded_reason: Optional[str] = None
    last_result: Optional[SyncResultOut] = None
    device_id: str
    auto_sync_running: bool
    sync_interval_seconds: float


class OnlineRequest(BaseModel):
    online: bool


class ChangeLogOut(BaseModel):
    id: int
    actor_name: str
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    timestamp: datetime


def _result_out(result) -> Optional[SyncResultOut]:
    if result is None:
        return None
    return SyncResultOut(
        outcome=result.outcome.value,
        uploaded=result.uploaded,
        downloaded=result.downloaded,
        applied=result.applied,
        conflicts=result.conflicts,
        error=result.error,
    )


# ── Routes ──────────────────────────────────────────────────────────────

@router.post("", response_model=SyncResultOut)
async def trigger_sync(services: SyncServices = Depends(get_services)):
    """Trigger an immediate upload+download cycle."""
    result = await services.scheduler.force_sync()
    return _result_out(result)


@router.get("/status", response_model=StatusResponse)
async def get_status(services: SyncServices = Depends(get_services)):
    """Current sync state. Errors are reported here, never raised."""
    scheduler = services.scheduler
    snapshot = scheduler.status()
    state = snapshot.to_dict()
    state.pop("last_result", None)
    return StatusResponse(
        **state,
        last_result=_result_out(snapshot.last_result),
        device_id=services.device.get(),
        auto_sync_running=scheduler.auto_sync_running,
        sync_interval_seconds=scheduler.interval_seconds,
    )


@router.post("/online", response_model=Optional[SyncResultOut])
async def set_online(req: OnlineRequest, services: SyncServices = Depends(get_services)):
    """Connectivity changed. Returns the reconnect cycle's result, if one ran."""
    result = await services.scheduler.set_online(req.online)
    return _result_out(result)


@router.get("/changelog", response_model=list[ChangeLogOut])
def get_changelog(
    limit: int = 50,
    entity_type: Optional[str] = None,
    action: Optional[str] = None,
    actor: Optional[str] = None,
    services: SyncServices = Depends(get_services),
):
    """View recent change log entries, newest first."""
    if action is not None:
        try:
            action = ChangeAction(action)
        except ValueError:
            raise HTTPException(status_code=422, detail=f"Unknown action: {action}")
    entries = services.changelog.query(
        actor=actor, action=action, entity_type=entity_type, limit=limit,
    )
    return [
        ChangeLogOut(
            id=e.id,
            actor_name=e.actor_name,
            action=e.action.value,
            entity_type=e.entity_type,
            entity_id=e.entity_id,
            old_value=e.old_value,
            new_value=e.new_value,
            timestamp=e.timestamp,
        )
        for e in entries
    ]


@router.get("/summary")
def get_summary(services: SyncServices = Depends(get_services)):
    summary = services.changelog.summary(recent=0)
    summary.pop("recent_activity", None)
    return summary
