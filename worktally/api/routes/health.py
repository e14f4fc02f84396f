from __future__ import annotations

from fastapi import APIRouter, Depends

from ...store import TrackerCache
from ..deps import get_cache, get_timer_service
from ..schemas import HealthOut
from ..timer_service import TimerService

router = APIRouter(prefix="/api/v1", tags=["system"])


@router.get("/health", response_model=HealthOut)
def health(
    cache: TrackerCache = Depends(get_cache),
    service: TimerService = Depends(get_timer_service),
) -> HealthOut:
    snap = service.timer.snapshot()
    return HealthOut(
        status="degraded" if cache.error else "ok",
        timer_state=snap.state,
        open_session_id=snap.session_id,
        store_error=cache.error,
        last_timer_error=service.timer.last_error,
    )
