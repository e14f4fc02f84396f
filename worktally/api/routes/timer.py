from __future__ import annotations

import json
import queue
from typing import Iterator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from ...db import WorkTallyDB
from ...errors import NotFoundError, StoreError, ValidationError
from ..deps import get_db, get_timer_service
from ..schemas import SessionOut, TimerStartRequest, TimerStateOut
from ..timer_service import TimerService

router = APIRouter(prefix="/api/v1", tags=["timer"])


@router.get("/timer/state", response_model=TimerStateOut)
def timer_state(service: TimerService = Depends(get_timer_service)) -> TimerStateOut:
    return TimerStateOut(**service.state())


@router.post("/timer/start", response_model=TimerStateOut)
def start_timer(
    payload: TimerStartRequest,
    service: TimerService = Depends(get_timer_service),
    db: WorkTallyDB = Depends(get_db),
) -> TimerStateOut:
    category_id = payload.category_id.strip()
    if not category_id:
        raise ValidationError("请先选择一个分类")
    if db.get_category(category_id) is None:
        raise NotFoundError("category", category_id)
    result = service.start(category_id)
    if not result.ok:
        raise StoreError(result.error or "创建会话失败")
    return TimerStateOut(**service.state())


@router.post("/timer/pause", response_model=TimerStateOut)
def pause_timer(service: TimerService = Depends(get_timer_service)) -> TimerStateOut:
    return TimerStateOut(**service.pause())


@router.post("/timer/resume", response_model=TimerStateOut)
def resume_timer(service: TimerService = Depends(get_timer_service)) -> TimerStateOut:
    return TimerStateOut(**service.resume())


@router.post("/timer/stop", response_model=SessionOut)
def stop_timer(service: TimerService = Depends(get_timer_service)) -> SessionOut:
    result = service.stop()
    if not result.ok or result.data is None:
        raise StoreError(result.error or "结束会话失败")
    return SessionOut(**vars(result.data))


@router.get("/timer/stream")
def timer_stream(service: TimerService = Depends(get_timer_service)) -> StreamingResponse:
    subscriber = service.subscribe()

    def event_iter() -> Iterator[str]:
        try:
            while True:
                try:
                    event = subscriber.get(timeout=10)
                    yield f"data: {json.dumps(event, ensure_ascii=False, default=str)}\n\n"
                except queue.Empty:
                    yield ": keepalive\n\n"
        finally:
            service.unsubscribe(subscriber)

    return StreamingResponse(event_iter(), media_type="text/event-stream")
