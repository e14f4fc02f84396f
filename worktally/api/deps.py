from __future__ import annotations

from fastapi import Request

from ..db import WorkTallyDB
from ..store import TrackerCache
from .timer_service import TimerService


def get_db(request: Request) -> WorkTallyDB:
    return request.app.state.db


def get_cache(request: Request) -> TrackerCache:
    return request.app.state.cache


def get_timer_service(request: Request) -> TimerService:
    return request.app.state.timer_service
