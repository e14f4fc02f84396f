from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from ...db import Session, WorkTallyDB
from ...errors import NotFoundError, ValidationError
from ..deps import get_db
from ..schemas import DeleteResult, SessionOut

router = APIRouter(prefix="/api/v1", tags=["sessions"])


def _out(item: Session) -> SessionOut:
    return SessionOut(**vars(item))


@router.get("/sessions", response_model=list[SessionOut])
def list_sessions(
    since: datetime | None = None,
    category_id: str | None = None,
    limit: int = Query(default=30, ge=1, le=2000),
    start: datetime | None = Query(default=None, alias="from"),
    end: datetime | None = Query(default=None, alias="to"),
    db: WorkTallyDB = Depends(get_db),
) -> list[SessionOut]:
    if start is not None or end is not None:
        if start is None or end is None:
            raise ValidationError("from 与 to 需要同时提供")
        items = db.list_sessions_between(start, end, category_id=category_id)
        return [_out(item) for item in items]
    items = db.list_sessions(since=since, category_id=category_id, limit=limit)
    return [_out(item) for item in items]


@router.get("/sessions/{session_id}", response_model=SessionOut)
def get_session(session_id: str, db: WorkTallyDB = Depends(get_db)) -> SessionOut:
    item = db.get_session(session_id)
    if item is None:
        raise NotFoundError("session", session_id)
    return _out(item)


@router.delete("/sessions/{session_id}", response_model=DeleteResult)
def delete_session(session_id: str, db: WorkTallyDB = Depends(get_db)) -> DeleteResult:
    db.delete_session(session_id)
    return DeleteResult()
