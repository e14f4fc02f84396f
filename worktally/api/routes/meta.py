from __future__ import annotations

import platform

from fastapi import APIRouter, Depends

from ... import __version__
from ...db import WorkTallyDB
from ..deps import get_db
from ..schemas import MetaOut

router = APIRouter(prefix="/api/v1", tags=["system"])


@router.get("/meta", response_model=MetaOut)
def meta(db: WorkTallyDB = Depends(get_db)) -> MetaOut:
    return MetaOut(
        app="WorkTally",
        version=__version__,
        db_path=str(db.db_path),
        platform=platform.platform(),
    )
