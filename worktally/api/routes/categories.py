from __future__ import annotations

from fastapi import APIRouter, Depends

from ...db import Category, WorkTallyDB
from ...errors import NotFoundError
from ..deps import get_db
from ..schemas import CategoryCreateRequest, CategoryOut, CategoryUpdateRequest, DeleteResult

router = APIRouter(prefix="/api/v1", tags=["categories"])


def _out(item: Category) -> CategoryOut:
    return CategoryOut(id=item.id, name=item.name, color=item.color, created_at=item.created_at)


@router.get("/categories", response_model=list[CategoryOut])
def list_categories(db: WorkTallyDB = Depends(get_db)) -> list[CategoryOut]:
    return [_out(item) for item in db.list_categories()]


@router.post("/categories", response_model=CategoryOut, status_code=201)
def create_category(payload: CategoryCreateRequest, db: WorkTallyDB = Depends(get_db)) -> CategoryOut:
    return _out(db.add_category(payload.name, payload.color))


@router.get("/categories/{category_id}", response_model=CategoryOut)
def get_category(category_id: str, db: WorkTallyDB = Depends(get_db)) -> CategoryOut:
    item = db.get_category(category_id)
    if item is None:
        raise NotFoundError("category", category_id)
    return _out(item)


@router.patch("/categories/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: str,
    payload: CategoryUpdateRequest,
    db: WorkTallyDB = Depends(get_db),
) -> CategoryOut:
    return _out(db.update_category(category_id, name=payload.name, color=payload.color))


@router.delete("/categories/{category_id}", response_model=DeleteResult)
def delete_category(category_id: str, db: WorkTallyDB = Depends(get_db)) -> DeleteResult:
    db.delete_category(category_id)
    return DeleteResult()
