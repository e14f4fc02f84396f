from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, Field


class CategoryOut(BaseModel):
    id: str
    name: str
    color: str
    created_at: dt.datetime


class CategoryCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=80)
    color: str = Field(default="#3b82f6", pattern=r"^#([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


class CategoryUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=80)
    color: str | None = Field(default=None, pattern=r"^#([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


class SessionOut(BaseModel):
    id: str
    category_id: str
    start_time: dt.datetime
    end_time: dt.datetime | None = None
    pause_duration: int
    total_duration: int | None = None
    created_at: dt.datetime


class BucketOut(BaseModel):
    duration: int
    count: int


class DailyStatsOut(BaseModel):
    date: dt.date
    total_duration: int
    session_count: int
    categories: dict[str, BucketOut] = Field(default_factory=dict)


class CategoryStatsOut(BaseModel):
    category_id: str
    category_name: str
    category_color: str
    total_duration: int
    session_count: int
    average_duration: int


class PeriodStatsOut(BaseModel):
    start: dt.date
    end: dt.date
    total_duration: int
    total_duration_text: str
    session_count: int
    daily_stats: list[DailyStatsOut]
    category_stats: list[CategoryStatsOut]


class TimerStartRequest(BaseModel):
    category_id: str = ""


class TimerStateOut(BaseModel):
    state: str
    displayed_elapsed: int
    displayed_text: str
    selected_category: str | None = None
    session_id: str | None = None
    pause_duration: int = 0
    start_time: dt.datetime | None = None
    error: str | None = None


class DeleteResult(BaseModel):
    ok: bool = True


class HealthOut(BaseModel):
    status: str = Field(default="ok")
    timer_state: str
    open_session_id: str | None = None
    store_error: str | None = None
    last_timer_error: str | None = None


class MetaOut(BaseModel):
    app: str
    version: str
    db_path: str
    platform: str
