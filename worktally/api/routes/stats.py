from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query

from ...reporting import PeriodStats, format_duration, get_monthly_stats, get_weekly_stats
from ...store import TrackerCache
from ..deps import get_cache
from ..schemas import BucketOut, CategoryStatsOut, DailyStatsOut, PeriodStatsOut

router = APIRouter(prefix="/api/v1", tags=["stats"])


def _out(stats: PeriodStats) -> PeriodStatsOut:
    return PeriodStatsOut(
        start=stats.start,
        end=stats.end,
        total_duration=stats.total_duration,
        total_duration_text=format_duration(stats.total_duration),
        session_count=stats.session_count,
        daily_stats=[
            DailyStatsOut(
                date=day.date,
                total_duration=day.total_duration,
                session_count=day.session_count,
                categories={
                    key: BucketOut(duration=bucket.duration, count=bucket.count)
                    for key, bucket in day.categories.items()
                },
            )
            for day in stats.daily_stats
        ],
        category_stats=[CategoryStatsOut(**vars(item)) for item in stats.category_stats],
    )


@router.get("/stats/weekly", response_model=PeriodStatsOut)
def weekly_stats(
    day: date | None = Query(default=None, alias="date"),
    cache: TrackerCache = Depends(get_cache),
) -> PeriodStatsOut:
    return _out(get_weekly_stats(cache.sessions, cache.categories, day))


@router.get("/stats/monthly", response_model=PeriodStatsOut)
def monthly_stats(
    day: date | None = Query(default=None, alias="date"),
    cache: TrackerCache = Depends(get_cache),
) -> PeriodStatsOut:
    return _out(get_monthly_stats(cache.sessions, cache.categories, day))
