from __future__ import annotations

import calendar
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
from typing import Any, Iterable

from .db import Category


@dataclass(frozen=True)
class Bucket:
    duration: int = 0
    count: int = 0


@dataclass(frozen=True)
class DailyStats:
    date: date
    total_duration: int
    session_count: int
    categories: dict[str, Bucket] = field(default_factory=dict)


@dataclass(frozen=True)
class CategoryStats:
    category_id: str
    category_name: str
    category_color: str
    total_duration: int
    session_count: int
    average_duration: int


@dataclass(frozen=True)
class PeriodStats:
    start: date
    end: date
    total_duration: int
    session_count: int
    daily_stats: list[DailyStats]
    category_stats: list[CategoryStats]


def format_duration(seconds: int) -> str:
    hours, rest = divmod(int(seconds), 3600)
    minutes = rest // 60
    if hours == 0:
        return f"{minutes}min"
    if minutes == 0:
        return f"{hours}h"
    return f"{hours}h{minutes:02d}"


def format_duration_full(seconds: int) -> str:
    minutes, sec = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours:02d}:{minutes:02d}:{sec:02d}"


def rounded_average(total: int, count: int) -> int:
    """Nearest integer of ``total / count``, halves rounded up."""
    if count <= 0:
        return 0
    return (2 * total + count) // (2 * count)


def local_day(moment: datetime, tz: tzinfo | None = None) -> date:
    if moment.tzinfo is None:
        return moment.date()
    return moment.astimezone(tz).date()


def reference_day(reference: date | datetime | None = None, tz: tzinfo | None = None) -> date:
    if reference is None:
        return datetime.now(tz).date()
    if isinstance(reference, datetime):
        return local_day(reference, tz)
    return reference


def week_bounds(reference: date | datetime | None = None, tz: tzinfo | None = None) -> tuple[date, date]:
    day = reference_day(reference, tz)
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)


def month_bounds(reference: date | datetime | None = None, tz: tzinfo | None = None) -> tuple[date, date]:
    day = reference_day(reference, tz)
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


def _is_duration(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value >= 0


def _qualifying(sessions: Iterable[Any], start: date, end: date, tz: tzinfo | None) -> list[tuple[date, Any]]:
    picked: list[tuple[date, Any]] = []
    for item in sessions:
        total = getattr(item, "total_duration", None)
        started = getattr(item, "start_time", None)
        if not _is_duration(total) or not isinstance(started, datetime):
            continue
        day = local_day(started, tz)
        if start <= day <= end:
            picked.append((day, item))
    return picked


def calculate_period_stats(
    sessions: Iterable[Any],
    categories: Iterable[Category],
    start: date,
    end: date,
    tz: tzinfo | None = None,
) -> PeriodStats:
    """Aggregate closed sessions that started within ``[start, end]`` (local days).

    Open sessions and sessions with a missing duration are ignored. ``daily_stats``
    holds one entry per calendar day in the range; ``category_stats`` lists only
    categories with at least one session, in input order.
    """
    picked = _qualifying(sessions, start, end, tz)

    day_totals: dict[date, int] = {}
    day_counts: dict[date, int] = {}
    day_buckets: dict[date, dict[str, Bucket]] = {}
    cat_totals: dict[str, int] = {}
    cat_counts: dict[str, int] = {}

    for day, item in picked:
        duration = int(item.total_duration)
        category_id = item.category_id
        day_totals[day] = day_totals.get(day, 0) + duration
        day_counts[day] = day_counts.get(day, 0) + 1
        buckets = day_buckets.setdefault(day, {})
        current = buckets.get(category_id, Bucket())
        buckets[category_id] = Bucket(current.duration + duration, current.count + 1)
        cat_totals[category_id] = cat_totals.get(category_id, 0) + duration
        cat_counts[category_id] = cat_counts.get(category_id, 0) + 1

    daily_stats: list[DailyStats] = []
    day = start
    while day <= end:
        daily_stats.append(
            DailyStats(
                date=day,
                total_duration=day_totals.get(day, 0),
                session_count=day_counts.get(day, 0),
                categories=dict(day_buckets.get(day, {})),
            )
        )
        day += timedelta(days=1)

    category_stats: list[CategoryStats] = []
    for category in categories:
        count = cat_counts.get(category.id, 0)
        if count == 0:
            continue
        total = cat_totals[category.id]
        category_stats.append(
            CategoryStats(
                category_id=category.id,
                category_name=category.name,
                category_color=category.color,
                total_duration=total,
                session_count=count,
                average_duration=rounded_average(total, count),
            )
        )

    return PeriodStats(
        start=start,
        end=end,
        total_duration=sum(int(item.total_duration) for _, item in picked),
        session_count=len(picked),
        daily_stats=daily_stats,
        category_stats=category_stats,
    )


def get_weekly_stats(
    sessions: Iterable[Any],
    categories: Iterable[Category],
    reference: date | datetime | None = None,
    tz: tzinfo | None = None,
) -> PeriodStats:
    start, end = week_bounds(reference, tz)
    return calculate_period_stats(sessions, categories, start, end, tz)


def get_monthly_stats(
    sessions: Iterable[Any],
    categories: Iterable[Category],
    reference: date | datetime | None = None,
    tz: tzinfo | None = None,
) -> PeriodStats:
    start, end = month_bounds(reference, tz)
    return calculate_period_stats(sessions, categories, start, end, tz)


def render_period_summary(stats: PeriodStats, title: str) -> str:
    days = len(stats.daily_stats)
    lines: list[str] = []
    lines.append(f"[{title}] {stats.start.isoformat()} 至 {stats.end.isoformat()}")
    lines.append(f"总时长: {format_duration(stats.total_duration)}")
    lines.append(f"会话数: {stats.session_count} 次")
    lines.append(
        f"平均每次: {format_duration(rounded_average(stats.total_duration, stats.session_count))}"
    )
    lines.append(f"日均: {format_duration(rounded_average(stats.total_duration, days))}")
    lines.append("")

    lines.append("分类分布:")
    if stats.category_stats:
        ordered = sorted(stats.category_stats, key=lambda x: x.total_duration, reverse=True)
        for item in ordered:
            share = (
                item.total_duration * 100 // stats.total_duration if stats.total_duration else 0
            )
            lines.append(
                f"  {item.category_name} ({item.category_color}) | "
                f"{format_duration(item.total_duration)} | {item.session_count} 次 | "
                f"平均 {format_duration(item.average_duration)} | {share}%"
            )
    else:
        lines.append("  本期暂无会话。")
    lines.append("")

    lines.append("每日时长:")
    for daily in stats.daily_stats:
        lines.append(
            f"  {daily.date.isoformat()} | {format_duration(daily.total_duration)} | "
            f"{daily.session_count} 次"
        )
    return "\n".join(lines)
