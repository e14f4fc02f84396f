from __future__ import annotations

import argparse
from datetime import date, datetime, time as dtime
import logging
import sys
from typing import TextIO

from .clock import Clock, RealClock
from .config import Settings
from .db import Category, WorkTallyDB
from .errors import NotFoundError, ValidationError, WorkTallyError
from .notifier import Notifier
from .reporting import (
    format_duration,
    format_duration_full,
    get_monthly_stats,
    get_weekly_stats,
    render_period_summary,
)
from .store import DBStore
from .timer import SessionTimer, null_ticker_factory

logger = logging.getLogger(__name__)


def parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"日期格式错误：{value}，请使用 YYYY-MM-DD") from exc


def parse_since(value: str) -> datetime:
    text = value.strip()
    local_tz = datetime.now().astimezone().tzinfo
    try:
        if len(text) == 10:
            day = date.fromisoformat(text)
            return datetime.combine(day, dtime.min).replace(tzinfo=local_tz)

        dt = datetime.fromisoformat(text)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=local_tz)
        return dt
    except ValueError as exc:
        raise argparse.ArgumentTypeError(
            f"--since 格式错误：{value}，请使用 YYYY-MM-DD 或 ISO 日期时间"
        ) from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="worktally",
        description="WorkTally：按分类记录工作时间，支持暂停与周/月统计",
    )
    parser.add_argument(
        "--db",
        default=None,
        help="SQLite 数据库路径（默认读取 WORKTALLY_DB，或 worktally/data/worktally.sqlite）",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="输出调试日志")

    subparsers = parser.add_subparsers(dest="command", required=True)

    category_parser = subparsers.add_parser("category", help="管理分类")
    category_sub = category_parser.add_subparsers(dest="category_command", required=True)
    add_parser = category_sub.add_parser("add", help="新建分类")
    add_parser.add_argument("name", help="分类名称")
    add_parser.add_argument("--color", default="#3b82f6", help="十六进制颜色，如 #3b82f6")
    category_sub.add_parser("list", help="列出分类")
    edit_parser = category_sub.add_parser("edit", help="修改分类名称或颜色")
    edit_parser.add_argument("category", help="分类 ID 或名称")
    edit_parser.add_argument("--name", default=None, help="新名称")
    edit_parser.add_argument("--color", default=None, help="新颜色")
    delete_parser = category_sub.add_parser("delete", help="删除分类及其全部会话")
    delete_parser.add_argument("category", help="分类 ID 或名称")

    track_parser = subparsers.add_parser("track", help="前台计时，Ctrl-C 结束并保存")
    track_parser.add_argument(
        "--category",
        default="",
        help="分类 ID 或名称；存在未结束的会话时会继续该会话",
    )
    track_parser.add_argument(
        "--tick-seconds",
        type=float,
        default=None,
        help="刷新间隔（秒，>0）",
    )
    track_parser.add_argument("--no-notify", action="store_true", help="禁用桌面提醒")

    subparsers.add_parser("stop", help="结束未完成的会话")
    subparsers.add_parser("status", help="查看当前计时状态")

    log_parser = subparsers.add_parser("log", help="查看会话记录")
    log_parser.add_argument("--since", type=parse_since, default=None, help="起始时间")
    log_parser.add_argument("--category", default=None, help="按分类 ID 或名称过滤")
    log_parser.add_argument("--limit", type=int, default=20, help="最多显示条数")

    week_parser = subparsers.add_parser("week", help="周统计（周一至周日）")
    week_parser.add_argument("--date", type=parse_day, default=None, help="所在周的任意日期")

    month_parser = subparsers.add_parser("month", help="月统计")
    month_parser.add_argument("--date", type=parse_day, default=None, help="所在月的任意日期")

    serve_parser = subparsers.add_parser("serve", help="启动本地 HTTP API")
    serve_parser.add_argument("--host", default=None, help="监听地址")
    serve_parser.add_argument("--port", type=int, default=None, help="监听端口")

    return parser


def main(
    argv: list[str] | None = None,
    clock: Clock | None = None,
    stream: TextIO | None = None,
) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    out = stream or sys.stdout

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = Settings.from_env().with_overrides(db_path=args.db)

    if args.command == "serve":
        return _handle_serve(args, settings)

    if args.command == "track":
        if args.tick_seconds is not None and args.tick_seconds <= 0:
            parser.error("--tick-seconds 必须大于 0")

    try:
        db = WorkTallyDB(settings.db_path, journal_mode=settings.journal_mode)
        if args.command == "category":
            return _handle_category(args, db, out)
        if args.command == "track":
            return _handle_track(args, db, settings, clock or RealClock(), out)
        if args.command == "stop":
            return _handle_stop(db, clock or RealClock(), out)
        if args.command == "status":
            return _handle_status(db, clock or RealClock(), out)
        if args.command == "log":
            return _handle_log(args, db, out)
        if args.command == "week":
            return _handle_period(args, db, out, weekly=True)
        if args.command == "month":
            return _handle_period(args, db, out, weekly=False)
    except WorkTallyError as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        out.write(f"错误：{exc}\n")
        out.flush()
        return 1

    parser.print_help()
    return 2


def resolve_category(db: WorkTallyDB, key: str) -> Category:
    text = key.strip()
    if not text:
        raise ValidationError("请先选择一个分类")
    categories = db.list_categories()
    for item in categories:
        if item.id == text:
            return item
    matches = [item for item in categories if item.name.lower() == text.lower()]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        raise ValidationError(f"分类名称不唯一：{key}，请使用 ID")
    raise NotFoundError("category", key)


def _handle_category(args: argparse.Namespace, db: WorkTallyDB, out: TextIO) -> int:
    if args.category_command == "add":
        created = db.add_category(args.name, args.color)
        out.write(f"已创建分类：{created.name} ({created.color}) id={created.id}\n")
        return 0
    if args.category_command == "list":
        categories = db.list_categories()
        if not categories:
            out.write("还没有分类。\n")
            return 0
        for item in categories:
            out.write(f"{item.id} | {item.name} | {item.color}\n")
        return 0
    if args.category_command == "edit":
        target = resolve_category(db, args.category)
        updated = db.update_category(target.id, name=args.name, color=args.color)
        out.write(f"已更新分类：{updated.name} ({updated.color})\n")
        return 0
    if args.category_command == "delete":
        target = resolve_category(db, args.category)
        db.delete_category(target.id)
        out.write(f"已删除分类：{target.name}（其会话一并删除）\n")
        return 0
    return 2


def _handle_track(
    args: argparse.Namespace,
    db: WorkTallyDB,
    settings: Settings,
    clock: Clock,
    out: TextIO,
) -> int:
    notify = settings.notify and not args.no_notify
    tick_seconds = args.tick_seconds or settings.tick_seconds
    timer = SessionTimer(
        store=DBStore(db),
        clock=clock,
        notifier=Notifier(stream=out),
        ticker_factory=null_ticker_factory,
        notifications_enabled=lambda: notify,
    )

    recovered = timer.recover()
    if not recovered.ok:
        out.write(f"错误：{recovered.error}\n")
        return 1
    if recovered.data is not None:
        category = db.get_category(recovered.data.category_id)
        out.write("继续未结束的会话。\n")
    else:
        category = resolve_category(db, args.category)
        started = timer.start(category.id)
        if not started.ok:
            out.write(f"错误：{started.error}\n")
            return 1

    label = category.name if category is not None else "?"
    out.write(f"开始计时：{label}（Ctrl-C 结束并保存）\n")
    out.flush()

    try:
        while True:
            elapsed = timer.tick()
            out.write(f"\r{label} {format_duration_full(elapsed)}")
            out.flush()
            clock.sleep(tick_seconds)
    except KeyboardInterrupt:
        pass
    finally:
        timer.close()

    out.write("\r" + (" " * 60) + "\r")
    result = timer.stop()
    if not result.ok or result.data is None:
        out.write(f"保存失败：{result.error}\n")
        return 1
    out.write(
        f"已保存：{label} {format_duration(result.data.total_duration or 0)}"
        f"（暂停 {format_duration_full(result.data.pause_duration)}）\n"
    )
    out.flush()
    return 0


def _handle_stop(db: WorkTallyDB, clock: Clock, out: TextIO) -> int:
    timer = SessionTimer(
        store=DBStore(db),
        clock=clock,
        notifier=Notifier(stream=out),
        ticker_factory=null_ticker_factory,
    )
    recovered = timer.recover()
    if not recovered.ok:
        out.write(f"错误：{recovered.error}\n")
        return 1
    if recovered.data is None:
        out.write("没有进行中的会话。\n")
        return 0
    result = timer.stop()
    if not result.ok or result.data is None:
        out.write(f"保存失败：{result.error}\n")
        return 1
    out.write(f"已结束会话，时长 {format_duration(result.data.total_duration or 0)}\n")
    return 0


def _handle_status(db: WorkTallyDB, clock: Clock, out: TextIO) -> int:
    timer = SessionTimer(
        store=DBStore(db),
        clock=clock,
        notifier=Notifier(stream=out),
        ticker_factory=null_ticker_factory,
    )
    recovered = timer.recover()
    if not recovered.ok:
        out.write(f"错误：{recovered.error}\n")
        return 1
    snap = timer.snapshot()
    timer.close()
    if snap.state == "idle":
        out.write("空闲\n")
        return 0
    category = db.get_category(snap.selected_category or "")
    name = category.name if category is not None else snap.selected_category
    out.write(
        f"进行中 | {name} | {format_duration_full(snap.displayed_elapsed)} | "
        f"已暂停 {format_duration_full(snap.pause_duration)}\n"
    )
    return 0


def _handle_log(args: argparse.Namespace, db: WorkTallyDB, out: TextIO) -> int:
    category_id = resolve_category(db, args.category).id if args.category else None
    sessions = db.list_sessions(since=args.since, category_id=category_id, limit=args.limit)
    if not sessions:
        out.write("没有匹配记录。\n")
        return 0

    names = {item.id: item.name for item in db.list_categories()}
    for item in sessions:
        start_text = item.start_time.astimezone().strftime("%Y-%m-%d %H:%M:%S")
        if item.total_duration is None:
            duration_text = "进行中"
        else:
            duration_text = format_duration(item.total_duration)
        out.write(
            f"{start_text} | {names.get(item.category_id, item.category_id)} | "
            f"{duration_text} | 暂停 {format_duration_full(item.pause_duration)}\n"
        )
    return 0


def _handle_period(args: argparse.Namespace, db: WorkTallyDB, out: TextIO, weekly: bool) -> int:
    sessions = db.list_all_sessions()
    categories = db.list_categories()
    if weekly:
        stats = get_weekly_stats(sessions, categories, args.date)
        title = "周统计"
    else:
        stats = get_monthly_stats(sessions, categories, args.date)
        title = "月统计"
    out.write(render_period_summary(stats, title) + "\n")
    return 0


def _handle_serve(args: argparse.Namespace, settings: Settings) -> int:
    from .server import run_server

    return run_server(settings.with_overrides(host=args.host, port=args.port))


if __name__ == "__main__":
    raise SystemExit(main())
