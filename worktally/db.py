from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from pathlib import Path
import re
import sqlite3
from threading import Lock
from typing import Any, Callable, Iterator
import uuid

from .config import default_db_path
from .errors import NotFoundError, StoreError, ValidationError

logger = logging.getLogger(__name__)

DATETIME_FMT = "%Y-%m-%dT%H:%M:%S.%f"
HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")

ChangeListener = Callable[[dict[str, str]], None]


def _to_utc_text(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.astimezone()
    value = value.astimezone(timezone.utc)
    return value.strftime(DATETIME_FMT)


def _from_utc_text(text: str) -> datetime:
    return datetime.strptime(text, DATETIME_FMT).replace(tzinfo=timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def normalize_color(raw: str) -> str:
    color = raw.strip().lower()
    if not HEX_COLOR.match(color):
        raise ValidationError(f"颜色格式错误：{raw}，应为 #rgb 或 #rrggbb")
    return color


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    color: str
    created_at: datetime


@dataclass(frozen=True)
class Session:
    id: str
    category_id: str
    start_time: datetime
    end_time: datetime | None
    pause_duration: int
    total_duration: int | None
    created_at: datetime

    @property
    def is_open(self) -> bool:
        return self.end_time is None


_SESSION_COLUMNS = (
    "id, category_id, start_time, end_time, pause_duration, total_duration, created_at"
)


class WorkTallyDB:
    def __init__(self, db_path: Path | None = None, journal_mode: str | None = None) -> None:
        self.db_path = Path(db_path or default_db_path())
        raw_mode = (journal_mode or "MEMORY").strip()
        self.journal_mode = raw_mode.upper() if raw_mode else "MEMORY"
        self._listeners: list[ChangeListener] = []
        self._listeners_lock = Lock()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        self._apply_journal_mode(conn)
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _apply_journal_mode(self, conn: sqlite3.Connection) -> None:
        try:
            conn.execute(f"PRAGMA journal_mode={self.journal_mode}")
        except sqlite3.OperationalError:
            conn.execute("PRAGMA journal_mode=MEMORY")

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StoreError(f"无法打开数据库 {self.db_path}：{exc}") from exc
        try:
            with conn:
                yield conn
        except sqlite3.IntegrityError as exc:
            raise StoreError(f"数据约束冲突：{exc}") from exc
        except sqlite3.Error as exc:
            logger.exception("SQLite operation failed on %s", self.db_path)
            raise StoreError(f"数据库操作失败：{exc}") from exc
        finally:
            conn.close()

    def init_schema(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS categories (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    color TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    category_id TEXT NOT NULL
                        REFERENCES categories(id) ON DELETE CASCADE,
                    start_time TEXT NOT NULL,
                    end_time TEXT,
                    pause_duration INTEGER NOT NULL DEFAULT 0 CHECK (pause_duration >= 0),
                    total_duration INTEGER CHECK (total_duration IS NULL OR total_duration >= 0),
                    created_at TEXT NOT NULL,
                    CHECK ((end_time IS NULL) = (total_duration IS NULL))
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_sessions_start_time
                ON sessions(start_time)
                """
            )
            # only one open session may exist at a time
            conn.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS idx_sessions_single_open
                ON sessions((end_time IS NULL))
                WHERE end_time IS NULL
                """
            )

    # -- change notifications -------------------------------------------------

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._listeners_lock:
                self._listeners = [item for item in self._listeners if item is not listener]

        return unsubscribe

    def _publish(self, table: str, action: str, entity_id: str) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        event = {"table": table, "action": action, "id": entity_id}
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Change listener failed for %s", event)

    # -- categories -------------------------------------------------------------

    def add_category(self, name: str, color: str, now: datetime | None = None) -> Category:
        clean_name = name.strip()
        if not clean_name:
            raise ValidationError("分类名称不能为空")
        category = Category(
            id=new_id(),
            name=clean_name,
            color=normalize_color(color),
            created_at=now or datetime.now(tz=timezone.utc),
        )
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO categories (id, name, color, created_at) VALUES (?, ?, ?, ?)",
                (category.id, category.name, category.color, _to_utc_text(category.created_at)),
            )
        self._publish("categories", "insert", category.id)
        return category

    def update_category(
        self,
        category_id: str,
        name: str | None = None,
        color: str | None = None,
    ) -> Category:
        assignments: list[str] = []
        params: list[object] = []
        if name is not None:
            clean_name = name.strip()
            if not clean_name:
                raise ValidationError("分类名称不能为空")
            assignments.append("name = ?")
            params.append(clean_name)
        if color is not None:
            assignments.append("color = ?")
            params.append(normalize_color(color))

        with self._transaction() as conn:
            if assignments:
                cursor = conn.execute(
                    f"UPDATE categories SET {', '.join(assignments)} WHERE id = ?",
                    [*params, category_id],
                )
                if cursor.rowcount == 0:
                    raise NotFoundError("category", category_id)
            row = conn.execute(
                "SELECT id, name, color, created_at FROM categories WHERE id = ?",
                (category_id,),
            ).fetchone()
        if row is None:
            raise NotFoundError("category", category_id)
        if assignments:
            self._publish("categories", "update", category_id)
        return _row_to_category(row)

    def delete_category(self, category_id: str) -> None:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM categories WHERE id = ?", (category_id,))
            if cursor.rowcount == 0:
                raise NotFoundError("category", category_id)
        self._publish("categories", "delete", category_id)
        self._publish("sessions", "cascade", category_id)

    def get_category(self, category_id: str) -> Category | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT id, name, color, created_at FROM categories WHERE id = ?",
                (category_id,),
            ).fetchone()
        return _row_to_category(row) if row is not None else None

    def list_categories(self) -> list[Category]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT id, name, color, created_at FROM categories ORDER BY created_at ASC, rowid ASC"
            ).fetchall()
        return [_row_to_category(row) for row in rows]

    # -- sessions ---------------------------------------------------------------

    def add_session(self, category_id: str, start_time: datetime) -> Session:
        session = Session(
            id=new_id(),
            category_id=category_id,
            start_time=start_time,
            end_time=None,
            pause_duration=0,
            total_duration=None,
            created_at=start_time,
        )
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO sessions (
                    id,
                    category_id,
                    start_time,
                    end_time,
                    pause_duration,
                    total_duration,
                    created_at
                )
                VALUES (?, ?, ?, NULL, 0, NULL, ?)
                """,
                (
                    session.id,
                    session.category_id,
                    _to_utc_text(session.start_time),
                    _to_utc_text(session.created_at),
                ),
            )
        self._publish("sessions", "insert", session.id)
        return session

    def update_session(self, session_id: str, **changes: Any) -> Session:
        allowed = {"end_time", "pause_duration", "total_duration"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"不支持更新的字段：{', '.join(sorted(unknown))}")

        with self._transaction() as conn:
            row = conn.execute(
                f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE id = ?",
                (session_id,),
            ).fetchone()
            if row is None:
                raise NotFoundError("session", session_id)
            current = _row_to_session(row)
            if not current.is_open:
                raise StoreError(f"会话 {session_id} 已结束，不能再修改")

            pause = int(changes.get("pause_duration", current.pause_duration))
            if pause < current.pause_duration:
                raise ValidationError("暂停时长只能增加")
            end_time = changes.get("end_time", current.end_time)
            total = changes.get("total_duration", current.total_duration)

            conn.execute(
                """
                UPDATE sessions
                SET end_time = ?, pause_duration = ?, total_duration = ?
                WHERE id = ?
                """,
                (
                    _to_utc_text(end_time) if end_time is not None else None,
                    pause,
                    int(total) if total is not None else None,
                    session_id,
                ),
            )
            updated = conn.execute(
                f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE id = ?",
                (session_id,),
            ).fetchone()
        self._publish("sessions", "update", session_id)
        return _row_to_session(updated)

    def delete_session(self, session_id: str) -> None:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            if cursor.rowcount == 0:
                raise NotFoundError("session", session_id)
        self._publish("sessions", "delete", session_id)

    def get_session(self, session_id: str) -> Session | None:
        items = self._read_sessions(
            f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE id = ?",
            [session_id],
        )
        return items[0] if items else None

    def get_open_session(self) -> Session | None:
        items = self._read_sessions(
            f"SELECT {_SESSION_COLUMNS} FROM sessions "
            "WHERE end_time IS NULL ORDER BY start_time DESC LIMIT 1",
            [],
        )
        return items[0] if items else None

    def list_sessions(
        self,
        since: datetime | None = None,
        category_id: str | None = None,
        limit: int = 20,
    ) -> list[Session]:
        clauses = ["1=1"]
        params: list[object] = []

        if since is not None:
            clauses.append("start_time >= ?")
            params.append(_to_utc_text(since))
        if category_id:
            clauses.append("category_id = ?")
            params.append(category_id)

        safe_limit = max(1, min(2000, int(limit)))
        query = (
            f"SELECT {_SESSION_COLUMNS} FROM sessions "
            f"WHERE {' AND '.join(clauses)} "
            "ORDER BY start_time DESC "
            "LIMIT ?"
        )
        params.append(safe_limit)
        return self._read_sessions(query, params)

    def list_sessions_between(
        self,
        start: datetime,
        end: datetime,
        category_id: str | None = None,
    ) -> list[Session]:
        """Sessions starting in ``[start, end)``, oldest first."""
        low, high = _to_utc_text(start), _to_utc_text(end)
        if high <= low:
            raise ValidationError("结束时间必须晚于开始时间")
        clauses = ["start_time >= ?", "start_time < ?"]
        params: list[object] = [low, high]
        if category_id:
            clauses.append("category_id = ?")
            params.append(category_id)
        query = (
            f"SELECT {_SESSION_COLUMNS} FROM sessions "
            f"WHERE {' AND '.join(clauses)} "
            "ORDER BY start_time ASC"
        )
        return self._read_sessions(query, params)

    def list_all_sessions(self) -> list[Session]:
        query = f"SELECT {_SESSION_COLUMNS} FROM sessions ORDER BY start_time ASC"
        return self._read_sessions(query, [])

    def _read_sessions(self, query: str, params: list[object]) -> list[Session]:
        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_session(row) for row in rows]


def _row_to_category(row: sqlite3.Row) -> Category:
    return Category(
        id=row["id"],
        name=row["name"],
        color=row["color"],
        created_at=_from_utc_text(row["created_at"]),
    )


def _row_to_session(row: sqlite3.Row) -> Session:
    end_text = row["end_time"]
    total = row["total_duration"]
    return Session(
        id=row["id"],
        category_id=row["category_id"],
        start_time=_from_utc_text(row["start_time"]),
        end_time=_from_utc_text(end_text) if end_text else None,
        pause_duration=int(row["pause_duration"]),
        total_duration=int(total) if total is not None else None,
        created_at=_from_utc_text(row["created_at"]),
    )
