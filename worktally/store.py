"""Store capability used by the timer and the statistics views.

Every store call returns a ``StoreResult``; failures never raise across this
boundary, they come back as ``StoreResult(data=None, error=message)``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from threading import Lock
from typing import Any, Callable, Generic, Protocol, TypeVar

from .db import Category, ChangeListener, Session, WorkTallyDB
from .errors import WorkTallyError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    data: T | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Store(Protocol):
    def create_session(self, category_id: str, start_time: datetime) -> StoreResult[Session]:
        ...

    def update_session(self, session_id: str, **changes: Any) -> StoreResult[Session]:
        ...

    def query_open_session(self) -> StoreResult[Session]:
        ...

    def query_all_sessions(self) -> StoreResult[list[Session]]:
        ...

    def delete_session(self, session_id: str) -> StoreResult[bool]:
        ...

    def create_category(self, name: str, color: str) -> StoreResult[Category]:
        ...

    def update_category(
        self, category_id: str, name: str | None = None, color: str | None = None
    ) -> StoreResult[Category]:
        ...

    def delete_category(self, category_id: str) -> StoreResult[bool]:
        ...

    def query_all_categories(self) -> StoreResult[list[Category]]:
        ...

    def subscribe(self, on_change: ChangeListener) -> Callable[[], None]:
        ...


def _guard(action: str, call: Callable[[], T]) -> StoreResult[T]:
    try:
        return StoreResult(data=call())
    except WorkTallyError as exc:
        logger.warning("%s failed: %s", action, exc)
        return StoreResult(error=str(exc))


class DBStore:
    """Adapts ``WorkTallyDB`` to the ``Store`` protocol."""

    def __init__(self, db: WorkTallyDB) -> None:
        self.db = db

    def create_session(self, category_id: str, start_time: datetime) -> StoreResult[Session]:
        return _guard("create_session", lambda: self.db.add_session(category_id, start_time))

    def update_session(self, session_id: str, **changes: Any) -> StoreResult[Session]:
        return _guard("update_session", lambda: self.db.update_session(session_id, **changes))

    def query_open_session(self) -> StoreResult[Session]:
        return _guard("query_open_session", self.db.get_open_session)

    def query_all_sessions(self) -> StoreResult[list[Session]]:
        return _guard("query_all_sessions", self.db.list_all_sessions)

    def delete_session(self, session_id: str) -> StoreResult[bool]:
        def call() -> bool:
            self.db.delete_session(session_id)
            return True

        return _guard("delete_session", call)

    def create_category(self, name: str, color: str) -> StoreResult[Category]:
        return _guard("create_category", lambda: self.db.add_category(name, color))

    def update_category(
        self, category_id: str, name: str | None = None, color: str | None = None
    ) -> StoreResult[Category]:
        return _guard(
            "update_category",
            lambda: self.db.update_category(category_id, name=name, color=color),
        )

    def delete_category(self, category_id: str) -> StoreResult[bool]:
        def call() -> bool:
            self.db.delete_category(category_id)
            return True

        return _guard("delete_category", call)

    def query_all_categories(self) -> StoreResult[list[Category]]:
        return _guard("query_all_categories", self.db.list_categories)

    def subscribe(self, on_change: ChangeListener) -> Callable[[], None]:
        return self.db.subscribe(on_change)


class TrackerCache:
    """In-memory copy of all sessions and categories.

    Any change event from the store triggers a full refetch that replaces both
    collections; the last refetch wins.
    """

    def __init__(self, store: Store) -> None:
        self.store = store
        self._lock = Lock()
        self._sessions: list[Session] = []
        self._categories: list[Category] = []
        self.error: str | None = None
        self._unsubscribe: Callable[[], None] | None = None

    def open(self) -> TrackerCache:
        self.refresh()
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_change)
        return self

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def refresh(self) -> None:
        sessions = self.store.query_all_sessions()
        categories = self.store.query_all_categories()
        with self._lock:
            if sessions.ok:
                self._sessions = list(sessions.data or [])
            if categories.ok:
                self._categories = list(categories.data or [])
            self.error = sessions.error or categories.error

    @property
    def sessions(self) -> list[Session]:
        with self._lock:
            return list(self._sessions)

    @property
    def categories(self) -> list[Category]:
        with self._lock:
            return list(self._categories)

    def _on_change(self, event: dict[str, str]) -> None:
        logger.debug("Store changed (%s), refetching", event)
        self.refresh()
