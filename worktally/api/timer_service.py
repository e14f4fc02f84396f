from __future__ import annotations

import logging
import queue
from threading import Lock
from typing import Any, Callable

from ..clock import Clock, RealClock
from ..db import Session
from ..notifier import NotificationSink, Notifier
from ..reporting import format_duration_full
from ..store import Store, StoreResult
from ..timer import SessionTimer, TickerFactory, TimerSnapshot

logger = logging.getLogger(__name__)


class TimerService:
    """Owns the process-wide ``SessionTimer`` and fans its events out to SSE subscribers."""

    def __init__(
        self,
        store: Store,
        clock: Clock | None = None,
        notifier: NotificationSink | None = None,
        ticker_factory: TickerFactory | None = None,
        notifications_enabled: Callable[[], bool] | None = None,
    ) -> None:
        self._lock = Lock()
        self._subscribers: list[queue.Queue[dict[str, Any]]] = []
        self.timer = SessionTimer(
            store=store,
            clock=clock or RealClock(),
            notifier=notifier or Notifier(),
            ticker_factory=ticker_factory,
            notifications_enabled=notifications_enabled,
            progress_callback=self._on_event,
        )

    def recover(self) -> StoreResult[Session]:
        result = self.timer.recover()
        if not result.ok:
            logger.warning("Could not recover open session: %s", result.error)
        return result

    def state(self) -> dict[str, Any]:
        return self._describe(self.timer.snapshot())

    def start(self, category_id: str) -> StoreResult[Session]:
        return self.timer.start(category_id)

    def pause(self) -> dict[str, Any]:
        return self._describe(self.timer.pause())

    def resume(self) -> dict[str, Any]:
        return self._describe(self.timer.resume())

    def stop(self) -> StoreResult[Session]:
        return self.timer.stop()

    def close(self) -> None:
        self.timer.close()

    def subscribe(self) -> queue.Queue[dict[str, Any]]:
        q: queue.Queue[dict[str, Any]] = queue.Queue(maxsize=200)
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: queue.Queue[dict[str, Any]]) -> None:
        with self._lock:
            self._subscribers = [item for item in self._subscribers if item is not q]

    def _describe(self, snap: TimerSnapshot) -> dict[str, Any]:
        return {
            "state": snap.state,
            "displayed_elapsed": snap.displayed_elapsed,
            "displayed_text": format_duration_full(snap.displayed_elapsed),
            "selected_category": snap.selected_category,
            "session_id": snap.session_id,
            "pause_duration": snap.pause_duration,
            "start_time": snap.start_time,
            "error": self.timer.last_error,
        }

    def _on_event(self, event: str, payload: dict[str, Any]) -> None:
        normalized = {"event": event, **payload}
        with self._lock:
            alive: list[queue.Queue[dict[str, Any]]] = []
            for q in self._subscribers:
                try:
                    q.put_nowait(normalized)
                    alive.append(q)
                except queue.Full:
                    logger.debug("Dropping slow timer subscriber")
                    continue
            self._subscribers = alive
