from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from threading import Event, Lock, Thread
from typing import Callable, Protocol

from .clock import Clock, whole_seconds
from .db import Session
from .errors import InvalidTransitionError, ValidationError
from .notifier import NotificationSink
from .policy import NotificationFlags, evaluate, message_for
from .store import Store, StoreResult

logger = logging.getLogger(__name__)

IDLE = "idle"
RUNNING = "running"
PAUSED = "paused"

ProgressCallback = Callable[[str, dict[str, object]], None]


class Ticker(Protocol):
    def start(self) -> None:
        ...

    def cancel(self) -> None:
        ...


TickerFactory = Callable[[Callable[[], None]], Ticker]


class ThreadTicker:
    """Calls ``callback`` every ``interval`` seconds on a daemon thread until cancelled."""

    def __init__(self, callback: Callable[[], None], interval: float = 1.0) -> None:
        self.callback = callback
        self.interval = max(0.01, interval)
        self._cancelled = Event()
        self._thread: Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = Thread(target=self._run, name="worktally-ticker", daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        self._cancelled.set()

    def _run(self) -> None:
        while not self._cancelled.wait(self.interval):
            try:
                self.callback()
            except Exception:
                logger.exception("Timer tick failed")


def thread_ticker_factory(interval: float = 1.0) -> TickerFactory:
    def factory(callback: Callable[[], None]) -> Ticker:
        return ThreadTicker(callback, interval=interval)

    return factory


@dataclass(frozen=True)
class TimerSnapshot:
    state: str
    displayed_elapsed: int
    selected_category: str | None
    session_id: str | None
    pause_duration: int
    start_time: datetime | None


class SessionTimer:
    """State machine for the single active session: idle, running, paused.

    Calls are expected from one control loop; a lock still serializes them
    against the background ticks. Progress events and notifications are
    dispatched after the lock is released.
    """

    def __init__(
        self,
        store: Store,
        clock: Clock,
        notifier: NotificationSink,
        ticker_factory: TickerFactory | None = None,
        notifications_enabled: Callable[[], bool] | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.notifier = notifier
        self.ticker_factory = ticker_factory or thread_ticker_factory()
        self.notifications_enabled = notifications_enabled or (lambda: True)
        self.progress_callback = progress_callback
        self.last_error: str | None = None

        self._lock = Lock()
        self._state = IDLE
        self._session: Session | None = None
        self._pause_duration = 0
        self._pause_start: datetime | None = None
        self._displayed_elapsed = 0
        self._flags = NotificationFlags()
        self._ticker: Ticker | None = None
        self._pending: list[tuple[str, dict[str, object]]] = []

    @property
    def state(self) -> str:
        return self._state

    def snapshot(self) -> TimerSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def recover(self) -> StoreResult[Session]:
        """Rebuild ``running`` state from the store's open session, if there is one."""
        with self._lock:
            if self._state != IDLE:
                return StoreResult(data=self._session)
            result = self.store.query_open_session()
            if not result.ok:
                self.last_error = result.error
                return result
            session = result.data
            if session is not None:
                self._enter_running(session, session.pause_duration)
                self._displayed_elapsed = self._elapsed_at(self.clock.now())
                logger.info("Recovered open session %s", session.id)
                self._queue("timer_recovered", session_id=session.id)
        self._flush()
        return result

    def start(self, category_id: str) -> StoreResult[Session]:
        if not category_id or not category_id.strip():
            raise ValidationError("请先选择一个分类")

        with self._lock:
            if self._state != IDLE:
                raise InvalidTransitionError("start", self._state)
            result = self.store.create_session(category_id.strip(), self.clock.now())
            if not result.ok or result.data is None:
                self.last_error = result.error or "创建会话失败"
                return StoreResult(error=self.last_error)
            self.last_error = None
            self._enter_running(result.data, 0)
            self._queue(
                "timer_started",
                session_id=result.data.id,
                category_id=result.data.category_id,
                start_time=result.data.start_time,
            )
        self._flush()
        return result

    def pause(self) -> TimerSnapshot:
        with self._lock:
            snap = self._pause_locked()
        self._flush()
        return snap

    def resume(self) -> TimerSnapshot:
        with self._lock:
            snap = self._resume_locked()
        self._flush()
        return snap

    def toggle_pause(self) -> TimerSnapshot:
        with self._lock:
            if self._state == RUNNING:
                snap = self._pause_locked()
            elif self._state == PAUSED:
                snap = self._resume_locked()
            else:
                raise InvalidTransitionError("toggle_pause", self._state)
        self._flush()
        return snap

    def stop(self) -> StoreResult[Session]:
        """Close the open session; a session deleted behind the timer's back resets it to idle."""
        with self._lock:
            if self._state not in (RUNNING, PAUSED) or self._session is None:
                raise InvalidTransitionError("stop", self._state)
            now = self.clock.now()
            pause_duration = self._pause_duration
            if self._state == PAUSED and self._pause_start is not None:
                pause_duration += whole_seconds(self._pause_start, now)
            total = max(0, whole_seconds(self._session.start_time, now) - pause_duration)

            result = self.store.update_session(
                self._session.id,
                end_time=now,
                pause_duration=pause_duration,
                total_duration=total,
            )
            if not result.ok:
                self.last_error = result.error or "结束会话失败"
                if self._session_gone_locked():
                    logger.warning("Open session %s was deleted, timer reset", self._session.id)
                    self._queue("timer_discarded", session_id=self._session.id)
                    self._cancel_ticker()
                    self._reset()
                else:
                    return StoreResult(error=self.last_error)
            else:
                self.last_error = None
                self._cancel_ticker()
                self._reset()
                self._queue(
                    "timer_stopped",
                    session_id=result.data.id if result.data else None,
                    total_duration=total,
                    pause_duration=pause_duration,
                )
        self._flush()
        return result

    def tick(self) -> int:
        """Advance the displayed counter from the wall clock and check alerts."""
        return self._tick(None)

    def _tick(self, source: Ticker | None) -> int:
        notifications: list[str] = []
        with self._lock:
            if source is not None and source is not self._ticker:
                # late tick from a cancelled ticker
                return self._displayed_elapsed
            if self._state != RUNNING:
                return self._displayed_elapsed
            elapsed = self._elapsed_at(self.clock.now())
            self._displayed_elapsed = elapsed
            notifications = evaluate(elapsed, self._pause_duration, self._flags)
            for event in notifications:
                self._flags.mark(event)
            self._queue("tick", displayed_elapsed=elapsed)
        for event in notifications:
            self._send_notification(event)
        self._flush()
        return elapsed

    def close(self) -> None:
        with self._lock:
            self._cancel_ticker()

    def _send_notification(self, event: str) -> None:
        title, body = message_for(event)
        self._emit("notification", {"kind": event, "title": title, "body": body})
        if not self.notifications_enabled():
            logger.debug("Notification %s suppressed: permission not granted", event)
            return
        self.notifier.notify(title, body)

    def _pause_locked(self) -> TimerSnapshot:
        if self._state != RUNNING:
            raise InvalidTransitionError("pause", self._state)
        now = self.clock.now()
        self._displayed_elapsed = self._elapsed_at(now)
        self._pause_start = now
        self._state = PAUSED
        self._cancel_ticker()
        self._queue("timer_paused", pause_start=now)
        return self._snapshot_locked()

    def _resume_locked(self) -> TimerSnapshot:
        if self._state != PAUSED or self._pause_start is None or self._session is None:
            raise InvalidTransitionError("resume", self._state)
        paused_for = whole_seconds(self._pause_start, self.clock.now())
        self._pause_duration += paused_for
        self._pause_start = None
        self._state = RUNNING
        update = self.store.update_session(self._session.id, pause_duration=self._pause_duration)
        if not update.ok:
            # the in-memory total is still folded in on stop
            self.last_error = update.error
            logger.warning("Could not persist pause duration: %s", update.error)
        self._start_ticker()
        self._queue("timer_resumed", paused_for=paused_for, pause_duration=self._pause_duration)
        return self._snapshot_locked()

    def _session_gone_locked(self) -> bool:
        if self._session is None:
            return True
        current = self.store.query_open_session()
        if not current.ok:
            return False
        return current.data is None or current.data.id != self._session.id

    def _enter_running(self, session: Session, pause_duration: int) -> None:
        self._session = session
        self._pause_duration = pause_duration
        self._pause_start = None
        self._displayed_elapsed = 0
        self._flags = NotificationFlags()
        self._state = RUNNING
        self._start_ticker()

    def _reset(self) -> None:
        self._state = IDLE
        self._session = None
        self._pause_duration = 0
        self._pause_start = None
        self._displayed_elapsed = 0
        self._flags = NotificationFlags()

    def _elapsed_at(self, now: datetime) -> int:
        if self._session is None:
            return 0
        return max(0, whole_seconds(self._session.start_time, now) - self._pause_duration)

    def _start_ticker(self) -> None:
        self._cancel_ticker()
        ticker: Ticker | None = None

        def on_tick() -> None:
            self._tick(ticker)

        ticker = self.ticker_factory(on_tick)
        self._ticker = ticker
        ticker.start()

    def _cancel_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    def _snapshot_locked(self) -> TimerSnapshot:
        if self._state == RUNNING:
            elapsed = self._elapsed_at(self.clock.now())
        else:
            elapsed = self._displayed_elapsed
        session = self._session
        return TimerSnapshot(
            state=self._state,
            displayed_elapsed=elapsed,
            selected_category=session.category_id if session else None,
            session_id=session.id if session else None,
            pause_duration=self._pause_duration,
            start_time=session.start_time if session else None,
        )

    def _queue(self, event: str, **payload: object) -> None:
        self._pending.append((event, payload))

    def _flush(self) -> None:
        with self._lock:
            pending, self._pending = self._pending, []
        for event, payload in pending:
            self._emit(event, payload)

    def _emit(self, event: str, payload: dict[str, object]) -> None:
        if self.progress_callback is None:
            return
        self.progress_callback(event, payload)


class NullTicker:
    """For callers that drive ``SessionTimer.tick`` from their own loop."""

    def start(self) -> None:
        return None

    def cancel(self) -> None:
        return None


def null_ticker_factory(_: Callable[[], None]) -> Ticker:
    return NullTicker()
