from __future__ import annotations

from datetime import datetime, timezone
from threading import Thread
import unittest

from worktally.clock import FakeClock
from worktally.db import WorkTallyDB
from worktally.errors import InvalidTransitionError, ValidationError
from worktally.policy import DAILY_LIMIT, LONG_SESSION
from worktally.store import DBStore
from worktally.tests.test_helpers import FlakyStore, ManualTickers, RecordingNotifier, local_tmp_dir
from worktally.timer import IDLE, PAUSED, RUNNING, SessionTimer, ThreadTicker


class TimerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        tmp_ctx = local_tmp_dir()
        tmp = tmp_ctx.__enter__()
        self.addCleanup(tmp_ctx.__exit__, None, None, None)

        self.db = WorkTallyDB(tmp / "worktally.sqlite")
        self.category = self.db.add_category("开发", "#3b82f6")
        self.clock = FakeClock(start=datetime(2026, 2, 13, 10, 0, tzinfo=timezone.utc))
        self.notifier = RecordingNotifier()
        self.tickers = ManualTickers()
        self.events: list[tuple[str, dict[str, object]]] = []
        self.store = FlakyStore(self.db)
        self.timer = self._make_timer()

    def _make_timer(self, allowed: bool = True) -> SessionTimer:
        timer = SessionTimer(
            store=self.store,
            clock=self.clock,
            notifier=self.notifier,
            ticker_factory=self.tickers,
            notifications_enabled=lambda: allowed,
            progress_callback=lambda event, payload: self.events.append((event, payload)),
        )
        self.addCleanup(timer.close)
        return timer


class TestTimerLifecycle(TimerTestCase):
    def test_start_requires_category(self) -> None:
        with self.assertRaises(ValidationError):
            self.timer.start("")
        with self.assertRaises(ValidationError):
            self.timer.start("   ")

        self.assertEqual(self.timer.state, IDLE)
        self.assertEqual(self.db.list_all_sessions(), [])
        self.assertEqual(self.tickers.created, [])

    def test_start_opens_session_and_ticks(self) -> None:
        result = self.timer.start(self.category.id)

        self.assertTrue(result.ok)
        self.assertEqual(self.timer.state, RUNNING)
        open_session = self.db.get_open_session()
        self.assertIsNotNone(open_session)
        assert open_session is not None
        self.assertEqual(open_session.category_id, self.category.id)
        self.assertEqual(open_session.start_time, self.clock.now())
        self.assertEqual(open_session.pause_duration, 0)
        self.assertEqual(len(self.tickers.active), 1)

        self.clock.advance(5.4)
        self.assertEqual(self.timer.tick(), 5)
        snap = self.timer.snapshot()
        self.assertEqual(snap.displayed_elapsed, 5)
        self.assertEqual(snap.selected_category, self.category.id)
        self.assertEqual(self.events[0][0], "timer_started")

    def test_start_twice_is_rejected(self) -> None:
        self.timer.start(self.category.id)
        with self.assertRaises(InvalidTransitionError):
            self.timer.start(self.category.id)

    def test_failed_create_leaves_timer_idle(self) -> None:
        self.store.fail_create = True

        result = self.timer.start(self.category.id)

        self.assertFalse(result.ok)
        self.assertEqual(result.error, "create failed")
        self.assertEqual(self.timer.state, IDLE)
        self.assertEqual(self.tickers.created, [])

    def test_unknown_category_is_a_store_error(self) -> None:
        result = DBStore(self.db).create_session("missing", self.clock.now())
        self.assertFalse(result.ok)

        timer = SessionTimer(DBStore(self.db), self.clock, self.notifier, ticker_factory=self.tickers)
        self.assertFalse(timer.start("missing").ok)
        self.assertEqual(timer.state, IDLE)

    def test_stop_persists_total(self) -> None:
        self.timer.start(self.category.id)
        self.clock.advance(125.9)

        result = self.timer.stop()

        self.assertTrue(result.ok)
        assert result.data is not None
        self.assertEqual(result.data.total_duration, 125)
        self.assertEqual(result.data.pause_duration, 0)
        self.assertEqual(result.data.end_time, self.clock.now())
        self.assertEqual(self.timer.state, IDLE)
        self.assertIsNone(self.db.get_open_session())
        self.assertEqual(self.tickers.active, [])
        self.assertEqual(self.timer.snapshot().displayed_elapsed, 0)

    def test_pause_round_trip_accumulates_floored_intervals(self) -> None:
        self.timer.start(self.category.id)
        self.clock.advance(10)
        self.timer.pause()
        self.clock.advance(2.7)
        self.timer.resume()
        self.clock.advance(10)
        self.timer.pause()
        self.clock.advance(1.5)
        snap = self.timer.resume()

        self.assertEqual(snap.pause_duration, 3)
        stored = self.db.get_open_session()
        assert stored is not None
        self.assertEqual(stored.pause_duration, 3)

        self.clock.advance(10)
        result = self.timer.stop()

        assert result.data is not None
        self.assertEqual(result.data.pause_duration, 3)
        # 34.2 s wall clock, 3 s paused
        self.assertEqual(result.data.total_duration, 31)

    def test_stop_while_paused_folds_open_pause(self) -> None:
        self.timer.start(self.category.id)
        self.clock.advance(60)
        self.timer.pause()
        self.clock.advance(30.8)

        result = self.timer.stop()

        assert result.data is not None
        self.assertEqual(result.data.pause_duration, 30)
        self.assertEqual(result.data.total_duration, 60)

    def test_paused_display_is_frozen(self) -> None:
        self.timer.start(self.category.id)
        self.clock.advance(42)
        self.timer.pause()
        self.clock.advance(100)

        snap = self.timer.snapshot()
        self.assertEqual(snap.state, PAUSED)
        self.assertEqual(snap.displayed_elapsed, 42)
        self.assertEqual(self.timer.tick(), 42)

    def test_ticker_cancelled_when_leaving_running(self) -> None:
        self.timer.start(self.category.id)
        first = self.tickers.created[0]
        self.timer.pause()
        self.assertTrue(first.cancelled)
        self.assertEqual(self.tickers.active, [])

        self.timer.resume()
        self.assertEqual(len(self.tickers.active), 1)
        self.assertIsNot(self.tickers.active[0], first)

    def test_late_tick_from_cancelled_ticker_is_ignored(self) -> None:
        self.timer.start(self.category.id)
        stale = self.tickers.created[0]
        self.timer.pause()
        self.timer.resume()
        before = len([e for e in self.events if e[0] == "tick"])

        stale.fire()
        self.tickers.active[0].fire()

        after = len([e for e in self.events if e[0] == "tick"])
        self.assertEqual(after - before, 1)

    def test_invalid_transitions(self) -> None:
        with self.assertRaises(InvalidTransitionError):
            self.timer.pause()
        with self.assertRaises(InvalidTransitionError):
            self.timer.resume()
        with self.assertRaises(InvalidTransitionError):
            self.timer.stop()
        with self.assertRaises(InvalidTransitionError):
            self.timer.toggle_pause()

        self.timer.start(self.category.id)
        with self.assertRaises(InvalidTransitionError):
            self.timer.resume()
        self.timer.pause()
        with self.assertRaises(InvalidTransitionError):
            self.timer.pause()

    def test_toggle_pause_binds_both_transitions(self) -> None:
        self.timer.start(self.category.id)
        self.assertEqual(self.timer.toggle_pause().state, PAUSED)
        self.clock.advance(4)
        snap = self.timer.toggle_pause()
        self.assertEqual(snap.state, RUNNING)
        self.assertEqual(snap.pause_duration, 4)

    def test_failed_stop_keeps_prior_state(self) -> None:
        self.timer.start(self.category.id)
        self.clock.advance(20)
        self.timer.pause()
        self.clock.advance(5)
        self.store.fail_update = True

        result = self.timer.stop()

        self.assertFalse(result.ok)
        self.assertEqual(self.timer.state, PAUSED)
        self.assertEqual(self.timer.snapshot().pause_duration, 0)
        self.assertIsNotNone(self.db.get_open_session())

        self.store.fail_update = False
        self.clock.advance(5)
        retried = self.timer.stop()
        assert retried.data is not None
        self.assertEqual(retried.data.pause_duration, 10)
        self.assertEqual(retried.data.total_duration, 20)

    def test_stop_after_category_deleted_resets_to_idle(self) -> None:
        self.timer.start(self.category.id)
        self.clock.advance(30)
        self.db.delete_category(self.category.id)

        result = self.timer.stop()

        self.assertFalse(result.ok)
        self.assertEqual(self.timer.state, IDLE)
        self.assertEqual(self.tickers.active, [])
        self.assertIn("timer_discarded", [e for e, _ in self.events])

        other = self.db.add_category("邮件", "#000")
        self.assertTrue(self.timer.start(other.id).ok)
        self.assertEqual(self.timer.state, RUNNING)

    def test_stop_after_open_session_deleted_while_paused(self) -> None:
        started = self.timer.start(self.category.id)
        assert started.data is not None
        self.timer.pause()
        self.db.delete_session(started.data.id)

        self.assertFalse(self.timer.stop().ok)
        self.assertEqual(self.timer.state, IDLE)
        with self.assertRaises(InvalidTransitionError):
            self.timer.stop()

    def test_concurrent_toggles_stay_consistent(self) -> None:
        self.timer.start(self.category.id)
        errors: list[Exception] = []

        def toggle_many() -> None:
            for _ in range(25):
                try:
                    self.timer.toggle_pause()
                except Exception as exc:
                    errors.append(exc)

        workers = [Thread(target=toggle_many) for _ in range(4)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join(timeout=10)

        self.assertEqual(errors, [])
        self.assertEqual(self.timer.state, RUNNING)
        self.assertEqual(len(self.tickers.active), 1)

    def test_failed_pause_persist_does_not_block_resume(self) -> None:
        self.timer.start(self.category.id)
        self.timer.pause()
        self.clock.advance(3)
        self.store.fail_update = True

        snap = self.timer.resume()

        self.assertEqual(snap.state, RUNNING)
        self.assertEqual(snap.pause_duration, 3)
        self.assertEqual(self.timer.last_error, "update failed")


class TestTimerRecovery(TimerTestCase):
    def test_recover_rebuilds_running_state(self) -> None:
        self.timer.start(self.category.id)
        self.clock.advance(50)
        self.timer.pause()
        self.clock.advance(10)
        self.timer.resume()
        self.clock.advance(40)
        self.timer.close()

        restarted = self._make_timer()
        result = restarted.recover()

        self.assertTrue(result.ok)
        snap = restarted.snapshot()
        self.assertEqual(snap.state, RUNNING)
        self.assertEqual(snap.pause_duration, 10)
        self.assertEqual(snap.displayed_elapsed, 90)
        self.assertEqual(snap.selected_category, self.category.id)

        self.clock.advance(10)
        stopped = restarted.stop()
        assert stopped.data is not None
        self.assertEqual(stopped.data.total_duration, 100)

    def test_recover_without_open_session_is_idle(self) -> None:
        result = self.timer.recover()

        self.assertTrue(result.ok)
        self.assertIsNone(result.data)
        self.assertEqual(self.timer.state, IDLE)
        self.assertEqual(self.tickers.created, [])


class TestTimerNotifications(TimerTestCase):
    def test_long_session_fires_once(self) -> None:
        self.timer.start(self.category.id)
        self.clock.advance(7199)
        self.timer.tick()
        self.assertEqual(self.notifier.sent, [])

        self.clock.advance(1)
        self.timer.tick()
        for _ in range(5):
            self.clock.advance(1)
            self.timer.tick()

        self.assertEqual(len(self.notifier.sent), 1)
        kinds = [p["kind"] for e, p in self.events if e == "notification"]
        self.assertEqual(kinds, [LONG_SESSION])

    def test_daily_limit_uses_elapsed_plus_paused(self) -> None:
        self.timer.start(self.category.id)
        self.clock.advance(3600)
        self.timer.pause()
        self.clock.advance(10800)
        self.timer.resume()
        self.timer.tick()

        kinds = [p["kind"] for e, p in self.events if e == "notification"]
        self.assertEqual(kinds, [DAILY_LIMIT])

        self.clock.advance(3600)
        self.timer.tick()
        self.clock.advance(60)
        self.timer.tick()
        kinds = [p["kind"] for e, p in self.events if e == "notification"]
        self.assertEqual(kinds, [DAILY_LIMIT, LONG_SESSION])
        self.assertEqual(len(self.notifier.sent), 2)

    def test_flags_reset_on_new_session(self) -> None:
        self.timer.start(self.category.id)
        self.clock.advance(7200)
        self.timer.tick()
        self.timer.stop()

        self.timer.start(self.category.id)
        self.clock.advance(7200)
        self.timer.tick()

        self.assertEqual(len(self.notifier.sent), 2)

    def test_permission_gate_suppresses_sink(self) -> None:
        timer = self._make_timer(allowed=False)
        timer.start(self.category.id)
        self.clock.advance(7200)
        timer.tick()

        self.assertEqual(self.notifier.sent, [])
        kinds = [p["kind"] for e, p in self.events if e == "notification"]
        self.assertEqual(kinds, [LONG_SESSION])


class TestThreadTicker(unittest.TestCase):
    def test_cancel_stops_callbacks(self) -> None:
        calls: list[int] = []
        ticker = ThreadTicker(lambda: calls.append(1), interval=0.01)
        ticker.cancel()
        ticker.start()
        assert ticker._thread is not None
        ticker._thread.join(timeout=1.0)

        self.assertFalse(ticker._thread.is_alive())
        self.assertEqual(calls, [])


if __name__ == "__main__":
    unittest.main()
