from __future__ import annotations

from datetime import datetime, timezone
import io
import unittest

from worktally import cli
from worktally.clock import FakeClock
from worktally.db import WorkTallyDB
from worktally.tests.test_helpers import local_tmp_dir


class TestCLI(unittest.TestCase):
    def _run(self, db_path: str, *args: str, clock: FakeClock | None = None) -> tuple[int, str]:
        out = io.StringIO()
        code = cli.main(["--db", db_path, *args], clock=clock, stream=out)
        return code, out.getvalue()

    def test_track_rejects_non_positive_tick_seconds(self) -> None:
        with local_tmp_dir() as tmp:
            with self.assertRaises(SystemExit) as exc:
                cli.main(["--db", str(tmp / "w.sqlite"), "track", "--tick-seconds", "0"])

            self.assertEqual(exc.exception.code, 2)

    def test_category_commands(self) -> None:
        with local_tmp_dir() as tmp:
            db_path = str(tmp / "w.sqlite")

            code, out = self._run(db_path, "category", "add", "开发", "--color", "#22c55e")
            self.assertEqual(code, 0)
            self.assertIn("已创建分类：开发", out)

            code, out = self._run(db_path, "category", "edit", "开发", "--name", "写代码")
            self.assertEqual(code, 0)

            code, out = self._run(db_path, "category", "list")
            self.assertIn("写代码 | #22c55e", out)

            code, out = self._run(db_path, "category", "add", "坏颜色", "--color", "green")
            self.assertEqual(code, 1)
            self.assertIn("颜色格式错误", out)

            code, out = self._run(db_path, "category", "delete", "写代码")
            self.assertEqual(code, 0)
            self.assertEqual(WorkTallyDB(tmp / "w.sqlite").list_categories(), [])

    def test_track_without_category_fails(self) -> None:
        with local_tmp_dir() as tmp:
            code, out = self._run(str(tmp / "w.sqlite"), "track", "--no-notify")

            self.assertEqual(code, 1)
            self.assertIn("请先选择一个分类", out)

    def test_track_until_interrupted_saves_session(self) -> None:
        with local_tmp_dir() as tmp:
            db_path = str(tmp / "w.sqlite")
            self._run(db_path, "category", "add", "开发")
            clock = FakeClock(
                start=datetime(2026, 2, 13, 10, 0, tzinfo=timezone.utc),
                interrupt_on_sleep_call=4,
            )

            code, out = self._run(
                db_path,
                "track",
                "--category",
                "开发",
                "--tick-seconds",
                "1",
                "--no-notify",
                clock=clock,
            )

            self.assertEqual(code, 0)
            self.assertIn("已保存：开发", out)
            sessions = WorkTallyDB(tmp / "w.sqlite").list_all_sessions()
            self.assertEqual(len(sessions), 1)
            self.assertEqual(sessions[0].total_duration, 3)
            self.assertEqual(sessions[0].pause_duration, 0)

    def test_stop_and_status_use_open_session(self) -> None:
        with local_tmp_dir() as tmp:
            db = WorkTallyDB(tmp / "w.sqlite")
            cat = db.add_category("开发", "#fff")
            start = datetime(2026, 2, 13, 10, 0, tzinfo=timezone.utc)
            db.add_session(cat.id, start)
            clock = FakeClock(start=start)
            clock.advance(90)

            code, out = self._run(str(tmp / "w.sqlite"), "status", clock=clock)
            self.assertEqual(code, 0)
            self.assertIn("进行中 | 开发 | 00:01:30", out)

            code, out = self._run(str(tmp / "w.sqlite"), "stop", clock=clock)
            self.assertEqual(code, 0)
            self.assertIn("1min", out)
            self.assertIsNone(db.get_open_session())

            code, out = self._run(str(tmp / "w.sqlite"), "stop", clock=clock)
            self.assertIn("没有进行中的会话", out)

            code, out = self._run(str(tmp / "w.sqlite"), "status", clock=clock)
            self.assertIn("空闲", out)

    def test_week_and_log_output(self) -> None:
        with local_tmp_dir() as tmp:
            db = WorkTallyDB(tmp / "w.sqlite")
            cat = db.add_category("开发", "#fff")
            start = datetime(2026, 2, 11, 12, 0, tzinfo=timezone.utc)
            session = db.add_session(cat.id, start)
            db.update_session(
                session.id,
                end_time=datetime(2026, 2, 11, 13, 30, tzinfo=timezone.utc),
                total_duration=5400,
            )

            code, out = self._run(str(tmp / "w.sqlite"), "week", "--date", "2026-02-11")
            self.assertEqual(code, 0)
            self.assertIn("[周统计] 2026-02-09 至 2026-02-15", out)
            self.assertIn("总时长: 1h30", out)

            code, out = self._run(str(tmp / "w.sqlite"), "month", "--date", "2026-02-11")
            self.assertIn("[月统计] 2026-02-01 至 2026-02-28", out)

            code, out = self._run(str(tmp / "w.sqlite"), "log", "--category", "开发")
            self.assertEqual(code, 0)
            self.assertIn("开发 | 1h30", out)


if __name__ == "__main__":
    unittest.main()
