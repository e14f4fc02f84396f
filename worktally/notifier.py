from __future__ import annotations

import logging
import platform
import shutil
import subprocess
import sys
from typing import Protocol, TextIO

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def notify(self, title: str, body: str) -> None:
        ...


class Notifier:
    """Desktop notification with a plain-text fallback on ``stream``."""

    def __init__(self, stream: TextIO | None = None, app_name: str = "WorkTally") -> None:
        self.stream = stream or sys.stdout
        self.app_name = app_name

    def notify(self, title: str, body: str) -> None:
        sent = False
        system_name = platform.system().lower()

        try:
            if system_name == "darwin" and shutil.which("osascript"):
                script = (
                    "display notification "
                    f"\"{self._escape(body)}\" with title \"{self._escape(title)}\""
                )
                result = subprocess.run(
                    ["osascript", "-e", script],
                    check=False,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
                sent = result.returncode == 0
            elif system_name == "linux" and shutil.which("notify-send"):
                result = subprocess.run(
                    ["notify-send", "--app-name", self.app_name, title, body],
                    check=False,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
                sent = result.returncode == 0
        except OSError:
            logger.debug("Desktop notification command failed", exc_info=True)
            sent = False

        if not sent:
            self.stream.write(f"[提醒] {title}: {body}\n")
            self.stream.flush()

    @staticmethod
    def _escape(text: str) -> str:
        return text.replace("\\", "\\\\").replace('"', '\\"')
