"""Threshold alerts raised while a session is running.

Both alerts fire at most once per session and are reset only when a new
session starts. The daily limit looks at the current session alone
(elapsed + paused seconds), not at every session worked that day.
"""

from __future__ import annotations

from dataclasses import dataclass

LONG_SESSION = "long_session"
DAILY_LIMIT = "daily_limit"

LONG_SESSION_SECONDS = 2 * 60 * 60
DAILY_LIMIT_SECONDS = 4 * 60 * 60

MESSAGES: dict[str, tuple[str, str]] = {
    LONG_SESSION: ("会话过长", "你已经连续工作 2 小时了，记得休息一下！"),
    DAILY_LIMIT: ("今日上限", "你今天已经工作 4 小时了，注意劳逸结合！"),
}


@dataclass
class NotificationFlags:
    long_session: bool = False
    daily_limit: bool = False

    def mark(self, event: str) -> None:
        if event == LONG_SESSION:
            self.long_session = True
        elif event == DAILY_LIMIT:
            self.daily_limit = True


def evaluate(
    displayed_elapsed: int,
    paused_seconds: int,
    fired: NotificationFlags,
) -> list[str]:
    events: list[str] = []
    if not fired.long_session and displayed_elapsed >= LONG_SESSION_SECONDS:
        events.append(LONG_SESSION)
    if not fired.daily_limit and displayed_elapsed + paused_seconds >= DAILY_LIMIT_SECONDS:
        events.append(DAILY_LIMIT)
    return events


def message_for(event: str) -> tuple[str, str]:
    return MESSAGES[event]
