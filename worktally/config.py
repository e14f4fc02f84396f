"""Runtime settings read from ``WORKTALLY_*`` environment variables."""

from __future__ import annotations

from dataclasses import dataclass, replace
import os
from pathlib import Path
from typing import Mapping


def default_db_path() -> Path:
    return Path(__file__).resolve().parent / "data" / "worktally.sqlite"


def _env_bool(raw: str | None, default: bool) -> bool:
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(raw: str | None, default: float) -> float:
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(raw: str | None, default: int) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    db_path: Path
    journal_mode: str = "MEMORY"
    notify: bool = True
    tick_seconds: float = 1.0
    host: str = "127.0.0.1"
    port: int = 8765

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        db_raw = (env.get("WORKTALLY_DB") or "").strip()
        journal_raw = (env.get("WORKTALLY_JOURNAL_MODE") or "").strip()
        return cls(
            db_path=Path(db_raw) if db_raw else default_db_path(),
            journal_mode=journal_raw.upper() or "MEMORY",
            notify=_env_bool(env.get("WORKTALLY_NOTIFY"), True),
            tick_seconds=max(0.05, _env_float(env.get("WORKTALLY_TICK_SECONDS"), 1.0)),
            host=(env.get("WORKTALLY_HOST") or "").strip() or "127.0.0.1",
            port=_env_int(env.get("WORKTALLY_PORT"), 8765),
        )

    def with_overrides(self, **changes: object) -> Settings:
        clean = {key: value for key, value in changes.items() if value is not None}
        if "db_path" in clean:
            clean["db_path"] = Path(str(clean["db_path"]))
        return replace(self, **clean)
