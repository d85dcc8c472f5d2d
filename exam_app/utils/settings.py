"""Runtime settings: network defaults overridable from the environment."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from exam_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


@dataclass(frozen=True, slots=True)
class AppSettings:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    data_path: Path | None = None
    log_level: str = "INFO"
    start_timers: bool = True

    @classmethod
    def from_env(cls) -> AppSettings:
        raw_path = os.getenv("EXAM_APP_DATA_PATH")
        port = _env_int("EXAM_APP_PORT", DEFAULT_PORT)
        if not 0 < port < 65536:
            port = DEFAULT_PORT
        return cls(
            host=_env_str("EXAM_APP_HOST", DEFAULT_HOST),
            port=port,
            data_path=Path(raw_path.strip()) if raw_path and raw_path.strip() else None,
            log_level=_env_str("EXAM_APP_LOG_LEVEL", "INFO").upper(),
            start_timers=_env_bool("EXAM_APP_START_TIMERS", True),
        )
