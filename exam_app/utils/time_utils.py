"""Clock helpers; services take a ``Clock`` so tests can control time."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_countdown(seconds: int) -> str:
    """Format a remaining-seconds value as ``MM:SS``."""
    seconds = max(0, int(seconds))
    minutes, remainder = divmod(seconds, 60)
    return f"{minutes:02d}:{remainder:02d}"
