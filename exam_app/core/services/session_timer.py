"""Recurring background wake-up that drives a session countdown."""

from __future__ import annotations

import logging
from threading import Event, Thread, current_thread
from typing import Callable

from exam_app.constants.exam_constants import TICK_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


class CountdownTicker:
    """Calls ``on_tick`` every ``interval_seconds`` on a daemon thread until cancelled.

    ``cancel`` may be called from the tick callback itself, which is how a
    session stops its own timer when the countdown runs out.
    """

    def __init__(
        self,
        on_tick: Callable[[], object],
        interval_seconds: float = TICK_INTERVAL_SECONDS,
        name: str = "ExamCountdown",
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("Tick interval must be positive.")
        self._on_tick = on_tick
        self._interval = interval_seconds
        self._name = name
        self._stopped = Event()
        self._thread: Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("Ticker has already been started.")
        self._thread = Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def cancel(self, wait: bool = True) -> None:
        self._stopped.set()
        thread = self._thread
        if wait and thread is not None and thread is not current_thread():
            thread.join(timeout=self._interval * 2)

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stopped.is_set()

    def _run(self) -> None:
        while not self._stopped.wait(self._interval):
            try:
                self._on_tick()
            except Exception:
                logger.exception("Countdown tick failed; stopping %s", self._name)
                self._stopped.set()
