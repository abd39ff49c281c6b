"""
Periodic task runner.

Runs a callback at a fixed cadence on a background daemon thread until
cancelled. The session uses it to publish the live sample count while
recording; hosts without threads can call ``run_once`` from their own loop.
"""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Fixed-interval callback with explicit start / cancel."""

    def __init__(self, callback: Callable[[], None], interval_ms: float, name: str = "periodic"):
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self._callback = callback
        self._interval = interval_ms / 1000.0
        self._name = name
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._runs = 0

    def start(self):
        """Start the background loop (no-op if already running)."""
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name=self._name, daemon=True)
        self._thread.start()
        logger.debug("Periodic task '%s' started (interval=%.3fs)", self._name, self._interval)

    def cancel(self, timeout: float = 1.0):
        """Stop the loop and wait for the thread to exit."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        self._thread = None

    def run_once(self):
        self._runs += 1
        try:
            self._callback()
        except Exception as e:
            logger.error("Periodic task '%s' failed: %s", self._name, e)

    def _loop(self):
        # wait() returns True once cancelled
        while not self._stop_event.wait(self._interval):
            self.run_once()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    @property
    def interval_ms(self) -> float:
        return self._interval * 1000.0

    @property
    def run_count(self) -> int:
        return self._runs
