"""Periodic liveness reconciliation loop."""

import threading
from collections.abc import Callable
from typing import Any

from ..common.logging import get_logger

logger = get_logger(__name__)


class Reconciler:
    """Runs ``tick`` every ``interval`` seconds on a daemon thread.

    The interval can be changed while running; the new value applies from the
    next wait. An exception raised by a tick is logged and the loop carries on.
    """

    def __init__(self, tick: Callable[[], Any], interval: float):
        self._tick = tick
        self._interval = self._validate_interval(interval)
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @staticmethod
    def _validate_interval(interval: float) -> float:
        if interval <= 0:
            raise ValueError("Reconciliation interval must be greater than 0")
        return interval

    @property
    def interval(self) -> float:
        return self._interval

    @interval.setter
    def interval(self, value: float) -> None:
        self._interval = self._validate_interval(value)
        self._wake.set()
        logger.info("Reconciliation interval changed", interval=value)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._stop.clear()
            self._thread = threading.Thread(
                target=self._run, name="cloudflared-reconciler", daemon=True
            )
            self._thread.start()
        logger.info("Reconciler started", interval=self._interval)

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
            self._stop.set()
            self._wake.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.info("Reconciler stopped")

    def _run(self) -> None:
        while not self._stop.is_set():
            self._wake.wait(self._interval)
            if self._wake.is_set():
                self._wake.clear()
                # Woken by an interval change or stop, not by the timer
                continue
            self.run_once()

    def run_once(self) -> None:
        try:
            self._tick()
        except Exception:
            logger.exception("Reconciliation tick failed")
