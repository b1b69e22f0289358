"""Per-process output consumption."""

import threading
from collections import deque
from collections.abc import Callable

from ..common.logging import get_logger
from ..common.process import ProcessManager
from .output import LineKind, OutputEvent, classify_line

logger = get_logger(__name__)

ERROR_HISTORY = 3
OUTPUT_HISTORY = 20


class OutputWatcher:
    """Reads one subprocess's output on a daemon thread.

    Each line is classified and handed to ``on_event``. When the stream ends
    the exit code is collected and passed to ``on_exit``. Cancelling the
    watcher stops line consumption and suppresses the exit callback; it also
    cancels the timers scheduled through it.
    """

    def __init__(
        self,
        name: str,
        process: ProcessManager,
        on_event: Callable[[OutputEvent], None],
        on_exit: Callable[[int | None], None],
        exit_wait: float = 5.0,
    ):
        self.name = name
        self.process = process
        self._on_event = on_event
        self._on_exit = on_exit
        self._exit_wait = exit_wait
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._timers: list[threading.Timer] = []
        self._errors: deque[str] = deque(maxlen=ERROR_HISTORY)
        self._tail: deque[str] = deque(maxlen=OUTPUT_HISTORY)
        self._thread = threading.Thread(
            target=self._run, name=f"cloudflared-output-{name}", daemon=True
        )

    def start(self) -> None:
        self._thread.start()

    def schedule(self, delay: float, callback: Callable[[], None]) -> None:
        """Run ``callback`` after ``delay`` seconds unless cancelled first."""
        timer = threading.Timer(delay, self._fire, args=(callback,))
        timer.daemon = True
        with self._lock:
            if self._cancelled.is_set():
                return
            self._timers.append(timer)
        timer.start()

    def _fire(self, callback: Callable[[], None]) -> None:
        if self._cancelled.is_set():
            return
        try:
            callback()
        except Exception:
            logger.exception("Watcher timer callback failed", tunnel=self.name)

    def cancel(self) -> None:
        with self._lock:
            self._cancelled.set()
            timers, self._timers = self._timers, []
        for timer in timers:
            timer.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def recent_errors(self) -> list[str]:
        with self._lock:
            return list(self._errors)

    @property
    def tail(self) -> list[str]:
        with self._lock:
            return list(self._tail)

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not threading.current_thread() and self._thread.is_alive():
            self._thread.join(timeout)

    def _run(self) -> None:
        lines = self.process.iter_output()
        try:
            for line in lines:
                if self._cancelled.is_set():
                    break
                event = classify_line(line)
                with self._lock:
                    self._tail.append(line)
                    if event.kind == LineKind.ERROR and event.value:
                        self._errors.append(event.value)
                logger.debug("cloudflared output", tunnel=self.name, line=line)
                try:
                    self._on_event(event)
                except Exception:
                    logger.exception("Output handler failed", tunnel=self.name)
        finally:
            lines.close()

        if self._cancelled.is_set():
            return

        code = self.process.wait(self._exit_wait)
        logger.debug("Output stream ended", tunnel=self.name, exit_code=code)
        try:
            self._on_exit(code)
        except Exception:
            logger.exception("Exit handler failed", tunnel=self.name)
