"""Fixed-interval background task."""

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)


class Ticker:
    """Calls ``callback`` every ``interval`` seconds on a daemon thread.

    ``stop()`` is permanent: once it returns no new tick starts. A tick that is
    already running when ``stop()`` is called from another thread is allowed to
    finish, and ``stop()`` waits for it.
    """

    def __init__(self, name: str, interval: float, callback: Callable[[], None]):
        if interval <= 0:
            msg = "interval must be positive"
            raise ValueError(msg)
        self.name = name
        self.interval = interval
        self._callback = callback
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and not self._stop_event.is_set()

    def start(self) -> None:
        if self._thread is not None or self._stop_event.is_set():
            return
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 1.0) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def _loop(self) -> None:
        # Event.wait returns True once stop() was called
        while not self._stop_event.wait(self.interval):
            try:
                self._callback()
            except Exception:
                logger.exception(f"{self.name} tick failed")
