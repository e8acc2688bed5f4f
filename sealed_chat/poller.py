"""
Timer-driven message refresh.

One daemon thread fetches every ``interval`` seconds. refresh_now() runs a
fetch immediately unless one is already in flight, in which case it is a
no-op: there is never more than one fetch at a time. After stop(), late
results are dropped instead of delivered.
"""

import logging
import threading
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MessagePoller(Generic[T]):

    def __init__(self, fetch: Callable[[], T], on_result: Callable[[T], None],
                 interval: float = 2.0, name: str = "sealed-chat-poll"):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._fetch     = fetch
        self._on_result = on_result
        self.interval   = interval
        self._name      = name
        self._stop      = threading.Event()
        self._in_flight = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._stop.is_set():
            raise RuntimeError("Poller has been stopped.")
        if self.running:
            return
        self._thread = threading.Thread(target=self._loop, daemon=True, name=self._name)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def refresh_now(self) -> bool:
        """Fetch once, synchronously. Returns False if coalesced or stopped."""
        if self._stop.is_set():
            return False
        if not self._in_flight.acquire(blocking=False):
            logger.debug("Refresh already in flight, skipping")
            return False
        try:
            try:
                result = self._fetch()
            except Exception as exc:
                logger.warning(f"Message refresh failed: {exc}")
                return False
            if self._stop.is_set():
                logger.debug("Poller stopped during fetch, discarding result")
                return False
            try:
                self._on_result(result)
            except Exception:
                logger.exception("Handling refreshed messages failed")
                return False
            return True
        finally:
            self._in_flight.release()

    def _loop(self) -> None:
        self.refresh_now()
        while not self._stop.wait(self.interval):
            self.refresh_now()
