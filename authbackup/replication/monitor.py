"""Periodic background checks with an explicit start/stop lifecycle."""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicMonitor:
    """Calls a check function every interval on a daemon thread."""

    def __init__(self, check: Callable[[], None], check_interval: float, name: str = "monitor"):
        """
        Initialize periodic monitor.

        Args:
            check: Function run on every tick; exceptions are logged
            check_interval: Seconds between ticks
            name: Thread name
        """
        self.check = check
        self.check_interval = check_interval
        self.name = name

        self._stop_event = threading.Event()
        self._monitor_thread: Optional[threading.Thread] = None

    @property
    def is_monitoring(self) -> bool:
        return self._monitor_thread is not None and self._monitor_thread.is_alive()

    def start_monitoring(self) -> None:
        """Start the monitoring thread."""
        if self.is_monitoring:
            return

        self._stop_event.clear()
        self._monitor_thread = threading.Thread(target=self._monitor_loop, name=self.name, daemon=True)
        self._monitor_thread.start()
        logger.debug("Started %s every %ss", self.name, self.check_interval)

    def stop_monitoring(self, timeout: float = 5) -> None:
        """Stop the monitoring thread."""
        self._stop_event.set()

        if self._monitor_thread and self._monitor_thread.is_alive():
            self._monitor_thread.join(timeout=timeout)
        self._monitor_thread = None
        logger.debug("Stopped %s", self.name)

    def _monitor_loop(self) -> None:
        while not self._stop_event.wait(self.check_interval):
            try:
                self.check()
            except Exception:
                logger.exception("%s check failed", self.name)
