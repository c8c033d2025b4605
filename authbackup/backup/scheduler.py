"""Interval-based backup scheduling."""

import logging
import threading
from datetime import datetime
from typing import Optional

from authbackup.config.models import ScheduleConfig
from authbackup.config.validator import parse_interval
from authbackup.utils.errors import AuthBackupError

from .manager import BackupManager
from .models import BackupType, utcnow

logger = logging.getLogger(__name__)


class BackupScheduler:
    """Runs the configured backup type on a fixed cadence in a background thread."""

    def __init__(self, manager: BackupManager, schedule: ScheduleConfig):
        """
        Initialize backup scheduler.

        Args:
            manager: Backup manager to drive
            schedule: Cadence, type and enabled flag

        Raises:
            ValueError: If the cadence string is malformed
        """
        self.manager = manager
        self.schedule = schedule
        self.interval = parse_interval(schedule.interval)
        self.backup_type = BackupType(schedule.type)

        self.last_run: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.runs = 0

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """
        Start the scheduling thread.

        Returns:
            bool: False if scheduling is disabled or already running
        """
        if not self.schedule.enabled:
            logger.info("Scheduled backups are disabled")
            return False
        if self.is_running:
            return False

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="backup-scheduler", daemon=True)
        self._thread.start()
        logger.info("Scheduled %s backups every %s", self.backup_type.value, self.schedule.interval)
        return True

    def stop(self, timeout: float = 5) -> None:
        """Stop the scheduling thread, waiting for a running backup up to timeout."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None

    def run_once(self) -> bool:
        """
        Run one scheduled backup followed by retention cleanup.

        Returns:
            bool: True if the backup succeeded
        """
        self.last_run = utcnow()
        self.runs += 1
        try:
            if self.backup_type == BackupType.FULL:
                results = self.manager.perform_full_backup()
            else:
                results = self.manager.perform_incremental_backup()
            logger.info("Scheduled backup produced %d artifact(s)", len(results))
        except AuthBackupError as e:
            self.last_error = e.message
            logger.error("Scheduled backup failed: %s %s", e.message, e.details or "")
            return False

        self.last_error = None
        try:
            deleted = self.manager.cleanup_old_backups()
            if deleted:
                logger.info("Retention removed %d backup(s)", len(deleted))
        except AuthBackupError as e:
            logger.error("Retention cleanup failed: %s", e.message)
        return True

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval.total_seconds()):
            self.run_once()
