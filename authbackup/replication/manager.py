"""Cross-region replication of completed backup artifacts."""

import logging
import threading
import time
from collections import deque
from typing import Deque, Dict, List, Optional

from authbackup.backup.manager import BackupManager
from authbackup.backup.models import BackupResult, utcnow
from authbackup.config.models import BackupConfig
from authbackup.utils.errors import ConfigurationError, NotFoundError, TransientDeliveryError, create_error_suggestions

from .models import (
    DEFAULT_MAX_RETRIES,
    JobStatus,
    ReplicationJob,
    ReplicationMetrics,
    ReplicationTarget,
    TargetStatus,
    new_job_id,
)
from .monitor import PeriodicMonitor
from .sinks import ReplicationSink, build_sink

logger = logging.getLogger(__name__)

MIN_HEALTH_INTERVAL = 5
FINISHED_JOB_HISTORY = 100


class CrossRegionReplicationManager:
    """Ships each completed backup artifact to every configured region.

    Jobs wait in one FIFO queue that a single drain works through. A job
    that reaches no target at all goes to the back of the queue until its
    retries are used up. Targets are re-probed on a timer independently of
    the drain.
    """

    def __init__(
        self,
        config: BackupConfig,
        backup_manager: Optional[BackupManager] = None,
        sinks: Optional[Dict[str, ReplicationSink]] = None,
        background: bool = True,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        """
        Initialize replication manager.

        Args:
            config: Resolved backup configuration
            backup_manager: Source of backup sets for forced syncs
            sinks: Region id -> sink; built from configuration when omitted
            background: Drain the queue on a worker thread instead of the caller's
            max_retries: Re-queues allowed for a job that reached no target
        """
        self.config = config
        self.backup_manager = backup_manager
        self.background = background
        self.max_retries = max_retries

        self._targets: Dict[str, ReplicationTarget] = {}
        self._sinks: Dict[str, ReplicationSink] = {}
        self._jobs: Dict[str, ReplicationJob] = {}
        self._queue: Deque[str] = deque()
        self._finished: Deque[ReplicationJob] = deque(maxlen=FINISHED_JOB_HISTORY)
        self._metrics = ReplicationMetrics()

        self._lock = threading.RLock()
        self._replicating = False
        self._stopping = False
        self._idle = threading.Event()
        self._idle.set()

        if sinks is None:
            sinks = {}
            for region in config.cross_region.regions:
                endpoint, sink = build_sink(region, config.cross_region, config.storage.local_path)
                sinks[region] = sink
                self._add_target(region, endpoint, sink)
        else:
            for region, sink in sinks.items():
                self._add_target(region, getattr(sink, "base_url", region), sink)

        interval = max(config.cross_region.replication_delay, MIN_HEALTH_INTERVAL)
        self.monitor = PeriodicMonitor(self.check_target_health, interval, name="replication-health")

    def attach(self, backup_manager: BackupManager) -> None:
        """Subscribe to backup completions and use the manager for forced syncs."""
        self.backup_manager = backup_manager
        backup_manager.add_completion_listener(self.replicate_backup)

    def initialize(self) -> None:
        """Probe every target once, then start periodic health monitoring."""
        self._stopping = False
        self.check_target_health()
        self.monitor.start_monitoring()
        logger.info("Cross-region replication ready for %d region(s)", len(self._targets))

    def replicate_backup(self, backup: BackupResult) -> Optional[ReplicationJob]:
        """
        Queue delivery of an artifact to every configured region.

        Args:
            backup: Completed artifact

        Returns:
            Optional[ReplicationJob]: The queued job, or None if there is
            nowhere to send it or the manager is shutting down
        """
        if not self._targets:
            logger.debug("No replication targets configured; %s not queued", backup.file_name)
            return None
        if self._stopping:
            logger.warning("Replication is shutting down; %s not queued", backup.file_name)
            return None

        job = ReplicationJob(
            id=new_job_id(),
            backup=backup,
            target_regions=list(self._targets),
            max_retries=self.max_retries,
        )
        with self._lock:
            self._jobs[job.id] = job
            self._queue.append(job.id)
            self._idle.clear()
        logger.info("Queued replication job %s for %s", job.id, backup.file_name)

        self._schedule_drain()
        return job

    def process_queue(self) -> bool:
        """
        Drain the queue in the calling thread.

        Returns:
            bool: False if another drain was already running
        """
        with self._lock:
            if self._replicating:
                return False
            self._replicating = True
            self._idle.clear()

        try:
            while True:
                with self._lock:
                    if not self._queue or self._stopping:
                        if self._queue:
                            logger.info("Leaving %d replication job(s) pending at shutdown", len(self._queue))
                        self._replicating = False
                        if not self._queue:
                            self._idle.set()
                        return True
                    job = self._jobs[self._queue.popleft()]
                started = time.monotonic()
                try:
                    self._process_job(job)
                except Exception as e:
                    logger.exception("Replication job %s aborted", job.id)
                    for region in job.target_regions:
                        job.target_results.setdefault(region, f"{type(e).__name__}: {e}")
                    self._settle(job, started)
        except BaseException:
            with self._lock:
                self._replicating = False
            raise

    def wait_for_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until the queue is empty and no drain is running."""
        return self._idle.wait(timeout)

    def check_target_health(self) -> None:
        """Probe every target and update its status."""
        for region, sink in list(self._sinks.items()):
            healthy = sink.probe()
            with self._lock:
                target = self._targets[region]
                previous = target.status
                if healthy:
                    target.status = TargetStatus.ACTIVE
                    if previous != TargetStatus.ACTIVE:
                        target.last_error = None
                        logger.info("Replication target %s is active (was %s)", region, previous.value)
                elif previous == TargetStatus.ACTIVE:
                    target.status = TargetStatus.ERROR
                    target.last_error = "health probe failed"
                    logger.warning("Replication target %s failed its health probe", region)

        self._update_current_lag()

    def force_sync_to_all_targets(self) -> List[ReplicationJob]:
        """
        Queue the newest backup set's artifacts again for every region.

        Returns:
            List[ReplicationJob]: One job per artifact

        Raises:
            ConfigurationError: If no regions are configured
            NotFoundError: If there are no backups
        """
        if not self._targets:
            raise ConfigurationError(
                "No replication targets configured",
                suggestions=["Set CROSS_REGION_REPLICATION_ENABLED=true and CROSS_REGION_TARGETS"],
            )

        latest = self.backup_manager.get_latest_backup() if self.backup_manager else None
        if latest is None or not latest.artifacts:
            raise NotFoundError(
                "No backups available for sync",
                suggestions=create_error_suggestions("backup_not_found"),
            )

        logger.info("Forcing sync of backup %s to all regions", latest.backup_id)
        jobs = []
        for artifact in latest.artifacts:
            job = self.replicate_backup(artifact)
            if job:
                jobs.append(job)
        return jobs

    def shutdown(self, timeout: float = 30, poll_interval: float = 0.1) -> bool:
        """
        Stop monitoring and wait for the running drain to finish its current job.

        Returns:
            bool: False if the drain was still running when the timeout expired
        """
        self._stopping = True
        self.monitor.stop_monitoring()

        deadline = time.monotonic() + timeout
        while True:
            with self._lock:
                if not self._replicating:
                    logger.info("Replication manager stopped")
                    return True
            if time.monotonic() >= deadline:
                logger.warning("Replication drain still running after %ss", timeout)
                return False
            time.sleep(poll_interval)

    def get_target(self, region: str) -> Optional[ReplicationTarget]:
        return self._targets.get(region)

    def get_targets(self) -> List[ReplicationTarget]:
        return list(self._targets.values())

    def get_job(self, job_id: str) -> Optional[ReplicationJob]:
        """Queued, in-flight or recently finished job by id."""
        with self._lock:
            if job_id in self._jobs:
                return self._jobs[job_id]
            for job in self._finished:
                if job.id == job_id:
                    return job
        return None

    def get_queue(self) -> List[ReplicationJob]:
        with self._lock:
            return [self._jobs[job_id] for job_id in self._queue]

    def get_metrics(self) -> ReplicationMetrics:
        return self._metrics

    def _add_target(self, region: str, endpoint: str, sink: ReplicationSink) -> None:
        self._sinks[region] = sink
        self._targets[region] = ReplicationTarget(
            region=region,
            endpoint=endpoint,
            storage_type=self.config.cross_region.storage_type,
            credentials=self.config.cross_region.credentials.get(region, {}),
        )

    def _schedule_drain(self) -> None:
        if not self.background:
            self.process_queue()
            return

        with self._lock:
            if self._replicating:
                return
        threading.Thread(target=self.process_queue, name="replication-drain", daemon=True).start()

    def _process_job(self, job: ReplicationJob) -> None:
        started = time.monotonic()
        job.status = JobStatus.PROCESSING
        job.target_results.clear()

        data = None
        try:
            with open(job.backup.file_path, "rb") as f:
                data = f.read()
        except OSError as e:
            logger.error("Cannot read %s for replication: %s", job.backup.file_path, e)

        for region in job.target_regions:
            if data is None:
                job.target_results[region] = "artifact unreadable"
                continue
            job.target_results[region] = self._replicate_to_target(job, region, data)

        self._settle(job, started)

    def _settle(self, job: ReplicationJob, started: float) -> None:
        """Set the job's outcome from its target results, then re-queue or retire it."""
        successes = sum(1 for region in job.target_regions if job.target_results.get(region, "") is None)
        if successes == len(job.target_regions):
            job.status = JobStatus.COMPLETED
        elif successes > 0:
            job.status = JobStatus.PARTIAL
        else:
            job.status = JobStatus.FAILED

        if job.status == JobStatus.FAILED and job.retry_count < job.max_retries:
            job.retry_count += 1
            job.status = JobStatus.PENDING
            with self._lock:
                self._queue.append(job.id)
            logger.warning(
                "Replication job %s reached no target; retry %d/%d queued",
                job.id,
                job.retry_count,
                job.max_retries,
            )
            return

        job.finished_at = utcnow()
        duration_ms = (time.monotonic() - started) * 1000
        with self._lock:
            self._jobs.pop(job.id, None)
            self._finished.append(job)
            self._metrics.record(job.status, duration_ms, job.finished_at)

        if job.status == JobStatus.FAILED:
            logger.error("Replication job %s failed after %d retries", job.id, job.retry_count)
        else:
            logger.info(
                "Replication job %s %s (%d/%d regions)",
                job.id,
                job.status.value,
                successes,
                len(job.target_regions),
            )

    def _replicate_to_target(self, job: ReplicationJob, region: str, data: bytes) -> Optional[str]:
        with self._lock:
            target = self._targets.get(region)
            if target is None:
                return "unknown target"
            if target.status != TargetStatus.ACTIVE:
                return f"target is {target.status.value}"

        remote_path = f"{job.backup.backup_id}/{job.backup.file_name}"
        try:
            self._sinks[region].put(remote_path, data)
        except TransientDeliveryError as e:
            with self._lock:
                target.status = TargetStatus.ERROR
                target.last_error = e.details or e.message
            logger.warning("Replication of %s to %s failed: %s", job.backup.file_name, region, e.message)
            return e.message
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            with self._lock:
                target.status = TargetStatus.ERROR
                target.last_error = error
            logger.exception("Unexpected error replicating %s to %s", job.backup.file_name, region)
            return error

        now = utcnow()
        with self._lock:
            target.last_sync = now
            target.lag_ms = int((now - job.backup.created_at).total_seconds() * 1000)
            target.last_error = None
        self._update_current_lag()
        logger.debug("Replicated %s to %s", job.backup.file_name, region)
        return None

    def _update_current_lag(self) -> None:
        with self._lock:
            lags = [
                target.lag_ms
                for target in self._targets.values()
                if target.status == TargetStatus.ACTIVE and target.last_sync is not None and target.lag_ms is not None
            ]
            self._metrics.current_lag_ms = max(lags) if lags else 0
