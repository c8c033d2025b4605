"""Backup manager: produces backup sets, enforces retention, restores."""

import logging
import os
import shutil
import tempfile
import threading
import time
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from authbackup.config.models import BackupConfig
from authbackup.utils.errors import (
    ArtifactError,
    AuthBackupError,
    NotFoundError,
    create_error_suggestions,
    format_validation_errors,
)

from .models import (
    BackupOptions,
    BackupResult,
    BackupSet,
    BackupSetStatus,
    BackupType,
    RestoreOptions,
    new_backup_id,
    utcnow,
)
from .postgres import PostgresBackupService
from .redis_store import RedisBackupService
from .services import ApplicationServiceController
from .storage import BackupStorage
from .stores import StoreBackupService

logger = logging.getLogger(__name__)

CompletionListener = Callable[[BackupResult], None]


def default_store_services(config: BackupConfig) -> List[StoreBackupService]:
    return [PostgresBackupService(config.postgres), RedisBackupService(config.redis)]


class BackupManager:
    """Creates, lists, prunes and restores backup sets.

    Listeners registered with add_completion_listener() are called
    synchronously, in registration order, once for every artifact written,
    in the order the artifacts were produced.
    """

    def __init__(
        self,
        config: BackupConfig,
        storage: Optional[BackupStorage] = None,
        services: Optional[List[StoreBackupService]] = None,
        app_services: Optional[ApplicationServiceController] = None,
    ):
        """
        Initialize backup manager.

        Args:
            config: Resolved backup configuration
            storage: Artifact storage (defaults to one built from config)
            services: Store services to back up, in dump order
            app_services: Controller used when a restore pauses the application
        """
        self.config = config
        self.storage = storage or BackupStorage(config)
        self.services = services if services is not None else default_store_services(config)
        self.app_services = app_services or ApplicationServiceController(config.recovery.app_service_label)
        self._listeners: List[CompletionListener] = []
        self._lock = threading.RLock()

    def add_completion_listener(self, listener: CompletionListener) -> None:
        self._listeners.append(listener)

    def remove_completion_listener(self, listener: CompletionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def perform_full_backup(self) -> List[BackupResult]:
        """Back up every store in full."""
        return self.perform_backup(BackupOptions(backup_type=BackupType.FULL))

    def perform_incremental_backup(self) -> List[BackupResult]:
        """Back up changes since the previous set."""
        return self.perform_backup(BackupOptions(backup_type=BackupType.INCREMENTAL))

    def perform_backup(self, options: BackupOptions) -> List[BackupResult]:
        """
        Run one backup invocation.

        Args:
            options: Backup type and optional explicit id

        Returns:
            List[BackupResult]: One artifact per store

        Raises:
            ArtifactError: If any store's dump fails. Artifacts already written
                for earlier stores stay on disk and the set is marked failed.
        """
        backup_set = self._run_backup(options.backup_type, backup_id=options.backup_id)
        return list(backup_set.artifacts)

    def list_backups(self, limit: Optional[int] = None) -> List[BackupSet]:
        """Backup sets, newest first."""
        sets = self.storage.list_sets()
        return sets[:limit] if limit else sets

    def get_backup(self, backup_id: str) -> BackupSet:
        """
        Get one backup set.

        Raises:
            NotFoundError: If the id does not exist
        """
        return self.storage.read_manifest(backup_id)

    def get_latest_backup(self) -> Optional[BackupSet]:
        """Newest completed backup set, if any."""
        for backup_set in self.list_backups():
            if backup_set.completed:
                return backup_set
        return None

    def verify_backup(self, backup_id: str) -> List[str]:
        """
        Check every artifact of a set against its manifest.

        Returns:
            List[str]: Problems found (empty if intact)
        """
        return self.storage.verify_set(self.get_backup(backup_id))

    def cleanup_old_backups(self, now: Optional[datetime] = None, dry_run: bool = False) -> List[str]:
        """
        Delete sets older than the retention window or beyond the maximum count.

        The newest set, and the newest completed set, are always kept.

        Args:
            now: Reference time (defaults to the current time)
            dry_run: Only report what would be deleted

        Returns:
            List[str]: Ids of the deleted (or deletable) sets
        """
        with self._lock:
            sets = self.list_backups()
            if not sets:
                return []

            now = now or utcnow()
            cutoff = now - timedelta(days=self.config.retention.days)
            max_backups = self.config.retention.max_backups

            protected = {sets[0].backup_id}
            latest_completed = next((s for s in sets if s.completed), None)
            if latest_completed:
                protected.add(latest_completed.backup_id)

            doomed = []
            for index, backup_set in enumerate(sets):
                if backup_set.backup_id in protected:
                    continue
                if backup_set.created_at < cutoff or index >= max_backups:
                    doomed.append(backup_set.backup_id)

            if dry_run:
                return doomed

            for backup_id in doomed:
                self.storage.delete_set(backup_id)
                logger.info("Deleted old backup %s", backup_id)

            return doomed

    def restore_from_backup(self, backup_id: str, options: Optional[RestoreOptions] = None) -> BackupSet:
        """
        Restore the stores from a backup set.

        Args:
            backup_id: Set to restore
            options: Which stores, destructive resets, target names, service pause

        Returns:
            BackupSet: The set that was restored

        Raises:
            NotFoundError: If the set does not exist or holds nothing to restore
            ArtifactError: If integrity checks or a restore tool fail
        """
        backup_set = self.get_backup(backup_id)
        self.restore_backup_set(backup_set, options or RestoreOptions())
        return backup_set

    def restore_backup_set(self, backup_set: BackupSet, options: RestoreOptions) -> None:
        plan = []
        for service in self.services:
            if not service.selected(options):
                continue
            artifact = backup_set.artifact_for(service.kind)
            if artifact is None:
                logger.warning("Backup %s has no %s artifact", backup_set.backup_id, service.kind.value)
                continue
            plan.append((service, self._restore_chain(service, backup_set, artifact)))

        if not plan:
            raise NotFoundError(
                f"Nothing to restore in backup {backup_set.backup_id} for the selected stores",
                suggestions=create_error_suggestions("backup_not_found"),
            )

        problems = []
        for _, chain in plan:
            for artifact in chain:
                problems.extend(self.storage.verify_artifact(artifact))
        if problems:
            raise ArtifactError(
                f"Backup {backup_set.backup_id} failed integrity checks",
                details=format_validation_errors(problems),
            )

        with self._lock:
            if options.stop_services:
                stopped = self.app_services.stop_services()
                logger.info("Paused %d application service(s)", len(stopped))

            try:
                for service, chain in plan:
                    for index, artifact in enumerate(chain):
                        with self.storage.open_artifact(artifact) as plain_path:
                            if index == 0:
                                service.reset(options)
                            service.restore(plain_path, artifact, options)
            except Exception:
                if options.stop_services:
                    logger.warning("Restore failed; application services were left stopped")
                raise

            if options.stop_services:
                self.app_services.start_services()

        logger.info("Restored backup %s", backup_set.backup_id)

    def _restore_chain(
        self, service: StoreBackupService, backup_set: BackupSet, artifact: BackupResult
    ) -> List[BackupResult]:
        """
        Artifacts to load, oldest first, to bring a store to the state of artifact.

        A standalone artifact restores on its own. Otherwise the chain starts at
        the newest earlier completed set holding a standalone artifact for the
        store and includes every later artifact up to the requested one.

        Raises:
            ArtifactError: If no earlier base artifact exists
        """
        if service.standalone(artifact):
            return [artifact]

        chain = [artifact]
        for earlier in self.list_backups():
            if earlier.created_at >= backup_set.created_at or not earlier.completed:
                continue
            candidate = earlier.artifact_for(service.kind)
            if candidate is None:
                continue
            chain.append(candidate)
            if service.standalone(candidate):
                chain.reverse()
                logger.info(
                    "Restoring %s store from base %s plus %d incremental artifact(s)",
                    service.kind.value,
                    earlier.backup_id,
                    len(chain) - 1,
                )
                return chain

        raise ArtifactError(
            f"Backup {backup_set.backup_id} cannot be restored on its own",
            details=f"{artifact.file_name} needs an earlier full {service.kind.value} backup and none exists",
            suggestions=["Restore from a full backup, or run 'authbackup backup full' first"],
        )

    def test_backup_restore(self) -> bool:
        """
        Back up into a scratch directory, restore into scratch targets, compare.

        Returns:
            bool: True if every store's restored copy matches its source
        """
        workdir = tempfile.mkdtemp(prefix="authbackup-selftest-")
        ok = True
        try:
            backup_set = self._run_backup(BackupType.FULL, root=workdir, notify=False)

            for service in self.services:
                artifact = backup_set.artifact_for(service.kind)
                scratch = service.scratch_options(backup_set.created_at)
                try:
                    expected = service.snapshot()
                    with self.storage.open_artifact(artifact) as plain_path:
                        service.reset(scratch)
                        service.restore(plain_path, artifact, scratch)
                    actual = service.snapshot(scratch)
                finally:
                    try:
                        service.discard_scratch(scratch)
                    except AuthBackupError as e:
                        logger.warning("Could not discard scratch %s target: %s", service.kind.value, e.message)

                if expected != actual:
                    ok = False
                    logger.error(
                        "Restore test mismatch for %s store: source=%s restored=%s",
                        service.kind.value,
                        expected,
                        actual,
                    )
                else:
                    logger.info("Restore test passed for %s store", service.kind.value)
        except AuthBackupError as e:
            logger.error("Backup restore test failed: %s %s", e.message, e.details or "")
            ok = False
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

        return ok

    def _run_backup(
        self,
        backup_type: BackupType,
        root: Optional[str] = None,
        notify: bool = True,
        backup_id: Optional[str] = None,
    ) -> BackupSet:
        with self._lock:
            created_at = utcnow()
            since = None
            if backup_type == BackupType.INCREMENTAL:
                previous = self.get_latest_backup()
                since = previous.created_at if previous else None

            backup_id = backup_id or new_backup_id(created_at)
            backup_set = BackupSet(
                backup_id=backup_id,
                created_at=created_at,
                backup_type=backup_type,
                path=self.storage.set_dir(backup_id, root),
                metadata={
                    "environment": self.config.environment,
                    "stores": [service.kind.value for service in self.services],
                    "incremental_since": since.isoformat() if since else None,
                },
            )
            if os.path.exists(backup_set.path):
                raise ArtifactError(f"Backup {backup_id} already exists")
            self.storage.write_manifest(backup_set)
            logger.info("Starting %s backup %s", backup_type.value, backup_id)

            with tempfile.TemporaryDirectory(prefix="authbackup-dump-") as workdir:
                for service in self.services:
                    try:
                        result = self._backup_store(service, backup_set, workdir, since, upload=notify)
                    except Exception:
                        backup_set.status = BackupSetStatus.FAILED
                        self.storage.write_manifest(backup_set)
                        raise

                    backup_set.artifacts.append(result)
                    self.storage.write_manifest(backup_set)
                    if notify:
                        self._emit(result)

            backup_set.status = BackupSetStatus.COMPLETED
            self.storage.write_manifest(backup_set)
            logger.info("Backup %s completed (%d artifact(s))", backup_id, len(backup_set.artifacts))
            return backup_set

    def _backup_store(
        self,
        service: StoreBackupService,
        backup_set: BackupSet,
        workdir: str,
        since: Optional[datetime],
        upload: bool,
    ) -> BackupResult:
        started = time.monotonic()
        output_base = os.path.join(workdir, service.artifact_basename(backup_set.backup_type, backup_set.created_at))
        raw_path = service.dump(backup_set.backup_type, output_base, since)
        stored = self.storage.store_artifact(raw_path, backup_set.path, compress=service.compress)

        remote_path = None
        if upload and self.storage.remote_enabled:
            remote_path = self.storage.upload_artifact(stored["path"], backup_set.backup_id)

        result = BackupResult(
            backup_id=backup_set.backup_id,
            kind=service.kind,
            backup_type=backup_set.backup_type,
            file_path=stored["path"],
            size=stored["size"],
            duration=time.monotonic() - started,
            created_at=utcnow(),
            checksum=stored["checksum"],
            compressed=stored["compressed"],
            encrypted=stored["encrypted"],
            remote_path=remote_path,
        )
        logger.info("%s artifact written: %s (%d bytes)", service.kind.value, result.file_name, result.size)
        return result

    def _emit(self, result: BackupResult) -> None:
        for listener in list(self._listeners):
            try:
                listener(result)
            except Exception:
                logger.exception("Backup completion listener %r failed for %s", listener, result.file_name)
