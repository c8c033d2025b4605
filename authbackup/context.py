"""Wires configuration, backup, replication and recovery services together."""

import logging
from typing import Mapping, Optional

from authbackup.backup import BackupManager, BackupScheduler
from authbackup.config import BackupConfig, ConfigManager
from authbackup.recovery import (
    DisasterRecoveryOrchestrator,
    FailoverHandler,
    Notifier,
    build_default_checks,
    default_recovery_plan,
    load_plans,
)
from authbackup.replication import CrossRegionReplicationManager

logger = logging.getLogger(__name__)


class BackupContext:
    """Builds the service graph once and hands out its parts.

    Replication is only wired up when cross-region replication is enabled.
    In the foreground (CLI) mode replication jobs are drained in the calling
    thread so a command returns only once its artifacts were shipped; the
    daemon drains them in the background.
    """

    def __init__(self, config: BackupConfig, background: bool = False):
        """
        Initialize the context.

        Args:
            config: Resolved configuration
            background: Drain replication and monitor targets on worker threads
        """
        self.config = config
        self.background = background

        self.backup_manager = BackupManager(config)

        self.replication_manager: Optional[CrossRegionReplicationManager] = None
        if config.cross_region.enabled:
            self.replication_manager = CrossRegionReplicationManager(config, background=background)
            self.replication_manager.attach(self.backup_manager)
            if background:
                self.replication_manager.initialize()
            else:
                self.replication_manager.check_target_health()

        plans = load_plans(config.recovery.plans_path)
        if not any(plan.id == default_recovery_plan().id for plan in plans):
            plans.insert(0, default_recovery_plan())

        self.orchestrator = DisasterRecoveryOrchestrator(
            self.backup_manager,
            replication_manager=self.replication_manager,
            notifier=Notifier(config.notifications),
            failover_handler=FailoverHandler(config.recovery.failover_webhook_url),
            checks=build_default_checks(self.backup_manager.services, config.recovery.health_check_url),
            plans=plans,
            retry_delay=config.recovery.step_retry_delay,
        )

    @classmethod
    def from_environment(cls, environ: Optional[Mapping[str, str]] = None, background: bool = False) -> "BackupContext":
        """
        Load and validate configuration, then build the services.

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        config = ConfigManager(environ).load()
        logger.debug("Loaded configuration for environment %s", config.environment)
        return cls(config, background=background)

    def scheduler(self) -> BackupScheduler:
        return BackupScheduler(self.backup_manager, self.config.schedule)

    def close(self, timeout: float = 30) -> None:
        """Stop replication, waiting for an in-flight job."""
        if self.replication_manager:
            self.replication_manager.shutdown(timeout=timeout)
