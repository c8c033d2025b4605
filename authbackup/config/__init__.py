"""Configuration management for AuthBackup."""

from .manager import ConfigManager
from .models import BackupConfig
from .schemas import BACKUP_CONFIG_SCHEMA, RECOVERY_PLAN_SCHEMA
from .validator import ConfigValidator, parse_interval

__all__ = [
    "BACKUP_CONFIG_SCHEMA",
    "RECOVERY_PLAN_SCHEMA",
    "BackupConfig",
    "ConfigManager",
    "ConfigValidator",
    "parse_interval",
]
