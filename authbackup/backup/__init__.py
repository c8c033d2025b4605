"""Backup creation, retention and restore for the auth platform stores."""

from .manager import BackupManager
from .models import BackupOptions, BackupResult, BackupSet, BackupType, RestoreOptions, StoreKind
from .scheduler import BackupScheduler
from .storage import BackupStorage

__all__ = [
    "BackupManager",
    "BackupOptions",
    "BackupResult",
    "BackupScheduler",
    "BackupSet",
    "BackupStorage",
    "BackupType",
    "RestoreOptions",
    "StoreKind",
]
