"""Common interface of the per-store dump/restore services."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Optional

from .models import BackupResult, BackupType, RestoreOptions, StoreKind


class StoreBackupService(ABC):
    """Dumps and restores one protected store.

    The backup manager calls dump() once per invocation and, on restore,
    reset() strictly before restore(). Failures raise ArtifactError.
    """

    kind: StoreKind
    file_prefix: str

    def __init__(self, compress: bool = True):
        self.compress = compress

    def artifact_basename(self, backup_type: BackupType, created_at: datetime) -> str:
        stamp = created_at.strftime("%Y%m%dT%H%M%S%fZ")
        return f"{self.file_prefix}-{backup_type.value}-{stamp}"

    @abstractmethod
    def dump(self, backup_type: BackupType, output_base: str, since: Optional[datetime] = None) -> str:
        """
        Write a raw dump of the store.

        Args:
            backup_type: Full or incremental
            output_base: Path without extension; the service picks the extension
            since: Creation time of the previous backup set, for incremental dumps

        Returns:
            str: Path of the file written
        """

    @abstractmethod
    def selected(self, options: RestoreOptions) -> bool:
        """Whether the restore options ask for this store."""

    @abstractmethod
    def reset(self, options: RestoreOptions) -> None:
        """Destroy existing data when the options ask for it."""

    @abstractmethod
    def restore(self, plain_path: str, result: BackupResult, options: RestoreOptions) -> None:
        """Load an unpacked artifact into the store."""

    def standalone(self, result: BackupResult) -> bool:
        """Whether the artifact can be restored without an earlier base artifact."""
        return True

    @abstractmethod
    def ping(self) -> bool:
        """Whether the store answers."""

    @abstractmethod
    def snapshot(self, options: Optional[RestoreOptions] = None) -> Dict[str, int]:
        """Structure and size summary used to compare a restore against its source."""

    @abstractmethod
    def scratch_options(self, created_at: datetime) -> RestoreOptions:
        """Restore options that point at a throwaway target."""

    @abstractmethod
    def discard_scratch(self, options: RestoreOptions) -> None:
        """Remove a throwaway target created for a test restore."""
