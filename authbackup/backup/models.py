"""Backup records and request options."""

import os
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class StoreKind(Enum):
    """Protected store an artifact was taken from."""

    RELATIONAL = "relational"
    KV = "kv"


class BackupType(Enum):
    """Backup invocation type."""

    FULL = "full"
    INCREMENTAL = "incremental"


class BackupSetStatus(Enum):
    """Lifecycle of a backup set on disk."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO timestamp, assuming UTC when no offset is present."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def new_backup_id(created_at: Optional[datetime] = None) -> str:
    """Backup id derived from the creation time, e.g. backup-2024-05-01T10-00-00-123456+00-00."""
    stamp = (created_at or utcnow()).isoformat()
    return "backup-" + stamp.replace(":", "-").replace(".", "-")


@dataclass(frozen=True)
class BackupResult:
    """One completed artifact. Never modified after creation."""

    backup_id: str
    kind: StoreKind
    backup_type: BackupType
    file_path: str
    size: int
    duration: float
    created_at: datetime
    checksum: Optional[str] = None
    compressed: bool = False
    encrypted: bool = False
    remote_path: Optional[str] = None

    @property
    def file_name(self) -> str:
        return os.path.basename(self.file_path)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backup_id": self.backup_id,
            "kind": self.kind.value,
            "backup_type": self.backup_type.value,
            "file_name": self.file_name,
            "file_path": self.file_path,
            "size": self.size,
            "duration": self.duration,
            "created_at": self.created_at.isoformat(),
            "checksum": self.checksum,
            "compressed": self.compressed,
            "encrypted": self.encrypted,
            "remote_path": self.remote_path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], set_dir: Optional[str] = None) -> "BackupResult":
        """
        Rebuild a result from its manifest entry.

        Args:
            data: Manifest entry
            set_dir: Directory of the backup set; when given, the file path
                is resolved relative to it so that moved backup roots still work

        Returns:
            BackupResult: Rebuilt record
        """
        file_path = data["file_path"]
        if set_dir and data.get("file_name"):
            file_path = os.path.join(set_dir, data["file_name"])
        return cls(
            backup_id=data["backup_id"],
            kind=StoreKind(data["kind"]),
            backup_type=BackupType(data["backup_type"]),
            file_path=file_path,
            size=int(data["size"]),
            duration=float(data.get("duration", 0.0)),
            created_at=parse_timestamp(data["created_at"]),
            checksum=data.get("checksum"),
            compressed=bool(data.get("compressed", False)),
            encrypted=bool(data.get("encrypted", False)),
            remote_path=data.get("remote_path"),
        )


@dataclass
class BackupSet:
    """Artifacts produced by one full or incremental invocation."""

    backup_id: str
    created_at: datetime
    backup_type: BackupType
    path: str
    artifacts: List[BackupResult] = field(default_factory=list)
    status: BackupSetStatus = BackupSetStatus.IN_PROGRESS
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_size(self) -> int:
        return sum(artifact.size for artifact in self.artifacts)

    @property
    def completed(self) -> bool:
        return self.status == BackupSetStatus.COMPLETED

    def artifact_for(self, kind: StoreKind) -> Optional[BackupResult]:
        for artifact in self.artifacts:
            if artifact.kind == kind:
                return artifact
        return None

    def age_days(self, now: Optional[datetime] = None) -> float:
        return ((now or utcnow()) - self.created_at).total_seconds() / 86400

    def to_manifest(self) -> Dict[str, Any]:
        return {
            "backup_id": self.backup_id,
            "created_at": self.created_at.isoformat(),
            "type": self.backup_type.value,
            "status": self.status.value,
            "artifacts": [artifact.to_dict() for artifact in self.artifacts],
            "metadata": self.metadata,
        }

    @classmethod
    def from_manifest(cls, data: Dict[str, Any], path: str) -> "BackupSet":
        return cls(
            backup_id=data["backup_id"],
            created_at=parse_timestamp(data["created_at"]),
            backup_type=BackupType(data["type"]),
            path=path,
            artifacts=[BackupResult.from_dict(entry, set_dir=path) for entry in data.get("artifacts", [])],
            status=BackupSetStatus(data.get("status", BackupSetStatus.COMPLETED.value)),
            metadata=data.get("metadata", {}),
        )


@dataclass(frozen=True)
class BackupOptions:
    backup_type: BackupType = BackupType.FULL
    backup_id: Optional[str] = None


@dataclass(frozen=True)
class RestoreOptions:
    """Which stores to restore and how.

    drop_existing and flush_existing reset the store before any data is
    loaded, so a failed load leaves an empty store behind.
    """

    restore_postgres: bool = True
    restore_redis: bool = True
    drop_existing: bool = False
    flush_existing: bool = False
    target_database: Optional[str] = None
    target_kv_db: Optional[int] = None
    stop_services: bool = False

    def with_changes(self, **changes) -> "RestoreOptions":
        return replace(self, **changes)
