"""Replication targets, jobs and metrics."""

import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from authbackup.backup.models import BackupResult, utcnow

DEFAULT_MAX_RETRIES = 3


class TargetStatus(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"


class JobStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


def new_job_id() -> str:
    return f"repl-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


@dataclass
class ReplicationTarget:
    """One destination region. Starts inactive until its first successful probe."""

    region: str
    endpoint: str
    storage_type: str
    credentials: Dict[str, str] = field(default_factory=dict, repr=False)
    status: TargetStatus = TargetStatus.INACTIVE
    last_sync: Optional[datetime] = None
    lag_ms: Optional[int] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "region": self.region,
            "endpoint": self.endpoint,
            "storage_type": self.storage_type,
            "status": self.status.value,
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
            "lag_ms": self.lag_ms,
            "last_error": self.last_error,
        }


@dataclass
class ReplicationJob:
    """Delivery of one backup artifact to a set of regions."""

    id: str
    backup: BackupResult
    target_regions: List[str]
    status: JobStatus = JobStatus.PENDING
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    created_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    # region -> error message of the latest attempt, None on success
    target_results: Dict[str, Optional[str]] = field(default_factory=dict)

    @property
    def terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.PARTIAL) or (
            self.status == JobStatus.FAILED and self.retry_count >= self.max_retries
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "backup_id": self.backup.backup_id,
            "file": self.backup.file_name,
            "target_regions": list(self.target_regions),
            "status": self.status.value,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "created_at": self.created_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "target_results": dict(self.target_results),
        }


@dataclass
class ReplicationMetrics:
    """Counters over terminal jobs. Partial jobs count as successful."""

    total_replications: int = 0
    successful_replications: int = 0
    partial_replications: int = 0
    failed_replications: int = 0
    average_duration_ms: float = 0.0
    current_lag_ms: int = 0
    last_replication: Optional[datetime] = None

    def record(self, status: JobStatus, duration_ms: float, finished_at: datetime) -> None:
        self.total_replications += 1
        if status == JobStatus.FAILED:
            self.failed_replications += 1
        else:
            self.successful_replications += 1
            if status == JobStatus.PARTIAL:
                self.partial_replications += 1

        self.average_duration_ms += (duration_ms - self.average_duration_ms) / self.total_replications
        self.last_replication = finished_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_replications": self.total_replications,
            "successful_replications": self.successful_replications,
            "partial_replications": self.partial_replications,
            "failed_replications": self.failed_replications,
            "average_duration_ms": round(self.average_duration_ms, 1),
            "current_lag_ms": self.current_lag_ms,
            "last_replication": self.last_replication.isoformat() if self.last_replication else None,
        }
