"""Recovery plans, steps and run records."""

import secrets
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from authbackup.backup.models import BackupType, RestoreOptions, utcnow
from authbackup.utils.errors import ConfigurationError


class StepType(Enum):
    BACKUP = "backup"
    RESTORE = "restore"
    FAILOVER = "failover"
    VALIDATION = "validation"
    NOTIFICATION = "notification"


class RunStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StepStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class CheckType(Enum):
    HEALTH = "health"
    FUNCTIONAL = "functional"
    DATA_INTEGRITY = "data-integrity"


@dataclass(frozen=True)
class BackupStepConfig:
    backup_type: BackupType = BackupType.FULL


@dataclass(frozen=True)
class RestoreStepConfig:
    backup_id: Optional[str] = None
    restore_postgres: bool = True
    restore_redis: bool = True
    drop_existing: bool = False
    flush_existing: bool = False
    target_database: Optional[str] = None
    stop_services: bool = False

    def restore_options(self) -> RestoreOptions:
        return RestoreOptions(
            restore_postgres=self.restore_postgres,
            restore_redis=self.restore_redis,
            drop_existing=self.drop_existing,
            flush_existing=self.flush_existing,
            target_database=self.target_database,
            stop_services=self.stop_services,
        )


@dataclass(frozen=True)
class FailoverStepConfig:
    target_region: str
    failover_type: str = "manual"
    sync_before: bool = False


@dataclass(frozen=True)
class ValidationCheck:
    name: str
    type: CheckType = CheckType.HEALTH
    timeout: float = 30
    required: bool = True


@dataclass(frozen=True)
class ValidationStepConfig:
    checks: Tuple[ValidationCheck, ...] = ()


@dataclass(frozen=True)
class NotificationStepConfig:
    message: str
    channels: Tuple[str, ...] = ("webhook",)
    recipients: Tuple[str, ...] = ()


StepConfig = Union[
    BackupStepConfig,
    RestoreStepConfig,
    FailoverStepConfig,
    ValidationStepConfig,
    NotificationStepConfig,
]

STEP_CONFIG_TYPES = {
    StepType.BACKUP: BackupStepConfig,
    StepType.RESTORE: RestoreStepConfig,
    StepType.FAILOVER: FailoverStepConfig,
    StepType.VALIDATION: ValidationStepConfig,
    StepType.NOTIFICATION: NotificationStepConfig,
}


@dataclass(frozen=True)
class PostCondition:
    """Command run after a step; its stripped stdout must equal expected_result when set."""

    command: str
    expected_result: Optional[str] = None


@dataclass(frozen=True)
class RecoveryStep:
    id: str
    name: str
    type: StepType
    order: int
    config: StepConfig
    timeout: float = 300
    retries: int = 0
    dependencies: Tuple[str, ...] = ()
    validation: Optional[PostCondition] = None

    def __post_init__(self):
        expected = STEP_CONFIG_TYPES[self.type]
        if not isinstance(self.config, expected):
            raise ConfigurationError(
                f"Step {self.id}: {self.type.value} steps need {expected.__name__}, got {type(self.config).__name__}"
            )


@dataclass(frozen=True)
class RecoveryPlan:
    id: str
    name: str
    steps: Tuple[RecoveryStep, ...]
    description: str = ""
    version: str = "1.0.0"
    priority: str = "medium"
    trigger_type: str = "manual"
    trigger_conditions: Tuple[str, ...] = ()
    health_checks: Tuple[str, ...] = ()
    data_integrity_checks: Tuple[str, ...] = ()
    rollback_enabled: bool = False
    rollback_steps: Tuple[RecoveryStep, ...] = ()
    notification_channels: Tuple[str, ...] = ()
    notification_recipients: Tuple[str, ...] = ()

    @property
    def has_rollback(self) -> bool:
        return self.rollback_enabled and bool(self.rollback_steps)


@dataclass
class CheckOutcome:
    name: str
    type: CheckType
    passed: bool
    required: bool = True
    skipped: bool = False
    message: str = ""
    duration: float = 0.0

    @property
    def failed(self) -> bool:
        return not self.passed and not self.skipped

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.value,
            "passed": self.passed,
            "required": self.required,
            "skipped": self.skipped,
            "message": self.message,
            "duration": round(self.duration, 3),
        }


@dataclass
class StepRunResult:
    step_id: str
    step_type: StepType
    status: StepStatus
    attempts: int
    started_at: datetime
    finished_at: datetime
    output: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    check_outcomes: List[CheckOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCEEDED

    @property
    def partial(self) -> bool:
        """Some checks passed and some failed."""
        passed = [o for o in self.check_outcomes if o.passed]
        failed = [o for o in self.check_outcomes if o.failed]
        return bool(passed) and bool(failed)


def new_run_id() -> str:
    return f"dr-{utcnow().strftime('%Y%m%d%H%M%S')}-{secrets.token_hex(3)}"


@dataclass
class RecoveryRun:
    """One execution of a plan."""

    run_id: str
    plan_id: str
    status: RunStatus = RunStatus.PENDING
    backup_id: Optional[str] = None
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    step_results: List[StepRunResult] = field(default_factory=list)
    validation_results: List[CheckOutcome] = field(default_factory=list)
    rollback_results: List[StepRunResult] = field(default_factory=list)
    error: Optional[str] = None
    rollback_errors: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    @property
    def rolled_back(self) -> bool:
        """Rollback steps ran and none of them failed."""
        return bool(self.rollback_results) and not self.rollback_errors

    @property
    def trace(self) -> List[str]:
        """Ids of executed steps, in execution order."""
        return [result.step_id for result in self.step_results]

    @property
    def duration(self) -> Optional[float]:
        if not self.finished_at:
            return None
        return (self.finished_at - self.started_at).total_seconds()
