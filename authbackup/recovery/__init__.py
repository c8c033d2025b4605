"""Disaster recovery plans and their execution."""

from .checks import CheckRegistry, build_default_checks
from .failover import FailoverHandler
from .models import RecoveryPlan, RecoveryRun, RecoveryStep, RunStatus, StepType
from .notifications import Notifier
from .orchestrator import DisasterRecoveryOrchestrator
from .plans import DEFAULT_PLAN_ID, default_recovery_plan, load_plans, plan_from_dict, resolve_execution_order

__all__ = [
    "CheckRegistry",
    "DEFAULT_PLAN_ID",
    "DisasterRecoveryOrchestrator",
    "FailoverHandler",
    "Notifier",
    "RecoveryPlan",
    "RecoveryRun",
    "RecoveryStep",
    "RunStatus",
    "StepType",
    "build_default_checks",
    "default_recovery_plan",
    "load_plans",
    "plan_from_dict",
    "resolve_execution_order",
]
