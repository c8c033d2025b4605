"""Recovery plan definitions: the built-in plan, YAML loading and step ordering."""

import heapq
import logging
import os
from typing import Any, Dict, List, Optional

import yaml

from authbackup.backup.models import BackupType
from authbackup.config.validator import ConfigValidator
from authbackup.utils.errors import ConfigurationError, format_validation_errors

from .models import (
    BackupStepConfig,
    CheckType,
    FailoverStepConfig,
    NotificationStepConfig,
    PostCondition,
    RecoveryPlan,
    RecoveryStep,
    RestoreStepConfig,
    StepConfig,
    StepType,
    ValidationCheck,
    ValidationStepConfig,
)

logger = logging.getLogger(__name__)

DEFAULT_PLAN_ID = "default-recovery"


def default_recovery_plan() -> RecoveryPlan:
    """Back up the current state, restore the latest backup, validate the system."""
    return RecoveryPlan(
        id=DEFAULT_PLAN_ID,
        name="Default Disaster Recovery Plan",
        description="Standard disaster recovery procedure for complete system restoration",
        version="1.0.0",
        priority="critical",
        trigger_type="manual",
        steps=(
            RecoveryStep(
                id="backup-current",
                name="Create backup of current state",
                type=StepType.BACKUP,
                order=1,
                config=BackupStepConfig(backup_type=BackupType.FULL),
                timeout=300,
                retries=2,
            ),
            RecoveryStep(
                id="restore-latest",
                name="Restore from latest backup",
                type=StepType.RESTORE,
                order=2,
                config=RestoreStepConfig(),
                timeout=600,
                retries=1,
                dependencies=("backup-current",),
            ),
            RecoveryStep(
                id="validate-system",
                name="Validate system functionality",
                type=StepType.VALIDATION,
                order=3,
                config=ValidationStepConfig(
                    checks=(
                        ValidationCheck("database-connectivity", CheckType.HEALTH),
                        ValidationCheck("redis-connectivity", CheckType.HEALTH),
                        ValidationCheck("api-endpoints", CheckType.FUNCTIONAL, required=False),
                    )
                ),
                timeout=120,
                retries=3,
                dependencies=("restore-latest",),
            ),
        ),
        health_checks=("database", "redis", "api"),
        data_integrity_checks=("user-data", "session-data"),
        rollback_enabled=True,
        rollback_steps=(),
        notification_channels=("email", "webhook"),
        notification_recipients=("admin@example.com",),
    )


def resolve_execution_order(steps) -> List[RecoveryStep]:
    """
    Order steps so that every step follows all of its dependencies.

    Ties are broken by the declared order, then by position, so the result
    is stable.

    Args:
        steps: Plan steps

    Returns:
        List[RecoveryStep]: Steps in execution order

    Raises:
        ConfigurationError: On duplicate ids or orders, missing dependencies,
            cycles, or dependencies whose order is not strictly lower
    """
    errors = []
    by_id: Dict[str, RecoveryStep] = {}
    position: Dict[str, int] = {}
    seen_orders: Dict[int, str] = {}

    for index, step in enumerate(steps):
        if step.id in by_id:
            errors.append(f"Duplicate step id '{step.id}'")
            continue
        by_id[step.id] = step
        position[step.id] = index
        if step.order in seen_orders:
            errors.append(f"Steps '{seen_orders[step.order]}' and '{step.id}' share order {step.order}")
        else:
            seen_orders[step.order] = step.id

    for step in by_id.values():
        for dependency in step.dependencies:
            if dependency not in by_id:
                errors.append(f"Step '{step.id}' depends on unknown step '{dependency}'")

    if errors:
        raise ConfigurationError("Invalid recovery plan", details=format_validation_errors(errors))

    remaining = {step_id: len(set(step.dependencies)) for step_id, step in by_id.items()}
    dependents: Dict[str, List[str]] = {step_id: [] for step_id in by_id}
    for step in by_id.values():
        for dependency in set(step.dependencies):
            dependents[dependency].append(step.id)

    ready = [(step.order, position[step.id], step.id) for step in by_id.values() if remaining[step.id] == 0]
    heapq.heapify(ready)
    ordered = []
    while ready:
        _, _, step_id = heapq.heappop(ready)
        ordered.append(by_id[step_id])
        for dependent in dependents[step_id]:
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                step = by_id[dependent]
                heapq.heappush(ready, (step.order, position[step.id], step.id))

    if len(ordered) != len(by_id):
        cyclic = sorted(step_id for step_id, count in remaining.items() if count > 0)
        raise ConfigurationError(
            "Invalid recovery plan",
            details=f"Validation error: dependency cycle among steps: {', '.join(cyclic)}",
        )

    for step in ordered:
        for dependency in step.dependencies:
            if by_id[dependency].order >= step.order:
                errors.append(
                    f"Step '{step.id}' (order {step.order}) depends on '{dependency}' "
                    f"(order {by_id[dependency].order}); dependencies need a lower order"
                )
    if errors:
        raise ConfigurationError("Invalid recovery plan", details=format_validation_errors(errors))

    return ordered


def plan_from_dict(data: Dict[str, Any]) -> RecoveryPlan:
    """
    Build a plan from its YAML/dict form.

    Timeouts are in seconds.

    Raises:
        ConfigurationError: If the definition is invalid
    """
    errors = ConfigValidator().validate_plan(data)
    if errors:
        raise ConfigurationError(
            f"Invalid recovery plan '{data.get('id', '?')}'",
            details=format_validation_errors(errors),
        )

    trigger = data.get("trigger", {})
    validation = data.get("validation", {})
    rollback = data.get("rollback", {})
    notifications = data.get("notifications", {})

    plan = RecoveryPlan(
        id=data["id"],
        name=data["name"],
        description=data.get("description", ""),
        version=data.get("version", "1.0.0"),
        priority=data.get("priority", "medium"),
        trigger_type=trigger.get("type", "manual"),
        trigger_conditions=tuple(trigger.get("conditions", [])),
        steps=tuple(_step_from_dict(step) for step in data["steps"]),
        health_checks=tuple(validation.get("health_checks", [])),
        data_integrity_checks=tuple(validation.get("data_integrity_checks", [])),
        rollback_enabled=rollback.get("enabled", False),
        rollback_steps=tuple(_step_from_dict(step) for step in rollback.get("steps", [])),
        notification_channels=tuple(notifications.get("channels", [])),
        notification_recipients=tuple(notifications.get("recipients", [])),
    )

    resolve_execution_order(plan.steps)
    if plan.rollback_steps:
        resolve_execution_order(plan.rollback_steps)
    return plan


def load_plans(directory: Optional[str]) -> List[RecoveryPlan]:
    """
    Load every *.yml / *.yaml plan in a directory.

    Raises:
        ConfigurationError: If a file cannot be parsed or holds an invalid plan
    """
    if not directory:
        return []
    if not os.path.isdir(directory):
        raise ConfigurationError(f"Recovery plan directory not found: {directory}")

    plans = []
    for name in sorted(os.listdir(directory)):
        if not name.endswith((".yml", ".yaml")):
            continue
        path = os.path.join(directory, name)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read recovery plan {path}", details=str(e))

        plans.append(plan_from_dict(data))
        logger.debug("Loaded recovery plan %s from %s", data.get("id"), path)

    return plans


def _step_from_dict(data: Dict[str, Any]) -> RecoveryStep:
    step_type = StepType(data["type"])
    validation = data.get("validation")
    return RecoveryStep(
        id=data["id"],
        name=data["name"],
        type=step_type,
        order=data["order"],
        config=_step_config(step_type, data.get("config", {}), data["id"]),
        timeout=float(data.get("timeout", 300)),
        retries=data.get("retries", 0),
        dependencies=tuple(data.get("dependencies", [])),
        validation=PostCondition(
            command=validation["command"],
            expected_result=None if validation.get("expected_result") is None else str(validation["expected_result"]),
        )
        if validation
        else None,
    )


def _step_config(step_type: StepType, config: Dict[str, Any], step_id: str) -> StepConfig:
    try:
        if step_type == StepType.BACKUP:
            return BackupStepConfig(backup_type=BackupType(config.get("type", "full")))
        if step_type == StepType.RESTORE:
            return RestoreStepConfig(
                backup_id=config.get("backup_id"),
                restore_postgres=config.get("restore_postgres", True),
                restore_redis=config.get("restore_redis", True),
                drop_existing=config.get("drop_existing", False),
                flush_existing=config.get("flush_existing", False),
                target_database=config.get("target_database"),
                stop_services=config.get("stop_services", False),
            )
        if step_type == StepType.FAILOVER:
            return FailoverStepConfig(
                target_region=config["target_region"],
                failover_type=config.get("failover_type", "manual"),
                sync_before=config.get("sync_before", False),
            )
        if step_type == StepType.VALIDATION:
            return ValidationStepConfig(
                checks=tuple(
                    ValidationCheck(
                        name=check["name"],
                        type=CheckType(check.get("type", "health")),
                        timeout=float(check.get("timeout", 30)),
                        required=check.get("required", True),
                    )
                    for check in config.get("checks", [])
                )
            )
        return NotificationStepConfig(
            message=config["message"],
            channels=tuple(config.get("channels", ["webhook"])),
            recipients=tuple(config.get("recipients", [])),
        )
    except (KeyError, ValueError, TypeError) as e:
        raise ConfigurationError(f"Invalid configuration for step '{step_id}'", details=f"{type(e).__name__}: {e}")
