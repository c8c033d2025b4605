"""Disaster recovery orchestrator: runs recovery plans step by step."""

import logging
import shlex
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from jinja2 import TemplateError

from authbackup.backup.manager import BackupManager
from authbackup.backup.models import BackupOptions, utcnow
from authbackup.utils.errors import AuthBackupError, NotFoundError, RecoveryError, create_error_suggestions
from authbackup.utils.timeouts import OperationTimeout, run_with_timeout

from .checks import CheckRegistry, build_default_checks
from .failover import FailoverHandler
from .models import (
    CheckOutcome,
    CheckType,
    RecoveryPlan,
    RecoveryRun,
    RecoveryStep,
    RunStatus,
    StepRunResult,
    StepStatus,
    StepType,
    new_run_id,
)
from .notifications import Notifier
from .plans import default_recovery_plan, resolve_execution_order

logger = logging.getLogger(__name__)

PLAN_CHECK_TIMEOUT = 30


class StepCheckFailed(AuthBackupError):
    """A step ran but its checks or post-condition did not hold."""

    def __init__(self, message: str, outcomes: Optional[List[CheckOutcome]] = None):
        super().__init__(message)
        self.outcomes = outcomes or []


@dataclass
class RunContext:
    plan: RecoveryPlan
    run: RecoveryRun
    backup_id: Optional[str] = None


class DisasterRecoveryOrchestrator:
    """Executes recovery plans against the backup and replication services.

    Steps run one at a time in dependency order, each under its own timeout
    with a fixed delay between retries. When a step exhausts its retries the
    plan's rollback steps run in reverse order; their failures are recorded
    beside the original error, which stays the reported cause.
    """

    def __init__(
        self,
        backup_manager: BackupManager,
        replication_manager=None,
        notifier: Optional[Notifier] = None,
        failover_handler: Optional[FailoverHandler] = None,
        checks: Optional[CheckRegistry] = None,
        plans: Optional[List[RecoveryPlan]] = None,
        retry_delay: float = 1.0,
    ):
        """
        Initialize the orchestrator.

        Args:
            backup_manager: Backup service used by backup and restore steps
            replication_manager: Optional replication service for pre-failover syncs
            notifier: Message sender (defaults to one built from the backup config)
            failover_handler: Regional cutover hook
            checks: Named checks for validation steps
            plans: Plans to register (defaults to the built-in plan)
            retry_delay: Seconds to wait between attempts of a step
        """
        self.backup_manager = backup_manager
        self.replication_manager = replication_manager
        self.notifier = notifier or Notifier(backup_manager.config.notifications)
        self.failover_handler = failover_handler or FailoverHandler(
            backup_manager.config.recovery.failover_webhook_url
        )
        self.checks = checks or build_default_checks(
            backup_manager.services, backup_manager.config.recovery.health_check_url
        )
        self.retry_delay = retry_delay

        self._handlers = {
            StepType.BACKUP: self._execute_backup_step,
            StepType.RESTORE: self._execute_restore_step,
            StepType.FAILOVER: self._execute_failover_step,
            StepType.VALIDATION: self._execute_validation_step,
            StepType.NOTIFICATION: self._execute_notification_step,
        }
        missing = set(StepType) - set(self._handlers)
        if missing:
            raise TypeError(f"No handler for step types: {sorted(t.value for t in missing)}")

        self._plans: Dict[str, RecoveryPlan] = {}
        self._runs: Dict[str, RecoveryRun] = {}
        self._active_run: Optional[RecoveryRun] = None
        self._lock = threading.Lock()

        for plan in plans if plans is not None else [default_recovery_plan()]:
            self.register_plan(plan)

    def register_plan(self, plan: RecoveryPlan) -> None:
        """
        Add or replace a plan after checking its step graph.

        Raises:
            ConfigurationError: If steps or rollback steps cannot be ordered
        """
        resolve_execution_order(plan.steps)
        if plan.rollback_steps:
            resolve_execution_order(plan.rollback_steps)
        self._plans[plan.id] = plan

    def list_plans(self) -> List[RecoveryPlan]:
        return list(self._plans.values())

    def get_plan(self, plan_id: str) -> RecoveryPlan:
        if plan_id not in self._plans:
            raise NotFoundError(
                f"Recovery plan not found: {plan_id}",
                suggestions=["Run 'authbackup disaster-recovery list-plans' to see available plans"],
            )
        return self._plans[plan_id]

    def get_active_run(self) -> Optional[RecoveryRun]:
        return self._active_run

    def get_run(self, run_id: str) -> Optional[RecoveryRun]:
        return self._runs.get(run_id)

    def execute_recovery_plan(self, plan_id: str, backup_id: Optional[str] = None) -> RecoveryRun:
        """
        Run a plan.

        Args:
            plan_id: Plan to run
            backup_id: Backup set for restore steps that do not name one

        Returns:
            RecoveryRun: Final run record; a failed run carries its rollback results

        Raises:
            NotFoundError: If the plan does not exist
            ConfigurationError: If the step graph is invalid (no step runs)
            RecoveryError: If another recovery is running
        """
        plan = self.get_plan(plan_id)
        order = resolve_execution_order(plan.steps)

        with self._lock:
            if self._active_run is not None:
                raise RecoveryError(
                    f"Recovery {self._active_run.run_id} is already running",
                    suggestions=["Wait for the running recovery to finish"],
                )
            run = RecoveryRun(run_id=new_run_id(), plan_id=plan.id, backup_id=backup_id)
            self._active_run = run

        context = RunContext(plan=plan, run=run, backup_id=backup_id)
        try:
            run.status = RunStatus.RUNNING
            logger.info("Starting recovery %s with plan %s", run.run_id, plan.id)
            self._notify_plan(plan, run, "started")

            succeeded = set()
            for step in order:
                unmet = [dependency for dependency in step.dependencies if dependency not in succeeded]
                if unmet:
                    self._fail_run(context, f"Step {step.id} has unmet dependencies: {', '.join(unmet)}")
                    return run

                result = self._run_step(step, context)
                run.step_results.append(result)
                if not result.succeeded:
                    self._fail_run(context, f"Step {step.id} failed: {result.error}")
                    return run
                succeeded.add(step.id)

            run.validation_results = self._run_plan_validation(plan)
            failed = [outcome.name for outcome in run.validation_results if outcome.failed]
            if failed:
                self._fail_run(context, f"Recovery validation failed: {', '.join(failed)}")
                return run

            run.status = RunStatus.SUCCEEDED
            logger.info("Recovery %s succeeded", run.run_id)
            self._notify_plan(plan, run, "succeeded")
            return run
        finally:
            run.finished_at = utcnow()
            with self._lock:
                self._runs[run.run_id] = run
                self._active_run = None

    def test_recovery_procedures(self) -> bool:
        """
        Rehearse every plan without changing live data.

        Step graphs are re-checked, backup and restore steps are covered by a
        scratch backup/restore, validation checks run for real, failover
        steps are checked against the configured regions and notification
        templates are rendered but not sent.

        Returns:
            bool: True if every plan rehearsed cleanly
        """
        ok = True
        needs_restore_test = False

        for plan in self.list_plans():
            try:
                order = resolve_execution_order(plan.steps)
                if plan.rollback_steps:
                    resolve_execution_order(plan.rollback_steps)
            except AuthBackupError as e:
                logger.error("Plan %s is invalid: %s", plan.id, e.details or e.message)
                ok = False
                continue

            for step in order:
                if step.type in (StepType.BACKUP, StepType.RESTORE):
                    needs_restore_test = True
                    continue
                passed, message = self._rehearse_step(plan, step)
                if passed:
                    logger.info("Plan %s step %s: %s", plan.id, step.id, message)
                else:
                    logger.error("Plan %s step %s: %s", plan.id, step.id, message)
                    ok = False

            failed = [outcome.name for outcome in self._run_plan_validation(plan) if outcome.failed]
            if failed:
                logger.error("Plan %s validation checks failed: %s", plan.id, ", ".join(failed))
                ok = False

        if needs_restore_test and not self.backup_manager.test_backup_restore():
            ok = False

        return ok

    def _run_step(self, step: RecoveryStep, context: RunContext) -> StepRunResult:
        handler = self._handlers[step.type]
        started_at = utcnow()
        max_attempts = step.retries + 1
        last_error = None
        outcomes: List[CheckOutcome] = []

        def attempt():
            output = handler(step, context)
            if step.validation:
                self._check_post_condition(step)
            return output

        for attempt_number in range(1, max_attempts + 1):
            logger.info("Step %s (%s) attempt %d/%d", step.id, step.type.value, attempt_number, max_attempts)
            try:
                output = run_with_timeout(attempt, step.timeout)
                return StepRunResult(
                    step_id=step.id,
                    step_type=step.type,
                    status=StepStatus.SUCCEEDED,
                    attempts=attempt_number,
                    started_at=started_at,
                    finished_at=utcnow(),
                    output=output or {},
                    check_outcomes=(output or {}).get("outcomes", []),
                )
            except OperationTimeout:
                last_error = f"timed out after {step.timeout:g}s"
            except StepCheckFailed as e:
                last_error = e.message
                outcomes = e.outcomes
            except AuthBackupError as e:
                last_error = f"{e.message}: {e.details}" if e.details else e.message
            except Exception as e:
                logger.debug("Step %s raised", step.id, exc_info=True)
                last_error = f"{type(e).__name__}: {e}"

            logger.warning("Step %s attempt %d/%d failed: %s", step.id, attempt_number, max_attempts, last_error)
            if attempt_number < max_attempts:
                time.sleep(self.retry_delay)

        if step.type == StepType.NOTIFICATION:
            logger.warning("Notification step %s could not complete; continuing", step.id)
            return StepRunResult(
                step_id=step.id,
                step_type=step.type,
                status=StepStatus.SUCCEEDED,
                attempts=max_attempts,
                started_at=started_at,
                finished_at=utcnow(),
                output={"delivered": {}, "warning": last_error},
            )

        return StepRunResult(
            step_id=step.id,
            step_type=step.type,
            status=StepStatus.FAILED,
            attempts=max_attempts,
            started_at=started_at,
            finished_at=utcnow(),
            error=last_error,
            check_outcomes=outcomes,
        )

    def _fail_run(self, context: RunContext, reason: str) -> None:
        plan, run = context.plan, context.run
        run.error = reason
        run.status = RunStatus.FAILED
        logger.error("Recovery %s failed: %s", run.run_id, reason)

        if plan.has_rollback:
            logger.info("Rolling back recovery %s", run.run_id)
            for step in reversed(resolve_execution_order(plan.rollback_steps)):
                result = self._run_step(step, context)
                run.rollback_results.append(result)
                if not result.succeeded:
                    run.rollback_errors.append(f"{step.id}: {result.error}")
                    logger.error("Rollback step %s failed: %s", step.id, result.error)

        self._notify_plan(plan, run, "failed")

    def _run_plan_validation(self, plan: RecoveryPlan) -> List[CheckOutcome]:
        outcomes = self.checks.run_named(plan.health_checks, CheckType.HEALTH, PLAN_CHECK_TIMEOUT)
        outcomes += self.checks.run_named(plan.data_integrity_checks, CheckType.DATA_INTEGRITY, PLAN_CHECK_TIMEOUT)
        return outcomes

    def _rehearse_step(self, plan: RecoveryPlan, step: RecoveryStep):
        try:
            if step.type == StepType.FAILOVER:
                regions = []
                if self.replication_manager:
                    regions = [target.region for target in self.replication_manager.get_targets()]
                return self.failover_handler.rehearse(step.config.target_region, regions)

            if step.type == StepType.VALIDATION:
                outcomes = [self.checks.run(check) for check in step.config.checks]
                failed = [o.name for o in outcomes if o.failed and o.required]
                if failed:
                    return False, f"required checks failed: {', '.join(failed)}"
                return True, f"{len(outcomes)} check(s) passed"

            self.notifier.render(step.config.message, self._template_context(plan, None))
            return True, "notification template renders"
        except TemplateError as e:
            return False, f"notification template error: {e}"
        except AuthBackupError as e:
            return False, e.message

    def _check_post_condition(self, step: RecoveryStep) -> None:
        condition = step.validation
        try:
            result = subprocess.run(
                shlex.split(condition.command),
                capture_output=True,
                text=True,
                timeout=step.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise StepCheckFailed(f"Post-condition '{condition.command}' could not run: {e}")

        if result.returncode != 0:
            raise StepCheckFailed(f"Post-condition '{condition.command}' exited with {result.returncode}")
        if condition.expected_result is not None and result.stdout.strip() != condition.expected_result:
            raise StepCheckFailed(
                f"Post-condition '{condition.command}' returned {result.stdout.strip()!r}, "
                f"expected {condition.expected_result!r}"
            )

    def _execute_backup_step(self, step: RecoveryStep, context: RunContext) -> Dict[str, Any]:
        results = self.backup_manager.perform_backup(BackupOptions(backup_type=step.config.backup_type))
        return {
            "backup_id": results[0].backup_id if results else None,
            "artifacts": [result.file_name for result in results],
        }

    def _execute_restore_step(self, step: RecoveryStep, context: RunContext) -> Dict[str, Any]:
        backup_id = step.config.backup_id or context.backup_id
        if not backup_id:
            latest = self.backup_manager.get_latest_backup()
            if latest is None:
                raise NotFoundError(
                    "No backups available to restore",
                    suggestions=create_error_suggestions("backup_not_found"),
                )
            backup_id = latest.backup_id

        self.backup_manager.restore_from_backup(backup_id, step.config.restore_options())
        return {"backup_id": backup_id}

    def _execute_failover_step(self, step: RecoveryStep, context: RunContext) -> Dict[str, Any]:
        config = step.config
        synced_jobs = []
        if config.sync_before and self.replication_manager:
            jobs = self.replication_manager.force_sync_to_all_targets()
            synced_jobs = [job.id for job in jobs]
            if not self.replication_manager.wait_for_idle(step.timeout):
                raise StepCheckFailed("Cross-region sync did not finish before failover")

        record = self.failover_handler.execute(
            config.target_region,
            config.failover_type,
            {"plan_id": context.plan.id, "run_id": context.run.run_id, "synced_jobs": synced_jobs},
        )
        return dict(record, synced_jobs=synced_jobs)

    def _execute_validation_step(self, step: RecoveryStep, context: RunContext) -> Dict[str, Any]:
        outcomes = [self.checks.run(check) for check in step.config.checks]
        failed = [outcome.name for outcome in outcomes if outcome.failed and outcome.required]
        if failed:
            raise StepCheckFailed(f"Required checks failed: {', '.join(failed)}", outcomes)
        return {
            "outcomes": outcomes,
            "passed": sum(1 for outcome in outcomes if outcome.passed),
            "failed": sum(1 for outcome in outcomes if outcome.failed),
        }

    def _execute_notification_step(self, step: RecoveryStep, context: RunContext) -> Dict[str, Any]:
        delivered = self.notifier.send(
            subject=f"Disaster recovery: {context.plan.name}",
            message=step.config.message,
            channels=step.config.channels,
            recipients=step.config.recipients or context.plan.notification_recipients,
            context=self._template_context(context.plan, context.run),
        )
        return {"delivered": delivered}

    def _notify_plan(self, plan: RecoveryPlan, run: RecoveryRun, event: str) -> None:
        if not plan.notification_channels:
            return
        self.notifier.send(
            subject=f"Disaster recovery {event}: {plan.name}",
            message="Recovery {{ run_id }} for plan {{ plan_id }} {{ event }}.{% if error %} Cause: {{ error }}{% endif %}",
            channels=plan.notification_channels,
            recipients=plan.notification_recipients,
            context=dict(self._template_context(plan, run), event=event),
        )

    def _template_context(self, plan: RecoveryPlan, run: Optional[RecoveryRun]) -> Dict[str, Any]:
        return {
            "plan_id": plan.id,
            "plan_name": plan.name,
            "priority": plan.priority,
            "run_id": run.run_id if run else "rehearsal",
            "status": run.status.value if run else "pending",
            "error": run.error if run else None,
        }
