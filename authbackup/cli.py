"""Main CLI entry point for AuthBackup.

This module provides the command-line interface for the auth platform's
backup subsystem: creating and restoring backups of the relational and
key-value stores, running disaster recovery plans and managing
cross-region replication.

The CLI is built using Click. Configuration comes from environment
variables and is validated before any command touches a store.
"""

import signal
import threading
from typing import Optional

import click

from authbackup import __version__
from authbackup.utils.errors import ErrorHandler
from authbackup.utils.logging import setup_logging


def _format_size(size: Optional[int]) -> str:
    """Render a byte count with 1024-based units."""
    if size is None:
        return "-"
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} GB"


def _load_context(background: bool = False):
    """Load validated configuration and build the services."""
    from authbackup.context import BackupContext

    return BackupContext.from_environment(background=background)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--dry-run", is_flag=True, help="Show what would be done without executing")
@click.option("--log-file", help="Log to file in addition to console")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, dry_run: bool, log_file: Optional[str]) -> None:
    """AuthBackup - backup, disaster recovery and replication for the auth platform.

    Protects the relational database and the Redis session store: scheduled
    and on-demand backups, verified restores, recovery plans and
    cross-region copies of every backup artifact.

    Args:
        ctx: Click context object containing shared state
        verbose: Enable verbose output for detailed logging
        dry_run: Show what would be done without executing commands
        log_file: Optional path to log file for additional logging
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["dry_run"] = dry_run
    ctx.obj["log_file"] = log_file
    ctx.obj["error_handler"] = ErrorHandler(verbose=verbose)

    setup_logging(verbose=verbose, log_file=log_file)


@cli.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.pass_context
def backup(ctx: click.Context) -> None:
    """Create, list, verify and prune backups."""
    pass


def _run_backup(ctx: click.Context, backup_type: str) -> None:
    try:
        context = _load_context()

        if ctx.obj["dry_run"]:
            stores = ", ".join(service.kind.value for service in context.backup_manager.services)
            click.echo(f"DRY RUN: Would create {backup_type} backup of stores: {stores}")
            click.echo(f"DRY RUN: Destination: {context.config.storage.local_path}")
            if context.replication_manager:
                regions = ", ".join(t.region for t in context.replication_manager.get_targets())
                click.echo(f"DRY RUN: Would replicate artifacts to: {regions}")
            return

        click.echo(f"Creating {backup_type} backup...")
        manager = context.backup_manager
        if backup_type == "full":
            results = manager.perform_full_backup()
        else:
            results = manager.perform_incremental_backup()

        click.echo(f"✓ Backup {results[0].backup_id} completed" if results else "✓ Backup completed")
        for result in results:
            flags = []
            if result.compressed:
                flags.append("compressed")
            if result.encrypted:
                flags.append("encrypted")
            suffix = f" ({', '.join(flags)})" if flags else ""
            click.echo(f"  {result.kind.value}: {result.file_path} [{_format_size(result.size)}]{suffix}")
            if ctx.obj["verbose"]:
                click.echo(f"    checksum: {result.checksum}")
                click.echo(f"    duration: {result.duration:.1f}s")
                if result.remote_path:
                    click.echo(f"    remote: {result.remote_path}")

        if context.replication_manager:
            metrics = context.replication_manager.get_metrics()
            click.echo(
                f"Replication: {metrics.successful_replications} delivered, "
                f"{metrics.failed_replications} failed"
            )
            context.close()

    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, f"{backup_type.capitalize()} backup")


@backup.command()
@click.pass_context
def full(ctx: click.Context) -> None:
    """Back up every store in full."""
    _run_backup(ctx, "full")


@backup.command()
@click.pass_context
def incremental(ctx: click.Context) -> None:
    """Back up changes since the previous backup."""
    _run_backup(ctx, "incremental")


@backup.command(name="list")
@click.option("--limit", "-n", type=int, help="Show at most N backups")
@click.pass_context
def list_backups(ctx: click.Context, limit: Optional[int]) -> None:
    """List backups, newest first."""
    try:
        context = _load_context()
        backup_sets = context.backup_manager.list_backups(limit=limit)

        if not backup_sets:
            click.echo("No backups found")
            return

        click.echo(f"Backups in {context.config.storage.local_path}:")
        for backup_set in backup_sets:
            created = backup_set.created_at.strftime("%Y-%m-%d %H:%M:%S")
            click.echo(
                f"  {backup_set.backup_id}  {backup_set.backup_type.value:<11}  "
                f"{backup_set.status.value:<11}  {_format_size(backup_set.total_size):>10}  {created}"
            )
            if ctx.obj["verbose"]:
                for artifact in backup_set.artifacts:
                    click.echo(f"      {artifact.kind.value}: {artifact.file_name} [{_format_size(artifact.size)}]")

        click.echo(f"\nTotal: {len(backup_sets)} backup(s)")

    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Backup listing")


@backup.command()
@click.pass_context
def cleanup(ctx: click.Context) -> None:
    """Delete backups outside the retention policy."""
    try:
        context = _load_context()
        retention = context.config.retention
        click.echo(f"Retention: {retention.days} day(s), at most {retention.max_backups} backup(s)")

        if ctx.obj["dry_run"]:
            doomed = context.backup_manager.cleanup_old_backups(dry_run=True)
            if not doomed:
                click.echo("DRY RUN: No backups would be deleted")
            for backup_id in doomed:
                click.echo(f"DRY RUN: Would delete {backup_id}")
            return

        deleted = context.backup_manager.cleanup_old_backups()
        for backup_id in deleted:
            click.echo(f"  Deleted {backup_id}")
        click.echo(f"✓ Cleanup complete, {len(deleted)} backup(s) deleted")

    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Backup cleanup")


@backup.command(name="test")
@click.pass_context
def test_backup(ctx: click.Context) -> None:
    """Back up and restore into scratch targets, then compare."""
    passed = False
    try:
        context = _load_context()
        click.echo("Testing backup and restore...")
        passed = context.backup_manager.test_backup_restore()
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Backup restore test")

    if passed:
        click.echo("✓ Backup restore test passed")
    else:
        click.echo("✗ Backup restore test failed")
        ctx.exit(1)


@backup.command()
@click.argument("backup_id")
@click.pass_context
def verify(ctx: click.Context, backup_id: str) -> None:
    """Check a backup's artifacts against their recorded size and checksum."""
    problems = []
    try:
        context = _load_context()
        problems = context.backup_manager.verify_backup(backup_id)
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Backup verification")

    if problems:
        click.echo(f"✗ Backup {backup_id} is damaged:")
        for problem in problems:
            click.echo(f"  - {problem}")
        ctx.exit(1)

    click.echo(f"✓ Backup {backup_id} is intact")


@backup.command()
@click.pass_context
def daemon(ctx: click.Context) -> None:
    """Run scheduled backups and replication until interrupted."""
    try:
        if ctx.obj["dry_run"]:
            context = _load_context()
            schedule = context.config.schedule
            click.echo(
                f"DRY RUN: Would run {schedule.type} backups every {schedule.interval}"
                if schedule.enabled
                else "DRY RUN: Scheduled backups are disabled"
            )
            return

        context = _load_context(background=True)
        scheduler = context.scheduler()
        stop_event = threading.Event()

        def handle_signal(signum, frame):
            stop_event.set()

        signal.signal(signal.SIGINT, handle_signal)
        signal.signal(signal.SIGTERM, handle_signal)

        if scheduler.start():
            click.echo(f"✓ Scheduled {context.config.schedule.type} backups every {context.config.schedule.interval}")
        else:
            click.echo("⚠ Scheduled backups are disabled")
        if context.replication_manager:
            click.echo(f"✓ Replicating to {len(context.replication_manager.get_targets())} region(s)")

        click.echo("Press Ctrl+C to stop")
        while not stop_event.wait(1):
            pass

        click.echo("Stopping...")
        scheduler.stop()
        context.close()
        click.echo("✓ Stopped")

    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Backup daemon")


@cli.command()
@click.argument("backup_id")
@click.option("--postgres", "postgres_only", is_flag=True, help="Restore only the relational database")
@click.option("--redis", "redis_only", is_flag=True, help="Restore only the Redis store")
@click.option("--drop-existing", is_flag=True, help="Drop and recreate the database before restoring")
@click.option("--flush-existing", is_flag=True, help="Flush the Redis database before restoring")
@click.option("--target-database", metavar="NAME", help="Restore the relational dump into this database")
@click.option("--stop-services", is_flag=True, help="Stop application containers during the restore")
@click.pass_context
def restore(
    ctx: click.Context,
    backup_id: str,
    postgres_only: bool,
    redis_only: bool,
    drop_existing: bool,
    flush_existing: bool,
    target_database: Optional[str],
    stop_services: bool,
) -> None:
    """Restore the stores from a backup.

    Without --postgres or --redis both stores are restored. Destructive
    resets (--drop-existing, --flush-existing) happen before the restore.
    """
    try:
        from authbackup.backup.models import RestoreOptions

        both = not postgres_only and not redis_only
        options = RestoreOptions(
            restore_postgres=both or postgres_only,
            restore_redis=both or redis_only,
            drop_existing=drop_existing,
            flush_existing=flush_existing,
            target_database=target_database,
            stop_services=stop_services,
        )

        context = _load_context()

        if ctx.obj["dry_run"]:
            backup_set = context.backup_manager.get_backup(backup_id)
            stores = [name for name, on in (("postgres", options.restore_postgres), ("redis", options.restore_redis)) if on]
            click.echo(f"DRY RUN: Would restore {', '.join(stores)} from {backup_set.backup_id}")
            if drop_existing:
                click.echo(f"DRY RUN: Would drop and recreate {target_database or 'the database'} first")
            if flush_existing:
                click.echo("DRY RUN: Would flush the Redis database first")
            if stop_services:
                click.echo("DRY RUN: Would stop application services during the restore")
            return

        click.echo(f"Restoring from {backup_id}...")
        context.backup_manager.restore_from_backup(backup_id, options)
        click.echo(f"✓ Restored from {backup_id}")

    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Restore")


@cli.group(name="disaster-recovery", context_settings={"help_option_names": ["-h", "--help"]})
@click.pass_context
def disaster_recovery(ctx: click.Context) -> None:
    """Run and rehearse disaster recovery plans."""
    pass


@disaster_recovery.command(name="list-plans")
@click.pass_context
def list_plans(ctx: click.Context) -> None:
    """List available recovery plans."""
    try:
        context = _load_context()
        plans = context.orchestrator.list_plans()

        click.echo("Recovery plans:")
        for plan in plans:
            click.echo(f"  {plan.id} ({plan.priority}, {plan.trigger_type}) - {plan.name}")
            if ctx.obj["verbose"]:
                if plan.description:
                    click.echo(f"    {plan.description}")
                for step in sorted(plan.steps, key=lambda s: s.order):
                    deps = f" after {', '.join(step.dependencies)}" if step.dependencies else ""
                    click.echo(f"    {step.order}. {step.id} [{step.type.value}]{deps}")

    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Plan listing")


@disaster_recovery.command()
@click.argument("plan_id")
@click.option("--backup-id", help="Backup to restore (defaults to the most recent)")
@click.pass_context
def execute(ctx: click.Context, plan_id: str, backup_id: Optional[str]) -> None:
    """Execute a recovery plan."""
    run = None
    try:
        from authbackup.recovery.plans import resolve_execution_order

        context = _load_context()
        orchestrator = context.orchestrator

        if ctx.obj["dry_run"]:
            plan = orchestrator.get_plan(plan_id)
            click.echo(f"DRY RUN: Would execute plan {plan.id}")
            for step in resolve_execution_order(plan.steps):
                click.echo(f"DRY RUN:   {step.order}. {step.id} [{step.type.value}] timeout {step.timeout:g}s, retries {step.retries}")
            if backup_id:
                click.echo(f"DRY RUN: Restore steps would use {backup_id}")
            return

        click.echo(f"Executing recovery plan {plan_id}...")
        run = orchestrator.execute_recovery_plan(plan_id, backup_id=backup_id)

        for result in run.step_results:
            icon = "✓" if result.succeeded else "✗"
            click.echo(f"  {icon} {result.step_id} ({result.step_type.value}, {result.attempts} attempt(s))")
            if result.error:
                click.echo(f"      {result.error}")
        for outcome in run.validation_results:
            icon = "⚠" if outcome.skipped else "✓" if outcome.passed else "✗"
            click.echo(f"  {icon} check {outcome.name}: {outcome.message}")
        for result in run.rollback_results:
            icon = "✓" if result.succeeded else "✗"
            click.echo(f"  {icon} rollback {result.step_id}")
        context.close()

    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Disaster recovery")

    if run.succeeded:
        click.echo(f"✓ Recovery {run.run_id} succeeded in {run.duration:.1f}s")
        return

    click.echo(f"✗ Recovery {run.run_id} failed: {run.error}")
    if run.rolled_back:
        click.echo("  Rollback completed")
    for error in run.rollback_errors:
        click.echo(f"  Rollback error: {error}")
    ctx.exit(1)


@disaster_recovery.command(name="test")
@click.pass_context
def test_recovery(ctx: click.Context) -> None:
    """Rehearse every recovery plan against scratch targets."""
    passed = False
    try:
        context = _load_context()
        click.echo("Testing recovery procedures...")
        passed = context.orchestrator.test_recovery_procedures()
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Recovery test")

    if passed:
        click.echo("✓ Recovery procedures test passed")
    else:
        click.echo("✗ Recovery procedures test failed")
        ctx.exit(1)


cli.add_command(disaster_recovery, name="dr")


@cli.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.pass_context
def replication(ctx: click.Context) -> None:
    """Inspect and drive cross-region replication."""
    pass


@replication.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show replication metrics and target status."""
    try:
        context = _load_context()
        manager = context.replication_manager
        if manager is None:
            click.echo("Cross-region replication is disabled")
            return

        metrics = manager.get_metrics()
        click.echo("Replication Metrics:")
        click.echo(f"  Total: {metrics.total_replications}")
        click.echo(f"  Successful: {metrics.successful_replications} ({metrics.partial_replications} partial)")
        click.echo(f"  Failed: {metrics.failed_replications}")
        click.echo(f"  Average duration: {metrics.average_duration_ms:.0f} ms")
        click.echo(f"  Current lag: {metrics.current_lag_ms} ms")
        click.echo(f"  Queued jobs: {len(manager.get_queue())}")

        click.echo("\nTargets:")
        for target in manager.get_targets():
            icon = "✓" if target.status.value == "active" else "✗"
            last_sync = target.last_sync.isoformat() if target.last_sync else "never"
            click.echo(f"  {icon} {target.region}: {target.status.value} ({target.endpoint}), last sync {last_sync}")
            if target.last_error and ctx.obj["verbose"]:
                click.echo(f"      {target.last_error}")

    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Replication status")


@replication.command()
@click.option("--timeout", default=600, type=int, help="Seconds to wait for delivery")
@click.pass_context
def sync(ctx: click.Context, timeout: int) -> None:
    """Re-send the newest backup to every region."""
    failed = []
    try:
        from authbackup.utils.errors import ConfigurationError

        context = _load_context()
        manager = context.replication_manager
        if manager is None:
            raise ConfigurationError(
                "Cross-region replication is disabled",
                suggestions=["Set CROSS_REGION_REPLICATION_ENABLED=true and CROSS_REGION_TARGETS"],
            )

        if ctx.obj["dry_run"]:
            latest = context.backup_manager.get_latest_backup()
            regions = ", ".join(t.region for t in manager.get_targets())
            if latest is None:
                click.echo("DRY RUN: No backups available for sync")
            else:
                click.echo(f"DRY RUN: Would send {latest.backup_id} to: {regions}")
            return

        jobs = manager.force_sync_to_all_targets()
        if not manager.wait_for_idle(timeout):
            click.echo(f"⚠ Replication still running after {timeout}s")

        for job in jobs:
            icon = {"completed": "✓", "partial": "⚠"}.get(job.status.value, "✗")
            click.echo(f"  {icon} {job.backup.file_name}: {job.status.value}")
            for region, error in job.target_results.items():
                if error:
                    click.echo(f"      {region}: {error}")
            if job.status.value == "failed":
                failed.append(job.id)
        context.close()

    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Replication sync")

    if failed:
        click.echo(f"✗ {len(failed)} replication job(s) failed")
        ctx.exit(1)
    click.echo("✓ Sync complete")


@cli.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.pass_context
def config(ctx: click.Context) -> None:
    """Validate and inspect configuration."""
    pass


@config.command()
@click.pass_context
def validate(ctx: click.Context) -> None:
    """Validate the configuration from the environment."""
    errors = []
    try:
        from authbackup.config import ConfigManager

        config_manager = ConfigManager()
        click.echo(f"Environment: {config_manager.detect_environment()}")
        errors = config_manager.validate()
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Configuration validation")

    if errors:
        click.echo("✗ Configuration is invalid:")
        for error in errors:
            click.echo(f"  - {error}")
        ctx.exit(1)

    click.echo("✓ Configuration is valid")


@config.command()
@click.option("--format", "output_format", type=click.Choice(["yaml", "json"]), default="yaml", help="Output format")
@click.pass_context
def show(ctx: click.Context, output_format: str) -> None:
    """Show the resolved configuration with secrets masked."""
    try:
        import json

        import yaml

        from authbackup.config import ConfigManager

        data = ConfigManager().to_dict(mask_secrets=True)
        if output_format == "json":
            click.echo(json.dumps(data, indent=2))
        else:
            click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))

    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Configuration display")


@config.command(name="init-key")
@click.option("--path", "key_path", help="Key file (defaults to BACKUP_ENCRYPTION_KEY_PATH)")
@click.option("--force", is_flag=True, help="Replace an existing key file")
@click.pass_context
def init_key(ctx: click.Context, key_path: Optional[str], force: bool) -> None:
    """Generate a new encryption key file."""
    try:
        from authbackup.backup.encryption import generate_key_file
        from authbackup.config import ConfigManager

        encryption = ConfigManager().load(validate=False).encryption
        key_path = key_path or encryption.key_path

        if ctx.obj["dry_run"]:
            click.echo(f"DRY RUN: Would write a new {encryption.algorithm} key to {key_path}")
            return

        generate_key_file(key_path, encryption.algorithm, overwrite=force)
        click.echo(f"✓ Encryption key written to {key_path}")
        click.echo("⚠ Keep a copy of this key; backups cannot be restored without it")

    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Encryption key generation")


if __name__ == "__main__":
    cli()
