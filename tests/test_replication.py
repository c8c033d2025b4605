"""Tests for cross-region replication."""

import os
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from authbackup.backup.models import utcnow
from authbackup.replication import CrossRegionReplicationManager
from authbackup.replication.models import JobStatus, TargetStatus
from authbackup.utils.errors import ConfigurationError, NotFoundError
from conftest import FakeSink


@pytest.fixture
def replication_config(backup_config):
    """Backup configuration with two replication regions."""
    backup_config.cross_region.enabled = True
    backup_config.cross_region.regions = ["us-west-2", "eu-west-1"]
    backup_config.cross_region.replication_delay = 0
    return backup_config


def make_manager(config, sinks, background=False, probe=True):
    manager = CrossRegionReplicationManager(config, sinks=sinks, background=background)
    if probe:
        manager.check_target_health()
    return manager


class TestReplicationJobs:
    """Test job outcomes."""

    def test_all_targets_receive_artifact(self, replication_config, artifact_file):
        """Test a fully successful job."""
        sinks = {"us-west-2": FakeSink(), "eu-west-1": FakeSink()}
        manager = make_manager(replication_config, sinks)
        artifact = artifact_file(content=b"dump-bytes")

        job = manager.replicate_backup(artifact)

        assert job.status == JobStatus.COMPLETED
        assert job.finished_at is not None
        for sink in sinks.values():
            assert sink.puts == [("backup-test/relational-full.json", b"dump-bytes")]
        assert manager.get_metrics().successful_replications == 1
        assert manager.get_job(job.id) is job

    def test_unreachable_target_gives_partial(self, replication_config, artifact_file):
        """Test that one healthy region is enough for a partial success."""
        sinks = {"us-west-2": FakeSink(), "eu-west-1": FakeSink(reachable=False)}
        manager = make_manager(replication_config, sinks)

        job = manager.replicate_backup(artifact_file())

        assert job.status == JobStatus.PARTIAL
        assert job.target_results["us-west-2"] is None
        assert job.target_results["eu-west-1"] == "target is inactive"
        assert sinks["eu-west-1"].puts == []
        metrics = manager.get_metrics()
        assert metrics.successful_replications == 1
        assert metrics.partial_replications == 1

    def test_job_reaching_no_target_retries_then_fails(self, replication_config, artifact_file):
        """Test whole-job retries and the error state of a failing target."""
        sinks = {"us-west-2": FakeSink(fail_put=True), "eu-west-1": FakeSink(fail_put=True)}
        manager = make_manager(replication_config, sinks)

        job = manager.replicate_backup(artifact_file())

        assert job.status == JobStatus.FAILED
        assert job.retry_count == job.max_retries == 3
        assert manager.get_metrics().failed_replications == 1
        assert manager.get_metrics().total_replications == 1
        for region in sinks:
            assert manager.get_target(region).status == TargetStatus.ERROR
            assert manager.get_target(region).last_error == "connection refused"
        assert manager.get_queue() == []
        assert manager.wait_for_idle(0) is True

    def test_unexpected_sink_error_fails_only_that_region(self, replication_config, artifact_file):
        """Test that a sink raising outside the delivery error type is a per-region failure."""
        broken = FakeSink()
        broken.put = MagicMock(side_effect=RuntimeError("client not initialised"))
        manager = make_manager(replication_config, {"us-west-2": FakeSink(), "eu-west-1": broken})

        job = manager.replicate_backup(artifact_file())

        assert job.status == JobStatus.PARTIAL
        assert job.target_results["eu-west-1"] == "RuntimeError: client not initialised"
        assert manager.get_target("eu-west-1").status == TargetStatus.ERROR

    def test_aborted_job_is_retired_and_drain_continues(self, replication_config, artifact_file):
        """Test that a job raising mid-processing is retried, retired as failed and not left processing."""
        manager = make_manager(replication_config, {"us-west-2": FakeSink(), "eu-west-1": FakeSink()})
        real_replicate = manager._replicate_to_target
        first = artifact_file(backup_id="backup-broken")

        def replicate(job, region, data):
            if job.backup.backup_id == "backup-broken":
                raise RuntimeError("bug")
            return real_replicate(job, region, data)

        manager._replicate_to_target = replicate

        job = manager.replicate_backup(first)
        second = manager.replicate_backup(artifact_file(backup_id="backup-ok"))

        assert job.status == JobStatus.FAILED
        assert job.retry_count == job.max_retries
        assert job.target_results == {"us-west-2": "RuntimeError: bug", "eu-west-1": "RuntimeError: bug"}
        assert second.status == JobStatus.COMPLETED
        assert manager.get_queue() == []
        assert manager.wait_for_idle(0) is True

    def test_lag_tracks_artifact_age(self, replication_config, artifact_file):
        """Test per-target lag and the current lag metric."""
        sinks = {"us-west-2": FakeSink(), "eu-west-1": FakeSink()}
        manager = make_manager(replication_config, sinks)

        manager.replicate_backup(artifact_file(created_at=utcnow() - timedelta(seconds=10)))

        target = manager.get_target("us-west-2")
        assert target.lag_ms >= 10000
        assert target.last_sync is not None
        assert manager.get_metrics().current_lag_ms >= 10000

    def test_unreadable_artifact_fails(self, replication_config, artifact_file):
        """Test that a deleted artifact fails every region."""
        manager = make_manager(replication_config, {"us-west-2": FakeSink(), "eu-west-1": FakeSink()})
        artifact = artifact_file()
        os.remove(artifact.file_path)

        job = manager.replicate_backup(artifact)

        assert job.status == JobStatus.FAILED
        assert job.target_results == {"us-west-2": "artifact unreadable", "eu-west-1": "artifact unreadable"}

    def test_no_targets_means_no_job(self, backup_config, artifact_file):
        """Test that nothing is queued without regions."""
        manager = CrossRegionReplicationManager(backup_config, sinks={}, background=False)

        assert manager.replicate_backup(artifact_file()) is None

    def test_background_drain(self, replication_config, artifact_file):
        """Test delivery on the worker thread."""
        sinks = {"us-west-2": FakeSink(), "eu-west-1": FakeSink()}
        manager = make_manager(replication_config, sinks, background=True)

        job = manager.replicate_backup(artifact_file())

        assert manager.wait_for_idle(5) is True
        assert job.status == JobStatus.COMPLETED
        assert manager.shutdown(timeout=1) is True


class TestTargetHealth:
    """Test target probing."""

    def test_targets_start_inactive(self, replication_config):
        """Test the initial state before any probe."""
        manager = make_manager(replication_config, {"us-west-2": FakeSink()}, probe=False)

        assert manager.get_target("us-west-2").status == TargetStatus.INACTIVE

    def test_recovered_target_becomes_active(self, replication_config):
        """Test that a healthy probe restores an errored target."""
        sink = FakeSink(reachable=False)
        manager = make_manager(replication_config, {"us-west-2": sink})
        assert manager.get_target("us-west-2").status == TargetStatus.INACTIVE

        sink.reachable = True
        manager.check_target_health()
        assert manager.get_target("us-west-2").status == TargetStatus.ACTIVE

        sink.reachable = False
        manager.check_target_health()
        assert manager.get_target("us-west-2").status == TargetStatus.ERROR

        sink.reachable = True
        manager.check_target_health()
        target = manager.get_target("us-west-2")
        assert target.status == TargetStatus.ACTIVE
        assert target.last_error is None

    def test_initialize_starts_monitor(self, replication_config):
        """Test the background health monitor lifecycle."""
        manager = make_manager(replication_config, {"us-west-2": FakeSink()}, background=True, probe=False)

        manager.initialize()

        assert manager.get_target("us-west-2").status == TargetStatus.ACTIVE
        assert manager.monitor.is_monitoring
        assert manager.shutdown(timeout=1) is True
        assert not manager.monitor.is_monitoring


class TestForceSyncAndShutdown:
    """Test forced syncs and shutdown."""

    def test_force_sync_without_backups(self, replication_config, backup_manager):
        """Test that a sync with nothing to send is an error."""
        manager = make_manager(replication_config, {"us-west-2": FakeSink()})
        manager.attach(backup_manager)

        with pytest.raises(NotFoundError) as exc_info:
            manager.force_sync_to_all_targets()

        assert exc_info.value.message == "No backups available for sync"

    def test_force_sync_without_targets(self, backup_config, backup_manager):
        """Test that a sync with no regions is a configuration error."""
        manager = CrossRegionReplicationManager(backup_config, backup_manager, sinks={}, background=False)

        with pytest.raises(ConfigurationError):
            manager.force_sync_to_all_targets()

    def test_force_sync_resends_latest_set(self, replication_config, backup_manager):
        """Test that every artifact of the newest set is queued again."""
        sink = FakeSink()
        manager = make_manager(replication_config, {"us-west-2": sink})
        manager.attach(backup_manager)
        backup_manager.perform_full_backup()
        assert len(sink.puts) == 2

        jobs = manager.force_sync_to_all_targets()

        assert len(jobs) == 2
        assert all(job.status == JobStatus.COMPLETED for job in jobs)
        assert len(sink.puts) == 4

    def test_backup_completion_triggers_replication(self, replication_config, backup_manager):
        """Test the completion listener wiring."""
        sink = FakeSink()
        manager = make_manager(replication_config, {"us-west-2": sink})
        manager.attach(backup_manager)

        results = backup_manager.perform_full_backup()

        assert [path for path, _ in sink.puts] == [f"{r.backup_id}/{r.file_name}" for r in results]
        assert manager.get_metrics().total_replications == 2

    def test_no_new_jobs_after_shutdown(self, replication_config, artifact_file):
        """Test that shutdown refuses further work."""
        manager = make_manager(replication_config, {"us-west-2": FakeSink()})

        assert manager.shutdown(timeout=1) is True
        assert manager.replicate_backup(artifact_file()) is None
