"""Cross-region replication of backup artifacts."""

from .manager import CrossRegionReplicationManager
from .models import JobStatus, ReplicationJob, ReplicationMetrics, ReplicationTarget, TargetStatus
from .sinks import DirectoryReplicationSink, HttpReplicationSink, ReplicationSink, S3ReplicationSink

__all__ = [
    "CrossRegionReplicationManager",
    "DirectoryReplicationSink",
    "HttpReplicationSink",
    "JobStatus",
    "ReplicationJob",
    "ReplicationMetrics",
    "ReplicationSink",
    "ReplicationTarget",
    "S3ReplicationSink",
    "TargetStatus",
]
