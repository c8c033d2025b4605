"""Resolved configuration objects for AuthBackup."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

SECRET_FIELDS = {
    "access_key",
    "secret_key",
    "connection_string",
    "password",
    "smtp_password",
    "token",
}


@dataclass
class RemoteStorageConfig:
    enabled: bool = False
    type: str = "aws-s3"
    bucket: Optional[str] = None
    region: Optional[str] = None
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    endpoint: Optional[str] = None


@dataclass
class StorageConfig:
    local_path: str = "./backups"
    remote: RemoteStorageConfig = field(default_factory=RemoteStorageConfig)


@dataclass
class PostgresConfig:
    connection_string: str = ""
    pg_dump_path: str = "pg_dump"
    pg_restore_path: str = "pg_restore"
    psql_path: str = "psql"
    wal_archive_path: Optional[str] = None
    compression: bool = True


@dataclass
class RedisConfig:
    host: str = "localhost"
    port: int = 6379
    password: Optional[str] = None
    db: int = 0
    scratch_db: int = 15
    compression: bool = True


@dataclass
class CompressionConfig:
    enabled: bool = True
    level: int = 6


@dataclass
class EncryptionConfig:
    enabled: bool = False
    algorithm: str = "aes-256-gcm"
    key_path: Optional[str] = "./config/backup-encryption.key"


@dataclass
class ScheduleConfig:
    enabled: bool = True
    interval: str = "6h"
    type: str = "incremental"


@dataclass
class RetentionConfig:
    days: int = 30
    max_backups: int = 100


@dataclass
class CrossRegionConfig:
    enabled: bool = False
    regions: List[str] = field(default_factory=list)
    replication_delay: int = 300
    storage_type: str = "s3"
    bucket: Optional[str] = None
    # region -> bucket, overriding bucket for that region
    buckets: Dict[str, str] = field(default_factory=dict)
    endpoint_template: Optional[str] = None
    credentials: Dict[str, Dict[str, str]] = field(default_factory=dict)

    def bucket_for(self, region: str) -> Optional[str]:
        return region_bucket(self.bucket, self.buckets, region)


@dataclass
class RecoveryConfig:
    plans_path: Optional[str] = None
    step_retry_delay: float = 1.0
    health_check_url: Optional[str] = None
    app_service_label: str = "authbackup.role=app"
    failover_webhook_url: Optional[str] = None


@dataclass
class NotificationConfig:
    webhook_url: Optional[str] = None
    slack_webhook_url: Optional[str] = None
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    email_from: str = "authbackup@localhost"


@dataclass
class BackupConfig:
    """Everything the backup, recovery and replication services need."""

    environment: str = "development"
    storage: StorageConfig = field(default_factory=StorageConfig)
    postgres: PostgresConfig = field(default_factory=PostgresConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    compression: CompressionConfig = field(default_factory=CompressionConfig)
    encryption: EncryptionConfig = field(default_factory=EncryptionConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    cross_region: CrossRegionConfig = field(default_factory=CrossRegionConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)

    def to_dict(self, mask_secrets: bool = False) -> Dict[str, Any]:
        """
        Convert configuration to a plain dictionary.

        Args:
            mask_secrets: Replace credential values with '***'

        Returns:
            Dict[str, Any]: Nested configuration
        """
        data = asdict(self)
        if mask_secrets:
            data = _mask(data)
            if self.postgres.connection_string:
                data["postgres"]["connection_string"] = mask_connection_string(self.postgres.connection_string)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupConfig":
        """Build configuration from the nested dictionary form."""
        storage = dict(data.get("storage", {}))
        storage["remote"] = RemoteStorageConfig(**storage.get("remote", {}))
        return cls(
            environment=data.get("environment", "development"),
            storage=StorageConfig(**storage),
            postgres=PostgresConfig(**data.get("postgres", {})),
            redis=RedisConfig(**data.get("redis", {})),
            compression=CompressionConfig(**data.get("compression", {})),
            encryption=EncryptionConfig(**data.get("encryption", {})),
            schedule=ScheduleConfig(**data.get("schedule", {})),
            retention=RetentionConfig(**data.get("retention", {})),
            cross_region=CrossRegionConfig(**data.get("cross_region", {})),
            recovery=RecoveryConfig(**data.get("recovery", {})),
            notifications=NotificationConfig(**data.get("notifications", {})),
        )


def mask_connection_string(value: str) -> str:
    """Hide the password part of a postgres URL."""
    if "://" not in value or "@" not in value:
        return value
    scheme, rest = value.split("://", 1)
    userinfo, host = rest.rsplit("@", 1)
    user = userinfo.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"


def _mask(value: Any, key: Optional[str] = None) -> Any:
    if isinstance(value, dict):
        return {k: _mask(v, k) for k, v in value.items()}
    if isinstance(value, list):
        return [_mask(v) for v in value]
    if key in SECRET_FIELDS and value:
        return "***"
    return value


def region_bucket(bucket: Optional[str], buckets: Dict[str, str], region: str) -> Optional[str]:
    """Bucket for one replication region: its own entry, else bucket with {region} filled in."""
    if buckets.get(region):
        return buckets[region]
    if bucket:
        return bucket.format(region=region)
    return None
