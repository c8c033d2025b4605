"""Configuration management for AuthBackup."""

import os
from typing import Any, Dict, List, Mapping, Optional

from authbackup.utils.errors import ConfigurationError, create_error_suggestions, format_validation_errors

from .models import BackupConfig
from .validator import ConfigValidator, region_env_prefix

# Applied only where the matching variable is not set explicitly.
ENVIRONMENT_PROFILES = {
    "production": {
        "BACKUP_SCHEDULE_ENABLED": "true",
        "BACKUP_SCHEDULE_INTERVAL": "4h",
        "BACKUP_RETENTION_DAYS": "90",
        "BACKUP_MAX_COUNT": "500",
    },
    "staging": {
        "BACKUP_SCHEDULE_ENABLED": "true",
        "BACKUP_SCHEDULE_INTERVAL": "12h",
        "BACKUP_RETENTION_DAYS": "14",
        "BACKUP_MAX_COUNT": "50",
    },
    "development": {
        "BACKUP_SCHEDULE_ENABLED": "false",
        "BACKUP_RETENTION_DAYS": "7",
        "BACKUP_MAX_COUNT": "10",
    },
    "test": {
        "BACKUP_SCHEDULE_ENABLED": "false",
        "BACKUP_RETENTION_DAYS": "1",
        "BACKUP_MAX_COUNT": "5",
    },
}

TRUE_VALUES = ("1", "true", "yes", "on")
FALSE_VALUES = ("0", "false", "no", "off")


class ConfigManager:
    """Resolves backup configuration from environment variables."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        """
        Initialize configuration manager.

        Args:
            environ: Variables to read (defaults to os.environ)
        """
        self.environ = dict(os.environ if environ is None else environ)
        self.validator = ConfigValidator()
        self._parse_errors: List[str] = []
        self._config: Optional[BackupConfig] = None

    def detect_environment(self) -> str:
        """Get the deployment environment name (APP_ENV, then NODE_ENV)."""
        return (self.environ.get("APP_ENV") or self.environ.get("NODE_ENV") or "development").lower()

    def load(self, validate: bool = True) -> BackupConfig:
        """
        Resolve configuration from the environment.

        Args:
            validate: Whether to validate the configuration

        Returns:
            BackupConfig: Resolved configuration

        Raises:
            ConfigurationError: If any value is malformed or inconsistent
        """
        config = self._build()

        if validate:
            errors = self._parse_errors + self.validator.validate_backup_config(config.to_dict())
            if errors:
                raise ConfigurationError(
                    "Backup configuration is invalid",
                    details=format_validation_errors(errors),
                    suggestions=create_error_suggestions("configuration_invalid"),
                )

        self._config = config
        return config

    def validate(self) -> List[str]:
        """
        Validate the environment without raising.

        Returns:
            List[str]: List of validation errors (empty if valid)
        """
        config = self._build()
        return self._parse_errors + self.validator.validate_backup_config(config.to_dict())

    def to_dict(self, mask_secrets: bool = True) -> Dict[str, Any]:
        """Get the resolved configuration as a dictionary."""
        config = self._config or self._build()
        return config.to_dict(mask_secrets=mask_secrets)

    def _build(self) -> BackupConfig:
        self._parse_errors = []
        environment = self.detect_environment()
        profile = ENVIRONMENT_PROFILES.get(environment, {})
        compression_enabled = self._get_bool("BACKUP_COMPRESSION_ENABLED", True)
        regions = [r.strip() for r in self._get("CROSS_REGION_TARGETS", "").split(",") if r.strip()]
        remote_bucket = self._get("REMOTE_STORAGE_BUCKET")

        data = {
            "environment": environment,
            "storage": {
                "local_path": self._get("BACKUP_PATH", "./backups"),
                "remote": {
                    "enabled": self._get_bool("REMOTE_STORAGE_ENABLED", False),
                    "type": self._get("REMOTE_STORAGE_TYPE", "aws-s3"),
                    "bucket": remote_bucket,
                    "region": self._get("REMOTE_STORAGE_REGION", "us-east-1"),
                    "access_key": self._get("REMOTE_STORAGE_ACCESS_KEY"),
                    "secret_key": self._get("REMOTE_STORAGE_SECRET_KEY"),
                    "endpoint": self._get("REMOTE_STORAGE_ENDPOINT"),
                },
            },
            "postgres": {
                "connection_string": self._get("DATABASE_URL", ""),
                "pg_dump_path": self._get("PG_DUMP_PATH", "pg_dump"),
                "pg_restore_path": self._get("PG_RESTORE_PATH", "pg_restore"),
                "psql_path": self._get("PSQL_PATH", "psql"),
                "wal_archive_path": self._get("WAL_ARCHIVE_PATH"),
                "compression": self._get_bool("POSTGRES_BACKUP_COMPRESSION", compression_enabled),
            },
            "redis": {
                "host": self._get("REDIS_HOST", "localhost"),
                "port": self._get_int("REDIS_PORT", 6379),
                "password": self._get("REDIS_PASSWORD"),
                "db": self._get_int("REDIS_DB", 0),
                "scratch_db": self._get_int("REDIS_SCRATCH_DB", 15),
                "compression": self._get_bool("REDIS_BACKUP_COMPRESSION", compression_enabled),
            },
            "compression": {
                "enabled": compression_enabled,
                "level": self._get_int("BACKUP_COMPRESSION_LEVEL", 6),
            },
            "encryption": {
                "enabled": self._get_bool("BACKUP_ENCRYPTION_ENABLED", False),
                "algorithm": self._get("BACKUP_ENCRYPTION_ALGORITHM", "aes-256-gcm"),
                "key_path": self._get("BACKUP_ENCRYPTION_KEY_PATH", "./config/backup-encryption.key"),
            },
            "schedule": {
                "enabled": self._get_bool("BACKUP_SCHEDULE_ENABLED", True, profile),
                "interval": self._get("BACKUP_SCHEDULE_INTERVAL", "6h", profile),
                "type": self._get("BACKUP_SCHEDULE_TYPE", "incremental", profile),
            },
            "retention": {
                "days": self._get_int("BACKUP_RETENTION_DAYS", 30, profile),
                "max_backups": self._get_int("BACKUP_MAX_COUNT", 100, profile),
            },
            "cross_region": {
                "enabled": self._get_bool("CROSS_REGION_REPLICATION_ENABLED", False),
                "regions": regions,
                "replication_delay": self._get_int("CROSS_REGION_DELAY", 300),
                "storage_type": self._get("CROSS_REGION_STORAGE_TYPE", "s3"),
                "bucket": self._get("CROSS_REGION_BUCKET", remote_bucket),
                "buckets": self._region_buckets(regions),
                "endpoint_template": self._get("CROSS_REGION_ENDPOINT_TEMPLATE"),
                "credentials": {region: self._region_credentials(region) for region in regions},
            },
            "recovery": {
                "plans_path": self._get("DR_PLANS_PATH"),
                "step_retry_delay": self._get_float("DR_STEP_RETRY_DELAY", 1.0),
                "health_check_url": self._get("HEALTH_CHECK_URL"),
                "app_service_label": self._get("APP_SERVICE_LABEL", "authbackup.role=app"),
                "failover_webhook_url": self._get("FAILOVER_WEBHOOK_URL"),
            },
            "notifications": {
                "webhook_url": self._get("NOTIFY_WEBHOOK_URL"),
                "slack_webhook_url": self._get("SLACK_WEBHOOK_URL"),
                "smtp_host": self._get("SMTP_HOST"),
                "smtp_port": self._get_int("SMTP_PORT", 587),
                "smtp_user": self._get("SMTP_USER"),
                "smtp_password": self._get("SMTP_PASSWORD"),
                "email_from": self._get("NOTIFY_EMAIL_FROM", "authbackup@localhost"),
            },
        }
        return BackupConfig.from_dict(data)

    def _region_buckets(self, regions: List[str]) -> Dict[str, str]:
        buckets = {}
        for region in regions:
            bucket = self._get(f"{region_env_prefix(region)}_BUCKET")
            if bucket:
                buckets[region] = bucket
        return buckets

    def _region_credentials(self, region: str) -> Dict[str, str]:
        prefix = region_env_prefix(region)
        credentials = {}
        for name in ("access_key", "secret_key", "token"):
            value = self._get(f"{prefix}_{name.upper()}")
            if value:
                credentials[name] = value
        return credentials

    def _get(self, name: str, default: Optional[str] = None, profile: Optional[Dict[str, str]] = None) -> Optional[str]:
        value = self.environ.get(name)
        if value is not None and value != "":
            return value
        if profile and name in profile:
            return profile[name]
        return default

    def _get_bool(self, name: str, default: bool, profile: Optional[Dict[str, str]] = None) -> bool:
        value = self._get(name, None, profile)
        if value is None:
            return default
        lowered = value.strip().lower()
        if lowered in TRUE_VALUES:
            return True
        if lowered in FALSE_VALUES:
            return False
        self._parse_errors.append(f"{name} must be a boolean, got {value!r}")
        return default

    def _get_int(self, name: str, default: int, profile: Optional[Dict[str, str]] = None) -> int:
        value = self._get(name, None, profile)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            self._parse_errors.append(f"{name} must be an integer, got {value!r}")
            return default

    def _get_float(self, name: str, default: float) -> float:
        value = self._get(name)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError:
            self._parse_errors.append(f"{name} must be a number, got {value!r}")
            return default
