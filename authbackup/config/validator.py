"""Configuration validation for AuthBackup."""

import os
import re
from datetime import timedelta
from typing import Any, Dict, List

import jsonschema

from .models import region_bucket
from .schemas import BACKUP_CONFIG_SCHEMA, RECOVERY_PLAN_SCHEMA

INTERVAL_PATTERN = re.compile(r"^(\d+)([mhd])$")

SCHEDULE_TYPES = ("full", "incremental")
ENCRYPTION_ALGORITHMS = ("aes-256-gcm", "aes-256-cbc", "aes-192-gcm")
REMOTE_STORAGE_TYPES = ("aws-s3",)
REPLICATION_STORAGE_TYPES = ("s3", "azure", "gcp", "http", "file")


def parse_interval(interval: str) -> timedelta:
    """
    Parse a schedule cadence such as '30m', '6h' or '1d'.

    Args:
        interval: Cadence string

    Returns:
        timedelta: Parsed interval

    Raises:
        ValueError: If the string is not a positive cadence
    """
    match = INTERVAL_PATTERN.match(interval or "")
    if not match:
        raise ValueError(f"Invalid interval format: {interval!r} (expected e.g. 30m, 6h, 1d)")

    value = int(match.group(1))
    if value <= 0:
        raise ValueError(f"Interval must be positive: {interval!r}")

    unit = match.group(2)
    if unit == "m":
        return timedelta(minutes=value)
    if unit == "h":
        return timedelta(hours=value)
    return timedelta(days=value)


def region_env_prefix(region: str) -> str:
    """Environment variable prefix for a region's credentials."""
    return re.sub(r"[^A-Z0-9]", "_", region.upper())


class ConfigValidator:
    """Validates backup configuration and recovery plans."""

    def validate_backup_config(self, config: Dict[str, Any]) -> List[str]:
        """
        Validate resolved backup configuration.

        Args:
            config: Configuration dictionary to validate

        Returns:
            List[str]: List of validation errors (empty if valid)
        """
        errors = []

        try:
            jsonschema.validate(config, BACKUP_CONFIG_SCHEMA)
        except jsonschema.ValidationError as e:
            errors.append(f"Schema validation failed: {e.message}")
            return errors
        except jsonschema.SchemaError as e:
            errors.append(f"Schema error: {e.message}")
            return errors

        errors.extend(self._validate_storage(config["storage"]))
        errors.extend(self._validate_stores(config["postgres"], config["redis"]))
        errors.extend(self._validate_schedule(config["schedule"]))
        errors.extend(self._validate_retention(config["retention"]))
        errors.extend(self._validate_encryption(config.get("encryption", {})))
        errors.extend(self._validate_cross_region(config.get("cross_region", {})))

        return errors

    def validate_plan(self, plan: Dict[str, Any]) -> List[str]:
        """
        Validate a recovery plan definition loaded from YAML.

        Args:
            plan: Plan dictionary

        Returns:
            List[str]: List of validation errors (empty if valid)
        """
        errors = []

        try:
            jsonschema.validate(plan, RECOVERY_PLAN_SCHEMA)
        except jsonschema.ValidationError as e:
            path = "/".join(str(p) for p in e.absolute_path)
            errors.append(f"Schema validation failed at '{path}': {e.message}")
        except jsonschema.SchemaError as e:
            errors.append(f"Schema error: {e.message}")

        return errors

    def _validate_storage(self, storage: Dict[str, Any]) -> List[str]:
        errors = []
        if not storage.get("local_path"):
            errors.append("Local backup path is required (BACKUP_PATH)")

        remote = storage.get("remote", {})
        if remote.get("enabled"):
            if remote.get("type") not in REMOTE_STORAGE_TYPES:
                errors.append(
                    f"Unsupported remote storage type '{remote.get('type')}' "
                    f"(expected one of: {', '.join(REMOTE_STORAGE_TYPES)})"
                )
            if not remote.get("bucket"):
                errors.append("Remote storage bucket is required when remote storage is enabled")
            if remote.get("type") == "aws-s3" and (not remote.get("access_key") or not remote.get("secret_key")):
                errors.append("AWS S3 requires REMOTE_STORAGE_ACCESS_KEY and REMOTE_STORAGE_SECRET_KEY")
        return errors

    def _validate_stores(self, postgres: Dict[str, Any], redis: Dict[str, Any]) -> List[str]:
        errors = []
        conn = postgres.get("connection_string", "")
        if not conn:
            errors.append("PostgreSQL connection string is required (DATABASE_URL)")
        elif not conn.startswith(("postgres://", "postgresql://")):
            errors.append("DATABASE_URL must be a postgres:// or postgresql:// URL")

        if not redis.get("host"):
            errors.append("Redis host is required (REDIS_HOST)")
        if redis.get("port", 0) <= 0 or redis.get("port", 0) > 65535:
            errors.append(f"Invalid Redis port: {redis.get('port')}")
        if redis.get("scratch_db") == redis.get("db"):
            errors.append("REDIS_SCRATCH_DB must differ from REDIS_DB")
        return errors

    def _validate_schedule(self, schedule: Dict[str, Any]) -> List[str]:
        errors = []
        try:
            parse_interval(schedule.get("interval", ""))
        except ValueError as e:
            errors.append(str(e))

        if schedule.get("type") not in SCHEDULE_TYPES:
            errors.append(f"Invalid schedule type '{schedule.get('type')}' (expected full or incremental)")
        return errors

    def _validate_retention(self, retention: Dict[str, Any]) -> List[str]:
        errors = []
        if retention.get("days", 0) <= 0:
            errors.append("Retention days must be greater than 0")
        if retention.get("max_backups", 0) <= 0:
            errors.append("Maximum backup count must be greater than 0")
        return errors

    def _validate_encryption(self, encryption: Dict[str, Any]) -> List[str]:
        errors = []
        if not encryption.get("enabled"):
            return errors

        if encryption.get("algorithm") not in ENCRYPTION_ALGORITHMS:
            errors.append(
                f"Unsupported encryption algorithm '{encryption.get('algorithm')}' "
                f"(expected one of: {', '.join(ENCRYPTION_ALGORITHMS)})"
            )

        key_path = encryption.get("key_path")
        if not key_path:
            errors.append("Encryption key path is required when encryption is enabled")
        elif not os.path.isfile(key_path):
            errors.append(f"Encryption key file not found: {key_path}")
        return errors

    def _validate_cross_region(self, cross_region: Dict[str, Any]) -> List[str]:
        errors = []
        if not cross_region.get("enabled"):
            return errors

        regions = cross_region.get("regions", [])
        if not regions:
            errors.append("Cross-region replication requires at least one region (CROSS_REGION_TARGETS)")
        if cross_region.get("replication_delay", 0) < 0:
            errors.append("Replication delay must be non-negative")

        storage_type = cross_region.get("storage_type")
        if storage_type not in REPLICATION_STORAGE_TYPES:
            errors.append(
                f"Unsupported replication storage type '{storage_type}' "
                f"(expected one of: {', '.join(REPLICATION_STORAGE_TYPES)})"
            )
            return errors

        if storage_type in ("s3", "azure", "gcp"):
            errors.extend(self._validate_region_buckets(cross_region, regions, storage_type))

        credentials = cross_region.get("credentials", {})
        for region in regions:
            creds = credentials.get(region, {})
            prefix = region_env_prefix(region)
            if storage_type == "s3" and (not creds.get("access_key") or not creds.get("secret_key")):
                errors.append(f"Region {region} requires {prefix}_ACCESS_KEY and {prefix}_SECRET_KEY")
            elif storage_type in ("azure", "gcp") and not creds.get("token"):
                errors.append(f"Region {region} requires {prefix}_TOKEN")
        return errors

    def _validate_region_buckets(self, cross_region: Dict[str, Any], regions: List[str], storage_type: str) -> List[str]:
        errors = []
        bucket = cross_region.get("bucket")
        buckets = cross_region.get("buckets") or {}

        by_bucket: Dict[str, List[str]] = {}
        for region in regions:
            resolved = region_bucket(bucket, buckets, region)
            if not resolved:
                errors.append(
                    f"Region {region} has no bucket (set CROSS_REGION_BUCKET or {region_env_prefix(region)}_BUCKET)"
                )
                continue
            by_bucket.setdefault(resolved, []).append(region)

        # S3 bucket names are global and each bucket lives in one region
        if storage_type == "s3":
            for name, shared in by_bucket.items():
                if len(shared) > 1:
                    errors.append(
                        f"S3 bucket '{name}' is shared by regions {', '.join(shared)}; "
                        "use a bucket per region ({region} in CROSS_REGION_BUCKET, or <REGION>_BUCKET)"
                    )
        return errors
