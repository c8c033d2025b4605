"""Redis keyspace dump and restore."""

import base64
import json
import logging
from datetime import datetime
from typing import Dict, Optional

import redis

from authbackup.config.models import RedisConfig
from authbackup.utils.errors import ArtifactError, create_error_suggestions

from .models import BackupResult, BackupType, RestoreOptions, StoreKind, utcnow
from .stores import StoreBackupService

logger = logging.getLogger(__name__)

DUMP_FORMAT_VERSION = 1
SCAN_BATCH = 1000
RESTORE_BATCH = 500


class RedisBackupService(StoreBackupService):
    """Key-value store: every key's DUMP payload and remaining TTL as JSON.

    Redis keeps no change log, so incremental backups capture the whole
    keyspace as well.
    """

    kind = StoreKind.KV
    file_prefix = "redis"

    def __init__(self, config: RedisConfig):
        super().__init__(compress=config.compression)
        self.config = config
        self._clients: Dict[int, redis.Redis] = {}

    def client(self, db: Optional[int] = None) -> redis.Redis:
        db = self.config.db if db is None else db
        if db not in self._clients:
            self._clients[db] = redis.Redis(
                host=self.config.host,
                port=self.config.port,
                password=self.config.password,
                db=db,
                socket_timeout=30,
            )
        return self._clients[db]

    def dump(self, backup_type: BackupType, output_base: str, since: Optional[datetime] = None) -> str:
        output_path = output_base + ".json"
        client = self.client()
        entries = []

        try:
            for key in client.scan_iter(count=SCAN_BATCH):
                payload = client.dump(key)
                if payload is None:
                    # expired between SCAN and DUMP
                    continue
                ttl = client.pttl(key)
                entries.append(
                    {
                        "key": base64.b64encode(key).decode("ascii"),
                        "value": base64.b64encode(payload).decode("ascii"),
                        "ttl": ttl if ttl and ttl > 0 else 0,
                    }
                )
        except redis.RedisError as e:
            raise self._error("Redis dump failed", e)

        document = {
            "format": DUMP_FORMAT_VERSION,
            "db": self.config.db,
            "created_at": utcnow().isoformat(),
            "keys": entries,
        }
        try:
            with open(output_path, "w", encoding="utf-8") as f:
                json.dump(document, f)
        except OSError as e:
            raise ArtifactError("Failed to write Redis dump", details=str(e))

        logger.info("Dumped %d Redis key(s)", len(entries))
        return output_path

    def selected(self, options: RestoreOptions) -> bool:
        return options.restore_redis

    def reset(self, options: RestoreOptions) -> None:
        if options.flush_existing:
            db = self._target_db(options)
            logger.info("Flushing Redis db %d before restore", db)
            try:
                self.client(db).flushdb()
            except redis.RedisError as e:
                raise self._error("Redis flush failed", e)

    def restore(self, plain_path: str, result: BackupResult, options: RestoreOptions) -> None:
        try:
            with open(plain_path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, ValueError) as e:
            raise ArtifactError(f"Unreadable Redis dump {result.file_name}", details=str(e))

        if document.get("format") != DUMP_FORMAT_VERSION:
            raise ArtifactError(f"Unsupported Redis dump format: {document.get('format')}")

        db = self._target_db(options)
        entries = document.get("keys", [])
        client = self.client(db)

        try:
            for start in range(0, len(entries), RESTORE_BATCH):
                pipe = client.pipeline(transaction=False)
                for entry in entries[start : start + RESTORE_BATCH]:
                    pipe.restore(
                        base64.b64decode(entry["key"]),
                        entry["ttl"],
                        base64.b64decode(entry["value"]),
                        replace=True,
                    )
                pipe.execute()
        except redis.RedisError as e:
            raise self._error("Redis restore failed", e)

        logger.info("Restored %d Redis key(s) into db %d", len(entries), db)

    def ping(self) -> bool:
        try:
            return bool(self.client().ping())
        except redis.RedisError as e:
            logger.debug("Redis ping failed: %s", e)
            return False

    def snapshot(self, options: Optional[RestoreOptions] = None) -> Dict[str, int]:
        db = self._target_db(options) if options else self.config.db
        try:
            return {"keys": int(self.client(db).dbsize())}
        except redis.RedisError as e:
            raise self._error("Redis DBSIZE failed", e)

    def scratch_options(self, created_at: datetime) -> RestoreOptions:
        return RestoreOptions(
            restore_postgres=False,
            restore_redis=True,
            flush_existing=True,
            target_kv_db=self.config.scratch_db,
        )

    def discard_scratch(self, options: RestoreOptions) -> None:
        db = self._target_db(options)
        if db == self.config.db:
            return
        try:
            self.client(db).flushdb()
        except redis.RedisError as e:
            raise self._error("Redis scratch cleanup failed", e)

    def _target_db(self, options: RestoreOptions) -> int:
        return self.config.db if options.target_kv_db is None else options.target_kv_db

    def _error(self, message: str, error: Exception) -> ArtifactError:
        return ArtifactError(
            message,
            details=str(error),
            suggestions=create_error_suggestions("redis_unreachable"),
        )
