"""PostgreSQL dump and restore through the client tools."""

import logging
import os
import subprocess
import tarfile
from datetime import datetime
from typing import Dict, List, Optional
from urllib.parse import urlparse, urlunparse

from authbackup.config.models import PostgresConfig
from authbackup.utils.errors import ArtifactError, create_error_suggestions

from .models import BackupResult, BackupType, RestoreOptions, StoreKind
from .stores import StoreBackupService

logger = logging.getLogger(__name__)

MAINTENANCE_DATABASE = "postgres"

LIST_TABLES_SQL = (
    "SELECT table_schema || '.' || table_name FROM information_schema.tables "
    "WHERE table_type = 'BASE TABLE' "
    "AND table_schema NOT IN ('pg_catalog', 'information_schema') ORDER BY 1"
)


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def is_wal_archive(file_name: str) -> bool:
    """Whether an artifact name (optionally .gz/.enc suffixed) is a WAL tarball."""
    for suffix in (".enc", ".gz"):
        if file_name.endswith(suffix):
            file_name = file_name[: -len(suffix)]
    return file_name.endswith(".tar")


class PostgresBackupService(StoreBackupService):
    """Relational store: pg_dump custom-format archives, WAL tarballs for incrementals."""

    kind = StoreKind.RELATIONAL
    file_prefix = "postgres"

    def __init__(self, config: PostgresConfig):
        super().__init__(compress=config.compression)
        self.config = config
        self._url = urlparse(config.connection_string)

    @property
    def database(self) -> str:
        return self._url.path.lstrip("/") or MAINTENANCE_DATABASE

    def url_for(self, database: Optional[str] = None) -> str:
        """Connection URL pointing at another database on the same server."""
        return urlunparse(self._url._replace(path="/" + (database or self.database)))

    def dump(self, backup_type: BackupType, output_base: str, since: Optional[datetime] = None) -> str:
        if backup_type == BackupType.INCREMENTAL:
            if self.config.wal_archive_path:
                return self._archive_wal(output_base + ".tar", since)
            logger.warning("WAL_ARCHIVE_PATH is not set; taking a full relational dump for the incremental backup")

        output_path = output_base + ".dump"
        self._run(
            [
                self.config.pg_dump_path,
                "--format=custom",
                "--no-owner",
                "--no-privileges",
                "--compress=0",
                f"--file={output_path}",
                self.url_for(),
            ],
            tool="pg_dump",
        )
        return output_path

    def selected(self, options: RestoreOptions) -> bool:
        return options.restore_postgres

    def standalone(self, result: BackupResult) -> bool:
        return not is_wal_archive(result.file_name)

    def reset(self, options: RestoreOptions) -> None:
        database = options.target_database or self.database
        if options.drop_existing:
            logger.info("Dropping database %s before restore", database)
            self.drop_database(database)
            self.create_database(database)
        elif options.target_database and not self.database_exists(database):
            self.create_database(database)

    def restore(self, plain_path: str, result: BackupResult, options: RestoreOptions) -> None:
        if is_wal_archive(plain_path):
            self._stage_wal(plain_path, result.backup_id)
            return

        database = options.target_database or self.database
        logger.info("Restoring %s into database %s", result.file_name, database)
        self._run(
            [
                self.config.pg_restore_path,
                "--clean",
                "--if-exists",
                "--no-owner",
                "--no-privileges",
                f"--dbname={self.url_for(database)}",
                plain_path,
            ],
            tool="pg_restore",
        )

    def ping(self) -> bool:
        try:
            self.query("SELECT 1")
            return True
        except ArtifactError as e:
            logger.debug("PostgreSQL ping failed: %s", e.details or e.message)
            return False

    def snapshot(self, options: Optional[RestoreOptions] = None) -> Dict[str, int]:
        database = options.target_database if options and options.target_database else self.database
        counts = {}
        for table in self.query(LIST_TABLES_SQL, database):
            schema, name = table.split(".", 1)
            rows = self.query(f"SELECT count(*) FROM {quote_ident(schema)}.{quote_ident(name)}", database)
            counts[table] = int(rows[0]) if rows else 0
        return counts

    def scratch_options(self, created_at: datetime) -> RestoreOptions:
        return RestoreOptions(
            restore_postgres=True,
            restore_redis=False,
            drop_existing=True,
            target_database=f"{self.database}_restore_test_{created_at.strftime('%Y%m%d%H%M%S')}",
        )

    def discard_scratch(self, options: RestoreOptions) -> None:
        if options.target_database and options.target_database != self.database:
            self.drop_database(options.target_database)

    def database_exists(self, database: str) -> bool:
        rows = self.query(
            f"SELECT 1 FROM pg_database WHERE datname = '{database.replace(chr(39), chr(39) * 2)}'",
            MAINTENANCE_DATABASE,
        )
        return bool(rows)

    def drop_database(self, database: str) -> None:
        self.query(f"DROP DATABASE IF EXISTS {quote_ident(database)}", MAINTENANCE_DATABASE)

    def create_database(self, database: str) -> None:
        self.query(f"CREATE DATABASE {quote_ident(database)}", MAINTENANCE_DATABASE)

    def query(self, sql: str, database: Optional[str] = None) -> List[str]:
        """Run one statement with psql and return the non-empty output lines."""
        output = self._run(
            [
                self.config.psql_path,
                "--no-psqlrc",
                "--tuples-only",
                "--no-align",
                "--set=ON_ERROR_STOP=1",
                f"--command={sql}",
                f"--dbname={self.url_for(database)}",
            ],
            tool="psql",
        )
        return [line for line in output.splitlines() if line.strip()]

    def _archive_wal(self, output_path: str, since: Optional[datetime]) -> str:
        wal_dir = self.config.wal_archive_path
        segments = []
        if os.path.isdir(wal_dir):
            for name in sorted(os.listdir(wal_dir)):
                path = os.path.join(wal_dir, name)
                if not os.path.isfile(path):
                    continue
                if since is None or os.path.getmtime(path) > since.timestamp():
                    segments.append(path)
        else:
            logger.warning("WAL archive directory %s does not exist", wal_dir)

        try:
            with tarfile.open(output_path, "w") as tar:
                for path in segments:
                    tar.add(path, arcname=os.path.basename(path))
        except (OSError, tarfile.TarError) as e:
            raise ArtifactError("Failed to archive WAL segments", details=str(e))

        logger.info("Archived %d WAL segment(s)", len(segments))
        return output_path

    def _stage_wal(self, tar_path: str, backup_id: str) -> None:
        wal_dir = self.config.wal_archive_path
        if not wal_dir:
            raise ArtifactError(
                "Cannot stage WAL segments: WAL_ARCHIVE_PATH is not set",
                suggestions=["Set WAL_ARCHIVE_PATH, or restore from a full backup"],
            )

        target = os.path.join(wal_dir, "restore", backup_id)
        try:
            os.makedirs(target, exist_ok=True)
            with tarfile.open(tar_path, "r") as tar:
                members = [m for m in tar.getmembers() if m.isfile() and os.path.basename(m.name) == m.name]
                tar.extractall(target, members=members)
        except (OSError, tarfile.TarError) as e:
            raise ArtifactError("Failed to stage WAL segments", details=str(e))

        logger.info("Staged %d WAL segment(s) in %s for replay", len(members), target)

    def _run(self, command: List[str], tool: str) -> str:
        env = os.environ.copy()
        if self._url.password:
            env["PGPASSWORD"] = self._url.password

        try:
            result = subprocess.run(command, capture_output=True, text=True, env=env, check=False)
        except FileNotFoundError:
            raise ArtifactError(
                f"{tool} not found: {command[0]}",
                suggestions=create_error_suggestions("postgres_tool_missing", tool=tool),
            )
        except OSError as e:
            raise ArtifactError(f"Could not run {tool}: {command[0]}", details=str(e))

        if result.returncode != 0:
            raise ArtifactError(f"{tool} exited with code {result.returncode}", details=result.stderr.strip())
        return result.stdout
