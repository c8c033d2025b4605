"""Backup storage: local artifact files, manifests and remote upload."""

import contextlib
import gzip
import hashlib
import json
import logging
import os
import shutil
import tempfile
from typing import Any, Dict, Iterator, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from authbackup.config.models import BackupConfig
from authbackup.utils.errors import ArtifactError, NotFoundError, create_error_suggestions

from .encryption import ArtifactCipher
from .models import BackupResult, BackupSet

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
CHUNK_SIZE = 1024 * 1024


def file_checksum(path: str) -> str:
    """SHA-256 of a file, hex encoded."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class BackupStorage:
    """Manages the on-disk layout of backup sets.

    Each set is a directory under the backup root holding its artifacts and
    a manifest.json that records what was written.
    """

    def __init__(self, config: BackupConfig):
        """
        Initialize backup storage.

        Args:
            config: Resolved backup configuration
        """
        self.config = config
        self.root = os.path.abspath(config.storage.local_path)
        self.cipher = None
        if config.encryption.enabled:
            self.cipher = ArtifactCipher(config.encryption.algorithm, config.encryption.key_path)
        self._s3_client = None

    @property
    def s3_client(self):
        """S3 client for remote uploads, created on first use."""
        if self._s3_client is None:
            remote = self.config.storage.remote
            self._s3_client = boto3.client(
                "s3",
                region_name=remote.region,
                aws_access_key_id=remote.access_key,
                aws_secret_access_key=remote.secret_key,
                endpoint_url=remote.endpoint,
            )
        return self._s3_client

    @property
    def remote_enabled(self) -> bool:
        return self.config.storage.remote.enabled

    def set_dir(self, backup_id: str, root: Optional[str] = None) -> str:
        return os.path.join(root or self.root, backup_id)

    def store_artifact(self, raw_path: str, dest_dir: str, compress: bool) -> Dict[str, Any]:
        """
        Move a raw dump into a backup set, compressing and encrypting it.

        Args:
            raw_path: File produced by the store's dump tool
            dest_dir: Backup set directory
            compress: Whether to gzip the artifact

        Returns:
            Dict[str, Any]: path, size, checksum, compressed and encrypted flags

        Raises:
            ArtifactError: If the artifact cannot be written
        """
        path = os.path.join(dest_dir, os.path.basename(raw_path))

        try:
            os.makedirs(dest_dir, exist_ok=True)

            if compress:
                path += ".gz"
                level = self.config.compression.level
                with open(raw_path, "rb") as src, gzip.open(path, "wb", compresslevel=level) as dst:
                    shutil.copyfileobj(src, dst, CHUNK_SIZE)
            else:
                shutil.copyfile(raw_path, path)

            if self.cipher:
                with open(path, "rb") as f:
                    encrypted = self.cipher.encrypt(f.read())
                with open(path + ".enc", "wb") as f:
                    f.write(encrypted)
                os.remove(path)
                path += ".enc"

            return {
                "path": path,
                "size": os.path.getsize(path),
                "checksum": file_checksum(path),
                "compressed": compress,
                "encrypted": self.cipher is not None,
            }
        except OSError as e:
            raise ArtifactError(f"Failed to write artifact {os.path.basename(path)}", details=str(e))

    @contextlib.contextmanager
    def open_artifact(self, result: BackupResult) -> Iterator[str]:
        """
        Yield a temporary path holding the artifact's original dump bytes.

        Args:
            result: Artifact to unpack

        Yields:
            str: Path to a decrypted and decompressed copy, removed afterwards
        """
        name = result.file_name
        if name.endswith(".enc"):
            name = name[: -len(".enc")]
        if name.endswith(".gz"):
            name = name[: -len(".gz")]

        workdir = tempfile.mkdtemp(prefix="authbackup-restore-")
        plain_path = os.path.join(workdir, name)
        try:
            try:
                if result.encrypted:
                    if not self.cipher:
                        raise ArtifactError(
                            f"Artifact {result.file_name} is encrypted but encryption is not configured",
                            suggestions=create_error_suggestions("encryption_key_missing"),
                        )
                    with open(result.file_path, "rb") as f:
                        data = self.cipher.decrypt(f.read())
                    if result.compressed:
                        data = gzip.decompress(data)
                    with open(plain_path, "wb") as f:
                        f.write(data)
                elif result.compressed:
                    with gzip.open(result.file_path, "rb") as src, open(plain_path, "wb") as dst:
                        shutil.copyfileobj(src, dst, CHUNK_SIZE)
                else:
                    shutil.copyfile(result.file_path, plain_path)
            except (OSError, EOFError) as e:
                raise ArtifactError(f"Failed to read artifact {result.file_name}", details=str(e))

            yield plain_path
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

    def verify_artifact(self, result: BackupResult) -> List[str]:
        """
        Check an artifact's size and checksum against its record.

        Returns:
            List[str]: Problems found (empty if intact)
        """
        if not os.path.isfile(result.file_path):
            return [f"{result.file_name}: file is missing"]

        problems = []
        size = os.path.getsize(result.file_path)
        if size != result.size:
            problems.append(f"{result.file_name}: size {size} does not match recorded {result.size}")
        if result.checksum and file_checksum(result.file_path) != result.checksum:
            problems.append(f"{result.file_name}: checksum mismatch")
        return problems

    def verify_set(self, backup_set: BackupSet) -> List[str]:
        problems = []
        if not backup_set.artifacts:
            problems.append(f"{backup_set.backup_id}: backup set has no artifacts")
        for artifact in backup_set.artifacts:
            problems.extend(self.verify_artifact(artifact))
        return problems

    def upload_artifact(self, result_path: str, backup_id: str) -> str:
        """
        Upload a finished artifact to the remote bucket.

        Args:
            result_path: Local artifact file
            backup_id: Backup set the artifact belongs to

        Returns:
            str: Remote location (s3://bucket/key)
        """
        remote = self.config.storage.remote
        key = f"{backup_id}/{os.path.basename(result_path)}"

        try:
            self.s3_client.upload_file(result_path, remote.bucket, key)
        except (BotoCoreError, ClientError) as e:
            raise ArtifactError(f"Failed to upload {key} to s3://{remote.bucket}", details=str(e))

        logger.info("Uploaded %s to s3://%s/%s", os.path.basename(result_path), remote.bucket, key)
        return f"s3://{remote.bucket}/{key}"

    def write_manifest(self, backup_set: BackupSet) -> None:
        manifest_path = os.path.join(backup_set.path, MANIFEST_NAME)
        tmp_path = manifest_path + ".tmp"
        try:
            os.makedirs(backup_set.path, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(backup_set.to_manifest(), f, indent=2)
            os.replace(tmp_path, manifest_path)
        except OSError as e:
            raise ArtifactError(f"Failed to write manifest for {backup_set.backup_id}", details=str(e))

    def read_manifest(self, backup_id: str, root: Optional[str] = None) -> BackupSet:
        """
        Load one backup set.

        Raises:
            NotFoundError: If no manifest exists for the id
        """
        set_dir = self.set_dir(backup_id, root)
        manifest_path = os.path.join(set_dir, MANIFEST_NAME)
        if not os.path.isfile(manifest_path):
            raise NotFoundError(
                f"Backup not found: {backup_id}",
                suggestions=create_error_suggestions("backup_not_found"),
            )

        try:
            with open(manifest_path, "r", encoding="utf-8") as f:
                return BackupSet.from_manifest(json.load(f), set_dir)
        except (OSError, ValueError, KeyError) as e:
            raise ArtifactError(f"Unreadable manifest for {backup_id}", details=str(e))

    def list_sets(self, root: Optional[str] = None) -> List[BackupSet]:
        """All readable backup sets, newest first."""
        root = root or self.root
        if not os.path.isdir(root):
            return []

        sets = []
        for entry in os.listdir(root):
            if not os.path.isfile(os.path.join(root, entry, MANIFEST_NAME)):
                continue
            try:
                sets.append(self.read_manifest(entry, root))
            except ArtifactError as e:
                logger.warning("Skipping backup %s: %s", entry, e.details or e.message)

        sets.sort(key=lambda s: s.created_at, reverse=True)
        return sets

    def delete_set(self, backup_id: str) -> None:
        try:
            shutil.rmtree(self.set_dir(backup_id))
        except OSError as e:
            raise ArtifactError(f"Failed to delete backup {backup_id}", details=str(e))
