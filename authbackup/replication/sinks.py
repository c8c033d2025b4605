"""Delivery sinks for replicated artifacts."""

import logging
import os
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple
from urllib.parse import quote

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError

from authbackup.config.models import CrossRegionConfig
from authbackup.utils.errors import ConfigurationError, TransientDeliveryError, create_error_suggestions

logger = logging.getLogger(__name__)

ENDPOINT_TEMPLATES = {
    "s3": "https://s3.{region}.amazonaws.com",
    "azure": "https://{region}.blob.core.windows.net",
    "gcp": "https://storage.googleapis.com",
    "http": "https://backup-{region}.example.com",
}

PROBE_TIMEOUT = 5
PUT_TIMEOUT = 300


class ReplicationSink(ABC):
    """Ships bytes to one region."""

    @abstractmethod
    def put(self, remote_path: str, data: bytes) -> None:
        """
        Store data under remote_path.

        Raises:
            TransientDeliveryError: If the region is unreachable or rejects the write
        """

    @abstractmethod
    def probe(self) -> bool:
        """Whether the region is reachable right now."""


class HttpReplicationSink(ReplicationSink):
    """PUTs artifacts to an HTTP endpoint (blob stores, replication gateways)."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = PUT_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = dict(headers or {})
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    def put(self, remote_path: str, data: bytes) -> None:
        url = f"{self.base_url}/{quote(remote_path)}"
        headers = dict(self.headers, **{"Content-Type": "application/octet-stream"})
        try:
            response = requests.put(url, data=data, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise TransientDeliveryError(f"PUT {url} failed", details=str(e))

    def probe(self) -> bool:
        try:
            response = requests.head(self.base_url, headers=self.headers, timeout=PROBE_TIMEOUT)
            return response.status_code < 500
        except requests.RequestException as e:
            logger.debug("Probe of %s failed: %s", self.base_url, e)
            return False


class S3ReplicationSink(ReplicationSink):
    """Puts artifacts into a bucket in the target region."""

    def __init__(
        self,
        bucket: str,
        region: str,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        endpoint: Optional[str] = None,
    ):
        self.bucket = bucket
        self.region = region
        self.access_key = access_key
        self.secret_key = secret_key
        self.endpoint = endpoint
        self._client = None

    @property
    def client(self):
        """S3 client for the region, created on first use."""
        if self._client is None:
            self._client = boto3.client(
                "s3",
                region_name=self.region,
                aws_access_key_id=self.access_key,
                aws_secret_access_key=self.secret_key,
                endpoint_url=self.endpoint,
            )
        return self._client

    def put(self, remote_path: str, data: bytes) -> None:
        try:
            self.client.put_object(Bucket=self.bucket, Key=remote_path, Body=data)
        except (BotoCoreError, ClientError) as e:
            raise TransientDeliveryError(f"Upload to s3://{self.bucket}/{remote_path} failed", details=str(e))

    def probe(self) -> bool:
        try:
            self.client.head_bucket(Bucket=self.bucket)
            return True
        except (BotoCoreError, ClientError) as e:
            logger.debug("Probe of s3://%s in %s failed: %s", self.bucket, self.region, e)
            return False


class DirectoryReplicationSink(ReplicationSink):
    """Copies artifacts into a directory, e.g. a mounted volume in another region."""

    def __init__(self, root: str):
        self.root = root

    def put(self, remote_path: str, data: bytes) -> None:
        path = os.path.join(self.root, *remote_path.split("/"))
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as f:
                f.write(data)
        except OSError as e:
            raise TransientDeliveryError(f"Write to {path} failed", details=str(e))

    def probe(self) -> bool:
        try:
            os.makedirs(self.root, exist_ok=True)
        except OSError:
            return False
        return os.access(self.root, os.W_OK)


def build_sink(region: str, config: CrossRegionConfig, local_root: str) -> Tuple[str, ReplicationSink]:
    """
    Create the sink for one configured region.

    Args:
        region: Region id
        config: Cross-region settings
        local_root: Local backup root, used by the file storage type

    Returns:
        Tuple[str, ReplicationSink]: Endpoint description and sink

    Raises:
        ConfigurationError: If the storage type is unknown
    """
    storage_type = config.storage_type
    credentials = config.credentials.get(region, {})

    if storage_type == "file":
        template = config.endpoint_template or os.path.join(local_root, "replicas", "{region}")
        endpoint = template.format(region=region)
        return endpoint, DirectoryReplicationSink(endpoint)

    if storage_type not in ENDPOINT_TEMPLATES:
        raise ConfigurationError(
            f"Unsupported replication storage type: {storage_type}",
            suggestions=create_error_suggestions("configuration_invalid"),
        )

    endpoint = (config.endpoint_template or ENDPOINT_TEMPLATES[storage_type]).format(region=region)
    bucket = config.bucket_for(region)

    if storage_type == "s3":
        sink = S3ReplicationSink(
            bucket=bucket,
            region=region,
            access_key=credentials.get("access_key"),
            secret_key=credentials.get("secret_key"),
            endpoint=endpoint,
        )
    elif storage_type == "azure":
        sink = HttpReplicationSink(
            f"{endpoint}/{bucket}",
            token=credentials.get("token"),
            headers={"x-ms-blob-type": "BlockBlob", "x-ms-version": "2021-08-06"},
        )
    elif storage_type == "gcp":
        sink = HttpReplicationSink(f"{endpoint}/{bucket}", token=credentials.get("token"))
    else:
        sink = HttpReplicationSink(endpoint, token=credentials.get("token"))

    return endpoint, sink
