"""Tests for replication delivery sinks."""

import os
from unittest.mock import MagicMock, patch

import pytest
import requests
from botocore.exceptions import ClientError

from authbackup.config.models import CrossRegionConfig
from authbackup.replication.sinks import (
    DirectoryReplicationSink,
    HttpReplicationSink,
    S3ReplicationSink,
    build_sink,
)
from authbackup.utils.errors import ConfigurationError, TransientDeliveryError


class TestHttpReplicationSink:
    """Test HTTP PUT delivery."""

    def setup_method(self):
        """Setup test environment."""
        self.sink = HttpReplicationSink("https://backup-eu.example.com/", token="t0ken")

    @patch("authbackup.replication.sinks.requests.put")
    def test_put(self, mock_put):
        """Test URL, headers and body of a delivery."""
        mock_put.return_value = MagicMock(status_code=201)

        self.sink.put("backup-1/postgres full.dump.gz", b"data")

        args, kwargs = mock_put.call_args
        assert args[0] == "https://backup-eu.example.com/backup-1/postgres%20full.dump.gz"
        assert kwargs["data"] == b"data"
        assert kwargs["headers"]["Authorization"] == "Bearer t0ken"
        assert kwargs["headers"]["Content-Type"] == "application/octet-stream"

    @patch("authbackup.replication.sinks.requests.put")
    def test_put_failure_is_transient(self, mock_put):
        """Test that HTTP errors become transient delivery errors."""
        mock_put.return_value.raise_for_status.side_effect = requests.HTTPError("503 Service Unavailable")

        with pytest.raises(TransientDeliveryError) as exc_info:
            self.sink.put("backup-1/a.gz", b"data")

        assert "503" in exc_info.value.details

    @patch("authbackup.replication.sinks.requests.head")
    def test_probe(self, mock_head):
        """Test reachability probing."""
        mock_head.return_value = MagicMock(status_code=404)
        assert self.sink.probe() is True

        mock_head.return_value = MagicMock(status_code=502)
        assert self.sink.probe() is False

        mock_head.side_effect = requests.ConnectionError("refused")
        assert self.sink.probe() is False


class TestS3ReplicationSink:
    """Test S3 delivery."""

    @patch("authbackup.replication.sinks.boto3.client")
    def test_put_object(self, mock_client):
        """Test bucket, key and regional client."""
        sink = S3ReplicationSink("auth-replicas", "eu-west-1", "AKIA", "secret")

        sink.put("backup-1/redis-full.json.gz", b"data")

        mock_client.assert_called_once_with(
            "s3",
            region_name="eu-west-1",
            aws_access_key_id="AKIA",
            aws_secret_access_key="secret",
            endpoint_url=None,
        )
        mock_client.return_value.put_object.assert_called_once_with(
            Bucket="auth-replicas", Key="backup-1/redis-full.json.gz", Body=b"data"
        )

    @patch("authbackup.replication.sinks.boto3.client")
    def test_client_errors(self, mock_client):
        """Test that S3 errors fail probes and deliveries."""
        error = ClientError({"Error": {"Code": "403", "Message": "Forbidden"}}, "HeadBucket")
        mock_client.return_value.head_bucket.side_effect = error
        mock_client.return_value.put_object.side_effect = error
        sink = S3ReplicationSink("auth-replicas", "eu-west-1")

        assert sink.probe() is False
        with pytest.raises(TransientDeliveryError):
            sink.put("backup-1/a.gz", b"data")


class TestDirectoryReplicationSink:
    """Test directory delivery."""

    def test_put_creates_directories(self, temp_directory):
        """Test that nested paths are written."""
        sink = DirectoryReplicationSink(os.path.join(temp_directory, "replica"))

        assert sink.probe() is True
        sink.put("backup-1/postgres-full.dump.gz", b"data")

        with open(os.path.join(temp_directory, "replica", "backup-1", "postgres-full.dump.gz"), "rb") as f:
            assert f.read() == b"data"


class TestBuildSink:
    """Test sink construction from configuration."""

    def test_file_storage(self, temp_directory):
        endpoint, sink = build_sink("dr-site", CrossRegionConfig(storage_type="file"), temp_directory)

        assert endpoint == os.path.join(temp_directory, "replicas", "dr-site")
        assert isinstance(sink, DirectoryReplicationSink)

    def test_s3_storage(self):
        config = CrossRegionConfig(
            storage_type="s3",
            bucket="auth-replicas",
            credentials={"us-west-2": {"access_key": "AKIA", "secret_key": "secret"}},
        )

        endpoint, sink = build_sink("us-west-2", config, "./backups")

        assert endpoint == "https://s3.us-west-2.amazonaws.com"
        assert isinstance(sink, S3ReplicationSink)
        assert sink.access_key == "AKIA"

    def test_s3_bucket_per_region(self):
        """Test that each S3 region gets its own bucket."""
        config = CrossRegionConfig(
            storage_type="s3",
            bucket="auth-backups-{region}",
            buckets={"eu-west-1": "auth-backups-europe"},
        )

        _, us_sink = build_sink("us-east-1", config, "./backups")
        _, eu_sink = build_sink("eu-west-1", config, "./backups")

        assert us_sink.bucket == "auth-backups-us-east-1"
        assert eu_sink.bucket == "auth-backups-europe"

    def test_azure_storage(self):
        config = CrossRegionConfig(
            storage_type="azure",
            bucket="replicas",
            credentials={"westeurope": {"token": "sas"}},
        )

        endpoint, sink = build_sink("westeurope", config, "./backups")

        assert isinstance(sink, HttpReplicationSink)
        assert sink.base_url == "https://westeurope.blob.core.windows.net/replicas"
        assert sink.headers["x-ms-blob-type"] == "BlockBlob"
        assert sink.headers["Authorization"] == "Bearer sas"

    def test_endpoint_template_override(self):
        config = CrossRegionConfig(storage_type="http", endpoint_template="https://gw.internal/{region}")

        endpoint, sink = build_sink("ap-south-1", config, "./backups")

        assert endpoint == "https://gw.internal/ap-south-1"

    def test_unknown_storage_type(self):
        with pytest.raises(ConfigurationError):
            build_sink("x", CrossRegionConfig(storage_type="ftp"), "./backups")
