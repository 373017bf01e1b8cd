"""
Shared fixtures for unit tests.
"""

from __future__ import annotations

import gzip
import os
import types
import uuid

import boto3
import pytest
from moto import mock_aws

# The handler module builds its boto3 clients and Powertools utilities at
# import time, so the environment has to be in place before collection.
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_SECURITY_TOKEN", "testing")
os.environ.setdefault("AWS_SESSION_TOKEN", "testing")
os.environ.setdefault("POWERTOOLS_TRACE_DISABLED", "true")
os.environ.setdefault("POWERTOOLS_SERVICE_NAME", "log-renamer-test")

SOURCE_BUCKET = "firehose-delivery-bucket"
EVENT_TIME = "2024-03-05T10:20:30.123Z"


@pytest.fixture
def s3():
    """A moto-backed boto3 S3 client with the delivery bucket created."""
    with mock_aws():
        client = boto3.client("s3", region_name="eu-west-1")
        client.create_bucket(
            Bucket=SOURCE_BUCKET,
            CreateBucketConfiguration={"LocationConstraint": "eu-west-1"},
        )
        yield client


@pytest.fixture
def s3_client(s3):
    """Our S3Client wrapper around the moto client."""
    from log_renamer.clients import S3Client

    return S3Client(s3_client=s3)


@pytest.fixture
def log_batch() -> bytes:
    """A small GZIP batch the way Firehose would deliver it."""
    lines = b"".join(
        b'{"version":2,"account-id":"123456789012","action":"ACCEPT"}\n' for _ in range(20)
    )
    return gzip.compress(lines)


@pytest.fixture
def put_batch(s3, log_batch):
    """Uploads a delivered batch under the given key and returns it."""

    def _put(key: str, body: bytes | None = None) -> bytes:
        data = log_batch if body is None else body
        s3.put_object(
            Bucket=SOURCE_BUCKET,
            Key=key,
            Body=data,
            ContentEncoding="gzip",
            Metadata={"delivered-by": "firehose"},
        )
        return data

    return _put


def s3_record(key: str, size: int | None = None, bucket: str = SOURCE_BUCKET) -> dict:
    """One S3 ObjectCreated record; ``key`` is given as S3 would encode it."""
    obj: dict = {"key": key, "sequencer": "0065F6E5A1B2C3D4E5"}
    if size is not None:
        obj["size"] = size
    return {
        "eventVersion": "2.1",
        "eventSource": "aws:s3",
        "awsRegion": "eu-west-1",
        "eventTime": EVENT_TIME,
        "eventName": "ObjectCreated:Put",
        "s3": {"bucket": {"name": bucket}, "object": obj},
    }


@pytest.fixture
def lambda_context():
    """A small stand-in for the LambdaContext object."""
    return types.SimpleNamespace(
        function_name="log-renamer",
        function_version="$LATEST",
        memory_limit_in_mb=128,
        invoked_function_arn="arn:aws:lambda:eu-west-1:000000000000:function:log-renamer",
        aws_request_id="req-" + uuid.uuid4().hex,
        log_group_name="/aws/lambda/log-renamer",
        log_stream_name="stream",
        get_remaining_time_in_millis=lambda: 30000,
    )


def list_keys(s3, prefix: str = "", bucket: str = SOURCE_BUCKET) -> list[str]:
    response = s3.list_objects_v2(Bucket=bucket, Prefix=prefix)
    return sorted(obj["Key"] for obj in response.get("Contents", []))


@pytest.fixture
def config():
    """Default configuration, independent of the process environment."""
    from log_renamer.config import AppConfig

    return AppConfig(
        service_name="log-renamer-test",
        environment="test",
        log_level="DEBUG",
        metrics_namespace="LogRenamerTest",
        destination_prefix="renamed-logs/",
        destination_suffix=".gz",
        naming_strategy="source-hash",
        target_bucket=None,
        source_prefix=None,
        dead_letter_queue_url=None,
        verify_copy=True,
        max_concurrency=1,
        timeout_guard_threshold_seconds=5,
    )
