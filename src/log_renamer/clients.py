# src/log_renamer/clients.py

"""
Client wrappers for interacting with AWS services (S3 and SQS).

These classes provide a narrow interface over raw boto3 clients and translate
botocore failures into the service's own exception hierarchy, so the rename
logic only ever deals with typed errors.
"""

import json
import logging
from typing import TYPE_CHECKING, Any, NoReturn

from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError

from .exceptions import (
    S3AccessDeniedError,
    S3ObjectNotFoundError,
    S3OperationError,
    S3ThrottlingError,
    S3TimeoutError,
)

if TYPE_CHECKING:
    from mypy_boto3_s3.client import S3Client as S3ClientType
    from mypy_boto3_sqs.client import SQSClient as SQSClientType

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}
_THROTTLING_CODES = {
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "SlowDown",
    "ServiceUnavailable",
    "503",
}
_TIMEOUT_CODES = {"RequestTimeout", "RequestTimeoutException"}


def _raise_mapped_client_error(
    e: ClientError, operation: str, bucket: str, key: str
) -> NoReturn:
    """Map a boto3 ClientError onto our specific exception types."""
    error = e.response.get("Error", {})
    error_code = str(error.get("Code", "Unknown"))
    error_message = error.get("Message", str(e))
    context = {
        "bucket": bucket,
        "key": key,
        "aws_error_code": error_code,
        "aws_error_message": error_message,
    }

    if error_code in _NOT_FOUND_CODES:
        raise S3ObjectNotFoundError(bucket=bucket, key=key, context=context) from e
    elif error_code in {"AccessDenied", "403"}:
        raise S3AccessDeniedError(bucket=bucket, key=key, context=context) from e
    elif error_code in _THROTTLING_CODES:
        raise S3ThrottlingError(operation, context=context) from e
    elif error_code in _TIMEOUT_CODES:
        raise S3TimeoutError(operation, context=context) from e
    else:
        raise S3OperationError(operation, error_message, context=context) from e


class S3Client:
    """
    A wrapper for the S3 operations a rename needs: copy, head and delete.
    """

    def __init__(self, s3_client: "S3ClientType"):
        """
        Initializes the S3Client.

        Args:
            s3_client: A typed boto3 S3 client.
        """
        self._client = s3_client

    def copy_object(
        self, source_bucket: str, source_key: str, dest_bucket: str, dest_key: str
    ) -> dict[str, Any]:
        """
        Server-side copy with MetadataDirective=REPLACE, so the destination
        gets fresh metadata instead of inheriting the source's.
        Returns the CopyObjectResult (ETag, LastModified).
        """
        try:
            response = self._client.copy_object(
                CopySource={"Bucket": source_bucket, "Key": source_key},
                Bucket=dest_bucket,
                Key=dest_key,
                MetadataDirective="REPLACE",
            )
        except ClientError as e:
            _raise_mapped_client_error(e, "CopyObject", source_bucket, source_key)
        except ReadTimeoutError as e:
            raise S3TimeoutError(
                "CopyObject",
                context={"bucket": source_bucket, "key": source_key, "timeout_error": str(e)},
            ) from e
        except EndpointConnectionError as e:
            raise S3TimeoutError(
                "CopyObject",
                context={
                    "bucket": source_bucket,
                    "key": source_key,
                    "connection_error": str(e),
                },
            ) from e

        result = dict(response.get("CopyObjectResult", {}))
        if not result.get("ETag"):
            raise S3OperationError(
                "CopyObject",
                "response did not include a CopyObjectResult ETag",
                context={"bucket": dest_bucket, "key": dest_key},
            )
        logger.debug(
            "CopyObject completed",
            extra={
                "source_bucket": source_bucket,
                "source_key": source_key,
                "dest_bucket": dest_bucket,
                "dest_key": dest_key,
                "etag": result["ETag"],
            },
        )
        return result

    def head_object(self, bucket: str, key: str) -> dict[str, Any]:
        """Returns the object's headers, raising S3ObjectNotFoundError if absent."""
        try:
            return dict(self._client.head_object(Bucket=bucket, Key=key))
        except ClientError as e:
            _raise_mapped_client_error(e, "HeadObject", bucket, key)
        except (ReadTimeoutError, EndpointConnectionError) as e:
            raise S3TimeoutError(
                "HeadObject",
                context={"bucket": bucket, "key": key, "connection_error": str(e)},
            ) from e

    def delete_object(self, bucket: str, key: str) -> None:
        try:
            self._client.delete_object(Bucket=bucket, Key=key)
        except ClientError as e:
            _raise_mapped_client_error(e, "DeleteObject", bucket, key)
        except (ReadTimeoutError, EndpointConnectionError) as e:
            raise S3TimeoutError(
                "DeleteObject",
                context={"bucket": bucket, "key": key, "connection_error": str(e)},
            ) from e
        logger.debug("DeleteObject completed", extra={"bucket": bucket, "key": key})


class DeadLetterQueue:
    """Parks records that no amount of redelivery can fix."""

    def __init__(self, sqs_client: "SQSClientType", queue_url: str):
        self._client = sqs_client
        self._queue_url = queue_url

    def send(self, record: Any, reason: dict[str, Any]) -> str:
        """Sends the original record plus the failure reason; returns the message id."""
        body = json.dumps({"record": record, "error": reason}, default=str)
        response = self._client.send_message(QueueUrl=self._queue_url, MessageBody=body)
        message_id = response["MessageId"]
        logger.info(
            "Record sent to dead-letter queue",
            extra={"queue_url": self._queue_url, "dlq_message_id": message_id},
        )
        return message_id
