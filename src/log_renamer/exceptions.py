# src/log_renamer/exceptions.py

"""
Shared custom exceptions for the Log Renamer service.

Centralizing exception definitions in a separate module prevents circular
import errors between other modules that need to raise or catch them.

Exception Hierarchy:
- LogRenamerError (base)
  - RetryableError (redelivery can fix it)
    - S3ThrottlingError
    - S3TimeoutError
    - S3OperationError
    - CopyFailedError
    - DeleteFailedError
    - InvocationTimeoutError
    - BatchRenameError
  - NonRetryableError (redelivery cannot fix it)
    - DecodeFailedError
    - InvalidS3EventError
    - S3ObjectNotFoundError
    - S3AccessDeniedError
    - ConfigurationError
"""

from typing import Any, Dict, List, Optional


class LogRenamerError(Exception):
    """Base exception for all Log Renamer service errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.context = dict(context) if context else {}  # Copy context to prevent mutation
        self.correlation_id = correlation_id

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
            "correlation_id": self.correlation_id,
            "retryable": isinstance(self, RetryableError),
        }


class RetryableError(LogRenamerError):
    """Base class for errors that can be retried."""

    pass


class NonRetryableError(LogRenamerError):
    """Base class for errors that should not be retried."""

    pass


# === S3-Related Errors ===


class S3Error(LogRenamerError):
    """Base class for S3-related errors."""

    pass


class S3ObjectNotFoundError(S3Error, NonRetryableError):
    """Raised when a requested S3 object does not exist."""

    def __init__(self, bucket: str, key: str, **kwargs):
        message = f"S3 object not found: s3://{bucket}/{key}"
        context = {"bucket": bucket, "key": key}
        context.update(kwargs.pop("context", {}))
        super().__init__(message, error_code="S3_OBJECT_NOT_FOUND", context=context, **kwargs)


class S3AccessDeniedError(S3Error, NonRetryableError):
    """Raised when access is denied to an S3 object."""

    def __init__(self, bucket: str, key: str, **kwargs):
        message = f"Access denied to S3 object: s3://{bucket}/{key}"
        context = {"bucket": bucket, "key": key}
        context.update(kwargs.pop("context", {}))
        super().__init__(message, error_code="S3_ACCESS_DENIED", context=context, **kwargs)


class S3ThrottlingError(S3Error, RetryableError):
    """Raised when S3 operations are being throttled."""

    def __init__(self, operation: str, **kwargs):
        message = f"S3 operation throttled: {operation}"
        context = {"operation": operation}
        context.update(kwargs.pop("context", {}))
        super().__init__(message, error_code="S3_THROTTLING", context=context, **kwargs)


class S3TimeoutError(S3Error, RetryableError):
    """Raised when S3 operations time out or the endpoint is unreachable."""

    def __init__(self, operation: str, **kwargs):
        message = f"S3 operation timed out: {operation}"
        context = {"operation": operation}
        context.update(kwargs.pop("context", {}))
        super().__init__(message, error_code="S3_TIMEOUT", context=context, **kwargs)


class S3OperationError(S3Error, RetryableError):
    """Raised for any other S3 client error."""

    def __init__(self, operation: str, reason: str, **kwargs):
        message = f"S3 {operation} failed: {reason}"
        context = {"operation": operation}
        context.update(kwargs.pop("context", {}))
        super().__init__(message, error_code="S3_OPERATION_FAILED", context=context, **kwargs)


# === Rename Errors ===


class RenameError(RetryableError):
    """Base class for failures of a single copy-then-delete transition."""

    def __init__(self, message: str, source_key: str, cause: Exception, **kwargs):
        self.source_key = source_key
        self.cause = cause
        context = {"source_key": source_key, "cause": str(cause)}
        if isinstance(cause, LogRenamerError):
            context["cause_code"] = cause.error_code
        context.update(kwargs.pop("context", {}))
        super().__init__(message, context=context, **kwargs)


class CopyFailedError(RenameError):
    """The destination write could not be confirmed. The source is untouched."""

    def __init__(self, source_key: str, cause: Exception, **kwargs):
        message = f"Copy failed for {source_key}: {cause}"
        super().__init__(message, source_key, cause, error_code="COPY_FAILED", **kwargs)


class DeleteFailedError(RenameError):
    """The copy succeeded but the source could not be removed."""

    def __init__(self, source_key: str, cause: Exception, **kwargs):
        message = f"Delete failed for {source_key}: {cause}"
        super().__init__(message, source_key, cause, error_code="DELETE_FAILED", **kwargs)


class InvocationTimeoutError(RetryableError):
    """Raised for objects not started because the invocation ran out of time."""

    def __init__(self, source_key: str, remaining_time_ms: int, **kwargs):
        message = f"Not enough time left to rename {source_key}: {remaining_time_ms}ms"
        context = {"source_key": source_key, "remaining_time_ms": remaining_time_ms}
        super().__init__(message, error_code="INVOCATION_TIMEOUT", context=context, **kwargs)


class BatchRenameError(RetryableError):
    """
    Raised by the handler so the invoker redelivers the batch.

    Carries every source key that did not reach a terminal state.
    """

    def __init__(
        self,
        failed_keys: List[str],
        undecodable_keys: Optional[List[str]] = None,
        **kwargs,
    ):
        self.failed_keys = list(failed_keys)
        self.undecodable_keys = list(undecodable_keys or [])
        all_keys = self.failed_keys + self.undecodable_keys
        message = f"Failed to rename {len(all_keys)} object(s): {', '.join(all_keys)}"
        context = {
            "failed_keys": self.failed_keys,
            "undecodable_keys": self.undecodable_keys,
        }
        super().__init__(message, error_code="BATCH_RENAME_FAILED", context=context, **kwargs)


# === Validation Errors ===


class ValidationError(NonRetryableError):
    """Base class for validation errors."""

    pass


class DecodeFailedError(ValidationError):
    """Raised when a notification key cannot be decoded into a usable S3 key."""

    def __init__(self, raw_key: str, reason: str, **kwargs):
        self.raw_key = raw_key
        message = f"Cannot decode object key {raw_key!r}: {reason}"
        context = {"raw_key": raw_key, "reason": reason}
        super().__init__(message, error_code="DECODE_FAILED", context=context, **kwargs)


class InvalidS3EventError(ValidationError):
    """Raised when S3 event structure is invalid."""

    def __init__(self, message: str, **kwargs):
        if "error_code" not in kwargs:
            kwargs["error_code"] = "INVALID_S3_EVENT"
        super().__init__(message, **kwargs)


# === Configuration Errors ===


class ConfigurationError(NonRetryableError):
    """Raised when there's an error in the application configuration."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="CONFIGURATION_ERROR", **kwargs)


# === Utility Functions ===


def is_retryable_error(error: Exception) -> bool:
    """Check if an error is retryable."""
    return isinstance(error, RetryableError)


def get_error_context(error: Exception) -> Dict[str, Any]:
    """Extract error context for logging."""
    if isinstance(error, LogRenamerError):
        return error.to_dict()
    else:
        return {
            "error_type": error.__class__.__name__,
            "message": str(error),
            "retryable": False,  # Unknown errors default to non-retryable
        }
