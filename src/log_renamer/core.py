# src/log_renamer/core.py

"""
Core business logic for relocating delivered log batches.

A rename is a two-step transition per object: a server-side copy to the
canonical key, then a delete of the source. The delete is only issued after the
copy has been confirmed, so at every point in time at least one of the two
objects exists. Re-running a rename is always safe:

- source present, destination absent  -> copy + delete
- source present, destination present -> identical re-copy + delete
- source absent                       -> nothing to do (already renamed)
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .clients import S3Client
from .config import AppConfig
from .exceptions import (
    CopyFailedError,
    DeleteFailedError,
    LogRenamerError,
    S3ObjectNotFoundError,
    S3OperationError,
)
from .naming import compute_destination_key, is_canonical_key, matches_source_prefix
from .schemas import ObjectRef

logger = logging.getLogger(__name__)

SKIP_CANONICAL = "already-canonical"
SKIP_OUTSIDE_PREFIX = "outside-source-prefix"
SKIP_SOURCE_MISSING = "source-missing"


@dataclass
class RenameOutcome:
    """Result of one rename attempt. Never persisted."""

    bucket: str
    source_key: str
    destination_bucket: str
    destination_key: str | None = None
    copied: bool = False
    deleted: bool = False
    skipped: str | None = None
    error: LogRenamerError | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def renamed(self) -> bool:
        return self.copied and self.deleted

    def to_log_dict(self) -> dict[str, Any]:
        return {
            "bucket": self.bucket,
            "source_key": self.source_key,
            "destination_bucket": self.destination_bucket,
            "destination_key": self.destination_key,
            "copied": self.copied,
            "deleted": self.deleted,
            "skipped": self.skipped,
            "error": self.error.message if self.error else None,
        }


def skip_reason(ref: ObjectRef, config: AppConfig) -> str | None:
    """
    Objects the renamer must leave alone.

    When renamed objects land in the triggering bucket they raise their own
    ObjectCreated notifications; renaming those again would loop forever.
    """
    destination_bucket = config.destination_bucket_for(ref.bucket)
    if destination_bucket == ref.bucket and is_canonical_key(
        ref.source_key, config.destination_prefix
    ):
        return SKIP_CANONICAL
    if not matches_source_prefix(ref.source_key, config.source_prefix):
        return SKIP_OUTSIDE_PREFIX
    return None


def _confirm_copy(
    s3_client: S3Client, bucket: str, key: str, expected_size: int | None
) -> None:
    head = s3_client.head_object(bucket, key)
    actual_size = head.get("ContentLength")
    if expected_size is not None and actual_size is not None and actual_size != expected_size:
        raise S3OperationError(
            "HeadObject",
            f"destination size {actual_size} does not match source size {expected_size}",
            context={"bucket": bucket, "key": key},
        )


def rename_object(
    s3_client: S3Client,
    ref: ObjectRef,
    config: AppConfig,
    observed_at: datetime,
) -> RenameOutcome:
    """
    Copies ``ref`` to its canonical key and then deletes the source.

    Never raises for store failures; the error is carried on the returned
    outcome as CopyFailedError or DeleteFailedError so the caller can keep
    processing the rest of its batch.
    """
    destination_bucket = config.destination_bucket_for(ref.bucket)
    outcome = RenameOutcome(
        bucket=ref.bucket,
        source_key=ref.source_key,
        destination_bucket=destination_bucket,
    )

    reason = skip_reason(ref, config)
    if reason is not None:
        outcome.skipped = reason
        logger.debug("Skipping object", extra=outcome.to_log_dict())
        return outcome

    destination_key = compute_destination_key(
        ref.source_key,
        observed_at,
        prefix=config.destination_prefix,
        suffix=config.destination_suffix,
        strategy=config.naming_strategy,
    )
    outcome.destination_key = destination_key

    # --- Step 1: copy, and confirm the destination before touching the source ---
    try:
        s3_client.copy_object(ref.bucket, ref.source_key, destination_bucket, destination_key)
        if config.verify_copy:
            _confirm_copy(s3_client, destination_bucket, destination_key, ref.size)
    except S3ObjectNotFoundError as e:
        if e.context.get("key") != ref.source_key:
            outcome.error = CopyFailedError(ref.source_key, e)
            logger.error(
                f"Error copying {ref.source_key}: {e}",
                extra={**outcome.to_log_dict(), "error_code": e.error_code},
            )
            return outcome
        # An earlier delivery of the same notification already finished.
        outcome.skipped = SKIP_SOURCE_MISSING
        logger.info("Source already gone, nothing to rename", extra=outcome.to_log_dict())
        return outcome
    except Exception as e:
        outcome.error = CopyFailedError(ref.source_key, e)
        logger.error(
            f"Error copying {ref.source_key}: {e}",
            extra={**outcome.to_log_dict(), "error_type": type(e).__name__},
        )
        return outcome

    outcome.copied = True
    logger.info(f"Copied {ref.source_key} to {destination_key}", extra=outcome.to_log_dict())

    # --- Step 2: delete the source ---
    try:
        s3_client.delete_object(ref.bucket, ref.source_key)
    except S3ObjectNotFoundError:
        logger.info(
            "Source removed concurrently, treating as deleted",
            extra=outcome.to_log_dict(),
        )
    except Exception as e:
        outcome.error = DeleteFailedError(ref.source_key, e)
        logger.error(
            f"Error deleting {ref.source_key}: {e}",
            extra={**outcome.to_log_dict(), "error_type": type(e).__name__},
        )
        return outcome

    outcome.deleted = True
    logger.info(f"Deleted {ref.source_key}", extra=outcome.to_log_dict())
    return outcome
