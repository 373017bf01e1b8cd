"""
The Lambda Adapter & Orchestrator for the Log Renamer service.

This module is the main entry point for the AWS Lambda function. It is
responsible for:
1.  Initializing and configuring AWS Lambda Powertools (Logger, Tracer, Metrics).
2.  Parsing incoming S3 event notifications, delivered either directly by S3 or
    wrapped in SQS messages.
3.  Decoding each object key and routing undecodable records to a dead-letter
    queue instead of retrying them forever.
4.  Invoking the core rename logic (`rename_object`) for every object,
    independently, sequentially or with bounded concurrency.
5.  Reporting failures so the invoker redelivers: raising for direct S3
    invocations, partial batch responses for SQS.
"""

import json
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, cast

import boto3
import pydantic
from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.logging.utils import copy_config_to_registered_loggers
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.batch.types import (
    PartialItemFailureResponse,
    PartialItemFailures,
)
from aws_lambda_powertools.utilities.typing import LambdaContext

from .clients import DeadLetterQueue, S3Client
from .config import AppConfig, get_config
from .core import SKIP_SOURCE_MISSING, RenameOutcome, rename_object
from .exceptions import (
    BatchRenameError,
    DecodeFailedError,
    InvalidS3EventError,
    InvocationTimeoutError,
    LogRenamerError,
    get_error_context,
)
from .naming import decode_source_key, resolve_observed_at
from .schemas import ObjectRef, S3EventNotification, S3EventNotificationRecord

# --- Global & Reusable Components ---
CONFIG = get_config()

logger = Logger(service=CONFIG.service_name, level=CONFIG.log_level)
copy_config_to_registered_loggers(source_logger=logger, include={"log_renamer"})
tracer = Tracer(service=CONFIG.service_name)
metrics = Metrics(namespace=CONFIG.metrics_namespace, service=CONFIG.service_name)

s3_client = S3Client(s3_client=boto3.client("s3"))
dead_letter_queue: DeadLetterQueue | None = (
    DeadLetterQueue(boto3.client("sqs"), CONFIG.dead_letter_queue_url)
    if CONFIG.dead_letter_queue_url
    else None
)


@dataclass
class WorkItem:
    """One decoded object plus the SQS message it arrived in (if any)."""

    ref: ObjectRef
    message_id: str | None = None


@dataclass
class RejectedRecord:
    """A record that can never be renamed as delivered."""

    raw: Any
    error: LogRenamerError
    message_id: str | None = None


@dataclass
class ParsedBatch:
    items: list[WorkItem] = field(default_factory=list)
    rejected: list[RejectedRecord] = field(default_factory=list)


# ───────────────────────────────────────────────────────────────
# Parsing
# ───────────────────────────────────────────────────────────────
def _to_work_item(raw_record: Any, message_id: str | None) -> WorkItem:
    """Validates one S3 record and decodes its key. Raises on bad input."""
    try:
        record = S3EventNotificationRecord.model_validate(raw_record)
    except pydantic.ValidationError as e:
        raise InvalidS3EventError(
            "S3 record failed validation.",
            context={"validation_errors": e.errors(include_url=False)},
        ) from e

    raw_key = record.s3.object.key
    ref = ObjectRef(
        bucket=record.s3.bucket.name,
        source_key=decode_source_key(raw_key),
        event_time=record.event_time,
        size=record.s3.object.size,
    )
    return WorkItem(ref=ref, message_id=message_id)


def _parse_records(
    raw_records: list[Any], message_id: str | None, batch: ParsedBatch
) -> None:
    for raw_record in raw_records:
        try:
            batch.items.append(_to_work_item(raw_record, message_id))
        except (DecodeFailedError, InvalidS3EventError) as e:
            batch.rejected.append(RejectedRecord(raw=raw_record, error=e, message_id=message_id))


def parse_event(event: dict[str, Any]) -> tuple[ParsedBatch, bool]:
    """
    Splits an invocation event into work items and rejected records.

    Returns the batch and whether the event came from SQS.
    """
    batch = ParsedBatch()
    records: list[dict[str, Any]] = event.get("Records") or []
    is_sqs = any(r.get("eventSource") == "aws:sqs" or "body" in r for r in records)

    if not is_sqs:
        _parse_records(records, None, batch)
        return batch, False

    for sqs_record in records:
        message_id = sqs_record["messageId"]
        try:
            notification = S3EventNotification.model_validate(json.loads(sqs_record["body"]))
            if not notification.records and not notification.is_test_event:
                raise KeyError("'Records' list is missing or empty.")
        except (json.JSONDecodeError, KeyError, TypeError, pydantic.ValidationError) as e:
            batch.rejected.append(
                RejectedRecord(
                    raw=sqs_record.get("body"),
                    error=InvalidS3EventError(
                        "Failed to parse SQS message body.",
                        context={"messageId": message_id, "error": str(e)},
                    ),
                    message_id=message_id,
                )
            )
            continue

        if notification.is_test_event:
            logger.info("Ignoring S3 test event.", extra={"messageId": message_id})
            continue

        _parse_records(notification.records, message_id, batch)

    return batch, True


# ───────────────────────────────────────────────────────────────
# Rejected records
# ───────────────────────────────────────────────────────────────
def _route_rejected(rejected: list[RejectedRecord]) -> list[RejectedRecord]:
    """
    Parks rejected records on the dead-letter queue when one is configured.
    Returns the records that could not be parked and must fail the batch.
    """
    unparked: list[RejectedRecord] = []
    for item in rejected:
        metric_name = (
            "UndecodableKeys" if isinstance(item.error, DecodeFailedError) else "InvalidS3Records"
        )
        metrics.add_metric(name=metric_name, unit=MetricUnit.Count, value=1)
        logger.error(
            f"Rejected record: {item.error}",
            extra={
                "messageId": item.message_id,
                "error_code": item.error.error_code,
                "error_context": item.error.context,
            },
        )
        if dead_letter_queue is None:
            unparked.append(item)
            continue
        try:
            dead_letter_queue.send(record=item.raw, reason=get_error_context(item.error))
            metrics.add_metric(name="DeadLetteredRecords", unit=MetricUnit.Count, value=1)
        except Exception:
            logger.exception(
                "Failed to send record to dead-letter queue.",
                extra={"messageId": item.message_id},
            )
            unparked.append(item)
    return unparked


def _rejected_key(item: RejectedRecord) -> str:
    if isinstance(item.error, DecodeFailedError):
        return item.error.raw_key
    return f"<invalid record{' in ' + item.message_id if item.message_id else ''}>"


# ───────────────────────────────────────────────────────────────
# Processing
# ───────────────────────────────────────────────────────────────
def _rename_with_guard(
    item: WorkItem,
    s3: S3Client,
    config: AppConfig,
    context: LambdaContext,
    now: datetime,
) -> RenameOutcome:
    """Runs one rename unless the invocation is about to time out."""
    remaining_ms = context.get_remaining_time_in_millis()
    if remaining_ms < config.timeout_guard_threshold_ms:
        logger.warning(
            "Timeout threshold reached. Leaving object for redelivery.",
            extra={"source_key": item.ref.source_key, "remaining_time_ms": remaining_ms},
        )
        return RenameOutcome(
            bucket=item.ref.bucket,
            source_key=item.ref.source_key,
            destination_bucket=config.destination_bucket_for(item.ref.bucket),
            error=InvocationTimeoutError(item.ref.source_key, remaining_ms),
        )

    observed_at = resolve_observed_at(item.ref.event_time, now)
    return rename_object(s3, item.ref, config, observed_at)


def process_batch(
    items: list[WorkItem],
    s3: S3Client,
    config: AppConfig,
    context: LambdaContext,
    now: datetime | None = None,
) -> list[RenameOutcome]:
    """
    Renames every item independently. Outcomes are returned in input order.
    """
    now = now or datetime.now(timezone.utc)
    if config.max_concurrency <= 1 or len(items) <= 1:
        return [_rename_with_guard(item, s3, config, context, now) for item in items]

    workers = min(config.max_concurrency, len(items))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(
            executor.map(
                lambda item: _rename_with_guard(item, s3, config, context, now), items
            )
        )


def _record_outcome_metrics(outcomes: list[RenameOutcome]) -> None:
    for outcome in outcomes:
        if outcome.renamed:
            metrics.add_metric(name="RenamedObjects", unit=MetricUnit.Count, value=1)
        elif outcome.skipped == SKIP_SOURCE_MISSING:
            metrics.add_metric(name="AlreadyRenamedObjects", unit=MetricUnit.Count, value=1)
        elif outcome.skipped:
            metrics.add_metric(name="SkippedObjects", unit=MetricUnit.Count, value=1)
        elif isinstance(outcome.error, InvocationTimeoutError):
            metrics.add_metric(name="TimedOutObjects", unit=MetricUnit.Count, value=1)
        elif outcome.copied:
            metrics.add_metric(name="DeleteFailures", unit=MetricUnit.Count, value=1)
        else:
            metrics.add_metric(name="CopyFailures", unit=MetricUnit.Count, value=1)


def build_partial_failure_response(
    failed_message_ids: set[str],
) -> PartialItemFailureResponse:
    """
    Given a set of SQS message IDs, return the structure that the
    Lambda partial batch response API expects.
    """
    failures = [
        cast(PartialItemFailures, {"itemIdentifier": mid}) for mid in sorted(failed_message_ids)
    ]
    response = cast(PartialItemFailureResponse, {"batchItemFailures": failures})
    return response


@logger.inject_lambda_context()
@tracer.capture_lambda_handler
@metrics.log_metrics(capture_cold_start_metric=True)
def handler(event: dict, context: LambdaContext) -> dict[str, Any]:
    """Main Lambda handler for S3 notifications, direct or via SQS."""
    metrics.add_dimension("environment", CONFIG.environment)

    batch, is_sqs = parse_event(event)
    logger.info(
        "Starting rename batch",
        extra={
            "source": "sqs" if is_sqs else "s3",
            "objects": len(batch.items),
            "rejected": len(batch.rejected),
            "source_keys": [item.ref.source_key for item in batch.items],
            "request_id": context.aws_request_id,
        },
    )

    unparked = _route_rejected(batch.rejected)
    outcomes = process_batch(batch.items, s3_client, CONFIG, context)
    _record_outcome_metrics(outcomes)

    failed = [(item, o) for item, o in zip(batch.items, outcomes) if not o.succeeded]
    for item, outcome in failed:
        logger.error(
            f"Rename did not complete for {outcome.source_key}",
            extra={**outcome.to_log_dict(), "error_code": outcome.error.error_code},
        )

    logger.info(
        "Rename batch finished",
        extra={
            "renamed": sum(1 for o in outcomes if o.renamed),
            "skipped": sum(1 for o in outcomes if o.skipped),
            "failed": len(failed),
            "unparked_rejections": len(unparked),
        },
    )

    if is_sqs:
        failed_message_ids: set[str] = set()
        failed_message_ids.update(item.message_id for item, _ in failed if item.message_id)
        failed_message_ids.update(r.message_id for r in unparked if r.message_id)
        return cast(dict[str, Any], build_partial_failure_response(failed_message_ids))

    if failed or unparked:
        raise BatchRenameError(
            failed_keys=[o.source_key for _, o in failed],
            undecodable_keys=[_rejected_key(r) for r in unparked],
        )

    return {
        "renamed": [
            {"source_key": o.source_key, "destination_key": o.destination_key}
            for o in outcomes
            if o.renamed
        ],
        "skipped": [{"source_key": o.source_key, "reason": o.skipped} for o in outcomes if o.skipped],
    }
