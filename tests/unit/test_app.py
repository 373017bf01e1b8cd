# tests/unit/test_app.py

"""
Handler-level tests: whole invocations against moto-backed S3 and SQS.
"""

import dataclasses
import json
import uuid
from datetime import datetime, timezone
from unittest.mock import MagicMock

import boto3
import pytest

from conftest import SOURCE_BUCKET, list_keys, s3_record
from log_renamer import app
from log_renamer.clients import DeadLetterQueue
from log_renamer.core import RenameOutcome
from log_renamer.exceptions import BatchRenameError, InvocationTimeoutError, S3ThrottlingError
from log_renamer.naming import compute_destination_key

EVENT_TIME = datetime(2024, 3, 5, 10, 20, 30, 123000, tzinfo=timezone.utc)


def _dest(key: str) -> str:
    return compute_destination_key(key, EVENT_TIME)


def _s3_event(*records: dict) -> dict:
    return {"Records": list(records)}


def _sqs_message(*records: dict, body: str | None = None) -> dict:
    return {
        "messageId": str(uuid.uuid4()),
        "receiptHandle": "ignore",
        "body": body if body is not None else json.dumps({"Records": list(records)}),
        "attributes": {},
        "messageAttributes": {},
        "md5OfBody": "dummy",
        "eventSource": "aws:sqs",
        "eventSourceARN": "arn:aws:sqs:eu-west-1:000000000000:rename-queue",
        "awsRegion": "eu-west-1",
    }


@pytest.fixture(autouse=True)
def wire_handler(monkeypatch, s3_client):
    """Points the handler's module-level clients at the moto backend."""
    monkeypatch.setattr(app, "s3_client", s3_client)
    monkeypatch.setattr(app, "dead_letter_queue", None)
    monkeypatch.setattr(
        app, "CONFIG", dataclasses.replace(app.CONFIG, source_prefix=None, target_bucket=None)
    )


@pytest.fixture
def fail_copy_for(monkeypatch, s3_client):
    """Makes copies of the given source keys fail with a retryable error."""

    def _fail(*keys: str) -> None:
        real_copy = s3_client.copy_object

        def copy(source_bucket, source_key, dest_bucket, dest_key):
            if source_key in keys:
                raise S3ThrottlingError("CopyObject")
            return real_copy(source_bucket, source_key, dest_bucket, dest_key)

        monkeypatch.setattr(s3_client, "copy_object", copy)

    return _fail


# --- Direct S3 invocations ---


def test_handler_renames_plus_encoded_key(s3, put_batch, lambda_context):
    body = put_batch("vpcflowlogs/a b.gz")

    result = app.handler(
        _s3_event(s3_record("vpcflowlogs/a+b.gz", size=len(body))), lambda_context
    )

    assert result["renamed"] == [
        {"source_key": "vpcflowlogs/a b.gz", "destination_key": _dest("vpcflowlogs/a b.gz")}
    ]
    assert list_keys(s3) == [_dest("vpcflowlogs/a b.gz")]
    assert s3.get_object(Bucket=SOURCE_BUCKET, Key=_dest("vpcflowlogs/a b.gz"))["Body"].read() == body


def test_handler_already_renamed_is_noop(s3, lambda_context):
    result = app.handler(_s3_event(s3_record("vpcflowlogs/gone.gz")), lambda_context)

    assert result == {
        "renamed": [],
        "skipped": [{"source_key": "vpcflowlogs/gone.gz", "reason": "source-missing"}],
    }
    assert list_keys(s3) == []


def test_handler_ignores_its_own_output(s3, put_batch, lambda_context):
    key = "renamed-logs/renamed-20240305T102030123Z-0123456789abcdef.gz"
    put_batch(key)

    result = app.handler(_s3_event(s3_record(key)), lambda_context)

    assert result["skipped"] == [{"source_key": key, "reason": "already-canonical"}]
    assert list_keys(s3) == [key]


def test_handler_mixed_batch_fails_then_retry_succeeds(
    s3, put_batch, lambda_context, fail_copy_for, monkeypatch, s3_client
):
    good = put_batch("vpcflowlogs/good.gz")
    put_batch("vpcflowlogs/bad.gz")
    event = _s3_event(s3_record("vpcflowlogs/good.gz"), s3_record("vpcflowlogs/bad.gz"))
    real_copy = s3_client.copy_object
    fail_copy_for("vpcflowlogs/bad.gz")

    with pytest.raises(BatchRenameError) as exc_info:
        app.handler(event, lambda_context)

    assert exc_info.value.failed_keys == ["vpcflowlogs/bad.gz"]
    assert list_keys(s3) == sorted(["vpcflowlogs/bad.gz", _dest("vpcflowlogs/good.gz")])

    # Redelivery of the whole batch once the store recovers.
    monkeypatch.setattr(s3_client, "copy_object", real_copy)
    result = app.handler(event, lambda_context)

    assert result["renamed"] == [
        {"source_key": "vpcflowlogs/bad.gz", "destination_key": _dest("vpcflowlogs/bad.gz")}
    ]
    assert result["skipped"] == [{"source_key": "vpcflowlogs/good.gz", "reason": "source-missing"}]
    assert list_keys(s3) == sorted([_dest("vpcflowlogs/good.gz"), _dest("vpcflowlogs/bad.gz")])
    assert s3.get_object(Bucket=SOURCE_BUCKET, Key=_dest("vpcflowlogs/good.gz"))["Body"].read() == good


def test_handler_undecodable_key_without_dlq_fails_batch(s3, put_batch, lambda_context):
    put_batch("vpcflowlogs/ok.gz")

    with pytest.raises(BatchRenameError) as exc_info:
        app.handler(
            _s3_event(s3_record("vpcflowlogs/ok.gz"), s3_record("vpcflowlogs/%FF.gz")),
            lambda_context,
        )

    assert exc_info.value.failed_keys == []
    assert exc_info.value.undecodable_keys == ["vpcflowlogs/%FF.gz"]
    # The decodable object was still renamed.
    assert list_keys(s3) == [_dest("vpcflowlogs/ok.gz")]


def test_handler_timeout_guard_leaves_objects_for_redelivery(s3, put_batch, lambda_context):
    put_batch("vpcflowlogs/late.gz")
    lambda_context.get_remaining_time_in_millis = lambda: 1000

    with pytest.raises(BatchRenameError) as exc_info:
        app.handler(_s3_event(s3_record("vpcflowlogs/late.gz")), lambda_context)

    assert exc_info.value.failed_keys == ["vpcflowlogs/late.gz"]
    assert list_keys(s3) == ["vpcflowlogs/late.gz"]


def test_handler_bounded_concurrency(s3, put_batch, lambda_context, monkeypatch):
    keys = [f"vpcflowlogs/batch-{i}.gz" for i in range(6)]
    for key in keys:
        put_batch(key)
    monkeypatch.setattr(app, "CONFIG", dataclasses.replace(app.CONFIG, max_concurrency=4))

    result = app.handler(_s3_event(*(s3_record(k) for k in keys)), lambda_context)

    # Outcomes keep the order of the notification.
    assert [r["source_key"] for r in result["renamed"]] == keys
    assert list_keys(s3) == sorted(_dest(k) for k in keys)


# --- SQS-wrapped invocations ---


def test_sqs_partial_batch_reports_only_failed_messages(
    s3, put_batch, lambda_context, fail_copy_for
):
    put_batch("vpcflowlogs/one.gz")
    put_batch("vpcflowlogs/two.gz")
    ok_message = _sqs_message(s3_record("vpcflowlogs/one.gz"))
    failing_message = _sqs_message(s3_record("vpcflowlogs/two.gz"))
    fail_copy_for("vpcflowlogs/two.gz")

    response = app.handler({"Records": [ok_message, failing_message]}, lambda_context)

    assert response == {"batchItemFailures": [{"itemIdentifier": failing_message["messageId"]}]}
    assert list_keys(s3) == sorted(["vpcflowlogs/two.gz", _dest("vpcflowlogs/one.gz")])


def test_sqs_test_event_is_acknowledged(s3, lambda_context):
    message = _sqs_message(
        body=json.dumps({"Service": "Amazon S3", "Event": "s3:TestEvent", "Bucket": SOURCE_BUCKET})
    )

    assert app.handler({"Records": [message]}, lambda_context) == {"batchItemFailures": []}


def test_sqs_unparseable_body_fails_message(s3, lambda_context):
    message = _sqs_message(body="not json")

    response = app.handler({"Records": [message]}, lambda_context)

    assert response == {"batchItemFailures": [{"itemIdentifier": message["messageId"]}]}


def test_sqs_undecodable_key_goes_to_dead_letter_queue(
    s3, put_batch, lambda_context, monkeypatch
):
    sqs = boto3.client("sqs", region_name="eu-west-1")
    queue_url = sqs.create_queue(QueueName="rename-dlq")["QueueUrl"]
    monkeypatch.setattr(app, "dead_letter_queue", DeadLetterQueue(sqs, queue_url))
    put_batch("vpcflowlogs/fine.gz")
    message = _sqs_message(s3_record("vpcflowlogs/fine.gz"), s3_record("bad%0Akey.gz"))

    response = app.handler({"Records": [message]}, lambda_context)

    assert response == {"batchItemFailures": []}
    assert list_keys(s3) == [_dest("vpcflowlogs/fine.gz")]
    parked = sqs.receive_message(QueueUrl=queue_url, MaxNumberOfMessages=10)["Messages"]
    assert len(parked) == 1
    parked_body = json.loads(parked[0]["Body"])
    assert parked_body["record"]["s3"]["object"]["key"] == "bad%0Akey.gz"
    assert parked_body["error"]["error_code"] == "DECODE_FAILED"


def test_sqs_dead_letter_queue_failure_fails_message(s3, put_batch, lambda_context, monkeypatch):
    sqs = MagicMock()
    sqs.send_message.side_effect = RuntimeError("queue unavailable")
    monkeypatch.setattr(app, "dead_letter_queue", DeadLetterQueue(sqs, "https://sqs/dlq"))
    put_batch("vpcflowlogs/fine.gz")
    ok_message = _sqs_message(s3_record("vpcflowlogs/fine.gz"))
    bad_message = _sqs_message(s3_record("bad%0Akey.gz"))

    response = app.handler({"Records": [ok_message, bad_message]}, lambda_context)

    # The record could not be parked, so its message is redelivered.
    assert response == {"batchItemFailures": [{"itemIdentifier": bad_message["messageId"]}]}
    sqs.send_message.assert_called_once()
    assert list_keys(s3) == [_dest("vpcflowlogs/fine.gz")]


# --- Metrics ---


def test_timed_out_objects_have_their_own_metric(monkeypatch):
    add_metric = MagicMock()
    monkeypatch.setattr(app.metrics, "add_metric", add_metric)
    outcome = RenameOutcome(
        bucket=SOURCE_BUCKET,
        source_key="vpcflowlogs/late.gz",
        destination_bucket=SOURCE_BUCKET,
        error=InvocationTimeoutError("vpcflowlogs/late.gz", 1000),
    )

    app._record_outcome_metrics([outcome])

    add_metric.assert_called_once()
    assert add_metric.call_args.kwargs["name"] == "TimedOutObjects"


# --- Parsing ---


def test_parse_event_rejects_invalid_record_but_keeps_siblings():
    batch, is_sqs = app.parse_event(
        _s3_event(s3_record("vpcflowlogs/a.gz"), {"s3": {"bucket": {"name": ""}}})
    )

    assert is_sqs is False
    assert [item.ref.source_key for item in batch.items] == ["vpcflowlogs/a.gz"]
    assert len(batch.rejected) == 1
    assert batch.rejected[0].error.error_code == "INVALID_S3_EVENT"


def test_build_partial_failure_response():
    assert app.build_partial_failure_response({"b", "a"}) == {
        "batchItemFailures": [{"itemIdentifier": "a"}, {"itemIdentifier": "b"}]
    }
