# src/log_renamer/naming.py

"""
Naming policy for renamed log batches.

Firehose writes GZIP batches under its own generated keys. Every batch is
relocated to a canonical key of the form::

    {prefix}renamed-{timestamp}[-{token}]{suffix}

where ``timestamp`` is the observation time as a compact ISO-8601 string
(colons, dots and dashes stripped) and ``token`` is derived from the source
key. Everything here is a pure function of its arguments.
"""

import hashlib
import re
import urllib.parse
from datetime import datetime, timezone

from .exceptions import DecodeFailedError

DEFAULT_PREFIX = "renamed-logs/"
DEFAULT_SUFFIX = ".gz"
SOURCE_HASH_TOKEN_LENGTH = 16

_ILLEGAL_TIMESTAMP_CHARS = re.compile(r"[:.\-]")
_INVALID_CONTROL_CHARS: set[int] = set(range(0x00, 0x20)) | {0x7F}  # includes DEL
_MAX_KEY_BYTES = 1024


def decode_source_key(raw_key: str) -> str:
    """
    Undo the escaping S3 applies to keys in event notifications.

    ``+`` stands for a space and everything else is percent-encoded, so
    ``a+b.gz`` becomes ``a b.gz`` and ``a%2Bb.gz`` becomes ``a+b.gz``.

    Raises:
        DecodeFailedError: the key is empty, is not valid UTF-8 once decoded,
            contains control characters or exceeds the S3 key length limit.
    """
    if not isinstance(raw_key, str) or not raw_key:
        raise DecodeFailedError(str(raw_key), "key is empty")

    try:
        key = urllib.parse.unquote_plus(raw_key, encoding="utf-8", errors="strict")
    except UnicodeDecodeError as e:
        raise DecodeFailedError(raw_key, f"not valid UTF-8 after decoding ({e.reason})") from e

    if not key:
        raise DecodeFailedError(raw_key, "key is empty after decoding")
    if any(ord(c) in _INVALID_CONTROL_CHARS for c in key):
        raise DecodeFailedError(raw_key, "key contains control characters")
    if len(key.encode("utf-8")) > _MAX_KEY_BYTES:
        raise DecodeFailedError(raw_key, f"key exceeds {_MAX_KEY_BYTES} bytes")
    return key


def format_timestamp(observed_at: datetime) -> str:
    """
    ``2024-03-05T10:20:30.123Z`` -> ``20240305T102030123Z``.

    Naive datetimes are treated as UTC.
    """
    if observed_at.tzinfo is None:
        observed_at = observed_at.replace(tzinfo=timezone.utc)
    utc = observed_at.astimezone(timezone.utc)
    iso = f"{utc.strftime('%Y-%m-%dT%H:%M:%S')}.{utc.microsecond // 1000:03d}Z"
    return _ILLEGAL_TIMESTAMP_CHARS.sub("", iso)


def source_token(source_key: str) -> str:
    """Short, stable digest of a source key."""
    digest = hashlib.sha256(source_key.encode("utf-8")).hexdigest()
    return digest[:SOURCE_HASH_TOKEN_LENGTH]


def compute_destination_key(
    source_key: str,
    observed_at: datetime,
    *,
    prefix: str = DEFAULT_PREFIX,
    suffix: str = DEFAULT_SUFFIX,
    strategy: str = "source-hash",
) -> str:
    """
    Map a source key and observation time to its canonical destination key.

    With the ``timestamp`` strategy two objects observed in the same
    millisecond map to the same key. ``source-hash`` appends a digest of the
    source key so distinct sources never share a destination.
    """
    if not source_key:
        raise ValueError("source_key must not be empty")

    name = f"renamed-{format_timestamp(observed_at)}"
    if strategy == "source-hash":
        name = f"{name}-{source_token(source_key)}"
    elif strategy != "timestamp":
        raise ValueError(f"Unknown naming strategy: {strategy!r}")
    return f"{prefix}{name}{suffix}"


def resolve_observed_at(event_time: datetime | None, now: datetime) -> datetime:
    """
    Prefer the notification's event time, which is identical on every
    redelivery of the same event, so retries land on the same destination.
    """
    return event_time if event_time is not None else now


def is_canonical_key(key: str, prefix: str) -> bool:
    """True for keys the renamer itself produced."""
    return key.startswith(prefix)


def matches_source_prefix(key: str, source_prefix: str | None) -> bool:
    if not source_prefix:
        return True
    return key.startswith(source_prefix)
