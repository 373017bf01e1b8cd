# In src/log_renamer/schemas.py

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# --- Runtime Validation (using Pydantic) ---


class S3BucketModel(BaseModel):
    name: str = Field(..., min_length=1)


class S3ObjectModel(BaseModel):
    # The key stays exactly as delivered (still plus/percent encoded).
    # Decoding happens in naming.decode_source_key so that malformed keys
    # surface as DecodeFailedError rather than a schema failure.
    key: str = Field(..., min_length=1)
    size: int | None = None


class S3DataModel(BaseModel):
    bucket: S3BucketModel
    object: S3ObjectModel


class S3EventNotificationRecord(BaseModel):
    """
    Pydantic model for runtime parsing and validation of an S3 event record.
    """

    model_config = ConfigDict(populate_by_name=True)

    event_time: datetime | None = Field(None, alias="eventTime")
    s3: S3DataModel


class S3EventNotification(BaseModel):
    """An S3 notification document, as found in an SQS message body."""

    # Records are validated one by one later so one bad record cannot
    # reject its siblings.
    records: list[dict[str, Any]] = Field(default_factory=list, alias="Records")
    # Present only on the s3:TestEvent sent when a notification is configured.
    event: str | None = Field(None, alias="Event")

    @property
    def is_test_event(self) -> bool:
        return self.event == "s3:TestEvent"


class ObjectRef(BaseModel):
    """A decoded reference to one delivered log batch."""

    model_config = ConfigDict(frozen=True)

    bucket: str
    source_key: str
    event_time: datetime | None = None
    size: int | None = None
