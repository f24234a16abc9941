"""
Pydantic schemas for upload notifications delivered through the queue.

The queue carries S3 event notifications:

    {"Records": [{"eventName": "ObjectCreated:Put",
                  "s3": {"bucket": {"name": "..."}, "object": {"key": "..."}}}]}

or, when the notification is first configured, a control envelope:

    {"Service": "Amazon S3", "Event": "S3:TestEvent", ...}
"""
import json
from dataclasses import dataclass, field
from typing import Any, List, Optional
from urllib.parse import unquote_plus

from pydantic import BaseModel, ConfigDict, ValidationError

from hls_transcoder.core.exceptions import MalformedEventError

TEST_EVENT = "S3:TestEvent"
OBJECT_CREATED_PREFIX = "ObjectCreated:"


class S3Bucket(BaseModel):
    model_config = ConfigDict(extra="ignore")
    name: str


class S3Object(BaseModel):
    model_config = ConfigDict(extra="ignore")
    key: str
    size: Optional[int] = None


class S3Entity(BaseModel):
    model_config = ConfigDict(extra="ignore")
    bucket: S3Bucket
    object: S3Object


class S3EventRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")
    eventName: Optional[str] = None
    s3: S3Entity

    @property
    def is_object_created(self) -> bool:
        # Records without an eventName are treated as uploads.
        return self.eventName is None or self.eventName.startswith(OBJECT_CREATED_PREFIX)


class S3EventNotification(BaseModel):
    model_config = ConfigDict(extra="ignore")
    Records: List[S3EventRecord]


@dataclass(frozen=True)
class UploadEvent:
    """One newly stored source object."""
    bucket: str
    key: str


@dataclass(frozen=True)
class QueueMessage:
    """
    A message received from the queue.

    The receipt handle is the only thing needed to acknowledge it.
    """
    id: str
    body: Optional[str]
    receipt_handle: str

    @classmethod
    def from_sqs(cls, raw: dict) -> "QueueMessage":
        return cls(
            id=raw.get("MessageId", ""),
            body=raw.get("Body"),
            receipt_handle=raw["ReceiptHandle"],
        )


@dataclass
class ParsedEvent:
    """Result of interpreting a message body."""
    is_control: bool = False
    control_event: Optional[str] = None
    uploads: List[UploadEvent] = field(default_factory=list)
    skipped_records: int = 0


def _is_control_envelope(payload: Any) -> bool:
    return isinstance(payload, dict) and "Service" in payload and "Event" in payload


def parse_event_body(body: Optional[str]) -> ParsedEvent:
    """
    Interpret a queue message body.

    Args:
        body: Raw message body

    Returns:
        ParsedEvent with either the control flag set or the list of
        actionable uploads (object keys URL-decoded).

    Raises:
        MalformedEventError: body is empty, not JSON, or not an S3 event
    """
    if not body:
        raise MalformedEventError("Message has no body")

    try:
        payload = json.loads(body)
    except json.JSONDecodeError as e:
        raise MalformedEventError(f"Message body is not valid JSON: {e}") from e

    if _is_control_envelope(payload):
        # Only the test event is a known control message; anything else
        # with this shape is equally non-actionable.
        return ParsedEvent(is_control=True, control_event=str(payload.get("Event")))

    try:
        notification = S3EventNotification.model_validate(payload)
    except ValidationError as e:
        raise MalformedEventError(f"Message body is not an S3 event notification: {e}") from e

    parsed = ParsedEvent()
    for record in notification.Records:
        if not record.is_object_created:
            parsed.skipped_records += 1
            continue
        parsed.uploads.append(
            UploadEvent(
                bucket=record.s3.bucket.name,
                key=unquote_plus(record.s3.object.key),
            )
        )
    return parsed
