"""
Schemas package.
"""
from hls_transcoder.schemas.events import (
    ParsedEvent,
    QueueMessage,
    UploadEvent,
    parse_event_body,
)
from hls_transcoder.schemas.job import (
    JobStatus,
    ResolutionProfile,
    TranscodeJob,
    VariantResult,
    VariantStatus,
)

__all__ = [
    "ParsedEvent",
    "QueueMessage",
    "UploadEvent",
    "parse_event_body",
    "JobStatus",
    "ResolutionProfile",
    "TranscodeJob",
    "VariantResult",
    "VariantStatus",
]
