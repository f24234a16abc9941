"""
Exception hierarchy for the dispatcher and the transcode worker.
"""
from typing import List, Optional, Sequence


class TranscoderError(Exception):
    """Base class for all errors raised by this package."""


class MalformedEventError(TranscoderError):
    """Queue message body cannot be interpreted; redelivery would not help."""


class LaunchError(TranscoderError):
    """The task scheduler did not start a worker for an upload event."""

    def __init__(self, message: str, failures: Optional[list] = None):
        super().__init__(message)
        self.failures = failures or []


class SourceDownloadError(TranscoderError):
    """The source object could not be fetched from the object store."""


class EncoderError(TranscoderError):
    """The encoder failed or produced unusable output for one profile."""

    def __init__(self, profile: str, message: str, returncode: Optional[int] = None, stderr_tail: str = ""):
        super().__init__(f"{profile}: {message}")
        self.profile = profile
        self.returncode = returncode
        self.stderr_tail = stderr_tail


class PublishError(TranscoderError):
    """One or more artifacts failed to upload."""

    def __init__(self, prefix: str, failed_keys: Sequence[str], message: str = ""):
        super().__init__(
            message or f"{len(failed_keys)} upload(s) failed under '{prefix}': {', '.join(failed_keys)}"
        )
        self.prefix = prefix
        self.failed_keys = list(failed_keys)


class JobFailedError(TranscoderError):
    """Aggregate failure of a transcode job, raised after cleanup."""

    def __init__(self, video_id: str, errors: List[BaseException]):
        summary = "; ".join(str(e) for e in errors) or "unknown error"
        super().__init__(f"Job {video_id} failed: {summary}")
        self.video_id = video_id
        self.errors = list(errors)
