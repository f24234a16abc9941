"""
Job state for a single transcode worker invocation.

A TranscodeJob is owned by exactly one worker process. Each VariantResult
is only ever mutated by the pipeline that produces it.
"""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ResolutionProfile(BaseModel):
    """One rung of the rendition ladder."""

    name: str = Field(..., min_length=1, description="Rendition name, e.g. '720p'")
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    bandwidth: int = Field(..., gt=0, description="Advertised peak bandwidth in bits/s")

    model_config = {"frozen": True}

    @property
    def size(self) -> str:
        return f"{self.width}x{self.height}"


class VariantStatus(str, Enum):
    """Lifecycle of one rendition inside a job."""
    PENDING = "pending"
    ENCODING = "encoding"
    UPLOADED = "uploaded"
    FAILED = "failed"


class JobStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class VariantResult:
    """
    One rendition of a job. VariantTranscoder moves it to ENCODING (or
    FAILED); ArtifactPublisher.publish_variant makes the UPLOADED/FAILED
    transition once the output has been uploaded.
    """
    profile: ResolutionProfile
    local_output_dir: Path
    status: VariantStatus = VariantStatus.PENDING
    error: Optional[str] = None
    uploaded_keys: List[str] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in (VariantStatus.UPLOADED, VariantStatus.FAILED)


@dataclass
class TranscodeJob:
    """
    Root state of one worker invocation.

    Attributes:
        video_id: Unique id for this invocation; prefixes every output key
        bucket: Source bucket
        key: Source object key
        source_local_path: Scratch location of the downloaded source
        variants: Per-profile results, keyed by profile name
    """
    video_id: str
    bucket: str
    key: str
    source_local_path: Path
    variants: Dict[str, VariantResult] = field(default_factory=dict)
    status: JobStatus = JobStatus.PROCESSING
    manifest_key: Optional[str] = None

    @property
    def uploaded_variants(self) -> List[VariantResult]:
        return [v for v in self.variants.values() if v.status == VariantStatus.UPLOADED]

    @property
    def failed_variants(self) -> List[VariantResult]:
        return [v for v in self.variants.values() if v.status == VariantStatus.FAILED]

    @property
    def all_uploaded(self) -> bool:
        return bool(self.variants) and all(
            v.status == VariantStatus.UPLOADED for v in self.variants.values()
        )
