"""
Application configuration management using Pydantic Settings.
Loads environment variables (and an optional .env file) and provides
centralized configuration for both the dispatcher and the worker.
"""
import os
import tempfile
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hls_transcoder.schemas.job import ResolutionProfile


DEFAULT_RESOLUTIONS = [
    ResolutionProfile(name="360p", width=640, height=360, bandwidth=800_000),
    ResolutionProfile(name="480p", width=854, height=480, bandwidth=1_400_000),
    ResolutionProfile(name="720p", width=1280, height=720, bandwidth=2_800_000),
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    APP_NAME: str = "HLS Transcoder"
    APP_VERSION: str = "1.0.0"

    # ------------------------------------------------------------
    # AWS Core
    # ------------------------------------------------------------
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    AWS_SESSION_TOKEN: Optional[str] = None

    # ------------------------------------------------------------
    # Messaging (SQS)
    # ------------------------------------------------------------
    SQS_QUEUE_URL: str = ""
    SQS_MAX_MESSAGES: int = Field(1, ge=1, le=10)
    SQS_WAIT_TIME_SECONDS: int = Field(20, ge=0, le=20)
    SQS_ERROR_BACKOFF_SECONDS: float = Field(5.0, ge=0)

    # ------------------------------------------------------------
    # Task scheduler (ECS)
    # ------------------------------------------------------------
    ECS_CLUSTER: str = ""
    ECS_TASK_DEFINITION: str = ""
    ECS_CONTAINER_NAME: str = "video-transcoder"
    ECS_LAUNCH_TYPE: str = "FARGATE"
    ECS_SUBNETS: str = ""
    ECS_SECURITY_GROUPS: str = ""
    ECS_ASSIGN_PUBLIC_IP: bool = True

    # ------------------------------------------------------------
    # Object store (MinIO client, S3 compatible)
    # ------------------------------------------------------------
    MINIO_HOST: str = "s3.amazonaws.com"
    MINIO_PORT: int = 443
    MINIO_ACCESS_KEY: Optional[str] = None
    MINIO_SECRET_KEY: Optional[str] = None
    MINIO_SECURE: bool = True
    MINIO_REGION: Optional[str] = None

    # ------------------------------------------------------------
    # Worker input (set per task by the scheduler)
    # ------------------------------------------------------------
    BUCKET_NAME: str = ""
    KEY: str = ""

    OUTPUT_BUCKET: str = ""

    # Temp Storage
    TEMP_DIR: str = Field(default_factory=lambda: os.path.join(tempfile.gettempdir(), "hls-transcoder"))

    # ------------------------------------------------------------
    # Encoder (FFmpeg)
    # ------------------------------------------------------------
    FFMPEG_PATH: str = "ffmpeg"
    VIDEO_CODEC: str = "libx264"
    AUDIO_CODEC: str = "aac"
    HLS_SEGMENT_SECONDS: int = Field(10, gt=0)
    HLS_PLAYLIST_NAME: str = "index.m3u8"
    HLS_SEGMENT_PATTERN: str = "segment-%04d.ts"
    MASTER_MANIFEST_NAME: str = "master.m3u8"
    ENCODER_HEARTBEAT_SECONDS: float = Field(30.0, gt=0)

    UPLOAD_CONCURRENCY: int = Field(8, ge=1)
    # Remove a failed job's already-uploaded objects
    ROLLBACK_ON_FAILURE: bool = True

    RESOLUTIONS: List[ResolutionProfile] = Field(default_factory=lambda: list(DEFAULT_RESOLUTIONS))

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Metrics (0 disables the exporter)
    METRICS_PORT: int = 0

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("RESOLUTIONS")
    @classmethod
    def validate_resolutions(cls, v):
        """Ladder must be non-empty with unique names."""
        if not v:
            raise ValueError("RESOLUTIONS must contain at least one profile")
        names = [p.name for p in v]
        if len(names) != len(set(names)):
            raise ValueError(f"RESOLUTIONS contains duplicate names: {names}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid LOG_LEVEL: {v}")
        return v

    @property
    def ecs_subnets(self) -> List[str]:
        return [s.strip() for s in self.ECS_SUBNETS.split(",") if s.strip()]

    @property
    def ecs_security_groups(self) -> List[str]:
        return [s.strip() for s in self.ECS_SECURITY_GROUPS.split(",") if s.strip()]


# Global settings instance
settings = Settings()
