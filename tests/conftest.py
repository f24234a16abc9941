"""
Pytest configuration and shared fixtures for HLS Transcoder tests.
"""
import asyncio
import os
import sys
import threading
from pathlib import Path
from types import SimpleNamespace
from typing import Dict, Iterable, Optional, Set, Tuple
from unittest.mock import MagicMock

import pytest

# Add project root to Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from hls_transcoder.core.config import Settings
from hls_transcoder.core.exceptions import EncoderError
from hls_transcoder.services.publisher import ArtifactPublisher


SOURCE_BUCKET = "uploads"
SOURCE_KEY = "incoming/holiday clip.mp4"
OUTPUT_BUCKET = "renditions"


class FakeObjectStore:
    """In-memory stand-in for the MinIO client (only the calls we make)."""

    def __init__(self):
        self.objects: Dict[Tuple[str, str], Tuple[bytes, str]] = {}
        self.fail_put_keys: Set[str] = set()
        self.put_calls = 0
        # uploads arrive from publisher worker threads
        self._lock = threading.Lock()

    def add(self, bucket: str, key: str, data: bytes, content_type: str = "video/mp4"):
        with self._lock:
            self.objects[(bucket, key)] = (data, content_type)

    def keys(self, bucket: str, prefix: str = ""):
        with self._lock:
            return sorted(k for b, k in self.objects if b == bucket and k.startswith(prefix))

    def fget_object(self, bucket_name, object_name, file_path):
        with self._lock:
            entry = self.objects.get((bucket_name, object_name))
        if entry is None:
            raise RuntimeError(f"NoSuchKey: {bucket_name}/{object_name}")
        Path(file_path).write_bytes(entry[0])

    def fput_object(self, bucket_name, object_name, file_path, content_type="application/octet-stream"):
        self._store(bucket_name, object_name, Path(file_path).read_bytes(), content_type)

    def put_object(self, bucket_name, object_name, data, length, content_type="application/octet-stream"):
        self._store(bucket_name, object_name, data.read(length), content_type)

    def _store(self, bucket_name, object_name, payload, content_type):
        with self._lock:
            self.put_calls += 1
            if object_name in self.fail_put_keys:
                raise RuntimeError(f"upload rejected: {object_name}")
            self.objects[(bucket_name, object_name)] = (payload, content_type)

    def list_objects(self, bucket_name, prefix="", recursive=False):
        for key in self.keys(bucket_name, prefix):
            yield SimpleNamespace(object_name=key)

    def remove_objects(self, bucket_name, delete_object_list: Iterable):
        with self._lock:
            for obj in delete_object_list:
                name = getattr(obj, "_name", None) or getattr(obj, "name", None)
                self.objects.pop((bucket_name, name), None)
        return iter([])


class FakeEncoder:
    """
    Encoder double writing a small playlist and segment files.

    Profiles in `fail_profiles` raise EncoderError; profiles in
    `hang_profiles` block until cancelled.
    """

    def __init__(
        self,
        segments: int = 3,
        fail_profiles: Optional[Set[str]] = None,
        hang_profiles: Optional[Set[str]] = None,
        playlist_name: str = "index.m3u8",
        segment_pattern: str = "segment-%04d.ts",
    ):
        self.segments = segments
        self.fail_profiles = fail_profiles or set()
        self.hang_profiles = hang_profiles or set()
        self.playlist_name = playlist_name
        self.segment_pattern = segment_pattern
        self.calls = []
        self.cancelled = []

    async def encode(self, source, profile, output_dir):
        self.calls.append((Path(source), profile.name, Path(output_dir)))
        assert Path(source).is_file()

        if profile.name in self.hang_profiles:
            (Path(output_dir) / (self.segment_pattern % 0)).write_bytes(b"partial")
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled.append(profile.name)
                raise

        await asyncio.sleep(0)
        if profile.name in self.fail_profiles:
            raise EncoderError(profile.name, "ffmpeg exited with code 1", returncode=1)

        lines = ["#EXTM3U", "#EXT-X-VERSION:3", "#EXT-X-TARGETDURATION:10", "#EXT-X-MEDIA-SEQUENCE:0"]
        for i in range(self.segments):
            name = self.segment_pattern % i
            (Path(output_dir) / name).write_bytes(f"{profile.name}-{i}".encode())
            lines += ["#EXTINF:10.000000,", name]
        lines.append("#EXT-X-ENDLIST")
        (Path(output_dir) / self.playlist_name).write_text("\n".join(lines) + "\n")
        return SimpleNamespace(profile=profile.name)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing scratch space at a per-test directory."""
    return Settings(
        TEMP_DIR=str(tmp_path / "scratch"),
        SQS_QUEUE_URL="https://sqs.us-east-1.amazonaws.com/123456789012/video-uploads",
        SQS_ERROR_BACKOFF_SECONDS=0,
        ECS_CLUSTER="transcode-cluster",
        ECS_TASK_DEFINITION="video-transcoder:7",
        ECS_SUBNETS="subnet-aaa, subnet-bbb",
        ECS_SECURITY_GROUPS="sg-123",
        OUTPUT_BUCKET=OUTPUT_BUCKET,
        UPLOAD_CONCURRENCY=4,
    )


@pytest.fixture
def object_store() -> FakeObjectStore:
    store = FakeObjectStore()
    store.add(SOURCE_BUCKET, SOURCE_KEY, b"\x00\x00\x00\x18ftypmp42 fake source video")
    return store


@pytest.fixture
def publisher(object_store, settings) -> ArtifactPublisher:
    return ArtifactPublisher(object_store, OUTPUT_BUCKET, settings)


@pytest.fixture
def encoder() -> FakeEncoder:
    return FakeEncoder()


@pytest.fixture
def make_encoder():
    """Factory for encoders with failing or hanging profiles."""
    return FakeEncoder


@pytest.fixture
def sqs_client():
    """Mock boto3 SQS client; receive returns an empty batch by default."""
    client = MagicMock()
    client.receive_message.return_value = {}
    return client


@pytest.fixture
def ecs_client():
    """Mock boto3 ECS client that accepts every launch."""
    client = MagicMock()
    client.run_task.return_value = {
        "tasks": [{"taskArn": "arn:aws:ecs:us-east-1:123456789012:task/transcode-cluster/abc123"}],
        "failures": [],
    }
    return client
