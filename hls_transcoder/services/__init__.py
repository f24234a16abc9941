"""
Services package.

Dispatcher, worker orchestration, encoding, publishing and manifest
generation.
"""
from hls_transcoder.services.dispatcher import DispatchLoop
from hls_transcoder.services.ffmpeg import FFmpegEncoder
from hls_transcoder.services.manifest import build_master_manifest
from hls_transcoder.services.publisher import ArtifactPublisher, content_type_for
from hls_transcoder.services.variant import VariantTranscoder
from hls_transcoder.services.worker import TranscodeWorker

__all__ = [
    "DispatchLoop",
    "FFmpegEncoder",
    "build_master_manifest",
    "ArtifactPublisher",
    "content_type_for",
    "VariantTranscoder",
    "TranscodeWorker",
]
