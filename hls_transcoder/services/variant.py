"""
Variant transcoder.

Runs the encoder for one rendition and checks that what it left on disk is
a complete segmented stream before anything is uploaded.
"""
from pathlib import Path
from typing import List, Optional

from hls_transcoder.core.config import Settings, settings as default_settings
from hls_transcoder.core.exceptions import EncoderError
from hls_transcoder.core.logging import get_logger
from hls_transcoder.schemas.job import VariantResult, VariantStatus

logger = get_logger(__name__)


def read_playlist_segments(playlist_path: Path) -> List[str]:
    """Return the segment URIs listed in a media playlist, in order."""
    segments = []
    for line in playlist_path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            segments.append(line)
    return segments


def verify_segmented_output(output_dir: Path, playlist_name: str, segment_pattern: str) -> List[str]:
    """
    Check an encoder's output directory.

    The playlist must exist and list at least one segment; segments must be
    numbered contiguously from 0 and all be present on disk.

    Returns:
        The segment file names, in playlist order

    Raises:
        ValueError: describing the first problem found
    """
    playlist_path = output_dir / playlist_name
    if not playlist_path.is_file():
        raise ValueError(f"playlist {playlist_name} was not produced")

    segments = read_playlist_segments(playlist_path)
    if not segments:
        raise ValueError(f"playlist {playlist_name} lists no segments")

    expected = [segment_pattern % i for i in range(len(segments))]
    if segments != expected:
        raise ValueError(f"segments are not contiguous from 0: {segments[:5]}...")

    missing = [name for name in segments if not (output_dir / name).is_file()]
    if missing:
        raise ValueError(f"{len(missing)} segment(s) missing on disk, first: {missing[0]}")

    return segments


class VariantTranscoder:
    """
    Produce one rendition's segmented stream.

    `encoder` is any object with an async ``encode(source, profile,
    output_dir)`` method, normally an FFmpegEncoder.
    """

    def __init__(self, encoder, settings: Optional[Settings] = None):
        self.encoder = encoder
        self.settings = settings or default_settings

    async def transcode(self, source: Path, variant: VariantResult) -> VariantResult:
        """
        Encode `source` into `variant.local_output_dir`.

        Moves the variant to ENCODING, then leaves it there on success (the
        publisher owns the terminal transition) or marks it FAILED.

        Raises:
            EncoderError: encode failed or output is incomplete
        """
        profile = variant.profile
        variant.status = VariantStatus.ENCODING
        logger.info(f"[encode {profile.name}] Encoding {source.name} -> {variant.local_output_dir}")

        try:
            await self.encoder.encode(source, profile, variant.local_output_dir)
            segments = verify_segmented_output(
                variant.local_output_dir,
                self.settings.HLS_PLAYLIST_NAME,
                self.settings.HLS_SEGMENT_PATTERN,
            )
        except EncoderError as e:
            variant.status = VariantStatus.FAILED
            variant.error = str(e)
            raise
        except ValueError as e:
            variant.status = VariantStatus.FAILED
            variant.error = f"{profile.name}: {e}"
            raise EncoderError(profile.name, f"invalid output: {e}") from e

        logger.info(f"[encode {profile.name}] Output verified: {len(segments)} segments")
        return variant
