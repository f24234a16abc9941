"""
Master manifest builder.

Pure function: no I/O. Given the uploaded renditions of a job, emit the
top-level HLS playlist that players use to pick a rendition.
"""
from typing import Iterable, List

from hls_transcoder.schemas.job import VariantResult, VariantStatus

DEFAULT_PLAYLIST_NAME = "index.m3u8"


def build_master_manifest(
    variants: Iterable[VariantResult],
    playlist_name: str = DEFAULT_PLAYLIST_NAME,
) -> str:
    """
    Build the master playlist for a set of renditions.

    Only variants in the UPLOADED state are listed. Entries are ordered by
    ascending bandwidth (height, then name, break ties) and each points at
    its rendition's index file relative to the master manifest.

    Args:
        variants: Variant results of one job
        playlist_name: File name of each rendition's index playlist

    Returns:
        Master playlist text

    Raises:
        ValueError: no variant was uploaded
    """
    uploaded: List[VariantResult] = [v for v in variants if v.status == VariantStatus.UPLOADED]
    if not uploaded:
        raise ValueError("Cannot build a master manifest without uploaded variants")

    uploaded.sort(key=lambda v: (v.profile.bandwidth, v.profile.height, v.profile.name))

    lines = ["#EXTM3U", "#EXT-X-VERSION:3"]
    for variant in uploaded:
        profile = variant.profile
        lines.append(f"#EXT-X-STREAM-INF:BANDWIDTH={profile.bandwidth},RESOLUTION={profile.size}")
        lines.append(f"{profile.name}/{playlist_name}")

    return "\n".join(lines) + "\n"
