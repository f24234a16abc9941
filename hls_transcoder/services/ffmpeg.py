"""
FFmpeg encoder capability.

Drives one (source file -> one rendition) conversion as an asyncio
subprocess. Completion and failure are signalled by the process exit, and
progress is parsed from FFmpeg's stderr and logged as periodic heartbeats.
"""
import asyncio
import re
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from hls_transcoder.core.config import Settings, settings as default_settings
from hls_transcoder.core.exceptions import EncoderError
from hls_transcoder.core.logging import get_logger
from hls_transcoder.schemas.job import ResolutionProfile

logger = get_logger(__name__)

STDERR_TAIL_LINES = 40

_FRAME_RE = re.compile(r"frame=\s*(\d+)")
_TIME_RE = re.compile(r"time=(\d{2}):(\d{2}):(\d{2}\.\d+)")
_SPEED_RE = re.compile(r"speed=\s*([\d.]+)x")
_SIZE_RE = re.compile(r"size=\s*(\d+\w+)")


@dataclass
class EncodeProgress:
    frame: int = 0
    time_seconds: float = 0.0
    speed: str = "0x"
    size: str = "N/A"

    def update(self, line: str) -> bool:
        """Parse one FFmpeg stats line. Returns True if it carried progress."""
        updated = False

        frame_match = _FRAME_RE.search(line)
        if frame_match:
            self.frame = int(frame_match.group(1))
            updated = True

        time_match = _TIME_RE.search(line)
        if time_match:
            hours, minutes, seconds = time_match.groups()
            self.time_seconds = int(hours) * 3600 + int(minutes) * 60 + float(seconds)
            updated = True

        speed_match = _SPEED_RE.search(line)
        if speed_match:
            self.speed = f"{speed_match.group(1)}x"

        size_match = _SIZE_RE.search(line)
        if size_match:
            self.size = size_match.group(1)

        return updated


@dataclass
class EncodeResult:
    profile: str
    output_dir: Path
    playlist_path: Path
    elapsed_seconds: float
    progress: EncodeProgress = field(default_factory=EncodeProgress)


class FFmpegEncoder:
    """
    Segmenting encoder backed by the ffmpeg binary.

    Every rendition uses the same codec pair, segment duration and a
    cumulative (non sliding window) VOD playlist.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings

    def build_command(self, source: Path, profile: ResolutionProfile, output_dir: Path) -> List[str]:
        s = self.settings
        return [
            s.FFMPEG_PATH,
            "-hide_banner",
            "-nostdin",
            "-y",
            "-i", str(source),
            "-c:v", s.VIDEO_CODEC,
            "-c:a", s.AUDIO_CODEC,
            "-vf", f"scale={profile.width}:{profile.height}",
            "-start_number", "0",
            "-hls_time", str(s.HLS_SEGMENT_SECONDS),
            "-hls_list_size", "0",
            "-hls_playlist_type", "vod",
            "-hls_segment_filename", str(output_dir / s.HLS_SEGMENT_PATTERN),
            "-f", "hls",
            str(output_dir / s.HLS_PLAYLIST_NAME),
        ]

    async def encode(self, source: Path, profile: ResolutionProfile, output_dir: Path) -> EncodeResult:
        """
        Encode `source` into a segmented stream for `profile` in `output_dir`.

        Raises:
            EncoderError: ffmpeg could not be started or exited non-zero
        """
        task_name = f"encode {profile.name}"
        cmd = self.build_command(source, profile, output_dir)
        logger.debug(f"[{task_name}] Command: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EncoderError(profile.name, f"could not start encoder: {e}") from e

        progress = EncodeProgress()
        tail: deque = deque(maxlen=STDERR_TAIL_LINES)
        start_time = time.monotonic()
        heartbeat = asyncio.create_task(self._heartbeat(task_name, progress, start_time))

        logger.info(f"[{task_name}] Started ffmpeg (pid={process.pid}, size={profile.size})")
        try:
            await self._drain_stderr(process.stderr, progress, tail)
            returncode = await process.wait()
        except asyncio.CancelledError:
            # A sibling rendition failed; don't leave ffmpeg writing into scratch.
            if process.returncode is None:
                process.kill()
                await process.wait()
            logger.warning(f"[{task_name}] Cancelled, ffmpeg terminated")
            raise
        finally:
            heartbeat.cancel()

        elapsed = time.monotonic() - start_time
        if returncode != 0:
            stderr_tail = "\n".join(tail)
            logger.error(f"[{task_name}] ffmpeg failed with code {returncode}:\n{stderr_tail[-2000:]}")
            raise EncoderError(
                profile.name,
                f"ffmpeg exited with code {returncode}",
                returncode=returncode,
                stderr_tail=stderr_tail,
            )

        logger.info(
            f"[{task_name}] Completed in {elapsed:.1f}s | "
            f"final_speed={progress.speed} | output_size={progress.size}"
        )
        return EncodeResult(
            profile=profile.name,
            output_dir=output_dir,
            playlist_path=output_dir / self.settings.HLS_PLAYLIST_NAME,
            elapsed_seconds=elapsed,
            progress=progress,
        )

    @staticmethod
    async def _drain_stderr(stream: asyncio.StreamReader, progress: EncodeProgress, tail: deque):
        # Stats lines are terminated by '\r', everything else by '\n'.
        buffer = ""
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            buffer += chunk.decode("utf-8", errors="ignore")
            *lines, buffer = re.split(r"[\r\n]", buffer)
            for line in lines:
                if line.strip():
                    tail.append(line)
                    progress.update(line)
        if buffer.strip():
            tail.append(buffer)
            progress.update(buffer)

    async def _heartbeat(self, task_name: str, progress: EncodeProgress, start_time: float):
        interval = self.settings.ENCODER_HEARTBEAT_SECONDS
        count = 0
        while True:
            await asyncio.sleep(interval)
            count += 1
            elapsed = time.monotonic() - start_time
            logger.info(
                f"[{task_name}] Heartbeat #{count} | time={progress.time_seconds:.1f}s | "
                f"speed={progress.speed} | frame={progress.frame} | size={progress.size} | "
                f"elapsed={int(elapsed // 60)}m{int(elapsed % 60)}s"
            )
