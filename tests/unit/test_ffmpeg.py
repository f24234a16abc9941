"""
Unit tests for the FFmpeg encoder capability.
The end-to-end encode test only runs where an ffmpeg binary is available.
"""
import asyncio
import os
import shutil
import subprocess

import pytest

from hls_transcoder.core.config import DEFAULT_RESOLUTIONS
from hls_transcoder.core.exceptions import EncoderError
from hls_transcoder.services.ffmpeg import EncodeProgress, FFmpegEncoder
from hls_transcoder.services.variant import verify_segmented_output

PROFILE_360P = DEFAULT_RESOLUTIONS[0]


@pytest.mark.unit
class TestBuildCommand:
    def test_segmented_vod_output(self, settings, tmp_path):
        cmd = FFmpegEncoder(settings).build_command(tmp_path / "source.mp4", PROFILE_360P, tmp_path / "360p")

        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-i") + 1] == str(tmp_path / "source.mp4")
        assert cmd[cmd.index("-c:v") + 1] == "libx264"
        assert cmd[cmd.index("-c:a") + 1] == "aac"
        assert cmd[cmd.index("-vf") + 1] == "scale=640:360"
        assert cmd[cmd.index("-hls_time") + 1] == "10"
        assert cmd[cmd.index("-hls_list_size") + 1] == "0"
        assert cmd[cmd.index("-start_number") + 1] == "0"
        assert cmd[cmd.index("-hls_segment_filename") + 1] == str(tmp_path / "360p" / "segment-%04d.ts")
        assert cmd[-1] == str(tmp_path / "360p" / "index.m3u8")

    def test_segment_duration_from_settings(self, settings, tmp_path):
        settings = settings.model_copy(update={"HLS_SEGMENT_SECONDS": 6})

        cmd = FFmpegEncoder(settings).build_command(tmp_path / "in.mp4", PROFILE_360P, tmp_path)

        assert cmd[cmd.index("-hls_time") + 1] == "6"


@pytest.mark.unit
class TestEncodeProgress:
    def test_parses_stats_line(self):
        progress = EncodeProgress()

        updated = progress.update(
            "frame=  240 fps= 48 q=28.0 size=    1024kB time=00:01:02.50 bitrate= 134.2kbits/s speed=2.5x"
        )

        assert updated
        assert progress.frame == 240
        assert progress.time_seconds == pytest.approx(62.5)
        assert progress.speed == "2.5x"
        assert progress.size == "1024kB"

    def test_ignores_other_lines(self):
        progress = EncodeProgress()

        assert not progress.update("Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'source.mp4':")
        assert progress.frame == 0


@pytest.mark.unit
class TestEncodeFailures:
    def test_missing_binary(self, settings, tmp_path):
        settings = settings.model_copy(update={"FFMPEG_PATH": str(tmp_path / "no-such-ffmpeg")})

        with pytest.raises(EncoderError, match="could not start"):
            asyncio.run(FFmpegEncoder(settings).encode(tmp_path / "in.mp4", PROFILE_360P, tmp_path))

    @pytest.mark.skipif(shutil.which("false") is None, reason="no 'false' binary")
    def test_non_zero_exit(self, settings, tmp_path):
        settings = settings.model_copy(update={"FFMPEG_PATH": shutil.which("false")})

        with pytest.raises(EncoderError) as exc_info:
            asyncio.run(FFmpegEncoder(settings).encode(tmp_path / "in.mp4", PROFILE_360P, tmp_path))

        assert exc_info.value.profile == "360p"
        assert exc_info.value.returncode == 1

    @pytest.mark.skipif(shutil.which("sh") is None or shutil.which("sleep") is None, reason="needs sh and sleep")
    def test_cancel_kills_encoder_process(self, settings, tmp_path):
        pid_file = tmp_path / "encoder.pid"
        script = tmp_path / "slow-ffmpeg"
        script.write_text(f"#!/bin/sh\necho $$ > {pid_file}\nexec sleep 30\n")
        script.chmod(0o755)
        settings = settings.model_copy(update={"FFMPEG_PATH": str(script)})

        async def scenario():
            task = asyncio.create_task(
                FFmpegEncoder(settings).encode(tmp_path / "in.mp4", PROFILE_360P, tmp_path)
            )
            for _ in range(500):
                if pid_file.exists() and pid_file.read_text().strip():
                    break
                await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return int(pid_file.read_text())

        pid = asyncio.run(scenario())

        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)


@pytest.mark.integration
@pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="ffmpeg not installed")
class TestEncodeWithFFmpeg:
    def test_produces_segmented_stream(self, settings, tmp_path):
        source = tmp_path / "source.mp4"
        subprocess.run(
            [
                "ffmpeg", "-y", "-loglevel", "error",
                "-f", "lavfi", "-i", "testsrc=duration=4:size=320x240:rate=25",
                "-f", "lavfi", "-i", "sine=frequency=440:duration=4",
                "-c:v", "libx264", "-c:a", "aac", "-shortest", str(source),
            ],
            check=True,
        )
        out = tmp_path / "360p"
        out.mkdir()
        settings = settings.model_copy(update={"HLS_SEGMENT_SECONDS": 2})

        result = asyncio.run(FFmpegEncoder(settings).encode(source, PROFILE_360P, out))

        assert result.playlist_path == out / "index.m3u8"
        segments = verify_segmented_output(out, "index.m3u8", "segment-%04d.ts")
        assert len(segments) >= 1
