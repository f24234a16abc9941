"""
Transcode worker.

One invocation per source video: download, fan out one encode+upload
pipeline per rendition, publish the master manifest, and always remove the
local scratch tree before returning.
"""
import asyncio
import secrets
import shutil
import time
from pathlib import Path
from typing import Callable, List, Optional

from minio import Minio

from hls_transcoder.core.config import Settings, settings as default_settings
from hls_transcoder.core.exceptions import (
    JobFailedError,
    SourceDownloadError,
    TranscoderError,
)
from hls_transcoder.core.logging import get_logger, log_context
from hls_transcoder.schemas.job import JobStatus, TranscodeJob, VariantResult, VariantStatus
from hls_transcoder.services.manifest import build_master_manifest
from hls_transcoder.services.publisher import HLS_PLAYLIST_CONTENT_TYPE, ArtifactPublisher
from hls_transcoder.services.variant import VariantTranscoder

logger = get_logger(__name__)


def new_video_id() -> str:
    """Millisecond timestamp plus a random suffix, unique per invocation."""
    return f"{time.time_ns() // 1_000_000}-{secrets.token_hex(4)}"


class TranscodeWorker:
    """
    Orchestrates a single transcode job.

    Args:
        object_store: Client used to fetch the source object
        publisher: Publisher bound to the output bucket
        encoder: Encoder capability (see FFmpegEncoder)
        settings: Settings; the module-level instance by default
        id_factory: Produces the job's video id
    """

    def __init__(
        self,
        object_store: Minio,
        publisher: ArtifactPublisher,
        encoder,
        settings: Optional[Settings] = None,
        id_factory: Callable[[], str] = new_video_id,
    ):
        self.object_store = object_store
        self.publisher = publisher
        self.settings = settings or default_settings
        self.transcoder = VariantTranscoder(encoder, self.settings)
        self.id_factory = id_factory

    def scratch_dir(self, video_id: str) -> Path:
        return Path(self.settings.TEMP_DIR) / video_id

    async def run(self, bucket: str, key: str) -> TranscodeJob:
        """
        Transcode `bucket/key` into every configured rendition.

        Returns:
            The completed job

        Raises:
            JobFailedError: any step failed; scratch space is already gone
        """
        video_id = self.id_factory()
        scratch = self.scratch_dir(video_id)
        suffix = Path(key).suffix or ".mp4"
        job = TranscodeJob(
            video_id=video_id,
            bucket=bucket,
            key=key,
            source_local_path=scratch / f"source{suffix}",
        )

        with log_context(video_id=video_id, bucket=bucket, key=key):
            logger.info(f"[worker] Starting job {video_id} for {bucket}/{key}")
            started = time.monotonic()

            try:
                await self._download_source(job)
                self._prepare_variants(job, scratch)
                await self._transcode_all(job)
                await self._publish_manifest(job)
            except Exception as e:
                job.status = JobStatus.FAILED
                logger.error(f"[worker] Job {video_id} failed: {e}")
                if self.settings.ROLLBACK_ON_FAILURE:
                    await self._rollback(job)
                if isinstance(e, JobFailedError):
                    raise
                raise JobFailedError(video_id, [e]) from e
            finally:
                self.cleanup(job)

            job.status = JobStatus.COMPLETED
            logger.info(
                f"[worker] Job {video_id} completed in {time.monotonic() - started:.1f}s: "
                f"{len(job.variants)} renditions, manifest {job.manifest_key}"
            )
            return job

    async def _download_source(self, job: TranscodeJob):
        job.source_local_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"[worker] Downloading {job.bucket}/{job.key} -> {job.source_local_path}")
        try:
            await asyncio.to_thread(
                self.object_store.fget_object,
                job.bucket,
                job.key,
                str(job.source_local_path),
            )
        except Exception as e:
            raise SourceDownloadError(f"Could not download {job.bucket}/{job.key}: {e}") from e

        size_mb = job.source_local_path.stat().st_size / (1024 * 1024)
        logger.info(f"[worker] Source downloaded ({size_mb:.2f} MB)")

    def _prepare_variants(self, job: TranscodeJob, scratch: Path):
        outputs = scratch / "outputs"
        for profile in self.settings.RESOLUTIONS:
            output_dir = outputs / profile.name
            output_dir.mkdir(parents=True, exist_ok=True)
            job.variants[profile.name] = VariantResult(profile=profile, local_output_dir=output_dir)

    async def _transcode_all(self, job: TranscodeJob):
        """Run every rendition pipeline; stop at the first failure."""
        tasks = {
            asyncio.create_task(self._run_pipeline(job, variant), name=f"variant-{name}"): variant
            for name, variant in job.variants.items()
        }
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in pending:
                variant = tasks[task]
                if not variant.is_terminal:
                    variant.status = VariantStatus.FAILED
                    variant.error = "cancelled after a sibling rendition failed"

        errors: List[BaseException] = [
            task.exception() for task in done if task.exception() is not None
        ]
        if errors:
            failed = ", ".join(v.profile.name for v in job.failed_variants)
            logger.error(f"[worker] Rendition pipeline(s) failed: {failed}")
            raise JobFailedError(job.video_id, errors)

    async def _run_pipeline(self, job: TranscodeJob, variant: VariantResult) -> VariantResult:
        await self.transcoder.transcode(job.source_local_path, variant)
        return await self.publisher.publish_variant(variant, f"{job.video_id}/{variant.profile.name}")

    async def _publish_manifest(self, job: TranscodeJob):
        if not job.all_uploaded:
            raise TranscoderError(f"Job {job.video_id} has renditions that were not uploaded")

        manifest = build_master_manifest(job.variants.values(), self.settings.HLS_PLAYLIST_NAME)
        key = f"{job.video_id}/{self.settings.MASTER_MANIFEST_NAME}"
        await self.publisher.publish_bytes(manifest.encode("utf-8"), key, HLS_PLAYLIST_CONTENT_TYPE)
        job.manifest_key = key

    async def _rollback(self, job: TranscodeJob):
        """Remove whatever this job already published. Failures are logged only."""
        try:
            removed = await self.publisher.unpublish_prefix(job.video_id)
            if removed:
                logger.info(f"[worker] Rolled back {removed} published objects for {job.video_id}")
        except Exception as e:
            logger.warning(f"[worker] Rollback of {job.video_id} incomplete: {e}")

    def cleanup(self, job: TranscodeJob):
        """Remove the job's scratch tree. Failures are logged, never raised."""
        temp_dir = self.scratch_dir(job.video_id)
        try:
            if not temp_dir.exists():
                logger.warning(f"[cleanup] Scratch directory does not exist: {temp_dir}")
                return

            files = [f for f in temp_dir.rglob("*") if f.is_file()]
            total_size_mb = sum(f.stat().st_size for f in files) / (1024 * 1024)

            shutil.rmtree(temp_dir)

            logger.info(f"[cleanup] Removed {len(files)} files ({total_size_mb:.2f} MB) from {temp_dir}")
        except Exception as e:
            logger.error(f"[cleanup] Cleanup of {temp_dir} failed: {e}")
