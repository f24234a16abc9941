"""
Artifact publisher.

Uploads renditions and manifests to the object store under a key prefix,
choosing the content type from the file extension.
"""
import asyncio
import io
from pathlib import Path
from typing import List, Optional, Tuple

from minio import Minio
from minio.deleteobjects import DeleteObject
from minio.error import S3Error

from hls_transcoder.core.config import Settings, settings as default_settings
from hls_transcoder.core.exceptions import PublishError
from hls_transcoder.core.logging import get_logger
from hls_transcoder.schemas.job import VariantResult, VariantStatus

logger = get_logger(__name__)

HLS_PLAYLIST_CONTENT_TYPE = "application/vnd.apple.mpegurl"
MPEG_TS_CONTENT_TYPE = "video/mp2t"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

CONTENT_TYPES = {
    ".m3u8": HLS_PLAYLIST_CONTENT_TYPE,
    ".ts": MPEG_TS_CONTENT_TYPE,
}


def content_type_for(path) -> str:
    """Pick the upload content type for an artifact by its extension."""
    return CONTENT_TYPES.get(Path(path).suffix.lower(), DEFAULT_CONTENT_TYPE)


def join_key(prefix: str, name: str) -> str:
    prefix = prefix.strip("/")
    return f"{prefix}/{name}" if prefix else name


async def _in_thread(func, *args, **kwargs):
    """
    Run a blocking client call in a worker thread.

    A call already handed to a thread cannot be interrupted, so on
    cancellation this waits for it to finish before re-raising. Callers
    that roll back after cancelling never race a late write.
    """
    future = asyncio.ensure_future(asyncio.to_thread(func, *args, **kwargs))
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        await asyncio.wait([future])
        raise


class ArtifactPublisher:
    """
    Upload local artifacts to one bucket.

    Uploads run in worker threads (the MinIO client is synchronous), at most
    UPLOAD_CONCURRENCY at a time per call. A call either publishes every
    file or raises PublishError; uploads already in flight when a sibling
    fails are allowed to finish.
    """

    def __init__(self, client: Minio, bucket: str, settings: Optional[Settings] = None):
        self.client = client
        self.bucket = bucket
        self.settings = settings or default_settings

    async def publish_directory(self, local_dir: Path, prefix: str) -> List[str]:
        """
        Upload every file under `local_dir` to `prefix/<relative path>`.

        Returns:
            The uploaded object keys

        Raises:
            PublishError: directory missing/empty or any upload failed
        """
        local_dir = Path(local_dir)
        if not local_dir.is_dir():
            raise PublishError(prefix, [], f"Local directory does not exist: {local_dir}")

        files = sorted(p for p in local_dir.rglob("*") if p.is_file())
        if not files:
            raise PublishError(prefix, [], f"Nothing to publish in {local_dir}")

        semaphore = asyncio.Semaphore(self.settings.UPLOAD_CONCURRENCY)

        async def upload(path: Path) -> str:
            key = join_key(prefix, path.relative_to(local_dir).as_posix())
            async with semaphore:
                await self.publish_file(path, key)
            return key

        results = await asyncio.gather(*(upload(p) for p in files), return_exceptions=True)

        uploaded: List[str] = []
        failed: List[Tuple[Path, BaseException]] = []
        for path, result in zip(files, results):
            if isinstance(result, BaseException):
                failed.append((path, result))
            else:
                uploaded.append(result)

        if failed:
            failed_keys = [join_key(prefix, p.relative_to(local_dir).as_posix()) for p, _ in failed]
            logger.error(
                f"[publish] {len(failed)}/{len(files)} uploads failed under {self.bucket}/{prefix}: "
                f"{failed[0][1]}"
            )
            raise PublishError(prefix, failed_keys) from failed[0][1]

        logger.info(f"[publish] Uploaded {len(uploaded)} files to {self.bucket}/{prefix}")
        return uploaded

    async def publish_variant(self, variant: VariantResult, prefix: str) -> VariantResult:
        """
        Upload a rendition's output directory and move it to its terminal
        state: UPLOADED with `uploaded_keys` set, or FAILED if any upload failed.

        Raises:
            PublishError: the variant is left FAILED
        """
        try:
            variant.uploaded_keys = await self.publish_directory(variant.local_output_dir, prefix)
        except PublishError as e:
            variant.status = VariantStatus.FAILED
            variant.error = str(e)
            raise
        variant.status = VariantStatus.UPLOADED
        return variant

    async def publish_file(self, path: Path, key: str) -> str:
        """Upload a single file to `key`."""
        content_type = content_type_for(path)
        try:
            await _in_thread(
                self.client.fput_object,
                self.bucket,
                key,
                str(path),
                content_type=content_type,
            )
        except S3Error as e:
            logger.error(f"[publish] Object store error for {self.bucket}/{key}: {e}")
            raise PublishError(key, [key]) from e
        except Exception as e:
            logger.error(f"[publish] Upload of {path} to {self.bucket}/{key} failed: {e}")
            raise PublishError(key, [key]) from e
        logger.debug(f"[publish] {path.name} -> {self.bucket}/{key} ({content_type})")
        return key

    async def publish_bytes(self, data: bytes, key: str, content_type: Optional[str] = None) -> str:
        """Upload an in-memory artifact (e.g. the master manifest) to `key`."""
        content_type = content_type or content_type_for(key)
        try:
            await _in_thread(
                self.client.put_object,
                self.bucket,
                key,
                io.BytesIO(data),
                len(data),
                content_type=content_type,
            )
        except Exception as e:
            logger.error(f"[publish] Upload to {self.bucket}/{key} failed: {e}")
            raise PublishError(key, [key]) from e
        logger.info(f"[publish] Uploaded {key} ({len(data)} bytes, {content_type})")
        return key

    async def unpublish_prefix(self, prefix: str) -> int:
        """
        Delete every object under `prefix/`.

        Returns:
            Number of objects removed

        Raises:
            PublishError: listing failed or some deletions were rejected
        """
        return await asyncio.to_thread(self._remove_prefix, prefix.strip("/") + "/")

    def _remove_prefix(self, prefix: str) -> int:
        try:
            keys = [
                obj.object_name
                for obj in self.client.list_objects(self.bucket, prefix=prefix, recursive=True)
            ]
            if not keys:
                return 0
            # remove_objects is lazy; errors only surface while iterating
            errors = list(self.client.remove_objects(self.bucket, [DeleteObject(k) for k in keys]))
        except Exception as e:
            raise PublishError(prefix, [], f"Could not remove objects under {prefix}: {e}") from e

        if errors:
            raise PublishError(prefix, [err.name for err in errors])
        logger.info(f"[publish] Removed {len(keys)} objects under {self.bucket}/{prefix}")
        return len(keys)
