"""
Process entry points.

    hls-dispatcher   long-running queue consumer
    hls-worker       one transcode job, configured by BUCKET_NAME and KEY
"""
import asyncio
import signal
import sys
import threading
from typing import Optional

from prometheus_client import start_http_server

from hls_transcoder.core.clients import get_ecs_client, get_minio_client, get_sqs_client
from hls_transcoder.core.config import Settings, settings as default_settings
from hls_transcoder.core.exceptions import JobFailedError
from hls_transcoder.core.logging import get_logger, setup_logging
from hls_transcoder.services.dispatcher import DispatchLoop
from hls_transcoder.services.ffmpeg import FFmpegEncoder
from hls_transcoder.services.publisher import ArtifactPublisher
from hls_transcoder.services.worker import TranscodeWorker

logger = get_logger(__name__)


def run_dispatcher(settings: Optional[Settings] = None):
    settings = settings or default_settings
    setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)

    if not settings.SQS_QUEUE_URL:
        logger.error("SQS_QUEUE_URL is not set")
        sys.exit(2)

    if settings.METRICS_PORT:
        start_http_server(settings.METRICS_PORT)
        logger.info(f"Metrics exporter listening on :{settings.METRICS_PORT}")

    stop_event = threading.Event()

    def _request_stop(signum, _frame):
        logger.info(f"Received signal {signum}, finishing current batch")
        stop_event.set()

    signal.signal(signal.SIGTERM, _request_stop)
    signal.signal(signal.SIGINT, _request_stop)

    loop = DispatchLoop(get_sqs_client(settings), get_ecs_client(settings), settings)
    loop.run(stop_event)


def run_worker(settings: Optional[Settings] = None) -> int:
    """Run one job. Returns the process exit status."""
    settings = settings or default_settings
    setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)

    if not settings.BUCKET_NAME or not settings.KEY:
        logger.error("BUCKET_NAME and KEY must be set for the worker")
        return 2
    if not settings.OUTPUT_BUCKET:
        logger.error("OUTPUT_BUCKET is not set")
        return 2

    object_store = get_minio_client(settings)
    worker = TranscodeWorker(
        object_store=object_store,
        publisher=ArtifactPublisher(object_store, settings.OUTPUT_BUCKET, settings),
        encoder=FFmpegEncoder(settings),
        settings=settings,
    )

    try:
        job = asyncio.run(worker.run(settings.BUCKET_NAME, settings.KEY))
    except JobFailedError as e:
        logger.error(f"Transcode failed: {e}")
        return 1

    logger.info(f"Transcode finished: {settings.OUTPUT_BUCKET}/{job.manifest_key}")
    return 0


def dispatcher_cli():
    run_dispatcher()


def worker_cli():
    sys.exit(run_worker())


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "worker":
        worker_cli()
    else:
        dispatcher_cli()
