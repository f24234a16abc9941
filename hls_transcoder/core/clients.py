"""
Service handle factories.

Each process builds its clients once at startup and passes them into the
dispatcher or worker explicitly; nothing in the package reaches for a
module-level client.
"""
from typing import Optional

import boto3
from botocore.config import Config
from minio import Minio
from minio.credentials import ChainedProvider, EnvAWSProvider, IamAwsProvider

from hls_transcoder.core.config import Settings, settings as default_settings
from hls_transcoder.core.logging import get_logger

logger = get_logger(__name__)

# Redelivery via SQS is the retry mechanism for the dispatch path; keep the
# SDK's own retries modest so a failing call surfaces quickly.
_BOTO_CONFIG = Config(retries={"max_attempts": 3, "mode": "standard"})


def _boto3_client(service: str, settings: Settings):
    return boto3.client(
        service,
        region_name=settings.AWS_REGION,
        aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
        aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
        aws_session_token=settings.AWS_SESSION_TOKEN,
        config=_BOTO_CONFIG,
    )


def get_sqs_client(settings: Optional[Settings] = None):
    """Create an SQS client for the upload-notification queue."""
    settings = settings or default_settings
    client = _boto3_client("sqs", settings)
    logger.info(f"SQS client initialized (region={settings.AWS_REGION})")
    return client


def get_ecs_client(settings: Optional[Settings] = None):
    """Create an ECS client used to launch worker tasks."""
    settings = settings or default_settings
    client = _boto3_client("ecs", settings)
    logger.info(f"ECS client initialized (region={settings.AWS_REGION})")
    return client


def get_minio_client(settings: Optional[Settings] = None) -> Minio:
    """
    Create and return a MinIO client for the object store.

    Explicit MINIO_* keys win, then the AWS_* keys from settings. With
    neither, credentials come from the environment or the task's IAM role.
    """
    settings = settings or default_settings
    access_key = settings.MINIO_ACCESS_KEY or settings.AWS_ACCESS_KEY_ID
    secret_key = settings.MINIO_SECRET_KEY or settings.AWS_SECRET_ACCESS_KEY
    region = settings.MINIO_REGION or settings.AWS_REGION
    endpoint = f"{settings.MINIO_HOST}:{settings.MINIO_PORT}"

    if access_key and secret_key:
        client = Minio(
            endpoint,
            access_key=access_key,
            secret_key=secret_key,
            session_token=settings.AWS_SESSION_TOKEN,
            secure=settings.MINIO_SECURE,
            region=region,
        )
    else:
        client = Minio(
            endpoint,
            secure=settings.MINIO_SECURE,
            region=region,
            credentials=ChainedProvider([EnvAWSProvider(), IamAwsProvider()]),
        )
    logger.info(f"Object store client initialized (endpoint={endpoint})")
    return client
