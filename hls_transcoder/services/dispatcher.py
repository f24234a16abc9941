"""
Dispatch loop.

Long-polls the upload-notification queue and asks the task scheduler to
start one transcode worker per uploaded object. A message is deleted only
after every launch it requires has succeeded; otherwise it is left for the
queue to redeliver, which is the only retry mechanism for launches.
"""
import threading
import time
from typing import List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from hls_transcoder.core.config import Settings, settings as default_settings
from hls_transcoder.core.exceptions import LaunchError, MalformedEventError
from hls_transcoder.core.logging import get_logger
from hls_transcoder.metrics import queue_delete_errors_total, queue_receive_errors_total, record_launch, record_message
from hls_transcoder.schemas.events import QueueMessage, UploadEvent, parse_event_body

logger = get_logger(__name__)


class DispatchLoop:
    """
    Queue consumer that launches one worker task per upload.

    Args:
        sqs_client: boto3 SQS client
        ecs_client: boto3 ECS client
        settings: Settings; the module-level instance by default
    """

    def __init__(self, sqs_client, ecs_client, settings: Optional[Settings] = None):
        self.sqs = sqs_client
        self.ecs = ecs_client
        self.settings = settings or default_settings

    def run(self, stop_event: Optional[threading.Event] = None, max_iterations: Optional[int] = None):
        """
        Poll until `stop_event` is set (or `max_iterations` polls have run).

        Queue errors never end the loop; they are logged and followed by a
        back-off wait on the stop event.
        """
        stop_event = stop_event or threading.Event()
        logger.info(
            f"[dispatch] Polling {self.settings.SQS_QUEUE_URL} "
            f"(batch={self.settings.SQS_MAX_MESSAGES}, wait={self.settings.SQS_WAIT_TIME_SECONDS}s)"
        )

        iterations = 0
        while not stop_event.is_set():
            try:
                self.poll_once()
            except (ClientError, BotoCoreError) as e:
                queue_receive_errors_total.inc()
                logger.error(f"[dispatch] Receive from queue failed: {e}")
                stop_event.wait(self.settings.SQS_ERROR_BACKOFF_SECONDS)
            except Exception:
                queue_receive_errors_total.inc()
                logger.exception("[dispatch] Unexpected error while polling")
                stop_event.wait(self.settings.SQS_ERROR_BACKOFF_SECONDS)

            iterations += 1
            if max_iterations is not None and iterations >= max_iterations:
                break

        logger.info(f"[dispatch] Stopped after {iterations} polls")

    def poll_once(self) -> int:
        """
        Receive one batch and handle each message.

        Returns:
            Number of messages received

        Raises:
            ClientError, BotoCoreError: the receive call itself failed
        """
        messages = self.receive()
        if not messages:
            logger.debug("[dispatch] No messages in the queue")
            return 0

        for message in messages:
            try:
                self.handle_message(message)
            except Exception:
                record_message("failed")
                logger.exception(f"[dispatch] Error processing message {message.id}")
        return len(messages)

    def receive(self) -> List[QueueMessage]:
        response = self.sqs.receive_message(
            QueueUrl=self.settings.SQS_QUEUE_URL,
            MaxNumberOfMessages=self.settings.SQS_MAX_MESSAGES,
            WaitTimeSeconds=self.settings.SQS_WAIT_TIME_SECONDS,
        )
        return [QueueMessage.from_sqs(raw) for raw in response.get("Messages") or []]

    def handle_message(self, message: QueueMessage) -> bool:
        """
        Dispatch every upload in `message`, then acknowledge it.

        Returns:
            True if the message was acknowledged, False if it was left on
            the queue for redelivery
        """
        log = get_logger(__name__, with_context=True)
        log.set_context(message_id=message.id)
        log.info(f"[dispatch] Message received: {message.id}")

        try:
            parsed = parse_event_body(message.body)
        except MalformedEventError as e:
            log.warning(f"[dispatch] Discarding malformed message {message.id}: {e}")
            self.acknowledge(message)
            record_message("malformed")
            return True

        if parsed.is_control:
            log.info(f"[dispatch] Ignoring control event {parsed.control_event} ({message.id})")
            self.acknowledge(message)
            record_message("control")
            return True

        if not parsed.uploads:
            log.info(
                f"[dispatch] Message {message.id} has no upload records "
                f"({parsed.skipped_records} skipped)"
            )
            self.acknowledge(message)
            record_message("no_uploads")
            return True

        try:
            for upload in parsed.uploads:
                self.launch_worker(upload)
        except LaunchError as e:
            log.error(f"[dispatch] Launch failed for message {message.id}, leaving it for redelivery: {e}")
            record_message("failed")
            return False

        self.acknowledge(message)
        record_message("dispatched")
        log.info(f"[dispatch] Message {message.id} dispatched ({len(parsed.uploads)} workers)")
        return True

    def build_run_task_request(self, upload: UploadEvent) -> dict:
        s = self.settings
        vpc_config = {
            "subnets": s.ecs_subnets,
            "assignPublicIp": "ENABLED" if s.ECS_ASSIGN_PUBLIC_IP else "DISABLED",
        }
        if s.ecs_security_groups:
            vpc_config["securityGroups"] = s.ecs_security_groups

        return {
            "taskDefinition": s.ECS_TASK_DEFINITION,
            "cluster": s.ECS_CLUSTER,
            "launchType": s.ECS_LAUNCH_TYPE,
            "count": 1,
            "networkConfiguration": {"awsvpcConfiguration": vpc_config},
            "overrides": {
                "containerOverrides": [
                    {
                        "name": s.ECS_CONTAINER_NAME,
                        "environment": [
                            {"name": "BUCKET_NAME", "value": upload.bucket},
                            {"name": "KEY", "value": upload.key},
                        ],
                    }
                ]
            },
        }

    def launch_worker(self, upload: UploadEvent) -> str:
        """
        Ask the scheduler to start one worker for `upload`.

        Returns:
            The started task's ARN

        Raises:
            LaunchError: the request failed or no task was started
        """
        request = self.build_run_task_request(upload)
        start = time.monotonic()
        try:
            response = self.ecs.run_task(**request)
        except (ClientError, BotoCoreError) as e:
            record_launch(False, time.monotonic() - start)
            raise LaunchError(f"run_task failed for {upload.bucket}/{upload.key}: {e}") from e

        failures = response.get("failures") or []
        tasks = response.get("tasks") or []
        if failures or not tasks:
            record_launch(False, time.monotonic() - start)
            reasons = ", ".join(f.get("reason", "unknown") for f in failures) or "no task started"
            raise LaunchError(f"Scheduler rejected {upload.bucket}/{upload.key}: {reasons}", failures)

        record_launch(True, time.monotonic() - start)
        task_arn = tasks[0].get("taskArn", "")
        logger.info(f"[dispatch] Launched worker {task_arn} for {upload.bucket}/{upload.key}")
        return task_arn

    def acknowledge(self, message: QueueMessage):
        """Delete `message` from the queue."""
        try:
            self.sqs.delete_message(
                QueueUrl=self.settings.SQS_QUEUE_URL,
                ReceiptHandle=message.receipt_handle,
            )
        except (ClientError, BotoCoreError):
            queue_delete_errors_total.inc()
            raise
