"""
Metrics module for dispatcher monitoring.
"""
from hls_transcoder.metrics.prometheus import (
    queue_delete_errors_total,
    queue_messages_total,
    queue_receive_errors_total,
    record_launch,
    record_message,
    worker_launch_duration_seconds,
    worker_launches_total,
)

__all__ = [
    "queue_delete_errors_total",
    "queue_messages_total",
    "queue_receive_errors_total",
    "record_launch",
    "record_message",
    "worker_launch_duration_seconds",
    "worker_launches_total",
]
