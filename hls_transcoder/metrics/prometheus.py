"""
Prometheus metrics for the dispatch loop.

The dispatcher is the only long-running process; workers are ephemeral
tasks and report through logs and their exit status instead.
"""
from prometheus_client import Counter, Histogram


# ============================================================================
# Queue Metrics
# ============================================================================

queue_messages_total = Counter(
    "dispatch_queue_messages_total",
    "Queue messages handled by the dispatcher",
    ["outcome"],  # dispatched, control, malformed, no_uploads, failed
)

queue_receive_errors_total = Counter(
    "dispatch_queue_receive_errors_total",
    "Failed long-poll receive calls",
)

queue_delete_errors_total = Counter(
    "dispatch_queue_delete_errors_total",
    "Failed message acknowledgements",
)


# ============================================================================
# Launch Metrics
# ============================================================================

worker_launches_total = Counter(
    "dispatch_worker_launches_total",
    "Worker launch requests sent to the task scheduler",
    ["result"],  # success, failure
)

worker_launch_duration_seconds = Histogram(
    "dispatch_worker_launch_duration_seconds",
    "Latency of worker launch requests",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)


# ============================================================================
# Helper Functions
# ============================================================================

def record_message(outcome: str):
    queue_messages_total.labels(outcome=outcome).inc()


def record_launch(success: bool, duration: float):
    worker_launches_total.labels(result="success" if success else "failure").inc()
    worker_launch_duration_seconds.observe(duration)
