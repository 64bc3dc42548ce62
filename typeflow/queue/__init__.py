"""
TypeFlow Queue System

Durable workflow job queue built on Celery with a Redis broker. Producers
enqueue ``JobPayload``s through ``QueueManager``; worker processes run them
with ``WorkflowJobRunner`` (see ``typeflow.queue.worker``).
"""

from .config import QueueConfig
from .exceptions import (
    JobProcessingError,
    QueueConnectionError,
    QueueException,
    QueueInitializationError,
    WorkerShutdownError,
)
from .manager import QueueManager
from .models import JobPayload, JobResult, JobState, JobStatus, TriggerType

__all__ = [
    "QueueConfig",
    "QueueManager",
    "JobPayload",
    "JobResult",
    "JobState",
    "JobStatus",
    "TriggerType",
    "QueueException",
    "QueueConnectionError",
    "QueueInitializationError",
    "JobProcessingError",
    "WorkerShutdownError",
]
