"""Queue configuration."""

from dataclasses import dataclass
from typing import Optional

from ..config import settings

TASK_NAME = "typeflow.execute_workflow"


@dataclass
class QueueConfig:
    """Queue system configuration."""

    # Broker configuration
    broker_url: str = "redis://localhost:6379/1"
    result_backend: str = "redis://localhost:6379/2"
    redis_url: str = "redis://localhost:6379/0"

    # Queue configuration
    queue_name: str = "workflow-queue"
    task_name: str = TASK_NAME

    # Worker configuration
    worker_concurrency: int = 5
    max_jobs_per_second: int = 10
    shutdown_timeout: int = 30  # seconds

    # Retry policy, owned by the queue
    max_attempts: int = 3
    backoff_seconds: int = 2

    # Result retention
    keep_completed: int = 24 * 60 * 60  # seconds
    keep_failed: int = 7 * 24 * 60 * 60  # seconds

    job_timeout: Optional[float] = None  # seconds

    @property
    def task_rate_limit(self) -> Optional[str]:
        if not self.max_jobs_per_second:
            return None
        return f"{self.max_jobs_per_second}/s"

    def retry_countdown(self, retries: int) -> int:
        """Exponential backoff before the next delivery attempt."""
        return self.backoff_seconds * (2 ** retries)

    def get_celery_config(self) -> dict:
        """Get Celery configuration."""
        return {
            "broker_url": self.broker_url,
            "result_backend": self.result_backend,
            "task_default_queue": self.queue_name,
            "task_serializer": "json",
            "result_serializer": "json",
            "accept_content": ["json"],
            "enable_utc": True,
            "task_track_started": True,
            "result_extended": True,
            "result_expires": self.keep_completed,
            "task_acks_late": True,
            "task_reject_on_worker_lost": True,
            "task_time_limit": self.job_timeout,
            "task_annotations": {self.task_name: {"rate_limit": self.task_rate_limit}},
            "worker_concurrency": self.worker_concurrency,
            "worker_prefetch_multiplier": 1,
            "worker_max_tasks_per_child": 1000,
            "broker_connection_retry_on_startup": True,
        }

    @classmethod
    def from_settings(cls) -> "QueueConfig":
        """Create config from application settings."""
        return cls(
            broker_url=settings.celery_broker_url,
            result_backend=settings.celery_result_backend,
            redis_url=settings.redis_url,
            queue_name=settings.queue_name,
            worker_concurrency=settings.worker_concurrency,
            max_jobs_per_second=settings.worker_max_jobs_per_second,
            shutdown_timeout=settings.worker_shutdown_timeout,
            max_attempts=settings.job_max_attempts,
            backoff_seconds=settings.job_backoff_seconds,
            keep_completed=settings.job_keep_completed,
            keep_failed=settings.job_keep_failed,
            job_timeout=settings.max_execution_time,
        )
