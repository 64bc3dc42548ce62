"""Queue manager implementation."""

import logging
import uuid
from typing import Optional

from celery import Celery
from celery.result import AsyncResult

from .config import QueueConfig
from .exceptions import QueueConnectionError, QueueInitializationError
from .models import JobPayload, JobState, JobStatus

logger = logging.getLogger(__name__)


def create_celery_app(config: QueueConfig) -> Celery:
    app = Celery("typeflow", broker=config.broker_url, backend=config.result_backend)
    app.conf.update(**config.get_celery_config())
    return app


class QueueManager:
    """Producer-side access to the workflow job queue."""

    def __init__(self, config: Optional[QueueConfig] = None, celery_app: Optional[Celery] = None):
        self.config = config or QueueConfig.from_settings()
        self.celery_app = celery_app
        self.is_initialized = celery_app is not None

    def initialize(self) -> None:
        """Create the Celery app if one was not injected."""
        if self.is_initialized:
            return
        try:
            self.celery_app = create_celery_app(self.config)
        except Exception as e:
            raise QueueInitializationError(f"Failed to initialize queue: {e}") from e
        self.is_initialized = True
        logger.info("Queue manager initialized successfully")

    def _require_app(self) -> Celery:
        if not self.is_initialized:
            self.initialize()
        return self.celery_app

    async def enqueue_job(self, payload: JobPayload, job_id: Optional[str] = None) -> str:
        """Enqueue a job for processing and return its id."""
        app = self._require_app()
        job_id = job_id or str(uuid.uuid4())

        try:
            app.send_task(
                self.config.task_name,
                kwargs={"job_id": job_id, "payload": payload.to_dict()},
                queue=self.config.queue_name,
                task_id=job_id,
                retry=True,
            )
        except Exception as e:
            raise QueueConnectionError(
                f"Failed to enqueue job for workflow {payload.workflow_id}: {e}",
                details={"workflow_id": payload.workflow_id},
            ) from e

        logger.info(f"Enqueued job {job_id} for workflow {payload.workflow_id}")
        return job_id

    async def get_job_status(self, job_id: str) -> JobStatus:
        """Get current job status."""
        app = self._require_app()
        result = AsyncResult(job_id, app=app)
        state = JobState.from_celery(result.state)

        status = JobStatus(
            id=job_id,
            state=state,
            attempts_made=(getattr(result, "retries", None) or 0),
        )
        kwargs = getattr(result, "kwargs", None)
        if isinstance(kwargs, dict):
            status.data = kwargs.get("payload")

        if state == JobState.COMPLETED:
            status.progress = 100
            status.result = result.result
            status.attempts_made += 1
        elif state == JobState.FAILED:
            status.progress = 100
            status.failed_reason = str(result.result)
            status.attempts_made += 1
        elif state in (JobState.ACTIVE, JobState.RETRYING):
            status.attempts_made += 1

        return status

    async def close(self) -> None:
        """Close queue connections."""
        if self.celery_app is not None:
            self.celery_app.close()
        self.is_initialized = False
        logger.info("Queue manager closed")
