"""Celery worker entry point for workflow jobs.

Each worker process owns one event loop and one ``WorkflowJobRunner``.
Celery's warm shutdown on SIGTERM/SIGINT lets in-flight tasks finish, then
``worker_process_shutdown`` drains the runner and closes its connections.
"""

import asyncio
import logging
import sys
from typing import Any, Dict, Optional

from celery.signals import worker_process_init, worker_process_shutdown
from rich.console import Console

from ..config import settings
from ..executor.engine import WorkflowExecutionEngine
from ..logs import setup_logging
from ..utils.rate_limit import RateLimitExceeded, execution_rate_limiter
from ..utils.redis_client import create_redis_client
from ..workflows.store import RedisWorkflowStore
from .config import QueueConfig
from .exceptions import JobProcessingError, WorkerShutdownError
from .manager import create_celery_app
from .models import JobPayload
from .runner import WorkflowJobRunner

logger = logging.getLogger(__name__)
console = Console()

queue_config = QueueConfig.from_settings()
celery_app = create_celery_app(queue_config)

_loop: Optional[asyncio.AbstractEventLoop] = None
_runner: Optional[WorkflowJobRunner] = None


def build_runner() -> WorkflowJobRunner:
    """Wire a runner against Redis-backed storage and admission control."""
    redis_client = create_redis_client(queue_config.redis_url)
    store = RedisWorkflowStore(
        redis_client,
        completed_ttl=queue_config.keep_completed,
        failed_ttl=queue_config.keep_failed,
    )
    return WorkflowJobRunner(
        store=store,
        engine=WorkflowExecutionEngine(store=store),
        rate_limiter=execution_rate_limiter(redis_client),
        redis_client=redis_client,
        concurrency=1,
    )


def get_runner() -> WorkflowJobRunner:
    global _loop, _runner
    if _loop is None:
        _loop = asyncio.new_event_loop()
        asyncio.set_event_loop(_loop)
    if _runner is None:
        _runner = build_runner()
    return _runner


@worker_process_init.connect
def init_worker_process(**kwargs) -> None:
    setup_logging()
    get_runner()
    logger.info("Worker process initialized")


@worker_process_shutdown.connect
def shutdown_worker_process(**kwargs) -> None:
    global _loop, _runner
    if _loop is None or _runner is None:
        return
    _loop.run_until_complete(_runner.shutdown(queue_config.shutdown_timeout))
    _loop.close()
    _loop, _runner = None, None


@celery_app.task(
    bind=True,
    name=queue_config.task_name,
    max_retries=max(queue_config.max_attempts - 1, 0),
    rate_limit=queue_config.task_rate_limit,
)
def execute_workflow(self, job_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Celery task for processing workflow jobs.

    A run that ends in failure is returned as the job's result, never
    retried. Only admission denials and infrastructure errors are redelivered.
    """
    runner = get_runner()
    job = JobPayload.from_dict(payload)

    try:
        result = _loop.run_until_complete(runner.run_job(job_id, job))
    except RateLimitExceeded as e:
        raise self.retry(exc=e, countdown=max(e.retry_after, 1))
    except WorkerShutdownError as e:
        raise self.retry(exc=e, countdown=queue_config.retry_countdown(self.request.retries))
    except Exception as e:
        logger.error(f"Job {job_id} raised: {e}", exc_info=True)
        error = JobProcessingError(str(e) or type(e).__name__, job_id)
        raise self.retry(exc=error, countdown=queue_config.retry_countdown(self.request.retries))

    return result.to_dict()


def main() -> None:
    """Main worker entry point."""
    setup_logging()
    console.print("Starting TypeFlow worker...")

    try:
        celery_app.start([
            "worker",
            f"--loglevel={settings.log_level.lower()}",
            f"--concurrency={queue_config.worker_concurrency}",
            f"--queues={queue_config.queue_name}",
        ])
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
