"""Job runner: executes queued workflow jobs against the engine."""

import asyncio
import logging
import time
from typing import Any, Dict, Optional

from ..config import settings
from ..executor.data import WorkflowExecutionResult
from ..executor.engine import WorkflowExecutionEngine
from ..executor.errors import WorkflowValidationError
from ..utils.rate_limit import RateLimiter, RateLimitExceeded
from ..workflows.store import WorkflowStore
from .exceptions import WorkerShutdownError
from .models import JobPayload, JobResult, TriggerType, item_payloads, normalize_outputs

logger = logging.getLogger(__name__)


def describe_failure(result: WorkflowExecutionResult) -> Optional[str]:
    """User-facing failure text naming the failing node when there is one."""
    if result.success:
        return None
    if result.failed_node_label:
        return f"Node '{result.failed_node_label}' failed: {result.error}"
    return result.error or f"Workflow execution {result.status.value}"


class WorkflowJobRunner:
    """Runs ``JobPayload``s one workflow at a time per slot.

    The store, engine, admission limiter and Redis connections are all
    injected; ``shutdown`` drains in-flight jobs before releasing them.
    """

    def __init__(
        self,
        store: WorkflowStore,
        engine: Optional[WorkflowExecutionEngine] = None,
        rate_limiter: Optional[RateLimiter] = None,
        redis_client: Any = None,
        concurrency: Optional[int] = None,
    ):
        self.store = store
        self.engine = engine or WorkflowExecutionEngine(store=store)
        self.rate_limiter = rate_limiter
        self.redis_client = redis_client
        self.concurrency = concurrency or settings.worker_concurrency
        self.active_jobs: Dict[str, asyncio.Task] = {}
        self.is_shutting_down = False
        self._slots: Optional[asyncio.Semaphore] = None

    @property
    def slots(self) -> asyncio.Semaphore:
        if self._slots is None:
            self._slots = asyncio.Semaphore(self.concurrency)
        return self._slots

    async def run_job(self, job_id: str, payload: JobPayload) -> JobResult:
        """Process a single job.

        Raises RateLimitExceeded when the organization is over its admission
        limit, so the queue can redeliver the job after the window resets.
        """
        if self.is_shutting_down:
            raise WorkerShutdownError(f"Worker is shutting down, job {job_id} not accepted")

        task = asyncio.ensure_future(self._execute_job(job_id, payload))
        self.active_jobs[job_id] = task
        try:
            return await task
        finally:
            self.active_jobs.pop(job_id, None)

    async def _admit(self, job_id: str, payload: JobPayload) -> None:
        if self.rate_limiter is None:
            return
        identifier = payload.organization_id or "global"
        result = await self.rate_limiter.check(identifier)
        if not result.allowed:
            logger.warning(f"Job {job_id} rejected by admission limit for {identifier}")
            raise RateLimitExceeded(identifier, result)

    async def _execute_job(self, job_id: str, payload: JobPayload) -> JobResult:
        async with self.slots:
            await self._admit(job_id, payload)
            logger.info(f"Processing job {job_id} for workflow {payload.workflow_id}")
            start = time.perf_counter()

            result: Optional[WorkflowExecutionResult] = None
            workflow = await self.store.get_workflow(payload.workflow_id, payload.organization_id)
            if workflow is None:
                job_result = JobResult(
                    success=False,
                    error=f"Workflow {payload.workflow_id} not found",
                )
            elif not workflow.is_active and payload.trigger != TriggerType.MANUAL:
                job_result = JobResult(
                    success=False,
                    error=f"Workflow {payload.workflow_id} is not active",
                )
            else:
                try:
                    result = await self.engine.execute(
                        workflow,
                        payload.input,
                        organization_id=payload.organization_id,
                        execution_id=job_id,
                    )
                except WorkflowValidationError as e:
                    job_result = JobResult(success=False, error=e.message)
                else:
                    job_result = JobResult(
                        success=result.success,
                        outputs=normalize_outputs(item_payloads(result.final_output)),
                        error=describe_failure(result),
                        node_results={
                            node_id: node_result.to_dict()
                            for node_id, node_result in result.node_results.items()
                        },
                        execution_id=result.execution_id,
                    )

            job_result.execution_time = (time.perf_counter() - start) * 1000
            await self._save_execution(job_id, payload, job_result, result)

            if job_result.success:
                logger.info(
                    f"Job {job_id} completed in {job_result.execution_time:.1f}ms"
                )
            else:
                logger.error(f"Job {job_id} failed: {job_result.error}")
            return job_result

    async def _save_execution(
        self,
        job_id: str,
        payload: JobPayload,
        job_result: JobResult,
        result: Optional[WorkflowExecutionResult],
    ) -> None:
        record = result.to_dict() if result is not None else {
            "executionId": job_id,
            "workflowId": payload.workflow_id,
            "status": "failed",
            "success": False,
            "error": job_result.error,
        }
        record.update({
            "jobId": job_id,
            "organizationId": payload.organization_id,
            "trigger": payload.trigger.value,
            "userId": payload.user_id,
            "outputs": job_result.outputs,
            "executionTime": job_result.execution_time,
        })
        try:
            await self.store.save_execution(record)
        except Exception as e:
            logger.error(f"Failed to save execution for job {job_id}: {e}", exc_info=True)

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Gracefully shutdown: drain active jobs, then close connections."""
        timeout = timeout if timeout is not None else settings.worker_shutdown_timeout
        self.is_shutting_down = True

        pending = [task for task in self.active_jobs.values() if not task.done()]
        if pending:
            logger.info(f"Waiting for {len(pending)} active jobs to complete...")
            _, still_running = await asyncio.wait(pending, timeout=timeout)
            if still_running:
                logger.warning(f"Timeout waiting for jobs, cancelling {len(still_running)} jobs")
                for task in still_running:
                    task.cancel()
                await asyncio.gather(*still_running, return_exceptions=True)

        await self.store.close()
        if self.redis_client is not None:
            await self.redis_client.aclose()
        logger.info("Job runner shutdown complete")
