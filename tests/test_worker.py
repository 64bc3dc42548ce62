"""Test the Celery workflow task."""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest
from celery.app.task import Task
from celery.exceptions import Retry

from typeflow.queue import worker
from typeflow.queue.exceptions import JobProcessingError, WorkerShutdownError
from typeflow.queue.models import JobResult
from typeflow.utils.rate_limit import RateLimitExceeded, RateLimitResult

PAYLOAD = {"workflowId": "wf-1", "organizationId": "org-1", "input": {"id": 1}}


@pytest.fixture
def job_runner(monkeypatch):
    """Install a stub runner and a private event loop for the task."""
    loop = asyncio.new_event_loop()
    runner = Mock()
    runner.run_job = AsyncMock()
    monkeypatch.setattr(worker, "_loop", loop)
    monkeypatch.setattr(worker, "_runner", runner)
    yield runner
    loop.close()


@pytest.fixture
def retry():
    with patch.object(Task, "retry", side_effect=Retry("retrying")) as mock_retry:
        yield mock_retry


@pytest.mark.unit
class TestExecuteWorkflowTask:
    """Test execute_workflow."""

    def test_successful_job_returns_report(self, job_runner):
        job_runner.run_job.return_value = JobResult(
            success=True, outputs={"items": [{"id": 1}]}, execution_time=5.0, execution_id="job-1",
        )

        outcome = worker.execute_workflow.apply(args=["job-1", PAYLOAD])

        assert outcome.state == "SUCCESS"
        assert outcome.result == {
            "success": True,
            "outputs": {"items": [{"id": 1}]},
            "executionTime": 5.0,
            "nodeResults": {},
            "executionId": "job-1",
        }
        job_id, job = job_runner.run_job.await_args.args
        assert job_id == "job-1"
        assert job.workflow_id == "wf-1"
        assert job.input == {"id": 1}

    def test_failed_run_is_reported_once(self, job_runner):
        job_runner.run_job.return_value = JobResult(
            success=False, error="Node 'Explode' failed: [Error] kaboom",
        )

        outcome = worker.execute_workflow.apply(args=["job-1", PAYLOAD])

        assert outcome.state == "SUCCESS"
        assert outcome.result["success"] is False
        assert outcome.result["error"] == "Node 'Explode' failed: [Error] kaboom"
        assert job_runner.run_job.await_count == 1

    def test_admission_denial_retries_after_window(self, job_runner, retry):
        result = RateLimitResult(allowed=False, limit=10, remaining=0, reset_time=1045)
        job_runner.run_job.side_effect = RateLimitExceeded("org-1", result, now=1000)

        with pytest.raises(Retry):
            worker.execute_workflow("job-1", PAYLOAD)

        assert retry.call_args.kwargs["countdown"] == 45
        assert isinstance(retry.call_args.kwargs["exc"], RateLimitExceeded)

    def test_admission_denial_waits_at_least_one_second(self, job_runner, retry):
        result = RateLimitResult(allowed=False, limit=10, remaining=0, reset_time=1000)
        job_runner.run_job.side_effect = RateLimitExceeded("org-1", result, now=1000)

        with pytest.raises(Retry):
            worker.execute_workflow("job-1", PAYLOAD)

        assert retry.call_args.kwargs["countdown"] == 1

    def test_shutdown_is_redelivered(self, job_runner, retry):
        job_runner.run_job.side_effect = WorkerShutdownError("Worker is shutting down")

        with pytest.raises(Retry):
            worker.execute_workflow("job-1", PAYLOAD)

        assert retry.call_args.kwargs["countdown"] == worker.queue_config.retry_countdown(0)

    def test_infrastructure_error_is_retried(self, job_runner, retry):
        job_runner.run_job.side_effect = ConnectionError("redis unavailable")

        with pytest.raises(Retry):
            worker.execute_workflow("job-1", PAYLOAD)

        error = retry.call_args.kwargs["exc"]
        assert isinstance(error, JobProcessingError)
        assert error.job_id == "job-1"
        assert error.message == "redis unavailable"
