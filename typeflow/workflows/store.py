"""Workflow storage adapters.

Durable storage of definitions is owned by an external collaborator. These
adapters give the job runner and the sub-workflow node a way to load a
definition by id and to persist terminal run records.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import redis.asyncio as redis
import structlog

from ..executor.data import json_safe
from .models import WorkflowDefinition

logger = structlog.get_logger()


class WorkflowStore(ABC):
    """Loads definitions and records finished runs."""

    @abstractmethod
    async def get_workflow(
        self,
        workflow_id: str,
        organization_id: Optional[str] = None,
    ) -> Optional[WorkflowDefinition]:
        """Return the definition, or None if it does not exist in the organization."""

    @abstractmethod
    async def save_execution(self, record: Dict[str, Any]) -> None:
        """Persist a terminal execution record."""

    async def close(self) -> None:
        pass


class InMemoryWorkflowStore(WorkflowStore):
    """Dictionary-backed store for local runs and tests."""

    def __init__(self, workflows: Optional[List[WorkflowDefinition]] = None):
        self._workflows: Dict[Tuple[Optional[str], str], WorkflowDefinition] = {}
        self.executions: List[Dict[str, Any]] = []
        for workflow in workflows or []:
            self.add(workflow)

    def add(self, workflow: WorkflowDefinition) -> None:
        if not workflow.id:
            raise ValueError("Stored workflows need an id")
        self._workflows[(workflow.organization_id, workflow.id)] = workflow

    async def get_workflow(
        self,
        workflow_id: str,
        organization_id: Optional[str] = None,
    ) -> Optional[WorkflowDefinition]:
        workflow = self._workflows.get((organization_id, workflow_id))
        if workflow is None and organization_id is None:
            for (_, stored_id), candidate in self._workflows.items():
                if stored_id == workflow_id:
                    return candidate
        return workflow

    async def save_execution(self, record: Dict[str, Any]) -> None:
        self.executions.append(record)


class RedisWorkflowStore(WorkflowStore):
    """Definitions and execution records kept as JSON documents in Redis."""

    WORKFLOW_PREFIX = "typeflow:workflow"
    EXECUTION_PREFIX = "typeflow:execution"

    def __init__(
        self,
        redis_client: redis.Redis,
        completed_ttl: Optional[int] = None,
        failed_ttl: Optional[int] = None,
    ):
        self.redis = redis_client
        self.completed_ttl = completed_ttl
        self.failed_ttl = failed_ttl
        self.logger = logger.bind(component="redis_workflow_store")

    def _workflow_key(self, workflow_id: str, organization_id: Optional[str]) -> str:
        return f"{self.WORKFLOW_PREFIX}:{organization_id or '_'}:{workflow_id}"

    def _execution_key(self, execution_id: str) -> str:
        return f"{self.EXECUTION_PREFIX}:{execution_id}"

    async def put_workflow(self, workflow: WorkflowDefinition) -> None:
        if not workflow.id:
            raise ValueError("Stored workflows need an id")
        key = self._workflow_key(workflow.id, workflow.organization_id)
        await self.redis.set(key, workflow.model_dump_json(by_alias=True))
        self.logger.debug("Stored workflow", workflow_id=workflow.id, key=key)

    async def get_workflow(
        self,
        workflow_id: str,
        organization_id: Optional[str] = None,
    ) -> Optional[WorkflowDefinition]:
        data = await self.redis.get(self._workflow_key(workflow_id, organization_id))
        if data is None:
            return None
        return WorkflowDefinition.parse(json.loads(data))

    async def save_execution(self, record: Dict[str, Any]) -> None:
        execution_id = record.get("executionId")
        if not execution_id:
            raise ValueError("Execution records need an executionId")
        await self.redis.set(
            self._execution_key(execution_id),
            json.dumps(json_safe(record), default=str),
            ex=self.completed_ttl if record.get("success") else self.failed_ttl,
        )

    async def get_execution(self, execution_id: str) -> Optional[Dict[str, Any]]:
        data = await self.redis.get(self._execution_key(execution_id))
        return json.loads(data) if data is not None else None
