"""Pytest configuration and fixtures."""

from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from typeflow.executor.engine import WorkflowExecutionEngine
from typeflow.workflows.models import WorkflowDefinition
from typeflow.workflows.store import InMemoryWorkflowStore


class FakePipeline:
    """Records INCR/EXPIRE and applies them to the owning FakeRedis on execute."""

    def __init__(self, redis: "FakeRedis"):
        self.redis = redis
        self.commands: List[tuple] = []

    def incr(self, key: str) -> "FakePipeline":
        self.commands.append(("incr", key))
        return self

    def expire(self, key: str, seconds: int) -> "FakePipeline":
        self.commands.append(("expire", key, seconds))
        return self

    async def execute(self, raise_on_error: bool = True) -> List[Any]:
        if self.redis.fail_with is not None:
            raise self.redis.fail_with
        results = []
        for command in self.commands:
            if command[0] == "incr":
                self.redis.values[command[1]] = int(self.redis.values.get(command[1], 0)) + 1
                results.append(self.redis.values[command[1]])
            else:
                self.redis.expirations[command[1]] = command[2]
                results.append(True)
        self.commands = []
        return results


class FakeRedis:
    """Small in-memory stand-in for the asyncio Redis client."""

    def __init__(self):
        self.values: Dict[str, Any] = {}
        self.expirations: Dict[str, int] = {}
        self.fail_with: Optional[Exception] = None
        self.pipelines: List[FakePipeline] = []
        self.closed = False

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        pipe = FakePipeline(self)
        self.pipelines.append(pipe)
        return pipe

    async def get(self, key: str) -> Any:
        return self.values.get(key)

    async def set(self, key: str, value: Any, ex: Optional[int] = None) -> bool:
        self.values[key] = value
        if ex is not None:
            self.expirations[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None:
                removed += 1
        return removed

    async def aclose(self) -> None:
        self.closed = True


class FakeClock:
    """Manually advanced time source, in seconds."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_redis():
    """Create in-memory Redis double."""
    return FakeRedis()


@pytest.fixture
def clock():
    """Create a controllable clock aligned to a window boundary."""
    return FakeClock(1_700_000_040.0)


@pytest.fixture
def make_node():
    """Build a node definition dict in the editor's wire format."""

    def _make(node_id: str, node_type: str, label: Optional[str] = None, **config) -> Dict[str, Any]:
        node = {
            "id": node_id,
            "type": node_type,
            "label": label or node_id,
            "config": config,
        }
        if "execution_order" in config:
            node["executionOrder"] = config.pop("execution_order")
        return node

    return _make


@pytest.fixture
def make_workflow():
    """Build a WorkflowDefinition from node dicts and (source, target[, handle]) tuples."""

    def _make(
        nodes: List[Dict[str, Any]],
        connections: List[tuple] = (),
        **fields,
    ) -> WorkflowDefinition:
        wire_connections = []
        for connection in connections:
            if isinstance(connection, dict):
                wire_connections.append(connection)
                continue
            source, target, *handle = connection
            wire = {"sourceNodeId": source, "targetNodeId": target}
            if handle:
                wire["sourceHandle"] = handle[0]
            wire_connections.append(wire)
        data = {"name": "Test workflow", "nodes": nodes, "connections": wire_connections}
        data.update(fields)
        return WorkflowDefinition.parse(data)

    return _make


@pytest.fixture
def workflow_store():
    """Create an empty in-memory workflow store."""
    return InMemoryWorkflowStore()


@pytest.fixture
def sleep():
    """Sleep double so Wait nodes never block."""
    return AsyncMock()


@pytest.fixture
def engine(workflow_store, sleep):
    """Create execution engine wired to the in-memory store."""
    return WorkflowExecutionEngine(store=workflow_store, sleep=sleep)
