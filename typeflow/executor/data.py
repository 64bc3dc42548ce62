"""Execution data handling classes."""

import copy
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

MAIN_OUTPUT = "main"


def json_safe(value: Any) -> Any:
    """Copy of ``value`` with NaN and infinities replaced by ``None``."""
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {key: json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(item) for item in value]
    return value


@dataclass
class ExecutionItem:
    """One structured record flowing between nodes.

    ``paired_item`` records which upstream item(s) produced this one. It is
    informational only and never consulted for routing.
    """

    json: Dict[str, Any] = field(default_factory=dict)
    binary: Optional[Dict[str, Any]] = None
    paired_item: Optional[Any] = None

    def copy(self) -> "ExecutionItem":
        """Deep copy of the item so executors never mutate their inputs."""
        return ExecutionItem(
            json=copy.deepcopy(self.json),
            binary=copy.deepcopy(self.binary),
            paired_item=copy.deepcopy(self.paired_item),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"json": json_safe(self.json)}
        if self.binary is not None:
            data["binary"] = self.binary
        if self.paired_item is not None:
            data["pairedItem"] = self.paired_item
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionItem":
        return cls(
            json=dict(data.get("json") or {}),
            binary=data.get("binary"),
            paired_item=data.get("pairedItem"),
        )

    @classmethod
    def wrap(cls, payload: Any) -> "ExecutionItem":
        """Wrap an arbitrary payload as an item, keeping maps as-is."""
        if isinstance(payload, ExecutionItem):
            return payload
        if isinstance(payload, dict):
            return cls(json=dict(payload))
        return cls(json={"value": payload})


def items_to_dicts(items: List[ExecutionItem]) -> List[Dict[str, Any]]:
    return [item.to_dict() for item in items]


class NodeStatus(str, Enum):
    """Per-node execution status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (NodeStatus.COMPLETED, NodeStatus.FAILED)


class RunStatus(str, Enum):
    """Run-level state machine states."""

    PENDING = "pending"
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)


@dataclass(frozen=True)
class NodeResult:
    """Outcome of one node in one run.

    ``outputs`` maps output port names to item lists. Single-output nodes
    only use the ``main`` port; branching nodes have one entry per branch.
    """

    node_id: str
    status: NodeStatus
    outputs: Dict[str, List[ExecutionItem]] = field(default_factory=dict)
    error: Optional[str] = None
    error_type: Optional[str] = None
    duration_ms: Optional[float] = None
    started_at: Optional[datetime] = None
    skipped: bool = False

    @property
    def output(self) -> List[ExecutionItem]:
        """All output items, in port order."""
        items: List[ExecutionItem] = []
        for port_items in self.outputs.values():
            items.extend(port_items)
        return items

    def port_items(self, port: str) -> List[ExecutionItem]:
        return list(self.outputs.get(port, []))

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "nodeId": self.node_id,
            "status": self.status.value,
            "output": items_to_dicts(self.output),
        }
        if len(self.outputs) > 1 or (self.outputs and MAIN_OUTPUT not in self.outputs):
            data["outputs"] = {
                port: items_to_dicts(port_items)
                for port, port_items in self.outputs.items()
            }
        if self.error is not None:
            data["error"] = self.error
            data["errorType"] = self.error_type
        if self.duration_ms is not None:
            data["durationMs"] = round(self.duration_ms, 3)
        if self.skipped:
            data["skipped"] = True
        return data


@dataclass
class WorkflowExecutionResult:
    """Terminal record of one run."""

    execution_id: str
    workflow_id: Optional[str]
    status: RunStatus
    node_results: Dict[str, NodeResult] = field(default_factory=dict)
    final_output: List[ExecutionItem] = field(default_factory=list)
    error: Optional[str] = None
    error_type: Optional[str] = None
    failed_node_id: Optional[str] = None
    failed_node_label: Optional[str] = None
    execution_time_ms: float = 0.0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.status == RunStatus.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "executionId": self.execution_id,
            "workflowId": self.workflow_id,
            "status": self.status.value,
            "success": self.success,
            "finalOutput": items_to_dicts(self.final_output),
            "error": self.error,
            "errorType": self.error_type,
            "failedNodeId": self.failed_node_id,
            "failedNodeLabel": self.failed_node_label,
            "executionTimeMs": round(self.execution_time_ms, 3),
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "nodeResults": {
                node_id: result.to_dict() for node_id, result in self.node_results.items()
            },
        }
