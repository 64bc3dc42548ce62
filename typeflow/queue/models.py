"""Queue system data models."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..executor.data import json_safe


class TriggerType(str, Enum):
    """What caused a job to be enqueued."""

    MANUAL = "manual"
    WEBHOOK = "webhook"
    SCHEDULE = "schedule"
    CHAT = "chat"


class JobState(str, Enum):
    """Job state enumeration."""

    PENDING = "pending"
    ACTIVE = "active"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def from_celery(cls, state: str) -> "JobState":
        return _CELERY_STATES.get(state, cls.PENDING)


_CELERY_STATES = {
    "PENDING": JobState.PENDING,
    "RECEIVED": JobState.PENDING,
    "STARTED": JobState.ACTIVE,
    "RETRY": JobState.RETRYING,
    "SUCCESS": JobState.COMPLETED,
    "FAILURE": JobState.FAILED,
    "REVOKED": JobState.CANCELLED,
}


@dataclass(frozen=True)
class JobPayload:
    """Unit of work handed to the job runner; serialized into the queue."""

    workflow_id: str
    organization_id: Optional[str] = None
    trigger: TriggerType = TriggerType.MANUAL
    input: Any = None
    user_id: Optional[str] = None
    webhook_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = {
            "workflowId": self.workflow_id,
            "organizationId": self.organization_id,
            "trigger": self.trigger.value,
            "input": self.input,
            "userId": self.user_id,
        }
        if self.webhook_path is not None:
            data["webhookPath"] = self.webhook_path
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobPayload":
        """Create from dictionary."""
        return cls(
            workflow_id=data["workflowId"],
            organization_id=data.get("organizationId"),
            trigger=TriggerType(data.get("trigger") or TriggerType.MANUAL.value),
            input=data.get("input"),
            user_id=data.get("userId"),
            webhook_path=data.get("webhookPath"),
        )

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_json(cls, json_str: str) -> "JobPayload":
        """Create from JSON string."""
        return cls.from_dict(json.loads(json_str))


@dataclass
class JobResult:
    """What a finished job reports back to its caller."""

    success: bool
    outputs: Dict[str, Any] = field(default_factory=dict)
    execution_time: float = 0.0
    error: Optional[str] = None
    node_results: Dict[str, Any] = field(default_factory=dict)
    execution_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "success": self.success,
            "outputs": json_safe(self.outputs),
            "executionTime": round(self.execution_time, 3),
            "nodeResults": self.node_results,
        }
        if self.error is not None:
            data["error"] = self.error
        if self.execution_id is not None:
            data["executionId"] = self.execution_id
        return data


@dataclass
class JobStatus:
    """Snapshot of a queued job."""

    id: str
    state: JobState
    progress: int = 0
    result: Optional[Dict[str, Any]] = None
    failed_reason: Optional[str] = None
    attempts_made: int = 0
    data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state.value,
            "progress": self.progress,
            "result": self.result,
            "failedReason": self.failed_reason,
            "attemptsMade": self.attempts_made,
            "data": self.data,
        }


def normalize_outputs(value: Any) -> Dict[str, Any]:
    """Array-shaped results become ``{"items": [...]}``; maps pass through."""
    if isinstance(value, dict):
        return value
    if value is None:
        return {"items": []}
    if isinstance(value, (list, tuple)):
        return {"items": list(value)}
    return {"items": [value]}


def item_payloads(items: List[Any]) -> List[Any]:
    """Plain JSON payloads of execution items."""
    return [getattr(item, "json", item) for item in items]
