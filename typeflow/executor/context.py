"""Execution context classes."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

import httpx
import structlog

from ..nodes.base import NodeConfig
from ..nodes.expression import ExpressionEvaluator
from ..workflows.models import NodeDefinition, WorkflowDefinition
from .data import ExecutionItem, NodeResult, NodeStatus, RunStatus
from .errors import ExecutionCancelledError

logger = structlog.get_logger()

SleepFunc = Callable[[float], Awaitable[None]]
SubworkflowRunner = Callable[..., Awaitable[Any]]


@dataclass
class RunServices:
    """Collaborators shared by every node of a run, and by nested runs."""

    sleep: SleepFunc = asyncio.sleep
    http_transport: Optional[httpx.AsyncBaseTransport] = None
    run_subworkflow: Optional[SubworkflowRunner] = None
    wait_max_ms: int = 300000
    http_timeout_ms: int = 30000


@dataclass
class FailedNode:
    """A failure visible to a TryCatch node."""

    node_id: str
    label: str
    error: str
    error_type: str
    input_items: List[ExecutionItem] = field(default_factory=list)


@dataclass
class NodeExecutionContext:
    """What a runtime-aware executor may see of its run."""

    node: NodeDefinition
    execution_id: str
    workflow_id: Optional[str]
    organization_id: Optional[str]
    evaluator: ExpressionEvaluator
    services: RunServices
    trigger_items: List[ExecutionItem] = field(default_factory=list)
    scope_failures: List[FailedNode] = field(default_factory=list)
    call_stack: Tuple[str, ...] = ()

    @property
    def logger(self):
        return logger.bind(
            execution_id=self.execution_id,
            node_id=self.node.id,
            node_label=self.node.label,
        )


_TRANSITIONS = {
    RunStatus.PENDING: {RunStatus.RUNNING, RunStatus.FAILED, RunStatus.CANCELLED},
    RunStatus.RUNNING: {
        RunStatus.SUSPENDED, RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED,
    },
    RunStatus.SUSPENDED: {RunStatus.RUNNING, RunStatus.FAILED, RunStatus.CANCELLED},
}


class ExecutionContext:
    """Mutable state of one run, owned by the coordinator.

    Holds the per-node results, the breakpoint set and the suspended node id.
    Results become immutable once terminal.
    """

    def __init__(
        self,
        workflow: WorkflowDefinition,
        execution_id: str,
        configs: Dict[str, NodeConfig],
        trigger_items: Optional[List[ExecutionItem]] = None,
        breakpoints: Optional[Set[str]] = None,
        continue_on_fail: bool = False,
        call_stack: Tuple[str, ...] = (),
        organization_id: Optional[str] = None,
    ):
        self.workflow = workflow
        self.execution_id = execution_id
        self.organization_id = organization_id or workflow.organization_id
        self.configs = configs
        self.trigger_items = trigger_items or []
        self.breakpoints: Set[str] = set(breakpoints or ())
        self.continue_on_fail = continue_on_fail
        self.call_stack = call_stack

        self.status = RunStatus.PENDING
        self.suspended_node_id: Optional[str] = None
        self.node_results: Dict[str, NodeResult] = {}
        self.node_inputs: Dict[str, List[ExecutionItem]] = {}
        self.executed_order: List[str] = []
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None

        self.error: Optional[str] = None
        self.error_type: Optional[str] = None
        self.failed_node_id: Optional[str] = None

        self.cancel_event = asyncio.Event()

        self.logger = logger.bind(
            workflow_id=workflow.id,
            execution_id=execution_id,
        )

    def transition(self, status: RunStatus) -> None:
        if status == self.status:
            return
        allowed = _TRANSITIONS.get(self.status, set())
        if status not in allowed:
            raise RuntimeError(f"Invalid run transition {self.status.value} -> {status.value}")
        self.logger.debug("Run status changed", previous=self.status.value, status=status.value)
        self.status = status

    def start(self) -> None:
        self.started_at = datetime.now(timezone.utc)
        self.transition(RunStatus.RUNNING)

    def finish(self, status: RunStatus) -> None:
        self.finished_at = datetime.now(timezone.utc)
        self.suspended_node_id = None
        self.transition(status)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def check_cancelled(self) -> None:
        """Check if execution has been cancelled."""
        if self.cancelled:
            raise ExecutionCancelledError()

    def record_result(self, result: NodeResult) -> None:
        existing = self.node_results.get(result.node_id)
        if existing is not None and existing.status.is_terminal:
            raise RuntimeError(f"Node {result.node_id} already has a terminal result")
        self.node_results[result.node_id] = result
        if result.status.is_terminal and not result.skipped:
            self.executed_order.append(result.node_id)

    def mark_running(self, node_id: str) -> None:
        self.record_result(NodeResult(
            node_id=node_id,
            status=NodeStatus.RUNNING,
            started_at=datetime.now(timezone.utc),
        ))

    def fail_running(self, error: str, error_type: str) -> None:
        """Fail whichever node is still marked running, e.g. after a timeout."""
        for node_id, result in list(self.node_results.items()):
            if result.status == NodeStatus.RUNNING:
                self.record_result(NodeResult(
                    node_id=node_id,
                    status=NodeStatus.FAILED,
                    error=error,
                    error_type=error_type,
                    started_at=result.started_at,
                ))

    def outputs_by_label(self) -> Dict[str, List[ExecutionItem]]:
        """Completed node outputs keyed by label, for ``$node[...]`` references."""
        outputs = {}
        for node in self.workflow.nodes:
            result = self.node_results.get(node.id)
            if result is not None and result.status == NodeStatus.COMPLETED and not result.skipped:
                outputs[node.label] = result.output
        return outputs

    @property
    def elapsed_ms(self) -> float:
        if not self.started_at:
            return 0.0
        end = self.finished_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds() * 1000
