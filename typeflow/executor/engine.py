"""Main workflow execution engine."""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

import httpx
import structlog

from ..config import settings
from ..nodes.base import NodeConfig, NodeKind
from ..nodes.expression import ExpressionEvaluator
from ..nodes.registry import get_node_type, parse_node_config
from ..nodes.values import get_nested_value, set_nested_value
from ..workflows.models import Connection, NodeDefinition, WorkflowDefinition
from ..workflows.store import WorkflowStore
from .context import (
    ExecutionContext,
    FailedNode,
    NodeExecutionContext,
    RunServices,
    SleepFunc,
)
from .data import (
    ExecutionItem,
    NodeResult,
    NodeStatus,
    RunStatus,
    WorkflowExecutionResult,
)
from .debug import RunHandle
from .errors import (
    CircularWorkflowError,
    ExecutionCancelledError,
    ExecutionTimeoutError,
    NodeExecutionError,
    SubworkflowError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from .graph import WorkflowGraph
from .runner import NodeRunner

logger = structlog.get_logger()

WorkflowInput = Union[WorkflowDefinition, Dict[str, Any]]


@dataclass
class ExecutionPlan:
    """Everything a run needs that can be computed before it starts."""

    workflow: WorkflowDefinition
    graph: WorkflowGraph
    order: List[str]
    start_nodes: Set[str]
    configs: Dict[str, NodeConfig]
    catch_scopes: Dict[str, Set[str]] = field(default_factory=dict)
    catchers: Dict[str, Set[str]] = field(default_factory=dict)

    def node(self, node_id: str) -> NodeDefinition:
        return self.graph.nodes[node_id]


class _RunFailed(Exception):
    """Internal signal that an uncaught node failure ended the run."""


def _trigger_items(trigger_data: Any) -> List[ExecutionItem]:
    if trigger_data is None:
        return []
    if isinstance(trigger_data, list):
        return [ExecutionItem.wrap(element) for element in trigger_data]
    return [ExecutionItem.wrap(trigger_data)]


class WorkflowExecutionEngine:
    """Walks a workflow graph node by node and records per-node results.

    Runs are single-threaded and cooperative: nodes execute one at a time
    in graph order, and Wait, HTTP and breakpoint suspension only block the
    run that awaits them.
    """

    def __init__(
        self,
        store: Optional[WorkflowStore] = None,
        node_runner: Optional[NodeRunner] = None,
        sleep: Optional[SleepFunc] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        max_execution_time: Optional[float] = None,
        max_subworkflow_depth: Optional[int] = None,
        wait_max_ms: Optional[int] = None,
        http_timeout_ms: Optional[int] = None,
    ):
        self.store = store
        self.node_runner = node_runner or NodeRunner()
        self.max_execution_time = (
            max_execution_time if max_execution_time is not None else settings.max_execution_time
        )
        self.max_subworkflow_depth = max_subworkflow_depth or settings.max_subworkflow_depth
        self.services = RunServices(
            sleep=sleep or asyncio.sleep,
            http_transport=http_transport,
            run_subworkflow=self._run_subworkflow,
            wait_max_ms=wait_max_ms or settings.wait_max_ms,
            http_timeout_ms=http_timeout_ms or settings.http_default_timeout_ms,
        )
        self.logger = logger.bind(component="execution_engine")

    # Planning

    def plan(self, workflow: WorkflowInput, stop_at_node: Optional[str] = None) -> ExecutionPlan:
        """Validate a definition and compute its execution order.

        Raises WorkflowValidationError (including CircularDependencyError)
        for definitions that must be rejected before a run starts.
        """
        if isinstance(workflow, dict):
            workflow = WorkflowDefinition.parse(workflow)
        else:
            workflow.validate_structure()

        graph = WorkflowGraph(workflow)
        graph.check_acyclic()

        configs = {
            node.id: parse_node_config(node.type, node.config, node.label)
            for node in workflow.nodes
        }

        start_nodes = set(graph.trigger_nodes())
        selected = graph.reachable_from(start_nodes)
        if stop_at_node is not None:
            if stop_at_node not in graph.nodes:
                raise WorkflowValidationError(
                    f"Node {stop_at_node} does not exist in this workflow",
                    validation_errors=[f"Unknown node '{stop_at_node}'"],
                )
            if stop_at_node not in selected:
                raise WorkflowValidationError(
                    f"Node '{graph.nodes[stop_at_node].label}' is not reachable from a trigger",
                    validation_errors=[f"Unreachable node '{stop_at_node}'"],
                )
            selected &= graph.predecessors(stop_at_node) | {stop_at_node}

        plan = ExecutionPlan(
            workflow=workflow,
            graph=graph,
            order=graph.execution_order(selected),
            start_nodes=start_nodes & selected,
            configs=configs,
        )

        for node_id in plan.order:
            if graph.nodes[node_id].type != NodeKind.TRY_CATCH:
                continue
            scope = graph.try_catch_scope(node_id, configs[node_id].scope) & selected
            plan.catch_scopes[node_id] = scope
            for covered in scope:
                plan.catchers.setdefault(covered, set()).add(node_id)

        return plan

    # Entry points

    def prepare(
        self,
        workflow: WorkflowInput,
        trigger_data: Any = None,
        *,
        trigger_items: Optional[List[ExecutionItem]] = None,
        organization_id: Optional[str] = None,
        breakpoints: Optional[Set[str]] = None,
        continue_on_fail: bool = False,
        stop_at_node: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        execution_id: Optional[str] = None,
        call_stack: Sequence[str] = (),
    ) -> RunHandle:
        """Build a run without starting it, so breakpoints can still be toggled."""
        plan = self.plan(workflow, stop_at_node)
        workflow = plan.workflow

        active_breakpoints = set(workflow.breakpoints)
        active_breakpoints.update(breakpoints or ())

        context = ExecutionContext(
            workflow=workflow,
            execution_id=execution_id or str(uuid.uuid4()),
            configs=plan.configs,
            trigger_items=trigger_items if trigger_items is not None else _trigger_items(trigger_data),
            breakpoints=active_breakpoints,
            continue_on_fail=continue_on_fail,
            call_stack=tuple(call_stack) + (workflow.id or f"<{workflow.name}>",),
            organization_id=organization_id,
        )

        timeout = timeout_seconds if timeout_seconds is not None else self.max_execution_time

        async def run(handle: RunHandle) -> WorkflowExecutionResult:
            return await self._run(handle, plan, timeout)

        return RunHandle(context, run)

    def start(self, workflow: WorkflowInput, trigger_data: Any = None, **options) -> RunHandle:
        """Start a run in the background and return its debug handle."""
        return self.prepare(workflow, trigger_data, **options).start()

    async def execute(
        self,
        workflow: WorkflowInput,
        trigger_data: Any = None,
        **options,
    ) -> WorkflowExecutionResult:
        """Run a workflow to a terminal state, ignoring saved breakpoints."""
        handle = self.prepare(workflow, trigger_data, **options)
        handle.context.breakpoints.clear()
        return await handle.wait()

    async def execute_until(
        self,
        workflow: WorkflowInput,
        node_id: str,
        trigger_data: Any = None,
        **options,
    ) -> WorkflowExecutionResult:
        """Run only ``node_id`` and its transitive predecessors."""
        return await self.execute(workflow, trigger_data, stop_at_node=node_id, **options)

    # Run loop

    async def _run(
        self,
        handle: RunHandle,
        plan: ExecutionPlan,
        timeout_seconds: Optional[float],
    ) -> WorkflowExecutionResult:
        context = handle.context
        run_logger = context.logger.bind(component="execution_engine")
        context.start()
        run_logger.info(
            "Starting workflow execution",
            node_count=len(plan.order),
            breakpoints=sorted(context.breakpoints),
        )

        try:
            if timeout_seconds:
                await asyncio.wait_for(self._execute_nodes(handle, plan), timeout=timeout_seconds)
            else:
                await self._execute_nodes(handle, plan)
            context.finish(RunStatus.COMPLETED)

        except asyncio.TimeoutError:
            error = ExecutionTimeoutError(
                f"Workflow execution timed out after {timeout_seconds} seconds",
                timeout_seconds=timeout_seconds,
            )
            context.error = error.message
            context.error_type = type(error).__name__
            context.fail_running(error.message, context.error_type)
            context.finish(RunStatus.FAILED)

        except ExecutionCancelledError as e:
            context.error = e.message
            context.error_type = type(e).__name__
            context.finish(RunStatus.CANCELLED)

        except _RunFailed:
            context.finish(RunStatus.FAILED)

        except Exception as e:
            run_logger.exception("Workflow execution failed", error=str(e))
            context.error = str(e)
            context.error_type = type(e).__name__
            context.finish(RunStatus.FAILED)

        result = self._build_result(context, plan)
        run_logger.info(
            "Workflow execution completed",
            status=result.status.value,
            executed_nodes=len(context.executed_order),
            execution_time_ms=round(result.execution_time_ms, 3),
            error=result.error,
        )
        return result

    async def _execute_nodes(self, handle: RunHandle, plan: ExecutionPlan) -> None:
        context = handle.context

        for node_id in plan.order:
            context.check_cancelled()
            node = plan.node(node_id)
            items, has_input = self._gather_input(node_id, plan, context)
            scope_failures = self._scope_failures(node_id, plan, context)

            if not has_input and not scope_failures:
                node_type = get_node_type(node.type)
                context.record_result(NodeResult(
                    node_id=node_id,
                    status=NodeStatus.COMPLETED,
                    outputs={port: [] for port in node_type.outputs(plan.configs[node_id])},
                    skipped=True,
                ))
                context.logger.debug("Skipping node without input", node_id=node_id)
                continue

            if node_id in context.breakpoints or handle.step_pending:
                await handle.suspend_at(node_id)

            result = await self._execute_node(node, items, scope_failures, plan, context)
            if result.status != NodeStatus.FAILED:
                continue

            if self._failure_is_handled(node_id, plan, context):
                context.logger.warning(
                    "Node failure handled",
                    node_id=node_id,
                    node_label=node.label,
                    error=result.error,
                )
                continue

            context.error = result.error
            context.error_type = result.error_type
            context.failed_node_id = node_id
            raise _RunFailed()

    async def _execute_node(
        self,
        node: NodeDefinition,
        items: List[ExecutionItem],
        scope_failures: List[FailedNode],
        plan: ExecutionPlan,
        context: ExecutionContext,
    ) -> NodeResult:
        context.node_inputs[node.id] = items
        context.mark_running(node.id)

        node_context = NodeExecutionContext(
            node=node,
            execution_id=context.execution_id,
            workflow_id=context.workflow.id,
            organization_id=context.organization_id,
            evaluator=ExpressionEvaluator(context.outputs_by_label()),
            services=self.services,
            trigger_items=context.trigger_items,
            scope_failures=scope_failures,
            call_stack=context.call_stack,
        )

        task = asyncio.ensure_future(
            self.node_runner.run_node(node_context, plan.configs[node.id], items)
        )
        cancel_waiter = asyncio.ensure_future(context.cancel_event.wait())
        try:
            await asyncio.wait({task, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_waiter.cancel()
            if not task.done():
                task.cancel()

        if task.cancelled() or not task.done():
            context.record_result(NodeResult(
                node_id=node.id,
                status=NodeStatus.FAILED,
                error="Execution was cancelled",
                error_type=ExecutionCancelledError.__name__,
            ))
            raise ExecutionCancelledError()

        try:
            result = task.result()
        except NodeExecutionError as e:
            result = NodeResult(
                node_id=node.id,
                status=NodeStatus.FAILED,
                error=e.message,
                error_type=e.error_type,
                duration_ms=e.details.get("duration_ms"),
                started_at=context.node_results[node.id].started_at,
            )

        context.record_result(result)
        return result

    # Input routing

    def _connection_items(
        self,
        connection: Connection,
        plan: ExecutionPlan,
        context: ExecutionContext,
    ) -> List[ExecutionItem]:
        source = context.node_results.get(connection.source_node_id)
        if source is None or source.status != NodeStatus.COMPLETED:
            return []

        port = connection.source_handle
        if port is None:
            source_node = plan.node(connection.source_node_id)
            ports = get_node_type(source_node.type).outputs(plan.configs[source_node.id])
            port = ports[0]
        items = source.port_items(port)

        if not connection.data_mapping:
            return items
        mapped = []
        for item in items:
            item = item.copy()
            for target_field, source_path in connection.data_mapping.items():
                set_nested_value(item.json, target_field, get_nested_value(item.json, source_path))
            mapped.append(item)
        return mapped

    def _gather_input(
        self,
        node_id: str,
        plan: ExecutionPlan,
        context: ExecutionContext,
    ) -> Tuple[List[ExecutionItem], bool]:
        if node_id in plan.start_nodes:
            items = [item.copy() for item in context.trigger_items] or [ExecutionItem()]
            return items, True

        items: List[ExecutionItem] = []
        for connection in plan.graph.inbound(node_id):
            items.extend(self._connection_items(connection, plan, context))
        return items, bool(items)

    def _scope_failures(
        self,
        node_id: str,
        plan: ExecutionPlan,
        context: ExecutionContext,
    ) -> List[FailedNode]:
        if node_id not in plan.catch_scopes:
            return []
        failures = []
        for covered in plan.graph.execution_order(plan.catch_scopes[node_id]):
            result = context.node_results.get(covered)
            if result is None or result.status != NodeStatus.FAILED:
                continue
            node = plan.node(covered)
            failures.append(FailedNode(
                node_id=covered,
                label=node.label,
                error=result.error or "",
                error_type=result.error_type or "Error",
                input_items=context.node_inputs.get(covered, []),
            ))
        return failures

    def _failure_is_handled(
        self,
        node_id: str,
        plan: ExecutionPlan,
        context: ExecutionContext,
    ) -> bool:
        if context.continue_on_fail or plan.configs[node_id].continue_on_fail:
            return True
        return bool(plan.catchers.get(node_id))

    # Results

    def _final_output(self, context: ExecutionContext, plan: ExecutionPlan) -> List[ExecutionItem]:
        for node_id in reversed(context.executed_order):
            result = context.node_results[node_id]
            if plan.node(node_id).type == NodeKind.WORKFLOW_OUTPUT and result.status == NodeStatus.COMPLETED:
                return result.output
        if context.executed_order:
            return context.node_results[context.executed_order[-1]].output
        return []

    def _build_result(self, context: ExecutionContext, plan: ExecutionPlan) -> WorkflowExecutionResult:
        failed_node = plan.graph.nodes.get(context.failed_node_id) if context.failed_node_id else None
        return WorkflowExecutionResult(
            execution_id=context.execution_id,
            workflow_id=context.workflow.id,
            status=context.status,
            node_results=dict(context.node_results),
            final_output=self._final_output(context, plan) if context.status == RunStatus.COMPLETED else [],
            error=context.error,
            error_type=context.error_type,
            failed_node_id=context.failed_node_id,
            failed_node_label=failed_node.label if failed_node else None,
            execution_time_ms=context.elapsed_ms,
            started_at=context.started_at,
            finished_at=context.finished_at,
        )

    # Sub-workflows

    async def _run_subworkflow(
        self,
        workflow_id: str,
        items: List[ExecutionItem],
        parent: NodeExecutionContext,
    ) -> WorkflowExecutionResult:
        path = list(parent.call_stack) + [workflow_id]
        if workflow_id in parent.call_stack:
            raise CircularWorkflowError(
                f"Circular workflow call detected: {' -> '.join(path)}", workflow_path=path
            )
        if len(parent.call_stack) >= self.max_subworkflow_depth:
            raise CircularWorkflowError(
                f"Maximum sub-workflow depth of {self.max_subworkflow_depth} exceeded",
                workflow_path=path,
            )
        if self.store is None:
            raise SubworkflowError("No workflow store is configured", workflow_id)

        child = await self.store.get_workflow(workflow_id, parent.organization_id)
        if child is None:
            raise WorkflowNotFoundError(workflow_id, parent.organization_id)

        return await self.execute(
            child,
            trigger_items=[item.copy() for item in items],
            organization_id=parent.organization_id,
            call_stack=parent.call_stack,
        )
