"""Node runner for executing individual nodes."""

import inspect
import time
from datetime import datetime, timezone
from typing import Any, Dict, List

import structlog

from ..nodes.base import NodeConfig
from ..nodes.registry import NodeType, get_node_type
from .context import NodeExecutionContext
from .data import MAIN_OUTPUT, ExecutionItem, NodeResult, NodeStatus
from .errors import ExecutionError, NodeExecutionError, UserThrownError

logger = structlog.get_logger()


def _error_type(error: Exception) -> str:
    if isinstance(error, UserThrownError):
        return error.error_type
    return type(error).__name__


def _error_message(error: Exception) -> str:
    if isinstance(error, ExecutionError):
        return error.message
    return str(error) or type(error).__name__


class NodeRunner:
    """Dispatches a node to its registered executor and times it."""

    def __init__(self):
        self.logger = logger.bind(component="node_runner")

    def _invoke(
        self,
        node_type: NodeType,
        items: List[ExecutionItem],
        config: NodeConfig,
        context: NodeExecutionContext,
    ) -> Any:
        if node_type.needs_context:
            return node_type.executor(items, config, context)
        if node_type.pass_evaluator:
            return node_type.executor(items, config, context.evaluator)
        return node_type.executor(items, config)

    def _normalize(
        self,
        node_type: NodeType,
        config: NodeConfig,
        output: Any,
    ) -> Dict[str, List[ExecutionItem]]:
        if isinstance(output, dict):
            return {port: list(output.get(port, [])) for port in node_type.outputs(config)}
        return {MAIN_OUTPUT: list(output or [])}

    async def run_node(
        self,
        context: NodeExecutionContext,
        config: NodeConfig,
        items: List[ExecutionItem],
    ) -> NodeResult:
        """Run a single node over its gathered input.

        Returns the completed result. Any failure is raised as a
        NodeExecutionError carrying the user-facing error type and the
        elapsed time in ``details["duration_ms"]``.
        """
        node = context.node
        node_type = get_node_type(node.type)
        node_logger = self.logger.bind(
            execution_id=context.execution_id,
            node_id=node.id,
            node_label=node.label,
            node_type=node.type.value,
        )

        started_at = datetime.now(timezone.utc)
        start = time.perf_counter()
        node_logger.info("Starting node execution", input_items=len(items))

        try:
            output = self._invoke(node_type, items, config, context)
            if inspect.isawaitable(output):
                output = await output
            outputs = self._normalize(node_type, config, output)
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            error_type = _error_type(e)
            node_logger.error(
                "Node execution failed",
                error=str(e),
                error_type=error_type,
                duration_ms=round(duration_ms, 3),
            )
            if isinstance(e, NodeExecutionError):
                raise
            raise NodeExecutionError(
                _error_message(e),
                node_id=node.id,
                node_label=node.label,
                node_type=node.type.value,
                error_type=error_type,
                execution_id=context.execution_id,
                details={"duration_ms": duration_ms, "original_error": str(e)},
            ) from e

        duration_ms = (time.perf_counter() - start) * 1000
        node_logger.info(
            "Node execution completed",
            output_items=sum(len(port_items) for port_items in outputs.values()),
            duration_ms=round(duration_ms, 3),
        )
        return NodeResult(
            node_id=node.id,
            status=NodeStatus.COMPLETED,
            outputs=outputs,
            duration_ms=duration_ms,
            started_at=started_at,
        )
