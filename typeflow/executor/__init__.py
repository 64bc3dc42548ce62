"""Workflow execution engine module.

The coordinator itself lives in ``typeflow.executor.engine``; this package
root only re-exports the data and error types shared with node executors.
"""

from .data import (
    ExecutionItem,
    NodeResult,
    NodeStatus,
    RunStatus,
    WorkflowExecutionResult,
)
from .errors import (
    CircularDependencyError,
    CircularWorkflowError,
    ExecutionCancelledError,
    ExecutionError,
    ExecutionTimeoutError,
    NodeExecutionError,
    SubworkflowError,
    UserThrownError,
    WorkflowExecutionError,
    WorkflowInputValidationError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)

__all__ = [
    "ExecutionItem",
    "NodeResult",
    "NodeStatus",
    "RunStatus",
    "WorkflowExecutionResult",
    "CircularDependencyError",
    "CircularWorkflowError",
    "ExecutionCancelledError",
    "ExecutionError",
    "ExecutionTimeoutError",
    "NodeExecutionError",
    "SubworkflowError",
    "UserThrownError",
    "WorkflowExecutionError",
    "WorkflowInputValidationError",
    "WorkflowNotFoundError",
    "WorkflowValidationError",
]
