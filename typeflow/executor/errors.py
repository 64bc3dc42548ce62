"""Execution engine error classes."""

from typing import Any, Dict, List, Optional

from ..exceptions import TypeFlowException


class ExecutionError(TypeFlowException):
    """Base class for all execution errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


class WorkflowValidationError(ExecutionError):
    """Raised when a workflow definition is rejected before a run starts."""

    def __init__(
        self,
        message: str,
        validation_errors: Optional[List[str]] = None,
        **kwargs
    ):
        kwargs.setdefault("error_code", "WORKFLOW_VALIDATION")
        super().__init__(message, **kwargs)
        self.validation_errors = validation_errors or []
        self.details["validation_errors"] = self.validation_errors


class CircularDependencyError(WorkflowValidationError):
    """Raised when the connection graph contains a cycle."""

    def __init__(self, message: str, cycle_path: List[str], **kwargs):
        super().__init__(
            message,
            validation_errors=[message],
            error_code="CIRCULAR_DEPENDENCY",
            **kwargs
        )
        self.cycle_path = cycle_path
        self.details["cycle_path"] = cycle_path


class NodeExecutionError(ExecutionError):
    """Raised when a single node fails.

    ``error_type`` is the user-facing classification of the failure. For
    ThrowError nodes it is exactly the configured type, otherwise it is the
    name of the underlying exception class.
    """

    def __init__(
        self,
        message: str,
        node_id: str,
        node_label: str,
        node_type: str,
        error_type: Optional[str] = None,
        execution_id: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("error_code", "NODE_FAILED")
        super().__init__(message, **kwargs)
        self.node_id = node_id
        self.node_label = node_label
        self.node_type = node_type
        self.error_type = error_type or "Error"
        self.execution_id = execution_id
        self.details.update({
            "node_id": node_id,
            "node_label": node_label,
            "node_type": node_type,
            "error_type": self.error_type,
            "execution_id": execution_id,
        })


class UserThrownError(ExecutionError):
    """Raised by a ThrowError node with its configured type and message."""

    def __init__(self, message: str, error_type: str = "Error"):
        super().__init__(f"[{error_type}] {message}", error_code="USER_THROWN")
        self.error_type = error_type
        self.user_message = message


class WorkflowInputValidationError(ExecutionError):
    """Raised when a WorkflowInput payload does not match its declared fields."""

    def __init__(self, message: str, field_errors: Optional[List[str]] = None):
        super().__init__(message, error_code="INPUT_VALIDATION")
        self.field_errors = field_errors or []
        self.details["field_errors"] = self.field_errors


class WorkflowExecutionError(ExecutionError):
    """Raised when workflow execution fails."""

    def __init__(
        self,
        message: str,
        workflow_id: Optional[str],
        execution_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.workflow_id = workflow_id
        self.execution_id = execution_id
        self.details.update({
            "workflow_id": workflow_id,
            "execution_id": execution_id,
        })


class WorkflowNotFoundError(ExecutionError):
    """Raised when a workflow cannot be loaded from the store."""

    def __init__(self, workflow_id: str, organization_id: Optional[str] = None):
        super().__init__(
            f"Workflow {workflow_id} not found",
            error_code="WORKFLOW_NOT_FOUND",
            details={"workflow_id": workflow_id, "organization_id": organization_id},
        )
        self.workflow_id = workflow_id


class SubworkflowError(ExecutionError):
    """Raised when a nested workflow run fails."""

    def __init__(self, message: str, workflow_id: str, **kwargs):
        kwargs.setdefault("error_code", "SUBWORKFLOW_FAILED")
        super().__init__(message, **kwargs)
        self.workflow_id = workflow_id
        self.details["workflow_id"] = workflow_id


class CircularWorkflowError(SubworkflowError):
    """Raised when workflow calls recurse or nest too deeply."""

    def __init__(self, message: str, workflow_path: Optional[List[str]] = None):
        path = workflow_path or []
        super().__init__(
            message,
            workflow_id=path[-1] if path else "",
            error_code="CIRCULAR_WORKFLOW",
        )
        self.workflow_path = path
        self.details["workflow_path"] = path


class ExecutionTimeoutError(ExecutionError):
    """Raised when execution times out."""

    def __init__(self, message: str, timeout_seconds: float, **kwargs):
        super().__init__(message, error_code="TIMEOUT", **kwargs)
        self.timeout_seconds = timeout_seconds
        self.details["timeout_seconds"] = timeout_seconds


class ExecutionCancelledError(ExecutionError):
    """Raised when execution is cancelled."""

    def __init__(self, message: str = "Execution was cancelled", **kwargs):
        super().__init__(message, error_code="CANCELLED", **kwargs)
