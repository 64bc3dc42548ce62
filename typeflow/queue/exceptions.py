"""Queue system exceptions."""

from typing import Any, Dict, Optional

from ..exceptions import TypeFlowException


class QueueException(TypeFlowException):
    """Base exception for queue-related errors."""
    pass


class QueueConnectionError(QueueException):
    """Raised when unable to connect to queue backend."""
    pass


class QueueInitializationError(QueueException):
    """Raised when queue initialization fails."""
    pass


class JobProcessingError(QueueException):
    """Raised when job processing fails."""

    def __init__(self, message: str, job_id: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.job_id = job_id


class WorkerShutdownError(QueueException):
    """Raised when a job arrives at a worker that is shutting down."""
    pass
