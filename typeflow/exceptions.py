"""Base exceptions for TypeFlow."""

from typing import Any, Dict, Optional


class TypeFlowException(Exception):
    """Base exception for all TypeFlow errors."""

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(TypeFlowException):
    """Raised when there's a configuration error."""
    pass
