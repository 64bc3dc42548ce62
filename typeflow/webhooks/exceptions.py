"""Webhook system exceptions.

Each error carries the HTTP status the ingress answers with.
"""

from typing import Any, Dict, Optional

from ..exceptions import TypeFlowException


class WebhookError(TypeFlowException):
    """Base exception for webhook-related errors."""

    status_code = 500

    def __init__(
        self,
        message: str,
        webhook_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.webhook_id = webhook_id

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.message}


class DuplicateWebhookError(WebhookError):
    """Raised when attempting to register a path already taken in the organization."""

    status_code = 409

    def __init__(
        self,
        organization_id: str,
        path: str,
        existing_workflow_id: str,
        new_workflow_id: str,
    ):
        message = (
            f"Webhook path {path} is already registered "
            f"for workflow {existing_workflow_id}"
        )
        super().__init__(
            message,
            details={
                "organization_id": organization_id,
                "path": path,
                "existing_workflow_id": existing_workflow_id,
                "new_workflow_id": new_workflow_id,
            },
        )


class WebhookNotFoundError(WebhookError):
    """Raised when a webhook is not found."""

    status_code = 404

    def __init__(self, organization_id: str, path: str):
        super().__init__(
            "Webhook not found",
            details={"organization_id": organization_id, "path": path},
        )


class WebhookInactiveError(WebhookError):
    """Raised when the webhook or its workflow is switched off."""

    status_code = 403

    def __init__(self, webhook_id: str, subject: str = "Webhook"):
        super().__init__(
            f"{subject} is inactive. Please activate the workflow to enable this webhook.",
            webhook_id=webhook_id,
        )


class WebhookAuthenticationError(WebhookError):
    """Raised when webhook authentication fails."""

    status_code = 401

    def __init__(self, webhook_id: str, auth_type: str, reason: str):
        super().__init__(
            reason,
            webhook_id=webhook_id,
            details={"auth_type": auth_type, "reason": reason},
        )


class MethodNotAllowedError(WebhookError):
    """Raised when a webhook is called with a method other than its configured one."""

    status_code = 405

    def __init__(self, webhook_id: str, expected: str, received: str):
        super().__init__(
            f"Method not allowed. Expected {expected}, got {received}",
            webhook_id=webhook_id,
            details={"expected": expected, "received": received},
        )
