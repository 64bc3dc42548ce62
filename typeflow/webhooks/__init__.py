"""Webhook ingress for TypeFlow.

This module provides:
- Webhook registration per organization and path
- Per-webhook rate limiting
- API key, bearer and basic authentication
- Inline or queued workflow execution
"""

from .exceptions import (
    DuplicateWebhookError,
    MethodNotAllowedError,
    WebhookAuthenticationError,
    WebhookError,
    WebhookInactiveError,
    WebhookNotFoundError,
)
from .models import (
    WebhookAuthentication,
    WebhookAuthType,
    WebhookMethod,
    WebhookRegistration,
    WebhookRequest,
    WebhookResponse,
    WebhookResponseMode,
)
from .registry import WebhookRegistry
from .service import WebhookService

__all__ = [
    # Models
    "WebhookMethod",
    "WebhookRegistration",
    "WebhookRequest",
    "WebhookResponse",
    "WebhookAuthType",
    "WebhookAuthentication",
    "WebhookResponseMode",
    # Core components
    "WebhookRegistry",
    "WebhookService",
    # Exceptions
    "WebhookError",
    "DuplicateWebhookError",
    "WebhookNotFoundError",
    "WebhookInactiveError",
    "WebhookAuthenticationError",
    "MethodNotAllowedError",
]
