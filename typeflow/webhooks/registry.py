"""Webhook registry for managing webhook registrations."""

import logging
from threading import RLock
from typing import Dict, List, Optional, Tuple

from .exceptions import DuplicateWebhookError
from .models import WebhookRegistration, normalize_path

logger = logging.getLogger(__name__)


class WebhookRegistry:
    """In-memory registry for webhook registrations.

    A path is unique within an organization.
    """

    def __init__(self):
        # (organization_id, path) -> registration
        self._webhooks: Dict[Tuple[str, str], WebhookRegistration] = {}

        # Index by webhook ID
        self._id_index: Dict[str, WebhookRegistration] = {}

        self._lock = RLock()

    def register(self, registration: WebhookRegistration) -> None:
        """Register a webhook."""
        with self._lock:
            key = (registration.organization_id, registration.path)
            existing = self._webhooks.get(key)
            if existing and existing.id != registration.id:
                raise DuplicateWebhookError(
                    organization_id=registration.organization_id,
                    path=registration.path,
                    existing_workflow_id=existing.workflow_id,
                    new_workflow_id=registration.workflow_id,
                )

            # Re-registering an id under a new path drops the old path
            previous = self._id_index.get(registration.id)
            if previous is not None:
                self._webhooks.pop((previous.organization_id, previous.path), None)

            self._webhooks[key] = registration
            self._id_index[registration.id] = registration

            logger.info(
                f"Registered webhook {registration.organization_id}/{registration.path} "
                f"for workflow {registration.workflow_id}"
            )

    def unregister(self, webhook_id: str) -> Optional[WebhookRegistration]:
        """Unregister a webhook by ID."""
        with self._lock:
            registration = self._id_index.pop(webhook_id, None)
            if not registration:
                return None
            self._webhooks.pop((registration.organization_id, registration.path), None)

            logger.info(
                f"Unregistered webhook {registration.organization_id}/{registration.path} "
                f"(ID: {webhook_id})"
            )
            return registration

    def find(self, organization_id: str, path: str) -> Optional[WebhookRegistration]:
        """Find a webhook registration by organization and path."""
        with self._lock:
            registration = self._webhooks.get((organization_id, normalize_path(path)))
            # Return a copy to avoid mutations
            return registration.model_copy() if registration else None

    def get_by_id(self, webhook_id: str) -> Optional[WebhookRegistration]:
        with self._lock:
            registration = self._id_index.get(webhook_id)
            return registration.model_copy() if registration else None

    def list_by_workflow(self, workflow_id: str) -> List[WebhookRegistration]:
        with self._lock:
            return [
                r.model_copy() for r in self._id_index.values()
                if r.workflow_id == workflow_id
            ]

    def list_all(self) -> List[WebhookRegistration]:
        with self._lock:
            return [r.model_copy() for r in self._id_index.values()]

    def set_active_by_workflow(self, workflow_id: str, active: bool) -> int:
        """Switch every webhook of a workflow on or off; returns how many changed."""
        with self._lock:
            count = 0
            for registration in self._id_index.values():
                if registration.workflow_id == workflow_id and registration.is_active != active:
                    registration.is_active = active
                    count += 1

            state = "Activated" if active else "Deactivated"
            logger.info(f"{state} {count} webhooks for workflow {workflow_id}")
            return count

    def clear(self) -> None:
        """Clear all registrations (mainly for testing)."""
        with self._lock:
            self._webhooks.clear()
            self._id_index.clear()
            logger.info("Cleared all webhook registrations")
