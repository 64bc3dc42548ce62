"""Webhook ingress service.

Framework-agnostic: an HTTP layer turns its request into a ``WebhookRequest``,
calls ``handle_request`` and writes the returned ``WebhookResponse`` back.
"""

import base64
import binascii
import json
from typing import Any, Dict, List, Optional, Union

import httpx
import structlog

from ..config import settings
from ..executor.data import WorkflowExecutionResult
from ..executor.engine import WorkflowExecutionEngine
from ..executor.errors import WorkflowValidationError
from ..nodes.base import NodeKind
from ..nodes.dates import to_iso_string, utc_now
from ..queue.manager import QueueManager
from ..queue.models import JobPayload, TriggerType
from ..utils.rate_limit import (
    LocalRateLimiter,
    RateLimiter,
    rate_limit_headers,
    retry_after,
)
from ..workflows.models import WorkflowDefinition
from ..workflows.store import WorkflowStore
from .exceptions import (
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

logger = structlog.get_logger()

Limiter = Union[RateLimiter, LocalRateLimiter]


def parse_body(content_type: str, raw_body: str) -> Any:
    """Decode a request body according to its content type."""
    if "application/json" in content_type:
        return json.loads(raw_body) if raw_body else {}
    if "application/x-www-form-urlencoded" in content_type:
        return dict(httpx.QueryParams(raw_body).items())
    if "multipart/form-data" in content_type:
        return {"_raw": raw_body, "_note": "Multipart form data - see rawBody"}
    if "application/xml" in content_type or "text/xml" in content_type:
        return {"xml": raw_body}
    if "text/" in content_type:
        return {"text": raw_body}
    if not raw_body:
        return {}
    try:
        return json.loads(raw_body)
    except json.JSONDecodeError:
        return {"raw": raw_body}


def authenticate(registration: WebhookRegistration, request: WebhookRequest) -> None:
    """Raise ``WebhookAuthenticationError`` unless the request carries valid credentials.

    Auth types with nothing configured admit every request, as do auth
    types this version does not recognize.
    """
    auth: WebhookAuthentication = registration.authentication
    auth_header = request.headers.get("authorization", "")

    def reject(reason: str) -> WebhookAuthenticationError:
        return WebhookAuthenticationError(registration.id, auth.type, reason)

    if auth.type in ("", WebhookAuthType.NONE):
        return

    if auth.type == WebhookAuthType.API_KEY:
        if not auth.api_key:
            return
        if request.headers.get(auth.header_name.lower()) == auth.api_key:
            return
        query = request.query
        if (query.get("api_key") or query.get("apiKey")) == auth.api_key:
            return
        raise reject("Invalid or missing API key")

    if auth.type == WebhookAuthType.BEARER:
        if not auth.token:
            return
        if not auth_header.lower().startswith("bearer "):
            raise reject("Missing Bearer token")
        if auth_header[7:] != auth.token:
            raise reject("Invalid Bearer token")
        return

    if auth.type == WebhookAuthType.BASIC:
        if not auth.username or not auth.password:
            return
        if not auth_header.lower().startswith("basic "):
            raise reject("Missing Basic authentication")
        try:
            credentials = base64.b64decode(auth_header[6:], validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            raise reject("Invalid Basic authentication format")
        username, _, password = credentials.partition(":")
        if username != auth.username or password != auth.password:
            raise reject("Invalid username or password")
        return

    logger.warning("Unknown webhook auth type", auth_type=auth.type, webhook_id=registration.id)


def build_trigger_data(
    registration: WebhookRegistration,
    organization_id: str,
    path: str,
    request: WebhookRequest,
) -> Dict[str, Any]:
    """Everything a workflow may want to know about the incoming call."""
    url = request.parsed_url
    headers = request.headers
    raw_body = request.text
    try:
        body = parse_body(request.content_type, raw_body)
    except ValueError as e:
        logger.error("Error parsing request body", error=str(e), webhook_id=registration.id)
        body = {}

    forwarded = headers.get("x-forwarded-for", "").split(",")[0].strip()
    return {
        "method": request.method,
        "url": str(url),
        "protocol": f"{url.scheme}:",
        "host": url.netloc.decode("ascii"),
        "hostname": url.host,
        "port": str(url.port) if url.port is not None else "",
        "pathname": url.path,
        "headers": dict(headers),
        "body": body,
        "rawBody": raw_body,
        "query": request.query,
        "cookies": request.cookies(),
        "params": {"organizationId": organization_id, "path": path},
        "client": {
            "ip": forwarded or headers.get("x-real-ip") or request.client_host or "unknown",
            "userAgent": headers.get("user-agent", "unknown"),
            "referer": headers.get("referer") or headers.get("referrer"),
            "origin": headers.get("origin"),
        },
        "webhookId": registration.id,
        "receivedAt": to_iso_string(utc_now()),
        "contentType": request.content_type,
    }


def response_body(result: WorkflowExecutionResult) -> Any:
    """Body returned to a caller that waited for the run."""
    if result.final_output:
        body: Any = result.final_output[0].json
    else:
        body = {
            "success": True,
            "message": "Workflow executed successfully",
            "executionId": result.execution_id,
        }
    # Primitive outputs arrive wrapped as {"value": ...}
    if isinstance(body, dict) and list(body) == ["value"]:
        return body["value"]
    return body


class WebhookService:
    """Registers workflow webhooks and answers incoming webhook calls."""

    def __init__(
        self,
        store: WorkflowStore,
        registry: Optional[WebhookRegistry] = None,
        engine: Optional[WorkflowExecutionEngine] = None,
        rate_limiter: Optional[Limiter] = None,
        queue_manager: Optional[QueueManager] = None,
        queue_enabled: Optional[bool] = None,
    ):
        self.store = store
        self.registry = registry or WebhookRegistry()
        self.engine = engine or WorkflowExecutionEngine(store=store)
        self.rate_limiter = rate_limiter or LocalRateLimiter(
            settings.webhook_rate_limit,
            settings.webhook_rate_window,
            key_prefix="rl:webhook",
        )
        self.queue_manager = queue_manager
        self.queue_enabled = settings.webhook_queue_enabled if queue_enabled is None else queue_enabled
        self.logger = logger.bind(component="webhook_service")

    def register_workflow_webhooks(self, workflow: WorkflowDefinition) -> List[str]:
        """Register every webhook trigger node of a stored workflow."""
        if not workflow.id or not workflow.organization_id:
            raise WorkflowValidationError("Webhook workflows need an id and an organization")

        webhook_ids = []
        for node in workflow.nodes:
            if node.type != NodeKind.WEBHOOK:
                continue
            config = node.config
            method = config.get("method", WebhookMethod.POST.value)
            registration = WebhookRegistration(
                id=config.get("webhookId") or f"{workflow.id}:{node.id}",
                organization_id=workflow.organization_id,
                workflow_id=workflow.id,
                node_id=node.id,
                path=config.get("path") or config.get("webhookPath") or node.id,
                method=WebhookMethod(method.upper()) if method else None,
                response_mode=WebhookResponseMode(
                    config.get("responseMode", WebhookResponseMode.WAIT_FOR_RESULT.value)
                ),
                is_active=workflow.is_active,
                authentication=WebhookAuthentication.from_config(
                    config.get("authType"), config.get("authConfig")
                ),
                rate_limit=config.get("rateLimit", settings.webhook_rate_limit),
            )
            self.registry.register(registration)
            webhook_ids.append(registration.id)

        self.logger.info(
            "Registered workflow webhooks",
            workflow_id=workflow.id,
            count=len(webhook_ids),
        )
        return webhook_ids

    def unregister_workflow_webhooks(self, workflow_id: str) -> int:
        webhooks = self.registry.list_by_workflow(workflow_id)
        for webhook in webhooks:
            self.registry.unregister(webhook.id)
        return len(webhooks)

    async def handle_request(
        self,
        organization_id: str,
        path: str,
        method: str,
        request: WebhookRequest,
    ) -> WebhookResponse:
        """Handle incoming webhook request."""
        log = self.logger.bind(organization_id=organization_id, path=path, method=method)
        log.info("Incoming webhook request")
        try:
            return await self._handle(organization_id, path, method.upper(), request, log)
        except WebhookError as e:
            log.warning("Webhook request rejected", status_code=e.status_code, error=e.message)
            return WebhookResponse(status_code=e.status_code, body=e.to_body())
        except Exception as e:
            log.exception("Webhook execution error")
            return WebhookResponse(
                status_code=500,
                body={"error": "Internal server error", "message": str(e) or type(e).__name__},
            )

    async def _handle(
        self,
        organization_id: str,
        path: str,
        method: str,
        request: WebhookRequest,
        log: Any,
    ) -> WebhookResponse:
        registration = self.registry.find(organization_id, path)
        if registration is None:
            raise WebhookNotFoundError(organization_id, path)

        limited = await self._check_rate_limit(registration)
        if limited is not None:
            log.warning("Rate limit exceeded for webhook", limit=registration.rate_limit)
            return limited

        if not registration.is_active:
            raise WebhookInactiveError(registration.id)
        workflow = await self.store.get_workflow(registration.workflow_id, organization_id)
        if workflow is None or not workflow.is_active:
            raise WebhookInactiveError(registration.id, subject="Workflow")

        authenticate(registration, request)

        if registration.method is not None and registration.method.value != method:
            raise MethodNotAllowedError(registration.id, registration.method.value, method)

        trigger_data = build_trigger_data(registration, organization_id, path, request)

        if (
            self.queue_enabled
            and self.queue_manager is not None
            and registration.response_mode == WebhookResponseMode.RESPOND_IMMEDIATELY
        ):
            return await self._enqueue(registration, organization_id, trigger_data, log)
        return await self._execute(workflow, registration, organization_id, trigger_data, log)

    async def _check_rate_limit(self, registration: WebhookRegistration) -> Optional[WebhookResponse]:
        if registration.rate_limit == 0:
            return None
        identifier = f"{registration.organization_id}:{registration.path}"
        result = await self.rate_limiter.check_with_limit(identifier, registration.rate_limit)
        if result.allowed:
            return None

        headers = {"Content-Type": "application/json"}
        headers.update(rate_limit_headers(result))
        return WebhookResponse(
            status_code=429,
            headers=headers,
            body={
                "error": "Rate limit exceeded",
                "message": "Too many requests. Please try again later.",
                "retryAfter": retry_after(result),
            },
        )

    async def _enqueue(
        self,
        registration: WebhookRegistration,
        organization_id: str,
        trigger_data: Dict[str, Any],
        log: Any,
    ) -> WebhookResponse:
        payload = JobPayload(
            workflow_id=registration.workflow_id,
            organization_id=organization_id,
            trigger=TriggerType.WEBHOOK,
            input=trigger_data,
            webhook_path=registration.path,
        )
        try:
            job_id = await self.queue_manager.enqueue_job(payload)
        except Exception as e:
            log.error("Error queuing workflow", workflow_id=registration.workflow_id, error=str(e))
            return WebhookResponse(
                status_code=500,
                body={"error": "Failed to queue workflow", "message": str(e)},
            )

        return WebhookResponse(
            status_code=202,
            body={
                "success": True,
                "message": "Workflow queued for execution",
                "jobId": job_id,
                "status": "queued",
            },
        )

    async def _execute(
        self,
        workflow: WorkflowDefinition,
        registration: WebhookRegistration,
        organization_id: str,
        trigger_data: Dict[str, Any],
        log: Any,
    ) -> WebhookResponse:
        try:
            result = await self.engine.execute(
                workflow, trigger_data, organization_id=organization_id
            )
        except WorkflowValidationError as e:
            return WebhookResponse(
                status_code=500,
                body={"error": "Workflow execution failed", "message": e.message},
            )

        await self._save_execution(registration, organization_id, result, log)

        if not result.success:
            failed = result.node_results.get(result.failed_node_id or "")
            return WebhookResponse(
                status_code=500,
                body={
                    "error": "Workflow execution failed",
                    "message": (failed.error if failed else None)
                    or result.error
                    or "One or more nodes failed",
                },
            )
        return WebhookResponse(status_code=200, body=response_body(result))

    async def _save_execution(
        self,
        registration: WebhookRegistration,
        organization_id: str,
        result: WorkflowExecutionResult,
        log: Any,
    ) -> None:
        record = result.to_dict()
        record.update({
            "organizationId": organization_id,
            "trigger": TriggerType.WEBHOOK.value,
            "webhookId": registration.id,
        })
        try:
            await self.store.save_execution(record)
        except Exception as e:
            log.error("Error saving webhook execution", error=str(e), execution_id=result.execution_id)
