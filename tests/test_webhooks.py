"""Test webhook system implementation."""

import base64
from unittest.mock import AsyncMock, Mock

import pytest

from typeflow.executor.data import ExecutionItem, RunStatus, WorkflowExecutionResult
from typeflow.executor.errors import WorkflowValidationError
from typeflow.queue.models import TriggerType
from typeflow.webhooks import (
    DuplicateWebhookError,
    WebhookRegistration,
    WebhookRegistry,
    WebhookRequest,
    WebhookService,
)
from typeflow.webhooks.service import build_trigger_data, parse_body, response_body

HOOK_URL = "https://hooks.example.com:8443/webhook/org-1/orders/new?source=test"


def make_request(method="POST", body=b'{"orderId": 42}', headers=None, url=HOOK_URL):
    request_headers = {"Content-Type": "application/json"}
    request_headers.update(headers or {})
    return WebhookRequest(
        method=method, url=url, headers=request_headers, body=body, client_host="10.0.0.9",
    )


def basic(username, password):
    return "Basic " + base64.b64encode(f"{username}:{password}".encode()).decode()


@pytest.fixture
def webhook_workflow(make_node, make_workflow):
    def _make(workflow_id="wf-1", is_active=True, downstream=None, **hook_config):
        config = {"path": "/orders/new/", "method": "POST"}
        config.update(hook_config)
        return make_workflow(
            [
                make_node("hook", "webhook", "Hook", **config),
                downstream or make_node("set", "editFields", "Pick", keepOnlySet=True, fields=[
                    {"name": "orderId", "value": "={{ $json.body.orderId }}"},
                ]),
            ],
            [("hook", "set")],
            id=workflow_id,
            organizationId="org-1",
            isActive=is_active,
        )

    return _make


@pytest.fixture
def service(workflow_store, engine):
    return WebhookService(workflow_store, engine=engine, queue_enabled=False)


@pytest.fixture
def register(service, workflow_store, webhook_workflow):
    def _register(**kwargs):
        workflow = webhook_workflow(**kwargs)
        workflow_store.add(workflow)
        service.register_workflow_webhooks(workflow)
        return workflow

    return _register


@pytest.mark.unit
class TestWebhookRegistry:
    """Test WebhookRegistry."""

    def test_register_and_find(self):
        registry = WebhookRegistry()
        registry.register(WebhookRegistration(
            id="h1", organization_id="org-1", workflow_id="wf-1", path="/a/b/",
        ))

        found = registry.find("org-1", "a/b")
        assert found.id == "h1"
        assert registry.find("org-2", "a/b") is None

        found.is_active = False
        assert registry.get_by_id("h1").is_active is True

    def test_duplicate_path_in_organization(self):
        registry = WebhookRegistry()
        registry.register(WebhookRegistration(id="h1", organization_id="org-1", workflow_id="wf-1", path="x"))

        with pytest.raises(DuplicateWebhookError) as exc_info:
            registry.register(WebhookRegistration(
                id="h2", organization_id="org-1", workflow_id="wf-2", path="x",
            ))
        assert exc_info.value.status_code == 409

        registry.register(WebhookRegistration(id="h3", organization_id="org-2", workflow_id="wf-2", path="x"))
        assert len(registry.list_all()) == 2

    def test_reregister_moves_path(self):
        registry = WebhookRegistry()
        registry.register(WebhookRegistration(id="h1", organization_id="org-1", workflow_id="wf-1", path="old"))
        registry.register(WebhookRegistration(id="h1", organization_id="org-1", workflow_id="wf-1", path="new"))

        assert registry.find("org-1", "old") is None
        assert registry.find("org-1", "new").id == "h1"

    def test_activation_and_unregister(self):
        registry = WebhookRegistry()
        for path in ("a", "b"):
            registry.register(WebhookRegistration(
                id=path, organization_id="org-1", workflow_id="wf-1", path=path,
            ))

        assert registry.set_active_by_workflow("wf-1", False) == 2
        assert registry.set_active_by_workflow("wf-1", False) == 0
        assert registry.unregister("a").path == "a"
        assert registry.unregister("a") is None
        assert [r.id for r in registry.list_by_workflow("wf-1")] == ["b"]

    def test_registration_validation(self):
        with pytest.raises(ValueError):
            WebhookRegistration(organization_id="org-1", workflow_id="wf-1", path="//")
        with pytest.raises(ValueError):
            WebhookRegistration(organization_id="org-1", workflow_id="wf-1", path="a", rate_limit=-1)


@pytest.mark.unit
class TestRequestParsing:
    """Test body parsing and trigger data."""

    @pytest.mark.parametrize("content_type,raw,expected", [
        ("application/json", '{"a": 1}', {"a": 1}),
        ("application/json; charset=utf-8", "", {}),
        ("application/x-www-form-urlencoded", "a=1&b=two", {"a": "1", "b": "two"}),
        ("text/xml", "<a/>", {"xml": "<a/>"}),
        ("text/plain", "hello", {"text": "hello"}),
        ("", '{"a": 1}', {"a": 1}),
        ("", "not json", {"raw": "not json"}),
        ("application/octet-stream", "", {}),
    ])
    def test_parse_body(self, content_type, raw, expected):
        assert parse_body(content_type, raw) == expected

    def test_multipart_keeps_raw_body(self):
        assert parse_body("multipart/form-data; boundary=x", "--x")["_raw"] == "--x"

    def test_trigger_data(self):
        registration = WebhookRegistration(
            id="h1", organization_id="org-1", workflow_id="wf-1", path="orders/new",
        )
        request = make_request(headers={
            "X-Forwarded-For": "203.0.113.7, 10.0.0.1",
            "User-Agent": "pytest",
            "Cookie": "session=abc; theme=dark",
        })

        data = build_trigger_data(registration, "org-1", "orders/new", request)

        assert data["method"] == "POST"
        assert data["protocol"] == "https:"
        assert data["host"] == "hooks.example.com:8443"
        assert data["hostname"] == "hooks.example.com"
        assert data["port"] == "8443"
        assert data["pathname"] == "/webhook/org-1/orders/new"
        assert data["query"] == {"source": "test"}
        assert data["body"] == {"orderId": 42}
        assert data["rawBody"] == '{"orderId": 42}'
        assert data["cookies"] == {"session": "abc", "theme": "dark"}
        assert data["params"] == {"organizationId": "org-1", "path": "orders/new"}
        assert data["client"]["ip"] == "203.0.113.7"
        assert data["client"]["userAgent"] == "pytest"
        assert data["headers"]["user-agent"] == "pytest"
        assert data["webhookId"] == "h1"
        assert data["receivedAt"].endswith("Z")

    def test_malformed_json_body(self):
        registration = WebhookRegistration(organization_id="org-1", workflow_id="wf-1", path="p")
        data = build_trigger_data(registration, "org-1", "p", make_request(body=b"{broken"))
        assert data["body"] == {}

    def test_response_body(self):
        def result(*payloads):
            return WorkflowExecutionResult(
                execution_id="exec-1",
                workflow_id="wf-1",
                status=RunStatus.COMPLETED,
                final_output=[ExecutionItem.wrap(payload) for payload in payloads],
            )

        assert response_body(result({"a": 1}, {"a": 2})) == {"a": 1}
        assert response_body(result(7)) == 7
        assert response_body(result()) == {
            "success": True,
            "message": "Workflow executed successfully",
            "executionId": "exec-1",
        }


@pytest.mark.unit
class TestWebhookService:
    """Test webhook request handling end to end."""

    @pytest.mark.asyncio
    async def test_inline_execution(self, service, register, workflow_store):
        register()

        response = await service.handle_request("org-1", "orders/new", "post", make_request())

        assert response.status_code == 200
        assert response.body == {"orderId": 42}
        [record] = workflow_store.executions
        assert record["trigger"] == "webhook"
        assert record["webhookId"] == "wf-1:hook"
        assert record["organizationId"] == "org-1"

    @pytest.mark.asyncio
    async def test_unknown_webhook(self, service):
        response = await service.handle_request("org-1", "missing", "POST", make_request())

        assert response.status_code == 404
        assert response.body == {"error": "Webhook not found"}

    @pytest.mark.asyncio
    async def test_method_not_allowed(self, service, register):
        register()

        response = await service.handle_request("org-1", "orders/new", "GET", make_request("GET"))

        assert response.status_code == 405
        assert response.body == {"error": "Method not allowed. Expected POST, got GET"}

    @pytest.mark.asyncio
    async def test_inactive_webhook(self, service, register):
        register(is_active=False)

        response = await service.handle_request("org-1", "orders/new", "POST", make_request())

        assert response.status_code == 403
        assert response.body["error"].startswith("Webhook is inactive")

    @pytest.mark.asyncio
    async def test_inactive_workflow(self, service, register, workflow_store):
        workflow = register()
        workflow_store.add(workflow.model_copy(update={"is_active": False}))

        response = await service.handle_request("org-1", "orders/new", "POST", make_request())

        assert response.status_code == 403
        assert response.body["error"].startswith("Workflow is inactive")

    @pytest.mark.asyncio
    async def test_rate_limit(self, service, register):
        register(rateLimit=2)

        statuses = []
        for _ in range(3):
            response = await service.handle_request("org-1", "orders/new", "POST", make_request())
            statuses.append(response.status_code)

        assert statuses == [200, 200, 429]
        assert response.body["error"] == "Rate limit exceeded"
        assert 0 <= response.body["retryAfter"] <= 60
        assert response.headers["X-RateLimit-Limit"] == "2"
        assert "Retry-After" in response.headers

    @pytest.mark.asyncio
    async def test_rate_limit_checked_before_inactive(self, service, register):
        register(is_active=False, rateLimit=1)

        first = await service.handle_request("org-1", "orders/new", "POST", make_request())
        second = await service.handle_request("org-1", "orders/new", "POST", make_request())

        assert (first.status_code, second.status_code) == (403, 429)

    @pytest.mark.asyncio
    async def test_inline_failure(self, service, register, make_node):
        register(downstream=make_node("set", "throwError", "Fail", errorMessage="nope"))

        response = await service.handle_request("org-1", "orders/new", "POST", make_request())

        assert response.status_code == 500
        assert response.body == {"error": "Workflow execution failed", "message": "[Error] nope"}

    @pytest.mark.asyncio
    async def test_unexpected_error(self, service, register):
        register()
        service.engine.execute = AsyncMock(side_effect=RuntimeError("engine exploded"))

        response = await service.handle_request("org-1", "orders/new", "POST", make_request())

        assert response.status_code == 500
        assert response.body == {"error": "Internal server error", "message": "engine exploded"}

    @pytest.mark.asyncio
    async def test_queued_execution(self, workflow_store, engine, webhook_workflow):
        queue_manager = Mock()
        queue_manager.enqueue_job = AsyncMock(return_value="job-9")
        service = WebhookService(
            workflow_store, engine=engine, queue_manager=queue_manager, queue_enabled=True,
        )
        workflow = webhook_workflow(responseMode="respondImmediately")
        workflow_store.add(workflow)
        service.register_workflow_webhooks(workflow)

        response = await service.handle_request("org-1", "orders/new", "POST", make_request())

        assert response.status_code == 202
        assert response.body == {
            "success": True,
            "message": "Workflow queued for execution",
            "jobId": "job-9",
            "status": "queued",
        }
        [payload] = queue_manager.enqueue_job.await_args.args
        assert payload.trigger == TriggerType.WEBHOOK
        assert payload.webhook_path == "orders/new"
        assert payload.input["body"] == {"orderId": 42}
        assert workflow_store.executions == []

    @pytest.mark.asyncio
    async def test_queue_failure(self, workflow_store, engine, webhook_workflow):
        queue_manager = Mock()
        queue_manager.enqueue_job = AsyncMock(side_effect=ConnectionError("broker down"))
        service = WebhookService(
            workflow_store, engine=engine, queue_manager=queue_manager, queue_enabled=True,
        )
        workflow = webhook_workflow(responseMode="respondImmediately")
        workflow_store.add(workflow)
        service.register_workflow_webhooks(workflow)

        response = await service.handle_request("org-1", "orders/new", "POST", make_request())

        assert response.status_code == 500
        assert response.body == {"error": "Failed to queue workflow", "message": "broker down"}

    @pytest.mark.asyncio
    async def test_any_method_when_unset(self, service, register):
        register(method=None)
        response = await service.handle_request("org-1", "orders/new", "PUT", make_request("PUT"))
        assert response.status_code == 200

    def test_register_requires_identity(self, service, make_node, make_workflow):
        workflow = make_workflow([make_node("hook", "webhook", "Hook")])
        with pytest.raises(WorkflowValidationError):
            service.register_workflow_webhooks(workflow)

    def test_unregister_workflow(self, service, register):
        register()
        assert service.unregister_workflow_webhooks("wf-1") == 1
        assert service.registry.list_all() == []


@pytest.mark.unit
class TestWebhookAuthentication:
    """Test per-webhook authentication."""

    @pytest.mark.asyncio
    async def test_api_key(self, service, register):
        register(authType="api_key", authConfig={"apiKey": "secret", "headerName": "X-Hook-Key"})

        missing = await service.handle_request("org-1", "orders/new", "POST", make_request())
        header = await service.handle_request(
            "org-1", "orders/new", "POST", make_request(headers={"X-Hook-Key": "secret"}),
        )
        query = await service.handle_request(
            "org-1", "orders/new", "POST", make_request(url=HOOK_URL + "&api_key=secret"),
        )

        assert missing.status_code == 401
        assert missing.body == {"error": "Invalid or missing API key"}
        assert header.status_code == 200
        assert query.status_code == 200

    @pytest.mark.asyncio
    async def test_bearer(self, service, register):
        register(authType="bearer", authConfig={"token": "t0k"})

        async def call(headers):
            return await service.handle_request(
                "org-1", "orders/new", "POST", make_request(headers=headers),
            )

        assert (await call({})).body == {"error": "Missing Bearer token"}
        assert (await call({"Authorization": "Bearer nope"})).body == {"error": "Invalid Bearer token"}
        assert (await call({"Authorization": "Bearer t0k"})).status_code == 200

    @pytest.mark.asyncio
    async def test_basic(self, service, register):
        register(authType="basic", authConfig={"username": "ada", "password": "pw"})

        async def call(headers):
            return await service.handle_request(
                "org-1", "orders/new", "POST", make_request(headers=headers),
            )

        assert (await call({})).body == {"error": "Missing Basic authentication"}
        assert (await call({"Authorization": "Basic !!!"})).body == {
            "error": "Invalid Basic authentication format",
        }
        assert (await call({"Authorization": basic("ada", "bad")})).status_code == 401
        assert (await call({"Authorization": basic("ada", "pw")})).status_code == 200

    @pytest.mark.asyncio
    async def test_unconfigured_and_unknown_types_allow(self, service, register):
        register(authType="bearer")
        allowed = await service.handle_request("org-1", "orders/new", "POST", make_request())
        assert allowed.status_code == 200

        register(authType="hmac", authConfig={"secret": "x"})
        unknown = await service.handle_request("org-1", "orders/new", "POST", make_request())
        assert unknown.status_code == 200
