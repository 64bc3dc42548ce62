"""Test HTTP request node."""

import json

import httpx
import pytest

from typeflow.executor.context import NodeExecutionContext, RunServices
from typeflow.executor.data import ExecutionItem
from typeflow.nodes.base import HttpRequestConfig
from typeflow.nodes.expression import ExpressionEvaluator
from typeflow.nodes.http import HttpRequestError, execute_http_request
from typeflow.workflows.models import NodeDefinition


def http_context(handler):
    return NodeExecutionContext(
        node=NodeDefinition(id="http", type="httpRequest", label="Fetch"),
        execution_id="exec-1",
        workflow_id="wf-1",
        organization_id="org-1",
        evaluator=ExpressionEvaluator(),
        services=RunServices(http_transport=httpx.MockTransport(handler)),
    )


@pytest.mark.unit
class TestHttpRequestNode:
    """Test HttpRequest against a mock transport."""

    @pytest.mark.asyncio
    async def test_one_request_per_item_with_placeholders(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={"ok": True, "path": request.url.path})

        config = HttpRequestConfig.model_validate({
            "url": "https://api.example.com/users/{{id}}",
            "queryParameters": {"verbose": "1"},
        })
        items = [ExecutionItem(json={"id": 1}), ExecutionItem(json={"id": 2})]

        result = await execute_http_request(items, config, http_context(handler))

        assert seen == [
            "https://api.example.com/users/1?verbose=1",
            "https://api.example.com/users/2?verbose=1",
        ]
        assert [item.json for item in result] == [
            {"ok": True, "path": "/users/1"},
            {"ok": True, "path": "/users/2"},
        ]
        assert result[1].paired_item == {"item": 1}

    @pytest.mark.asyncio
    async def test_json_body_placeholders_are_json_encoded(self):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={"created": True})

        config = HttpRequestConfig.model_validate({
            "url": "https://api.example.com/items",
            "method": "post",
            "body": '{"name": {{name}}, "count": {{count}}}',
        })
        items = [ExecutionItem(json={"name": "widget", "count": 3})]

        await execute_http_request(items, config, http_context(handler))

        assert bodies == [{"name": "widget", "count": 3}]

    @pytest.mark.asyncio
    async def test_non_json_response_is_wrapped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="pong")

        config = HttpRequestConfig(url="https://example.com/ping")
        [item] = await execute_http_request([ExecutionItem()], config, http_context(handler))
        assert item.json == {"data": "pong"}

    @pytest.mark.asyncio
    async def test_full_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[1, 2], headers={"x-trace": "abc"})

        config = HttpRequestConfig.model_validate({
            "url": "https://example.com/list", "fullResponse": True,
        })
        [item] = await execute_http_request([ExecutionItem()], config, http_context(handler))

        assert item.json["statusCode"] == 200
        assert item.json["data"] == [1, 2]
        assert item.json["headers"]["x-trace"] == "abc"

    @pytest.mark.asyncio
    async def test_error_status_fails(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"error": "down"})

        config = HttpRequestConfig(url="https://example.com/fail")
        with pytest.raises(HttpRequestError) as exc_info:
            await execute_http_request([ExecutionItem()], config, http_context(handler))

        assert exc_info.value.status_code == 500
        assert "status code 500" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_never_error_returns_error_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": "missing"})

        config = HttpRequestConfig.model_validate({
            "url": "https://example.com/missing", "neverError": True,
        })
        [item] = await execute_http_request([ExecutionItem()], config, http_context(handler))
        assert item.json == {"error": "missing"}

    @pytest.mark.asyncio
    async def test_transport_error_fails(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        config = HttpRequestConfig(url="https://example.com/down")
        with pytest.raises(HttpRequestError, match="failed"):
            await execute_http_request([ExecutionItem()], config, http_context(handler))

    @pytest.mark.asyncio
    async def test_timeout_fails(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        config = HttpRequestConfig.model_validate({"url": "https://example.com/slow", "timeout": 50})
        with pytest.raises(HttpRequestError, match="timed out after 50ms"):
            await execute_http_request([ExecutionItem()], config, http_context(handler))

    def test_url_is_required(self):
        with pytest.raises(ValueError):
            HttpRequestConfig(url="  ")
