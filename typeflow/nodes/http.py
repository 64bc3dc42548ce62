"""HTTP request node."""

import json
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..executor.context import NodeExecutionContext
from ..executor.data import ExecutionItem
from ..executor.errors import ExecutionError
from .base import BodyType, HttpRequestConfig
from .expression import ExpressionEvaluator
from .values import replace_template_placeholders, to_js_string

Items = List[ExecutionItem]

METHODS_WITHOUT_BODY = {"GET", "HEAD"}


class HttpRequestError(ExecutionError):
    """Raised when a request cannot be completed or returns an error status."""

    def __init__(self, message: str, url: str, status_code: Optional[int] = None):
        super().__init__(message, error_code="HTTP_REQUEST_FAILED")
        self.url = url
        self.status_code = status_code
        self.details.update({"url": url, "status_code": status_code})


def _json_literal(value: Any) -> str:
    return json.dumps(value, default=str)


class RequestBuilder:
    """Resolves templated request parts against one item."""

    def __init__(
        self,
        config: HttpRequestConfig,
        evaluator: ExpressionEvaluator,
        items: Sequence[ExecutionItem],
    ):
        self.config = config
        self.evaluator = evaluator
        self.items = items

    def resolve_text(self, value: Any, item: ExecutionItem, serialize=to_js_string) -> Any:
        if self.evaluator.is_expression(value):
            return self.evaluator.resolve(value, item, self.items)
        if isinstance(value, str):
            return replace_template_placeholders(value, item.json, serialize)
        return value

    def _resolve_structure(self, value: Any, item: ExecutionItem) -> Any:
        if isinstance(value, dict):
            return {key: self._resolve_structure(element, item) for key, element in value.items()}
        if isinstance(value, list):
            return [self._resolve_structure(element, item) for element in value]
        return self.resolve_text(value, item)

    def _mapping(self, values: Dict[str, Any], item: ExecutionItem) -> Dict[str, str]:
        return {
            key: to_js_string(self.resolve_text(value, item))
            for key, value in values.items()
        }

    def _body(self, item: ExecutionItem) -> Dict[str, Any]:
        body = self.config.body
        if body is None or body == "" or self.config.method in METHODS_WITHOUT_BODY:
            return {}

        if self.config.body_type == BodyType.JSON:
            if isinstance(body, str):
                resolved = self.resolve_text(body, item, serialize=_json_literal)
                if not isinstance(resolved, str):
                    return {"json": resolved}
                try:
                    return {"json": json.loads(resolved)}
                except ValueError:
                    return {
                        "content": resolved,
                        "headers": {"content-type": "application/json"},
                    }
            return {"json": self._resolve_structure(body, item)}

        if self.config.body_type == BodyType.FORM:
            if isinstance(body, dict):
                return {"data": self._mapping(body, item)}
            return {
                "content": to_js_string(self.resolve_text(body, item)),
                "headers": {"content-type": "application/x-www-form-urlencoded"},
            }

        return {"content": to_js_string(self.resolve_text(body, item))}

    def build(self, item: ExecutionItem) -> Dict[str, Any]:
        url = to_js_string(self.resolve_text(self.config.url, item))
        headers = self._mapping(self.config.headers, item)
        body = self._body(item)
        headers.update(body.pop("headers", {}))
        request = {
            "method": self.config.method,
            "url": url,
            "headers": headers,
            "params": self._mapping(self.config.query_parameters, item) or None,
        }
        request.update(body)
        return request


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _payload(config: HttpRequestConfig, response: httpx.Response) -> Dict[str, Any]:
    data = _decode(response)
    if config.full_response:
        return {
            "statusCode": response.status_code,
            "headers": dict(response.headers),
            "data": data,
        }
    if isinstance(data, dict):
        return data
    return {"data": data}


async def execute_http_request(
    items: Items,
    config: HttpRequestConfig,
    context: NodeExecutionContext,
) -> Items:
    """Issue one request per input item and return the response bodies."""
    timeout_ms = config.timeout or context.services.http_timeout_ms
    builder = RequestBuilder(config, context.evaluator, items)
    log = context.logger
    results = []

    async with httpx.AsyncClient(
        timeout=timeout_ms / 1000,
        transport=context.services.http_transport,
    ) as client:
        for index, item in enumerate(items):
            request = builder.build(item)
            url = request["url"]
            try:
                response = await client.request(**request)
            except httpx.TimeoutException as e:
                raise HttpRequestError(
                    f"Request to {url} timed out after {timeout_ms:g}ms", url
                ) from e
            except httpx.HTTPError as e:
                raise HttpRequestError(f"Request to {url} failed: {e}", url) from e

            log.debug(
                "HTTP request completed",
                method=request["method"],
                url=url,
                status_code=response.status_code,
            )
            if response.is_error and not config.never_error:
                raise HttpRequestError(
                    f"Request to {url} failed with status code {response.status_code}",
                    url,
                    status_code=response.status_code,
                )
            results.append(ExecutionItem(json=_payload(config, response), paired_item={"item": index}))

    return results
