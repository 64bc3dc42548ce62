"""Webhook data models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

import httpx
from pydantic import BaseModel, Field, field_validator


class WebhookMethod(str, Enum):
    """HTTP methods supported for webhooks."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"


class WebhookAuthType(str, Enum):
    """Webhook authentication types."""

    NONE = "none"
    API_KEY = "api_key"
    BEARER = "bearer"
    BASIC = "basic"


class WebhookResponseMode(str, Enum):
    """Webhook response modes."""

    WAIT_FOR_RESULT = "waitForResult"  # Run inline and return the final output
    RESPOND_IMMEDIATELY = "respondImmediately"  # Queue the run and return 202


def normalize_path(path: str) -> str:
    """Collapse a webhook path to ``segment/segment`` form."""
    return "/".join(part for part in path.split("/") if part)


class WebhookAuthentication(BaseModel):
    """Webhook authentication configuration.

    ``type`` is kept as a plain string so registrations carrying an auth type
    this version does not know still load; unknown types admit requests.
    """

    type: str = WebhookAuthType.NONE.value
    api_key: Optional[str] = None
    header_name: str = "x-api-key"
    token: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def from_config(cls, auth_type: Optional[str], config: Optional[Dict[str, Any]]) -> "WebhookAuthentication":
        """Build from the editor's ``authType`` + ``authConfig`` pair."""
        config = config or {}
        return cls(
            type=auth_type or WebhookAuthType.NONE.value,
            api_key=config.get("apiKey"),
            header_name=config.get("headerName") or "x-api-key",
            token=config.get("token"),
            username=config.get("username"),
            password=config.get("password"),
        )


class WebhookRegistration(BaseModel):
    """Represents a registered webhook."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    organization_id: str
    workflow_id: str
    node_id: Optional[str] = None
    path: str
    method: Optional[WebhookMethod] = WebhookMethod.POST
    response_mode: WebhookResponseMode = WebhookResponseMode.WAIT_FOR_RESULT
    is_active: bool = True
    authentication: WebhookAuthentication = Field(default_factory=WebhookAuthentication)
    rate_limit: int = 100  # Requests per window, 0 = unlimited
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("path")
    @classmethod
    def validate_path(cls, value: str) -> str:
        path = normalize_path(value)
        if not path:
            raise ValueError("path is required")
        return path

    @field_validator("rate_limit")
    @classmethod
    def validate_rate_limit(cls, value: int) -> int:
        if value < 0:
            raise ValueError("rate_limit cannot be negative")
        return value


class WebhookRequest(BaseModel):
    """Incoming webhook request, independent of the HTTP framework serving it."""

    method: str
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: bytes = b""
    client_host: Optional[str] = None

    @field_validator("method")
    @classmethod
    def upper_method(cls, value: str) -> str:
        return value.upper()

    @field_validator("headers")
    @classmethod
    def lower_header_names(cls, value: Dict[str, str]) -> Dict[str, str]:
        return {name.lower(): header for name, header in value.items()}

    @property
    def parsed_url(self) -> httpx.URL:
        return httpx.URL(self.url)

    @property
    def query(self) -> Dict[str, str]:
        return dict(self.parsed_url.params.items())

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def cookies(self) -> Dict[str, str]:
        cookies: Dict[str, str] = {}
        for cookie in self.headers.get("cookie", "").split(";"):
            name, sep, value = cookie.partition("=")
            if name.strip() and sep:
                cookies[name.strip()] = value.strip()
        return cookies


class WebhookResponse(BaseModel):
    """Webhook response data."""

    status_code: int = 200
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            "status_code": self.status_code,
            "headers": self.headers,
            "body": self.body,
        }
