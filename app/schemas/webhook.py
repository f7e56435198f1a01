from __future__ import annotations

import ipaddress
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.models.mbee import WebhookType
from app.schemas.mbee import AuditRead, UpdateBase

_DISALLOWED_IPV4_NETWORKS = (
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
)
_IPV6_LOOPBACK = ipaddress.ip_address("::1")

HTTP_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE"}


def _validate_webhook_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme.lower() not in {"http", "https"}:
        raise ValueError("Webhook URL must use http or https")
    if not parsed.hostname:
        raise ValueError("Webhook URL must include a host")

    try:
        target_ip = ipaddress.ip_address(parsed.hostname)
    except ValueError:
        return value

    if isinstance(target_ip, ipaddress.IPv4Address) and any(
        target_ip in network for network in _DISALLOWED_IPV4_NETWORKS
    ):
        raise ValueError("Webhook URL host cannot be loopback, link-local, or private")
    if target_ip == _IPV6_LOOPBACK:
        raise ValueError("Webhook URL host cannot be loopback, link-local, or private")
    return value


def check_variant(
    webhook_type: WebhookType,
    responses: list | None,
    token: str | None,
    token_location: str | None,
) -> None:
    """Incoming webhooks carry a token; outgoing ones carry responses."""
    if webhook_type == WebhookType.incoming:
        if responses:
            raise ValueError("Incoming webhooks cannot have responses")
        if not token or not token_location:
            raise ValueError("Incoming webhooks require a token and a tokenLocation")
    else:
        if token or token_location:
            raise ValueError("Outgoing webhooks cannot have a token or tokenLocation")
        if not responses:
            raise ValueError("Outgoing webhooks require at least one response")


class WebhookResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str = Field(min_length=1, max_length=2048)
    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    data: Any = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        return _validate_webhook_url(value)

    @field_validator("method")
    @classmethod
    def validate_method(cls, value: str) -> str:
        method = value.upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method {value}")
        return method


class WebhookCreate(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str | None = Field(default=None, max_length=255)
    type: WebhookType
    triggers: list[str] = Field(min_length=1)
    reference: str | None = None
    responses: list[WebhookResponse] | None = None
    token: str | None = Field(default=None, max_length=255)
    token_location: str | None = Field(
        default=None, max_length=120, alias="tokenLocation"
    )
    custom: dict[str, Any] = Field(default_factory=dict)
    archived: bool = False

    @model_validator(mode="after")
    def check_type_fields(self) -> WebhookCreate:
        check_variant(self.type, self.responses, self.token, self.token_location)
        return self


class WebhookUpdate(UpdateBase):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str | None = Field(default=None, max_length=255)
    triggers: list[str] | None = Field(default=None, min_length=1)
    responses: list[WebhookResponse] | None = None
    token: str | None = Field(default=None, max_length=255)
    token_location: str | None = Field(
        default=None, max_length=120, alias="tokenLocation"
    )
    custom: dict[str, Any] | None = None
    archived: bool | None = None


class WebhookRead(AuditRead):
    id: str
    name: str | None = None
    type: WebhookType
    triggers: list[str] = Field(default_factory=list)
    reference: str | None = Field(default=None, validation_alias="reference_id")
    responses: list[dict[str, Any]] = Field(default_factory=list)
    token_location: str | None = None
