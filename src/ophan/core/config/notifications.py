"""Escalation / event webhook configuration models."""

from __future__ import annotations

from typing import Literal

from pydantic import Field

from ophan.core.config._base import ConfigModel

WebhookEventName = Literal["escalation", "task_complete", "digest"]


class WebhookConfig(ConfigModel):
    """One webhook endpoint.

    ``url`` and header values support ``${VAR}`` environment expansion.
    """

    name: str
    url: str
    method: Literal["POST", "PUT"] = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    events: list[WebhookEventName] = Field(default_factory=lambda: ["escalation"])
    timeout: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=2, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)


class EscalationsConfig(ConfigModel):
    webhooks: list[WebhookConfig] = Field(default_factory=list)
