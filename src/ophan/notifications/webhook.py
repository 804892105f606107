"""HTTP webhook notifications using httpx.

Payloads are JSON objects with a ``type`` of ``escalation``,
``task_complete`` or ``digest``, a timestamp, the event-specific body and
the ``project`` the event belongs to.
"""

from __future__ import annotations

import asyncio
import os
import re
from typing import Any

import httpx

from ophan import __version__
from ophan.core.config import WebhookConfig
from ophan.core.logging import get_logger
from ophan.notifications.base import NotificationContext, NotificationEvent

_logger = get_logger("notifications.webhook")

# ${VAR} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


class MissingEnvironmentVariable(KeyError):
    """A ``${VAR}`` reference in webhook configuration is not set."""


def expand_env_vars(value: str) -> str:
    """Replace each ``${VAR}`` with its environment value.

    Raises:
        MissingEnvironmentVariable: If a referenced variable is not set.
    """

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        env_value = os.environ.get(name)
        if env_value is None:
            raise MissingEnvironmentVariable(name)
        return env_value

    return _ENV_VAR_PATTERN.sub(_replace, value)


def build_payload(context: NotificationContext) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": context.event.value,
        "timestamp": context.timestamp.isoformat(),
    }
    task = context.task
    if context.event == NotificationEvent.ESCALATION and task is not None:
        payload["task"] = {
            "id": task.id,
            "description": task.description,
            "iterations": task.iterations,
            "max_iterations": task.max_iterations,
        }
        payload["reason"] = context.reason
        payload["context"] = dict(context.details)
    elif context.event == NotificationEvent.TASK_COMPLETE and task is not None:
        payload["task"] = {
            "id": task.id,
            "description": task.description,
            "status": task.status.value,
            "iterations": task.iterations,
            "cost": task.cost,
            "duration": context.duration_seconds or 0.0,
        }
    elif context.event == NotificationEvent.DIGEST:
        payload["summary"] = dict(context.summary or {})
        payload["digest_path"] = context.digest_path
    payload["project"] = {"name": context.project_name, "path": context.project_path}
    return payload


class WebhookNotifier:
    """Sends events to one configured HTTP endpoint.

    Server errors, timeouts and connection errors are retried up to
    ``max_retries`` times; client errors (4xx) are not.
    """

    def __init__(
        self,
        name: str,
        url: str,
        method: str = "POST",
        headers: dict[str, str] | None = None,
        events: set[NotificationEvent] | None = None,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.name = name
        self._url = url
        self._method = method
        self._headers = headers or {}
        self._events = events or {NotificationEvent.ESCALATION}
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(
        cls,
        config: WebhookConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> WebhookNotifier:
        return cls(
            name=config.name,
            url=config.url,
            method=config.method,
            headers=dict(config.headers),
            events={NotificationEvent(e) for e in config.events},
            timeout=config.timeout,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
            transport=transport,
        )

    @property
    def subscribed_events(self) -> set[NotificationEvent]:
        return self._events

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    def _resolve_request(self) -> tuple[str, dict[str, str]]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"Ophan/{__version__}",
        }
        for key, value in self._headers.items():
            headers[key] = expand_env_vars(value)
        return expand_env_vars(self._url), headers

    async def _send_with_retry(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: dict[str, str],
        payload: dict[str, Any],
    ) -> tuple[bool, str | None]:
        last_error: str | None = None

        for attempt in range(self._max_retries + 1):
            try:
                response = await client.request(self._method, url, json=payload, headers=headers)
                if response.is_success:
                    return True, None
                last_error = f"HTTP {response.status_code}: {response.text[:100]}"
                if response.status_code < 500:
                    return False, last_error
                _logger.debug(
                    "webhook_retry_server_error",
                    webhook=self.name,
                    attempt=attempt + 1,
                    status_code=response.status_code,
                )
            except httpx.TimeoutException:
                last_error = "Request timed out"
                _logger.debug("webhook_retry_timeout", webhook=self.name, attempt=attempt + 1)
            except httpx.RequestError as e:
                last_error = str(e)
                _logger.debug(
                    "webhook_retry_request_error",
                    webhook=self.name,
                    attempt=attempt + 1,
                    error=last_error,
                )

            if attempt < self._max_retries:
                await asyncio.sleep(self._retry_delay)

        return False, last_error

    async def send(self, context: NotificationContext) -> bool:
        if context.event not in self._events:
            return True

        try:
            url, headers = self._resolve_request()
        except MissingEnvironmentVariable as e:
            _logger.warning("webhook_env_var_missing", webhook=self.name, var_name=str(e.args[0]))
            return False

        client = await self._get_client()
        success, error = await self._send_with_retry(client, url, headers, build_payload(context))
        if success:
            _logger.debug("webhook_notification_sent", webhook=self.name, title=context.format_title())
        else:
            _logger.warning("webhook_notification_failed", webhook=self.name, error=error)
        return success

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
