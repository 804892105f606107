"""Notification framework base types and protocols.

Provides the core notification infrastructure for Ophan:
- NotificationEvent enum for event types
- Notifier protocol for notification backends
- NotificationManager for coordinating multiple notifiers

Delivery is best-effort: a failing notifier is logged and skipped, it never
fails the task or review that triggered it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from ophan.core.logging import get_logger
from ophan.models import Task
from ophan.utils.time import utc_now

_logger = get_logger("notifications")


class NotificationEvent(str, Enum):
    """Events that can trigger notifications.

    Values match the ``events`` names accepted in webhook configuration.
    """

    ESCALATION = "escalation"
    TASK_COMPLETE = "task_complete"
    DIGEST = "digest"


@dataclass
class NotificationContext:
    """Everything a notifier needs to describe one event."""

    event: NotificationEvent
    project_name: str
    project_path: str
    timestamp: datetime = field(default_factory=utc_now)

    task: Task | None = None
    """The task concerned (escalation and task_complete)."""

    reason: str | None = None
    """Escalation reason, ``cost_limit`` or ``max_iterations``."""

    details: dict[str, Any] = field(default_factory=dict)
    """Diagnostic context: last error, suggested action."""

    duration_seconds: float | None = None

    summary: dict[str, Any] | None = None
    """Review totals (digest)."""

    digest_path: str | None = None

    def format_title(self) -> str:
        titles = {
            NotificationEvent.ESCALATION: f"Ophan: task escalated ({self.reason})",
            NotificationEvent.TASK_COMPLETE: "Ophan: task finished",
            NotificationEvent.DIGEST: "Ophan: review digest ready",
        }
        return titles[self.event]

    def format_message(self) -> str:
        parts: list[str] = []
        if self.task is not None:
            parts.append(f"{self.task.id} [{self.task.status.value}]")
            parts.append(f"{self.task.iterations}/{self.task.max_iterations} attempts")
        if self.duration_seconds is not None:
            parts.append(f"{self.duration_seconds:.1f}s")
        last_error = self.details.get("last_error")
        if last_error:
            error = str(last_error)
            parts.append(f"Error: {error[:100]}{'...' if len(error) > 100 else ''}")
        if self.digest_path:
            parts.append(self.digest_path)
        return " | ".join(parts) if parts else self.event.value


@runtime_checkable
class Notifier(Protocol):
    """Protocol for notification backends."""

    @property
    def subscribed_events(self) -> set[NotificationEvent]: ...

    async def send(self, context: NotificationContext) -> bool:
        """Deliver one notification. Returns False on failure, never raises."""
        ...

    async def close(self) -> None: ...


class NotificationManager:
    """Routes events to the notifiers subscribed to them.

    Example usage:
        manager = NotificationManager(
            [WebhookNotifier(name="ops", url="https://example.com/hook")],
            project_root=Path("."),
        )
        await manager.notify_escalation(task, "max_iterations", last_error="...")
    """

    def __init__(
        self,
        notifiers: list[Notifier] | None = None,
        project_root: Path | None = None,
        project_name: str | None = None,
    ) -> None:
        self._notifiers: list[Notifier] = notifiers or []
        root = (project_root or Path.cwd()).resolve()
        self.project_path = str(root)
        self.project_name = project_name or root.name

    def add_notifier(self, notifier: Notifier) -> None:
        self._notifiers.append(notifier)

    @property
    def notifier_count(self) -> int:
        return len(self._notifiers)

    def has_subscribers(self, event: NotificationEvent) -> bool:
        return any(event in n.subscribed_events for n in self._notifiers)

    def _context(self, event: NotificationEvent, **kwargs: Any) -> NotificationContext:
        return NotificationContext(
            event=event,
            project_name=self.project_name,
            project_path=self.project_path,
            **kwargs,
        )

    async def notify(self, context: NotificationContext) -> dict[str, bool]:
        """Send to every subscribed notifier.

        Returns a mapping of notifier name to success. Exceptions from a
        notifier are logged and recorded as a failure.
        """
        results: dict[str, bool] = {}
        for notifier in self._notifiers:
            if context.event not in notifier.subscribed_events:
                continue
            notifier_name = getattr(notifier, "name", type(notifier).__name__)
            try:
                results[notifier_name] = await notifier.send(context)
            except Exception as e:
                _logger.warning(
                    "notifier_failed",
                    notifier=notifier_name,
                    notification_event=context.event.value,
                    error=str(e),
                )
                results[notifier_name] = False
        return results

    async def notify_escalation(
        self,
        task: Task,
        reason: str,
        last_error: str | None = None,
        suggested_action: str | None = None,
    ) -> dict[str, bool]:
        details: dict[str, Any] = {}
        if last_error is not None:
            details["last_error"] = last_error
        if suggested_action is not None:
            details["suggested_action"] = suggested_action
        return await self.notify(
            self._context(NotificationEvent.ESCALATION, task=task, reason=reason, details=details)
        )

    async def notify_task_complete(self, task: Task) -> dict[str, bool]:
        return await self.notify(
            self._context(
                NotificationEvent.TASK_COMPLETE,
                task=task,
                duration_seconds=task.duration_seconds or 0.0,
            )
        )

    async def notify_digest(self, summary: dict[str, Any], digest_path: Path) -> dict[str, bool]:
        return await self.notify(
            self._context(NotificationEvent.DIGEST, summary=summary, digest_path=str(digest_path))
        )

    async def close(self) -> None:
        for notifier in self._notifiers:
            try:
                await notifier.close()
            except Exception as e:
                _logger.warning(
                    "notifier_close_failed",
                    notifier=type(notifier).__name__,
                    error=str(e),
                )
