"""Factory for creating notifiers from configuration."""

from __future__ import annotations

from pathlib import Path

from ophan.core.config import EscalationsConfig, ProjectConfig
from ophan.notifications.base import NotificationManager, Notifier
from ophan.notifications.webhook import WebhookNotifier


def create_notifiers_from_config(escalations: EscalationsConfig) -> list[Notifier]:
    """One WebhookNotifier per configured webhook."""
    return [WebhookNotifier.from_config(webhook) for webhook in escalations.webhooks]


def create_notification_manager(config: ProjectConfig, project_root: Path) -> NotificationManager:
    return NotificationManager(
        create_notifiers_from_config(config.escalations),
        project_root=project_root,
    )


__all__ = ["create_notification_manager", "create_notifiers_from_config"]
