"""Escalation, task-completion and digest notifications."""

from ophan.notifications.base import (
    NotificationContext,
    NotificationEvent,
    NotificationManager,
    Notifier,
)
from ophan.notifications.factory import create_notification_manager, create_notifiers_from_config
from ophan.notifications.webhook import WebhookNotifier, build_payload, expand_env_vars

__all__ = [
    "NotificationContext",
    "NotificationEvent",
    "NotificationManager",
    "Notifier",
    "WebhookNotifier",
    "build_payload",
    "create_notification_manager",
    "create_notifiers_from_config",
    "expand_env_vars",
]
