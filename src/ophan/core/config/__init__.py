"""Configuration models for Ophan projects.

All models are re-exported here so callers can write
``from ophan.core.config import ProjectConfig``.
"""

from ophan.core.config.execution import (
    ExecutorConfig,
    GuardrailsConfig,
    InnerLoopConfig,
    RegenerationStrategy,
)
from ophan.core.config.learning import (
    LearningsConfig,
    OuterLoopConfig,
    TriggersConfig,
)
from ophan.core.config.notifications import (
    EscalationsConfig,
    WebhookConfig,
    WebhookEventName,
)
from ophan.core.config.project import (
    CONFIG_FILENAME,
    OPHAN_DIRNAME,
    LogConfig,
    ProjectConfig,
    load_project_config,
)

__all__ = [
    "CONFIG_FILENAME",
    "OPHAN_DIRNAME",
    "EscalationsConfig",
    "ExecutorConfig",
    "GuardrailsConfig",
    "InnerLoopConfig",
    "LearningsConfig",
    "LogConfig",
    "OuterLoopConfig",
    "ProjectConfig",
    "RegenerationStrategy",
    "TriggersConfig",
    "WebhookConfig",
    "WebhookEventName",
    "load_project_config",
]
