"""Core infrastructure: configuration, errors, and logging."""

from ophan.core.config import ProjectConfig, load_project_config
from ophan.core.errors import (
    ConfigurationError,
    DuplicateAgentError,
    ExecutorError,
    OphanError,
    PreconditionError,
    ProposalApplyError,
)

__all__ = [
    "ConfigurationError",
    "DuplicateAgentError",
    "ExecutorError",
    "OphanError",
    "PreconditionError",
    "ProjectConfig",
    "ProposalApplyError",
    "load_project_config",
]
