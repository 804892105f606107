"""CLI command implementations."""

from .init import init
from .review import review
from .status import context_stats, logs, status
from .task import task

__all__ = ["context_stats", "init", "logs", "review", "status", "task"]
