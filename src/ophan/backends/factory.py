"""Build the configured executor."""

from __future__ import annotations

from collections.abc import Callable

from ophan.backends.anthropic_api import AnthropicApiExecutor
from ophan.backends.base import Executor
from ophan.backends.claude_cli import ClaudeCliExecutor
from ophan.core.config import ProjectConfig


def create_executor(
    config: ProjectConfig,
    progress_callback: Callable[[str], None] | None = None,
) -> Executor:
    """Create the executor named by ``config.executor.backend``."""
    if config.executor.backend == "anthropic_api":
        return AnthropicApiExecutor.from_config(
            config.executor,
            guardrails=config.guardrails,
            progress_callback=progress_callback,
        )
    return ClaudeCliExecutor.from_config(config.executor, progress_callback=progress_callback)
