"""Code-generation executors."""

from ophan.backends.anthropic_api import AnthropicApiExecutor
from ophan.backends.base import (
    DEFAULT_MAX_TOOL_CALLS,
    ExecutionRequest,
    Executor,
    ExecutorResult,
)
from ophan.backends.claude_cli import ClaudeCliExecutor, StreamEventParser
from ophan.backends.factory import create_executor

__all__ = [
    "DEFAULT_MAX_TOOL_CALLS",
    "AnthropicApiExecutor",
    "ClaudeCliExecutor",
    "ExecutionRequest",
    "Executor",
    "ExecutorResult",
    "StreamEventParser",
    "create_executor",
]
