"""Structured logging infrastructure for Ophan.

Provides structured logging using structlog with Ophan-specific context such
as the project name, task id and component. Supports console and JSON output
with an optional rotating log file.

Example usage:
    from ophan.core.logging import get_logger, configure_logging, with_context

    # Configure once at startup
    configure_logging(level="DEBUG", format="console")

    # Get a component-specific logger
    logger = get_logger("fast_loop")

    # Log with auto-context
    logger.info("attempt_started", iteration=2)

    # Use execution context for automatic correlation
    ctx = ExecutionContext(project="my-app", task_id="task-20250101-120000-ab12")
    with with_context(ctx):
        logger.info("task_started")  # Automatically includes project, task_id
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Sensitive field patterns that should never be logged
SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "apikey",
    "api-key",
    "token",
    "secret",
    "password",
    "credential",
    "authorization",
    "bearer",
})

# Token counters are numbers, not credentials
_SENSITIVE_EXEMPT = frozenset({
    "input_tokens",
    "output_tokens",
    "tokens_used",
    "total_tokens",
    "exploration_tokens",
})

_current_log_path: Path | None = None


def get_current_log_path() -> Path | None:
    """Get the currently configured log file path, if file logging is on."""
    return _current_log_path


def get_default_log_path(ophan_dir: Path) -> Path:
    """Default log file location for a project: ``.ophan/ophan.log``."""
    return ophan_dir / "ophan.log"


@dataclass(frozen=True)
class ExecutionContext:
    """Immutable context for correlating log entries across one run.

    Attributes:
        project: Project name (directory name of the project root).
        run_id: Unique id per CLI invocation or API call.
        task_id: Task currently being driven by the fast loop, if any.
        component: Component name for the current operation.
    """

    project: str
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    task_id: str | None = None
    component: str = "unknown"

    def with_task(self, task_id: str) -> ExecutionContext:
        """Return a copy bound to ``task_id``."""
        return replace(self, task_id=task_id)

    def with_component(self, component: str) -> ExecutionContext:
        """Return a copy bound to ``component``."""
        return replace(self, component=component)

    def to_dict(self) -> dict[str, Any]:
        """Convert context to a dictionary for logging (None values dropped)."""
        result: dict[str, Any] = {
            "project": self.project,
            "run_id": self.run_id,
            "component": self.component,
        }
        if self.task_id is not None:
            result["task_id"] = self.task_id
        return result


# ContextVar keeps contexts isolated between concurrent asyncio tasks
_current_context: ContextVar[ExecutionContext | None] = ContextVar(
    "ophan_context", default=None
)


def get_current_context() -> ExecutionContext | None:
    """Get the current ExecutionContext if set."""
    return _current_context.get()


def set_context(ctx: ExecutionContext) -> None:
    """Set the current ExecutionContext.

    Generally prefer using `with_context()` for automatic cleanup.
    """
    _current_context.set(ctx)


def clear_context() -> None:
    """Clear the current ExecutionContext."""
    _current_context.set(None)


@contextmanager
def with_context(ctx: ExecutionContext) -> Iterator[ExecutionContext]:
    """Set ExecutionContext for the duration of a block.

    Args:
        ctx: The ExecutionContext to use for the block.

    Yields:
        The ExecutionContext that was set.
    """
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


def _sanitize_value(key: str, value: Any) -> Any:
    """Return "[REDACTED]" for values whose key looks like a credential."""
    key_lower = key.lower()
    if key_lower in _SENSITIVE_EXEMPT:
        return value
    for pattern in SENSITIVE_PATTERNS:
        if pattern in key_lower:
            return "[REDACTED]"
    return value


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that redacts sensitive fields (one level deep)."""
    sanitized: EventDict = {}
    for key, value in event_dict.items():
        if isinstance(value, dict):
            sanitized[key] = {k: _sanitize_value(k, v) for k, v in value.items()}
        else:
            sanitized[key] = _sanitize_value(key, value)
    return sanitized


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that adds an ISO8601 UTC timestamp."""
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def _add_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that adds ExecutionContext fields.

    Explicitly bound fields take precedence over context fields.
    """
    ctx = get_current_context()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            if key not in event_dict:
                event_dict[key] = value
    return event_dict


class OphanLogger:
    """Ophan-specific logger wrapper around structlog.

    Bound to a component name; additional context can be bound for a
    scope. The underlying structlog logger is fetched lazily so loggers
    created at import time respect a later `configure_logging()` call.
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        logger: structlog.stdlib.BoundLogger = structlog.get_logger().bind(**self._context)
        return logger

    def bind(self, **context: Any) -> OphanLogger:
        """Create a new logger with additional bound context."""
        new_logger = OphanLogger.__new__(OphanLogger)
        new_logger._component = self._component
        new_logger._context = {**self._context, **context}
        return new_logger

    def unbind(self, *keys: str) -> OphanLogger:
        """Create a new logger with the given keys removed."""
        new_logger = OphanLogger.__new__(OphanLogger)
        new_logger._component = self._component
        new_logger._context = {k: v for k, v in self._context.items() if k not in keys}
        return new_logger

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        """Log an exception with traceback; call from an exception handler."""
        self._get_logger().exception(event, **kw)


def _build_processors(
    renderer: Processor,
    include_timestamps: bool,
    include_context: bool,
) -> list[Processor]:
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _sanitize_event_dict,
    ]
    if include_context:
        processors.append(_add_context)
    if include_timestamps:
        processors.append(_add_timestamp)
    processors.extend([
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ])
    return processors


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    format: Literal["json", "console", "both"] = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 10,
    backup_count: int = 3,
    include_timestamps: bool = True,
    include_context: bool = True,
) -> None:
    """Configure Ophan structured logging.

    Call once at application startup before any logging occurs.

    Args:
        level: Minimum log level to capture.
        format: "json" for structured output, "console" for human-readable,
            "both" for console to stderr and JSON to file (requires file_path).
        file_path: Optional file path for log output.
        max_file_size_mb: Maximum log file size before rotation (MB).
        backup_count: Number of rotated log files to keep.
        include_timestamps: Whether to include ISO8601 timestamps.
        include_context: Whether to include ExecutionContext fields.

    Raises:
        ValueError: If format="both" but file_path is not provided.
    """
    global _current_log_path

    if format == "both" and file_path is None:
        raise ValueError("file_path is required when format='both'")

    log_level = getattr(logging, level)
    handlers: list[logging.Handler] = []

    if format in ("console", "both"):
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        handlers.append(console_handler)

    if format in ("json", "both"):
        if file_path:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            _current_log_path = file_path
            file_handler = RotatingFileHandler(
                file_path,
                maxBytes=max_file_size_mb * 1024 * 1024,
                backupCount=backup_count,
                encoding="utf-8",
            )
            file_handler.setLevel(log_level)
            handlers.append(file_handler)
        else:
            json_handler = logging.StreamHandler(sys.stdout)
            json_handler.setLevel(log_level)
            handlers.append(json_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        root_logger.addHandler(handler)

    if format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    # cache_logger_on_first_use=False so import-time loggers pick up this config
    structlog.configure(
        processors=_build_processors(renderer, include_timestamps, include_context),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> OphanLogger:
    """Get an Ophan logger for a component.

    Args:
        component: The component name (e.g., "fast_loop", "registry").
        **initial_context: Additional context to bind.

    Returns:
        An OphanLogger bound to the component.
    """
    return OphanLogger(component, **initial_context)


__all__ = [
    "ExecutionContext",
    "OphanLogger",
    "SENSITIVE_PATTERNS",
    "clear_context",
    "configure_logging",
    "get_current_context",
    "get_current_log_path",
    "get_default_log_path",
    "get_logger",
    "set_context",
    "with_context",
]
