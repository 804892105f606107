"""Shared utilities for Ophan CLI commands.

- Output level and logging configuration set by the global options
- Project discovery and config loading
- Error message constants
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Literal

import typer
from rich.console import Console

from ophan.core.config import CONFIG_FILENAME, OPHAN_DIRNAME, ProjectConfig, load_project_config
from ophan.core.errors import ConfigurationError
from ophan.core.logging import configure_logging, get_logger

_logger = get_logger("cli")


class ErrorMessages:
    """User-facing CLI error strings."""

    NOT_INITIALIZED = "Ophan not initialized. Run `ophan init` first."
    CONFIG_LOAD_ERROR = "Error loading config"


class OutputLevel(str, Enum):
    """Output verbosity level."""

    QUIET = "quiet"
    NORMAL = "normal"
    VERBOSE = "verbose"


_output_level: OutputLevel = OutputLevel.NORMAL


def get_output_level() -> OutputLevel:
    return _output_level


def set_output_level(level: OutputLevel) -> None:
    global _output_level
    _output_level = level


def is_verbose() -> bool:
    return _output_level == OutputLevel.VERBOSE


def is_quiet() -> bool:
    return _output_level == OutputLevel.QUIET


@dataclass
class CliLoggingConfig:
    """Logging options collected from the global CLI flags."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
    file: Path | None = None
    format: Literal["json", "console", "both"] = "console"
    configured: bool = False
    from_flags: bool = False


_log_config = CliLoggingConfig()


def set_log_level(level: str) -> None:
    _log_config.level = level.upper()  # type: ignore[assignment]
    _log_config.from_flags = True


def set_log_file(path: Path | None) -> None:
    """Send logs to ``path``.

    Rich command output is separate from structured logging and still
    goes to the console.
    """
    _log_config.file = path
    _log_config.from_flags = True


def set_log_format(fmt: str) -> None:
    _log_config.format = fmt  # type: ignore[assignment]
    _log_config.from_flags = True


def configure_global_logging(console: Console) -> None:
    """Configure logging from the global CLI options, once per session.

    Raises:
        typer.Exit: If the logging options are inconsistent.
    """
    if _log_config.configured:
        return
    try:
        configure_logging(
            level=_log_config.level,
            format=_log_config.format,
            file_path=_log_config.file,
        )
        _log_config.configured = True
    except ValueError as e:
        console.print(f"[red]Logging configuration error:[/red] {e}")
        raise typer.Exit(1) from None


def apply_project_logging(config: ProjectConfig, project_root: Path, console: Console) -> None:
    """Reconfigure logging from the project's ``logging`` section.

    Global flags win: when any ``--log-*`` option or its env var was given
    the project settings are ignored.
    """
    if _log_config.from_flags:
        return
    settings = config.logging
    file_path = settings.file
    if file_path is not None and not file_path.is_absolute():
        file_path = project_root / OPHAN_DIRNAME / file_path
    try:
        configure_logging(level=settings.level, format=settings.format, file_path=file_path)
    except ValueError as e:
        console.print(f"[red]Logging configuration error:[/red] {e}")
        raise typer.Exit(1) from None
    _logger.debug("project_logging_applied", level=settings.level, format=settings.format)


def reset_logging_state() -> None:
    """Allow logging to be configured again (tests)."""
    _log_config.configured = False
    _log_config.from_flags = False
    _log_config.level = "WARNING"
    _log_config.file = None
    _log_config.format = "console"


def find_project_root(start: Path | None = None) -> Path | None:
    """Nearest directory at or above ``start`` holding ``.ophan/`` or ``.ophan.yaml``."""
    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / OPHAN_DIRNAME).is_dir() or (candidate / CONFIG_FILENAME).exists():
            return candidate
    return None


def is_initialized(project_root: Path) -> bool:
    return (project_root / OPHAN_DIRNAME).is_dir()


def resolve_project(project: Path | None, console: Console) -> Path:
    """The initialized project to operate on.

    ``--project`` is used as given; otherwise the current directory and its
    parents are searched.

    Raises:
        typer.Exit: If no initialized project is found.
    """
    root = project.resolve() if project is not None else find_project_root()
    if root is None or not is_initialized(root):
        console.print(f"[red]{ErrorMessages.NOT_INITIALIZED}[/red]")
        raise typer.Exit(1)
    return root


def load_config_or_exit(project_root: Path, console: Console) -> ProjectConfig:
    try:
        config = load_project_config(project_root)
    except ConfigurationError as e:
        console.print(f"[red]{ErrorMessages.CONFIG_LOAD_ERROR}:[/red] {e}")
        raise typer.Exit(1) from None
    apply_project_logging(config, project_root, console)
    return config
