"""Ophan CLI.

Package structure:
    cli/
    ├── __init__.py       # app assembly and global options
    ├── helpers.py        # output level, logging setup, project discovery
    ├── output.py         # rich tables and panels
    └── commands/
        ├── init.py       # init
        ├── task.py       # task
        ├── review.py     # review
        └── status.py     # status, logs, context-stats
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from ophan import __version__

from . import helpers as helpers
from .commands import context_stats, init, logs, review, status, task
from .helpers import (
    OutputLevel,
    configure_global_logging,
    set_log_file,
    set_log_format,
    set_log_level,
    set_output_level,
)
from .output import console

app = typer.Typer(
    name="ophan",
    help="Self-improving task runner for AI coding agents",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    if value:
        console.print(f"Ophan v{__version__}")
        raise typer.Exit()


def verbose_callback(value: bool) -> None:
    if value:
        set_output_level(OutputLevel.VERBOSE)


def quiet_callback(value: bool) -> None:
    if value:
        set_output_level(OutputLevel.QUIET)


def log_level_callback(value: str | None) -> str | None:
    if value:
        set_log_level(value)
    return value


def log_file_callback(value: Path | None) -> Path | None:
    if value:
        set_log_file(value)
    return value


def log_format_callback(value: str | None) -> str | None:
    if value:
        set_log_format(value)
    return value


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        callback=verbose_callback,
        is_eager=True,
        help="Show detailed output",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        callback=quiet_callback,
        is_eager=True,
        help="Show minimal output (errors only)",
    ),
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            callback=log_level_callback,
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="OPHAN_LOG_LEVEL",
        ),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option(
            "--log-file",
            callback=log_file_callback,
            help="Path for log file output",
            envvar="OPHAN_LOG_FILE",
        ),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            callback=log_format_callback,
            help="Log format: json, console, or both",
            envvar="OPHAN_LOG_FORMAT",
        ),
    ] = None,
) -> None:
    """Ophan - run coding tasks to convergence and learn from the results."""
    configure_global_logging(console)


app.command()(init)
app.command()(task)
app.command()(review)
app.command()(status)
app.command()(logs)
app.command(name="context-stats")(context_stats)


__all__ = ["app", "console", "main", "OutputLevel"]
