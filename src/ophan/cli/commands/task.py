"""``ophan task``: run one work item through the fast loop."""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer

from ophan.api import run_item
from ophan.core.errors import OphanError
from ophan.models import TaskStatus

from ..helpers import is_quiet, is_verbose, load_config_or_exit, resolve_project
from ..output import console, format_duration, format_task_status


def task(
    description: str = typer.Argument(..., help="What the task should accomplish"),
    project: Path | None = typer.Option(None, "--project", "-p", help="Project directory"),
    max_iterations: int | None = typer.Option(
        None,
        "--max-iterations",
        "-i",
        min=1,
        help="Override the attempt ceiling for this task",
    ),
    cost_limit: float | None = typer.Option(
        None,
        "--cost-limit",
        "-c",
        min=0.0,
        help="Cost budget in USD for this task",
    ),
) -> None:
    """Run a task until it converges, fails or escalates."""
    project_root = resolve_project(project, console)
    config = load_config_or_exit(project_root, console)
    if max_iterations is not None:
        config.inner_loop.max_iterations = max_iterations

    def on_progress(message: str) -> None:
        if is_verbose():
            console.print(f"[dim]{message}[/dim]")

    if not is_quiet():
        console.print(f"[bold]Task:[/bold] {description}")
    try:
        result = asyncio.run(run_item(project_root, description, cost_limit, config=config, on_progress=on_progress))
    except OphanError as e:
        console.print(f"[red]Task could not run:[/red] {e}")
        raise typer.Exit(1) from None

    t = result.task
    if not is_quiet():
        console.print(
            f"\n{format_task_status(t.status)}  {t.id}  "
            f"{t.iterations} iteration(s), ${t.cost:.4f}, {format_duration(t.duration_seconds)}"
        )
        if t.last_error:
            console.print(f"[red]Last error:[/red] {t.last_error}")
        if t.suggested_action:
            console.print(f"[yellow]Suggested action:[/yellow] {t.suggested_action}")
        if result.learnings:
            console.print(f"{len(result.learnings)} learning(s) recorded")

    if t.status != TaskStatus.CONVERGED:
        raise typer.Exit(1)
