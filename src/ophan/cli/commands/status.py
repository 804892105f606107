"""Read-only commands: ``status``, ``logs``, ``context-stats``."""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer

from ophan.api import agent_metrics
from ophan.learning.history import ContextUsageStore, TaskHistory
from ophan.state.paths import OphanPaths
from ophan.state.store import StateStore

from ..helpers import load_config_or_exit, resolve_project
from ..output import (
    console,
    create_agent_metrics_table,
    create_context_table,
    create_metrics_table,
    create_tasks_table,
    format_timestamp,
)


def status(
    project: Path | None = typer.Option(None, "--project", "-p", help="Project directory"),
) -> None:
    """Show metrics, pending proposals and the last review."""
    project_root = resolve_project(project, console)
    config = load_config_or_exit(project_root, console)
    paths = OphanPaths(project_root)
    state = StateStore(paths.state_file).load()

    metrics = TaskHistory(paths.ophan_dir).calculate_metrics(config.outer_loop.lookback_days)
    console.print(create_metrics_table(metrics))
    console.print(f"\n[bold]Last review:[/bold] {format_timestamp(state.last_review)}")
    console.print(
        f"[bold]Tasks since review:[/bold] {state.tasks_since_review}"
        f" / {config.outer_loop.triggers.after_tasks}"
    )
    console.print(f"[bold]Learnings:[/bold] {len(state.learnings)}")

    per_agent = asyncio.run(agent_metrics(project_root, config=config))
    if any(per_agent.values()):
        console.print()
        console.print(create_agent_metrics_table(per_agent))

    if state.pending_proposals:
        console.print(f"\n[yellow]{len(state.pending_proposals)} pending proposal(s):[/yellow]")
        for proposal in state.pending_proposals:
            console.print(f"  {proposal.id}  {proposal.type}  {proposal.target_file}  {proposal.reason[:60]}")
    else:
        console.print("\nNo pending proposals.")


def logs(
    project: Path | None = typer.Option(None, "--project", "-p", help="Project directory"),
    limit: int = typer.Option(10, "--limit", "-n", min=1, help="Number of tasks to show"),
) -> None:
    """Show recent tasks."""
    project_root = resolve_project(project, console)
    tasks = TaskHistory(OphanPaths(project_root).ophan_dir).list_recent(limit)
    if not tasks:
        console.print("No tasks recorded yet.")
        return
    console.print(create_tasks_table(tasks))


def context_stats(
    project: Path | None = typer.Option(None, "--project", "-p", help="Project directory"),
    days: int = typer.Option(30, "--days", "-d", min=1, help="Lookback window in days"),
) -> None:
    """Show how well provided context matched the files tasks used."""
    project_root = resolve_project(project, console)
    metrics = ContextUsageStore(OphanPaths(project_root).ophan_dir).get_aggregate_metrics(days)
    if metrics.task_count == 0:
        console.print(f"No context usage recorded in the last {days} days.")
        return
    console.print(create_context_table(metrics))
    if metrics.common_misses:
        console.print("\n[bold]Often needed but not provided:[/bold]")
        for item in metrics.common_misses[:5]:
            console.print(f"  {item.file} ({item.count})")
    if metrics.common_unused:
        console.print("\n[bold]Often provided but unused:[/bold]")
        for item in metrics.common_unused[:5]:
            console.print(f"  {item.file} ({item.count})")
