"""Rich output formatting for the Ophan CLI."""

from __future__ import annotations

from datetime import datetime

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ophan.models import AgentMetric, ContextAggregateMetrics, OphanMetrics, Proposal, Task, TaskStatus

# Command modules print through this console
console = Console()


class StatusColors:
    """Color mappings for status values."""

    TASK_STATUS: dict[TaskStatus, str] = {
        TaskStatus.PENDING: "yellow",
        TaskStatus.RUNNING: "blue",
        TaskStatus.CONVERGED: "green",
        TaskStatus.FAILED: "red",
        TaskStatus.ESCALATED: "magenta",
    }

    @classmethod
    def get_task_color(cls, status: TaskStatus) -> str:
        return cls.TASK_STATUS.get(status, "white")


def format_duration(seconds: float | None) -> str:
    """Human-readable duration ("5.2s", "3m 12s", "1h 30m")."""
    if seconds is None:
        return "N/A"
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        return f"{int(seconds // 60)}m {int(seconds % 60)}s"
    else:
        return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60)}m"


def format_timestamp(dt: datetime | None) -> str:
    if dt is None:
        return "-"
    return dt.strftime("%Y-%m-%d %H:%M:%S UTC")


def format_task_status(status: TaskStatus) -> str:
    color = StatusColors.get_task_color(status)
    return f"[{color}]{status.value}[/{color}]"


def create_tasks_table(tasks: list[Task]) -> Table:
    table = Table(title="Recent Tasks")
    table.add_column("Task ID", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Iterations", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Description")
    for task in tasks:
        table.add_row(
            task.id,
            format_task_status(task.status),
            f"{task.iterations}/{task.max_iterations}",
            f"${task.cost:.4f}",
            format_duration(task.duration_seconds),
            task.description[:60],
        )
    return table


def create_metrics_table(metrics: OphanMetrics) -> Table:
    table = Table(title="Metrics", show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Total Tasks", str(metrics.total_tasks))
    table.add_row("Successful", f"{metrics.successful_tasks} ({metrics.success_rate:.1f}%)")
    table.add_row("Failed", str(metrics.failed_tasks))
    table.add_row("Escalated", str(metrics.escalated_tasks))
    table.add_row("Avg Iterations", f"{metrics.average_iterations:.2f}")
    table.add_row("Total Cost", f"${metrics.total_cost:.4f}")
    table.add_row("Avg Duration", format_duration(metrics.average_task_duration))
    return table


def create_agent_metrics_table(metrics: dict[str, list[AgentMetric]]) -> Table:
    table = Table(title="Agent Metrics")
    table.add_column("Agent", style="cyan")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_column("Target", justify="right")
    table.add_column("", justify="center")
    for agent_id, items in metrics.items():
        for metric in items:
            table.add_row(
                agent_id,
                metric.name,
                f"{metric.value:.1f}",
                "-" if metric.target is None else f"{metric.target:g}",
                "[green]✓[/green]" if metric.passed else "[red]✗[/red]",
            )
    return table


def create_context_table(metrics: ContextAggregateMetrics) -> Table:
    table = Table(title="Context Usage", show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Tasks Analyzed", str(metrics.task_count))
    table.add_row("Avg Hit Rate", f"{metrics.avg_hit_rate:.1f}%")
    table.add_row("Avg Miss Rate", f"{metrics.avg_miss_rate:.1f}%")
    table.add_row("Avg Exploration Tokens", f"{metrics.avg_exploration_tokens:.0f}")
    return table


def proposal_panel(proposal: Proposal, position: int, total: int) -> Panel:
    kind = "[green]Guideline[/green]" if proposal.type == "guideline" else "[yellow]Criteria[/yellow]"
    body = (
        f"[bold]Source:[/bold] {proposal.source}\n"
        f"[bold]Type:[/bold] {kind}\n"
        f"[bold]Target:[/bold] {proposal.target_file}\n"
        f"[bold]Confidence:[/bold] {proposal.confidence * 100:.0f}%\n\n"
        f"[bold]Reason:[/bold] {proposal.reason}\n\n"
        f"{proposal.change}"
    )
    return Panel(body, title=f"Proposal {position}/{total} ({proposal.id})", border_style="yellow")


__all__ = [
    "StatusColors",
    "console",
    "create_agent_metrics_table",
    "create_context_table",
    "create_metrics_table",
    "create_tasks_table",
    "format_duration",
    "format_task_status",
    "format_timestamp",
    "proposal_panel",
]
