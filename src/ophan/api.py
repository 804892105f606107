"""Programmatic entry points: run one work item, run one review.

Each call loads the project configuration and run-state, wires the agents
and notifications, does its work, and saves the run-state before returning.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from ophan.agents.base import AgentOptions
from ophan.agents.registry import create_default_registry
from ophan.backends.base import Executor
from ophan.core.config import ProjectConfig, load_project_config
from ophan.core.logging import get_logger
from ophan.execution.fast_loop import FastLoopResult
from ophan.models import AgentMetric
from ophan.notifications.factory import create_notification_manager
from ophan.review.slow_loop import SlowLoop, SlowLoopOptions, SlowLoopResult
from ophan.state.paths import OphanPaths
from ophan.state.store import StateStore

_logger = get_logger("api")

TASK_AGENT_ID = "task-agent"


def _executor_factory(executor: Executor | None) -> Callable[[], Executor] | None:
    if executor is None:
        return None
    return lambda: executor


async def run_item(
    project_root: Path,
    description: str,
    budget: float | None = None,
    *,
    executor: Executor | None = None,
    config: ProjectConfig | None = None,
    on_progress: Callable[[str], None] | None = None,
) -> FastLoopResult:
    """Drive one work item to a terminal state through the task agent.

    ``budget`` overrides the configured cost limit for this item.
    ``executor`` replaces the configured backend.
    """
    project_root = Path(project_root)
    config = config or load_project_config(project_root)
    paths = OphanPaths(project_root)
    store = StateStore(paths.state_file)
    state = store.load()
    notifier = create_notification_manager(config, project_root)

    registry = create_default_registry()
    try:
        await registry.initialize_all(
            AgentOptions(
                project_root=project_root,
                ophan_dir=paths.ophan_dir,
                config=config,
                state=state,
                notifier=notifier,
                executor_factory=_executor_factory(executor),
                on_progress=on_progress,
            )
        )
        result = await registry.get_executable(TASK_AGENT_ID).execute_task(description, budget)
    finally:
        await notifier.close()

    store.save(state)
    return result


async def run_review(
    project_root: Path,
    lookback_days: int | None = None,
    auto_apply_guidelines: bool = False,
    *,
    config: ProjectConfig | None = None,
    executor: Executor | None = None,
    on_progress: Callable[[str], None] | None = None,
) -> SlowLoopResult:
    """Run the review pass and queue its pending proposals in the run-state."""
    project_root = Path(project_root)
    config = config or load_project_config(project_root)
    paths = OphanPaths(project_root)
    store = StateStore(paths.state_file)
    state = store.load()
    notifier = create_notification_manager(config, project_root)

    loop = SlowLoop(
        SlowLoopOptions(
            project_root=project_root,
            ophan_dir=paths.ophan_dir,
            config=config,
            state=state,
            notifier=notifier,
            executor_factory=_executor_factory(executor),
            on_progress=on_progress,
        )
    )
    try:
        result = await loop.execute(auto_apply_guidelines=auto_apply_guidelines, lookback_days=lookback_days)
    finally:
        await notifier.close()

    state.queue_proposals(result.proposals)
    store.save(state)
    _logger.info("review_saved", pending_proposals=len(state.pending_proposals))
    return result


async def agent_metrics(
    project_root: Path,
    *,
    config: ProjectConfig | None = None,
) -> dict[str, list[AgentMetric]]:
    """Current metrics of every built-in agent, keyed by agent id."""
    project_root = Path(project_root)
    config = config or load_project_config(project_root)
    paths = OphanPaths(project_root)
    registry = create_default_registry()
    await registry.initialize_all(
        AgentOptions(
            project_root=project_root,
            ophan_dir=paths.ophan_dir,
            config=config,
            state=StateStore(paths.state_file).load(),
        )
    )
    return await registry.get_all_metrics()


__all__ = ["agent_metrics", "run_item", "run_review"]
