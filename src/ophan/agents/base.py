"""Agent protocols and the shared plumbing agents are built on.

An agent owns a set of guideline and criteria documents and takes part in
the review cycle. Some agents can also run tasks; that capability is
declared by ``can_execute_tasks = True`` and checked with
:func:`supports_execution`, never by isinstance checks against a concrete
class.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from ophan.backends.base import Executor
from ophan.core.config import ProjectConfig
from ophan.core.errors import PreconditionError, ProposalApplyError
from ophan.core.logging import get_logger
from ophan.learning.guidance import apply_proposal
from ophan.models import AgentMetric, ConsolidationResult, Proposal, ProposalStatus
from ophan.notifications.base import NotificationManager
from ophan.state.store import RunState
from ophan.utils.time import utc_now

if TYPE_CHECKING:
    from ophan.execution.fast_loop import FastLoopResult

_logger = get_logger("agents")


@dataclass(frozen=True)
class AgentGuidance:
    """Documents an agent reads and improves, relative to ``guidelines/`` and ``criteria/``."""

    guideline_files: tuple[str, ...] = ()
    criteria_files: tuple[str, ...] = ()


@dataclass
class AgentOptions:
    """Shared collaborators handed to every agent at initialization.

    ``state`` is the caller's run-state; agents mutate it in place and the
    caller persists it.
    """

    project_root: Path
    ophan_dir: Path
    config: ProjectConfig
    state: RunState = field(default_factory=RunState)
    notifier: NotificationManager | None = None
    executor_factory: Callable[[], Executor] | None = None
    on_progress: Callable[[str], None] | None = None


@dataclass
class AgentAnalysisResult:
    """What one agent's review produced."""

    proposals: list[Proposal] = field(default_factory=list)
    metrics: list[AgentMetric] = field(default_factory=list)
    summary: str = ""
    consolidation: ConsolidationResult | None = None
    guidelines_updated: list[str] = field(default_factory=list)


@runtime_checkable
class Agent(Protocol):
    """Anything that takes part in the review cycle."""

    id: str
    name: str
    description: str
    guidance: AgentGuidance

    async def initialize(self, options: AgentOptions) -> None: ...

    async def run_analysis(
        self, lookback_days: int, auto_apply_guidelines: bool
    ) -> AgentAnalysisResult: ...

    async def get_metrics(self) -> list[AgentMetric]: ...


@runtime_checkable
class ExecutableAgent(Agent, Protocol):
    """An agent that can also drive tasks through the fast loop."""

    can_execute_tasks: bool

    async def execute_task(self, description: str, budget: float | None = None) -> FastLoopResult: ...


def supports_execution(agent: Agent) -> bool:
    """True when the agent declares the task-execution capability."""
    return getattr(agent, "can_execute_tasks", False) is True and callable(
        getattr(agent, "execute_task", None)
    )


class BaseAgent:
    """Plumbing shared by the built-in agents.

    Subclasses set ``id``, ``name``, ``description`` and ``guidance`` as
    class attributes.
    """

    id: str
    name: str
    description: str
    guidance: AgentGuidance

    def __init__(self) -> None:
        self._options: AgentOptions | None = None

    async def initialize(self, options: AgentOptions) -> None:
        self._options = options
        self.log(f"{self.name} initialized")

    @property
    def initialized(self) -> bool:
        return self._options is not None

    @property
    def options(self) -> AgentOptions:
        if self._options is None:
            raise PreconditionError(f"Agent {self.id} not initialized. Call initialize() first.")
        return self._options

    @property
    def ophan_dir(self) -> Path:
        return self.options.ophan_dir

    @property
    def project_root(self) -> Path:
        return self.options.project_root

    @property
    def config(self) -> ProjectConfig:
        return self.options.config

    @property
    def state(self) -> RunState:
        return self.options.state

    def log(self, message: str) -> None:
        if self._options is not None and self._options.on_progress:
            self._options.on_progress(message)

    def try_auto_apply(self, proposal: Proposal) -> bool:
        """Apply a guideline proposal now.

        Returns False, leaving the proposal pending, when it is not a
        guideline proposal or applying it fails.
        """
        if proposal.type != "guideline":
            return False
        try:
            apply_proposal(proposal, self.ophan_dir)
        except ProposalApplyError as e:
            _logger.warning("auto_apply_failed", agent=self.id, proposal_id=proposal.id, error=str(e))
            self.log(f"Failed to update {proposal.target_file}: {e}")
            return False
        proposal.status = ProposalStatus.APPROVED
        proposal.reviewed_at = utc_now()
        self.log(f"Auto-applied: {proposal.target_file}")
        return True
