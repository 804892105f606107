"""Agent registry: lifecycle and the review pass across all agents."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ophan.agents.base import Agent, AgentAnalysisResult, AgentOptions, ExecutableAgent, supports_execution
from ophan.agents.context_agent import ContextAgent
from ophan.agents.task_agent import TaskAgent
from ophan.core.errors import DuplicateAgentError, PreconditionError
from ophan.core.logging import get_logger
from ophan.models import AgentMetric, Proposal

_logger = get_logger("registry")


@dataclass
class RegistryAnalysisResult:
    """Combined review output of every agent that completed."""

    proposals: list[Proposal] = field(default_factory=list)
    agent_results: dict[str, AgentAnalysisResult] = field(default_factory=dict)
    metrics: list[AgentMetric] = field(default_factory=list)
    guidelines_updated: list[str] = field(default_factory=list)
    failed_agents: list[str] = field(default_factory=list)


class AgentRegistry:
    """Holds agents by id, in registration order.

    Usage:
        registry = AgentRegistry()
        registry.register(TaskAgent())
        registry.register(ContextAgent())
        await registry.initialize_all(options)
        result = await registry.run_all_analyses(30, auto_apply_guidelines=False)
    """

    def __init__(self) -> None:
        self._agents: dict[str, Agent] = {}
        self._options: AgentOptions | None = None

    def register(self, agent: Agent) -> None:
        """Add an agent.

        Raises:
            DuplicateAgentError: If an agent with the same id is registered.
        """
        if agent.id in self._agents:
            raise DuplicateAgentError(f"Agent with ID '{agent.id}' is already registered")
        self._agents[agent.id] = agent
        _logger.debug("agent_registered", agent=agent.id)

    def get(self, agent_id: str) -> Agent | None:
        return self._agents.get(agent_id)

    def get_executable(self, agent_id: str) -> ExecutableAgent:
        """The agent with ``agent_id``, which must be able to run tasks.

        Raises:
            PreconditionError: If it is missing or analysis-only.
        """
        agent = self._agents.get(agent_id)
        if agent is None or not supports_execution(agent):
            raise PreconditionError(f"No task-executing agent registered as '{agent_id}'")
        return agent  # type: ignore[return-value]

    def get_all(self) -> list[Agent]:
        return list(self._agents.values())

    def ids(self) -> list[str]:
        return list(self._agents)

    def has(self, agent_id: str) -> bool:
        return agent_id in self._agents

    @property
    def initialized(self) -> bool:
        return self._options is not None

    def _log(self, message: str) -> None:
        if self._options is not None and self._options.on_progress:
            self._options.on_progress(message)

    async def initialize_all(self, options: AgentOptions) -> None:
        for agent in self._agents.values():
            await agent.initialize(options)
        self._options = options

    async def run_all_analyses(
        self, lookback_days: int, auto_apply_guidelines: bool
    ) -> RegistryAnalysisResult:
        """Run every agent's analysis, one after another.

        A failing agent is logged and skipped; the others still run.

        Raises:
            PreconditionError: If :meth:`initialize_all` has not been called.
        """
        if not self.initialized:
            raise PreconditionError("Registry not initialized. Call initialize_all() first.")

        combined = RegistryAnalysisResult()
        for agent in self._agents.values():
            self._log(f"Running analysis for {agent.name}...")
            try:
                result = await agent.run_analysis(lookback_days, auto_apply_guidelines)
            except Exception as e:
                _logger.exception("agent_analysis_failed", agent=agent.id, error=str(e))
                self._log(f"{agent.name} analysis failed: {e}")
                combined.failed_agents.append(agent.id)
                continue

            combined.agent_results[agent.id] = result
            combined.proposals.extend(result.proposals)
            combined.metrics.extend(result.metrics)
            for target in result.guidelines_updated:
                if target not in combined.guidelines_updated:
                    combined.guidelines_updated.append(target)
            self._log(f"{agent.name}: {result.summary}")
            _logger.info(
                "agent_analysis_complete",
                agent=agent.id,
                proposals=len(result.proposals),
                guidelines_updated=len(result.guidelines_updated),
            )
        return combined

    async def get_all_metrics(self) -> dict[str, list[AgentMetric]]:
        """Metrics per agent; an agent whose metrics fail reports none."""
        metrics: dict[str, list[AgentMetric]] = {}
        for agent in self._agents.values():
            try:
                metrics[agent.id] = await agent.get_metrics()
            except Exception as e:
                _logger.warning("agent_metrics_failed", agent=agent.id, error=str(e))
                metrics[agent.id] = []
        return metrics

    def get_summary(self) -> list[dict[str, Any]]:
        return [
            {
                "id": agent.id,
                "name": agent.name,
                "description": agent.description,
                "guideline_files": list(agent.guidance.guideline_files),
                "criteria_files": list(agent.guidance.criteria_files),
                "can_execute_tasks": supports_execution(agent),
            }
            for agent in self._agents.values()
        ]


def create_default_registry() -> AgentRegistry:
    """Registry with the built-in task and context agents."""
    registry = AgentRegistry()
    registry.register(TaskAgent())
    registry.register(ContextAgent())
    return registry
