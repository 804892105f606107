"""Agents: owners of guidance documents that take part in the review cycle."""

from ophan.agents.base import (
    Agent,
    AgentAnalysisResult,
    AgentGuidance,
    AgentOptions,
    BaseAgent,
    ExecutableAgent,
    supports_execution,
)
from ophan.agents.context_agent import ContextAgent
from ophan.agents.registry import AgentRegistry, RegistryAnalysisResult, create_default_registry
from ophan.agents.task_agent import TaskAgent
from ophan.agents.utils import ContentLoader, LoadedContent

__all__ = [
    "Agent",
    "AgentAnalysisResult",
    "AgentGuidance",
    "AgentOptions",
    "AgentRegistry",
    "BaseAgent",
    "ContentLoader",
    "ContextAgent",
    "ExecutableAgent",
    "LoadedContent",
    "RegistryAnalysisResult",
    "TaskAgent",
    "create_default_registry",
    "supports_execution",
]
