"""Executor protocol and the records an attempt produces."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

from ophan.models import FileUsage
from ophan.tools.records import ToolCallRecord, join_tool_outputs

# Text signal an executor uses to say it believes the task is done
TASK_COMPLETE_PATTERN = r"TASK\s+COMPLETE"

# Hard cap on tool invocations inside one attempt
DEFAULT_MAX_TOOL_CALLS = 50


@dataclass
class ExecutionRequest:
    """Context handed to the executor alongside the user prompt."""

    system_prompt: str
    project_root: Path
    max_tool_calls: int = DEFAULT_MAX_TOOL_CALLS
    budget_usd: float | None = None
    read_only: bool = False
    """Only tools that cannot change the project may run (judge and analysis calls)."""


@dataclass
class ExecutorResult:
    """Result of one executor invocation (one attempt)."""

    text: str
    """Free text produced by the model."""

    completed: bool = False
    """The executor claimed completion. Advisory only."""

    input_tokens: int = 0
    output_tokens: int = 0

    cost: float = 0.0
    """Cost reported by the backend, 0 when it reports none."""

    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    file_usage: FileUsage = field(default_factory=FileUsage)

    tool_call_limit_reached: bool = False
    """The attempt was cut off at the tool-call cap."""

    @property
    def tool_output(self) -> str:
        return join_tool_outputs(self.tool_calls)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@runtime_checkable
class Executor(Protocol):
    """Anything that can run one attempt of a task.

    Implementations raise :class:`ophan.core.errors.ExecutorError` for
    failures that retrying cannot fix (missing executable, refused
    credentials, unreachable backend).
    """

    @property
    def name(self) -> str: ...

    async def execute(self, prompt: str, request: ExecutionRequest) -> ExecutorResult: ...
