"""Shared test helpers for Ophan tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from ophan.backends.base import ExecutionRequest, ExecutorResult
from ophan.core.errors import ExecutorError
from ophan.models import (
    Evaluation,
    EvaluationFailure,
    Learning,
    Task,
    TaskLog,
    TaskLogEntry,
    TaskStatus,
)
from ophan.tools.records import ToolCallRecord
from ophan.utils.time import utc_now

TESTS_PASSED_OUTPUT = "Tests: 5 passed, 5 total"
TESTS_FAILED_OUTPUT = "FAIL src/app.test.ts\nTests: 2 failed, 3 passed, 5 total"


def tool_result(
    output: str,
    *,
    tokens: int = 1000,
    completed: bool = False,
    cost: float = 0.0,
    files_written: list[str] | None = None,
) -> ExecutorResult:
    """An attempt whose only tool call printed ``output``."""
    result = ExecutorResult(
        text="TASK COMPLETE" if completed else "working",
        completed=completed,
        input_tokens=tokens,
        output_tokens=0,
        cost=cost,
        tool_calls=[ToolCallRecord(name="Bash", input={"command": "npm test"}, output=output)],
    )
    if files_written:
        result.file_usage.files_written.extend(files_written)
    return result


@dataclass
class FakeExecutor:
    """Executor that replays scripted results in order.

    An ``ExecutorError`` in the script is raised instead of returned. The
    last entry repeats once the script runs out.
    """

    script: list[ExecutorResult | ExecutorError]
    calls: list[tuple[str, ExecutionRequest]] = field(default_factory=list)

    @property
    def name(self) -> str:
        return "fake"

    async def execute(self, prompt: str, request: ExecutionRequest) -> ExecutorResult:
        self.calls.append((prompt, request))
        step = self.script[min(len(self.calls), len(self.script)) - 1]
        if isinstance(step, ExecutorError):
            raise step
        return step


def make_entry(
    task_id: str,
    description: str = "Fix the login form",
    *,
    status: TaskStatus = TaskStatus.FAILED,
    iterations: int = 1,
    max_iterations: int = 5,
    failures: list[EvaluationFailure] | None = None,
    score: int | None = None,
    started_at: datetime | None = None,
) -> TaskLogEntry:
    """A history entry with one log per iteration sharing the same evaluation."""
    started = started_at or utc_now() - timedelta(hours=1)
    failures = failures or []
    evaluation = Evaluation(
        passed=not failures,
        score=score if score is not None else (100 if not failures else 75),
        failures=failures,
    )
    task = Task(
        id=task_id,
        description=description,
        status=status,
        iterations=iterations,
        max_iterations=max_iterations,
        started_at=started,
        completed_at=started + timedelta(minutes=2),
    )
    logs = [
        TaskLog(task_id=task_id, iteration=i, timestamp=started + timedelta(seconds=i), evaluation=evaluation)
        for i in range(1, iterations + 1)
    ]
    return TaskLogEntry(task=task, logs=logs)


def make_learning(
    learning_id: str,
    content: str,
    *,
    references: int = 1,
    age_days: int = 0,
    guideline_impact: str = "",
) -> Learning:
    return Learning(
        id=learning_id,
        content=content,
        references=references,
        timestamp=utc_now() - timedelta(days=age_days),
        guideline_impact=guideline_impact,
    )
