"""Distill learnings from a finished task.

Tasks that converged on the first attempt teach nothing. Everything else
yields up to three learnings, one per distinct failed check, either by a
deterministic heuristic or, when an executor is supplied, by asking it.
"""

from __future__ import annotations

from collections import Counter
from pathlib import Path

from ophan.backends.base import ExecutionRequest, Executor
from ophan.core.errors import ExecutorError
from ophan.core.logging import get_logger
from ophan.execution.evaluator import format_evaluation
from ophan.execution.prompts import PromptBuilder
from ophan.models import EvaluationFailure, Learning, Task, TaskLog, TaskStatus
from ophan.utils.ids import generate_learning_id
from ophan.utils.parsing import extract_json_object

_logger = get_logger("learning_extraction")

MAX_LEARNINGS_PER_TASK = 3

EXTRACTION_SYSTEM_PROMPT = (
    "You review finished development tasks and distill reusable lessons. "
    "Respond with the requested JSON and nothing else."
)

_OUTCOMES = {
    TaskStatus.CONVERGED: "success",
    TaskStatus.ESCALATED: "escalated",
    TaskStatus.FAILED: "failure",
}


def needs_extraction(task: Task) -> bool:
    return task.iterations > 1 or task.status != TaskStatus.CONVERGED


def _failures(logs: list[TaskLog]) -> list[EvaluationFailure]:
    return [
        failure
        for log in logs
        if log.evaluation is not None
        for failure in log.evaluation.failures
    ]


def _guideline_impact(criterion: str) -> str:
    if criterion.lower() == "tests":
        return "testing.md: run the test suite and read its output before declaring completion"
    return f"coding.md: add a {criterion} verification step to the completion checklist"


def extract_heuristic(task: Task, logs: list[TaskLog]) -> list[Learning]:
    """One learning per distinct failed check, most frequent first.

    Content is phrased from the check name alone, so the same failure on
    different tasks produces matching learnings that reinforce each other.
    """
    if not needs_extraction(task):
        return []

    failures = _failures(logs)
    counts = Counter(f.criterion for f in failures)
    first_message = {}
    for failure in failures:
        first_message.setdefault(failure.criterion, failure.message)

    if task.status == TaskStatus.CONVERGED:
        resolution = f"Resolved on attempt {task.iterations} after addressing the feedback"
    else:
        resolution = f"Not resolved within {task.iterations} attempt(s); task {task.status.value}"

    learnings = []
    for criterion, count in counts.most_common(MAX_LEARNINGS_PER_TASK):
        learnings.append(
            Learning(
                id=generate_learning_id(),
                content=f"Verify {criterion} checks pass before declaring the task complete",
                context=f'Task "{task.description[:80]}" failed the {criterion} check '
                f"{count} time(s)",
                issue=first_message[criterion],
                resolution=resolution,
                guideline_impact=_guideline_impact(criterion),
            )
        )
    return learnings


def parse_learnings_response(response: str) -> list[Learning] | None:
    """Learnings from an executor JSON reply, or None when it cannot be parsed."""
    data = extract_json_object(response)
    if data is None or not isinstance(data.get("learnings"), list):
        return None

    learnings = []
    for item in data["learnings"][:MAX_LEARNINGS_PER_TASK]:
        if not isinstance(item, dict) or not item.get("content"):
            continue
        learnings.append(
            Learning(
                id=generate_learning_id(),
                content=str(item["content"]),
                context=str(item.get("context") or ""),
                issue=str(item.get("issue") or ""),
                resolution=str(item.get("resolution") or ""),
                guideline_impact=str(item.get("guideline_impact") or item.get("guidelineImpact") or ""),
            )
        )
    return learnings


class LearningExtractor:
    """Heuristic extraction, optionally replaced by an executor-backed one."""

    def __init__(self, executor: Executor | None = None, prompts: PromptBuilder | None = None):
        self.executor = executor
        self.prompts = prompts or PromptBuilder()

    async def extract(self, task: Task, logs: list[TaskLog], project_root: Path) -> list[Learning]:
        if not needs_extraction(task):
            return []
        if self.executor is None:
            return extract_heuristic(task, logs)

        prompt = self.prompts.build_learning_extraction_prompt(
            description=task.description,
            iterations=task.iterations,
            evaluation_history=[format_evaluation(l.evaluation) for l in logs if l.evaluation],
            outcome=_OUTCOMES.get(task.status, task.status.value),
        )
        try:
            result = await self.executor.execute(
                prompt,
                ExecutionRequest(
                    system_prompt=EXTRACTION_SYSTEM_PROMPT, project_root=project_root, read_only=True
                ),
            )
        except ExecutorError as e:
            _logger.warning("learning_extraction_failed", task_id=task.id, error=str(e))
            return extract_heuristic(task, logs)

        learnings = parse_learnings_response(result.text)
        if learnings is None:
            _logger.warning("learning_extraction_unparseable", task_id=task.id)
            return extract_heuristic(task, logs)
        return learnings
