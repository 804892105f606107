"""The fast loop: drive one task to convergence through bounded attempts.

State machine::

    running -> converged   evaluation passed
            -> escalated   cost limit reached, or attempt ceiling reached
            -> failed      unrecoverable executor error, or cancellation

Each attempt builds the prompts, awaits the executor, evaluates the
attempt's tool output and appends a TaskLog before deciding the
transition. The executor's own completion claim is recorded but never
ends the loop by itself; only a passing evaluation converges.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from ophan.backends.base import ExecutionRequest, Executor, ExecutorResult
from ophan.core.config import OPHAN_DIRNAME, ProjectConfig
from ophan.core.errors import ExecutorError
from ophan.core.logging import ExecutionContext, get_logger, with_context
from ophan.execution.evaluator import CriteriaJudge, Evaluator, format_evaluation
from ophan.execution.extraction import LearningExtractor
from ophan.execution.prompts import PromptBuilder, TaskContext
from ophan.learning.history import ContextUsageStore, TaskHistory
from ophan.models import (
    ContextUsageLog,
    EscalationReason,
    Evaluation,
    FileUsage,
    Learning,
    Task,
    TaskLog,
    TaskStatus,
)
from ophan.notifications.base import NotificationManager
from ophan.utils.ids import generate_task_id
from ophan.utils.time import utc_now

_logger = get_logger("fast_loop")

# USD per million tokens
INPUT_COST_PER_MTOK = 3.0
OUTPUT_COST_PER_MTOK = 15.0

COST_LIMIT_ACTION = "Increase cost limit or simplify the task"
MAX_ITERATIONS_ACTION = "Review task complexity or improve guidelines"
EXECUTOR_FAILURE_ACTION = "Check the executor installation and credentials, then retry"
CANCELLED_MESSAGE = "Task cancelled"


def estimate_cost(input_tokens: int, output_tokens: int) -> float:
    return input_tokens / 1_000_000 * INPUT_COST_PER_MTOK + output_tokens / 1_000_000 * OUTPUT_COST_PER_MTOK


class CancellationToken:
    """Best-effort cancellation of an in-flight task.

    An executor call already in progress runs to completion; its result is
    discarded and the task is marked failed.
    """

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class FastLoopOptions:
    """Inputs for one fast-loop run."""

    project_root: Path
    config: ProjectConfig
    executor: Executor
    guidelines: str = ""
    criteria: str = ""
    learnings: str = ""
    guideline_files: list[str] = field(default_factory=list)
    criteria_files: list[str] = field(default_factory=list)
    cost_limit: float | None = None
    """Overrides ``config.inner_loop.cost_limit`` when set."""

    notifier: NotificationManager | None = None
    cancel_token: CancellationToken | None = None
    on_progress: Callable[[str], None] | None = None
    on_iteration: Callable[[int, Evaluation], None] | None = None
    ophan_dir: Path | None = None

    @property
    def resolved_ophan_dir(self) -> Path:
        return self.ophan_dir or self.project_root / OPHAN_DIRNAME

    @property
    def effective_cost_limit(self) -> float | None:
        return self.cost_limit if self.cost_limit is not None else self.config.inner_loop.cost_limit


@dataclass
class FastLoopResult:
    task: Task
    logs: list[TaskLog]
    learnings: list[Learning]
    final_evaluation: Evaluation | None


@dataclass
class _Accrual:
    input_tokens: int = 0
    output_tokens: int = 0
    reported_cost: float = 0.0
    exploration_tokens: int = 0
    wrote_files: bool = False
    usage: FileUsage = field(default_factory=FileUsage)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def cost(self) -> float:
        return max(estimate_cost(self.input_tokens, self.output_tokens), self.reported_cost)

    def add_attempt(self, result: ExecutorResult) -> None:
        self.input_tokens += result.input_tokens
        self.output_tokens += result.output_tokens
        self.reported_cost += result.cost
        self.usage = self.usage.merge(result.file_usage)
        # Exploration: attempts before the first one that wrote a file
        if not self.wrote_files:
            if result.file_usage.files_written:
                self.wrote_files = True
            else:
                self.exploration_tokens += result.total_tokens


class FastLoop:
    """Runs the convergence state machine for one task."""

    def __init__(
        self,
        options: FastLoopOptions,
        evaluator: Evaluator | None = None,
        extractor: LearningExtractor | None = None,
        prompts: PromptBuilder | None = None,
    ):
        self.options = options
        self.config = options.config
        self.prompts = prompts or PromptBuilder()
        if evaluator is None:
            judge = (
                CriteriaJudge(options.executor, self.prompts)
                if self.config.inner_loop.criteria_check
                else None
            )
            evaluator = Evaluator(judge=judge)
        self.evaluator = evaluator
        if extractor is None:
            use_executor = self.config.inner_loop.learning_extraction == "executor"
            extractor = LearningExtractor(options.executor if use_executor else None, self.prompts)
        self.extractor = extractor
        self.cancel_token = options.cancel_token or CancellationToken()
        ophan_dir = options.resolved_ophan_dir
        self.history = TaskHistory(ophan_dir)
        self.context_store = ContextUsageStore(ophan_dir)

    def _progress(self, message: str) -> None:
        if self.options.on_progress:
            self.options.on_progress(message)

    def _build_prompts(self, task: Task, previous: Evaluation | None) -> tuple[str, str]:
        feedback = format_evaluation(previous) if previous is not None else None
        context = TaskContext(
            description=task.description,
            project_root=self.options.project_root,
            guidelines=self.options.guidelines,
            criteria=self.options.criteria,
            learnings=self.options.learnings,
            iteration=task.iterations,
            max_iterations=task.max_iterations,
            regeneration_strategy=self.config.inner_loop.regeneration_strategy,
            previous_evaluation=feedback,
        )
        system_prompt = self.prompts.build_system_prompt(context)
        if feedback is None:
            message = self.prompts.build_task_message(task.description)
        else:
            message = self.prompts.build_regeneration_message(task.description, feedback, task.iterations)
        return system_prompt, message

    def _fail(self, task: Task, error: str, suggested_action: str | None = None) -> None:
        task.status = TaskStatus.FAILED
        task.last_error = error
        task.suggested_action = suggested_action

    def _escalate(self, task: Task, reason: EscalationReason, error: str, action: str) -> None:
        task.status = TaskStatus.ESCALATED
        task.escalation_reason = reason
        task.last_error = error
        task.suggested_action = action

    async def execute(self, description: str) -> FastLoopResult:
        config = self.config.inner_loop
        task = Task(
            id=generate_task_id(),
            description=description,
            status=TaskStatus.RUNNING,
            max_iterations=config.max_iterations,
        )
        ctx = ExecutionContext(
            project=self.options.project_root.name,
            task_id=task.id,
            component="fast_loop",
        )
        with with_context(ctx):
            logs, final_evaluation, accrual = await self._run(task)
            return await self._finalize(task, logs, final_evaluation, accrual)

    async def _run(self, task: Task) -> tuple[list[TaskLog], Evaluation | None, _Accrual]:
        config = self.config.inner_loop
        cost_limit = self.options.effective_cost_limit
        logs: list[TaskLog] = []
        accrual = _Accrual()
        final_evaluation: Evaluation | None = None

        _logger.info("task_started", description=task.description[:100], max_iterations=task.max_iterations)
        self._progress(f"Starting task: {task.description}")

        for iteration in range(1, task.max_iterations + 1):
            if self.cancel_token.cancelled:
                self._fail(task, CANCELLED_MESSAGE)
                break

            task.iterations = iteration
            self._progress(f"Iteration {iteration}/{task.max_iterations}")
            system_prompt, message = self._build_prompts(task, final_evaluation)
            request = ExecutionRequest(
                system_prompt=system_prompt,
                project_root=self.options.project_root,
                max_tool_calls=config.max_tool_calls,
                budget_usd=cost_limit - accrual.cost if cost_limit is not None else None,
            )

            try:
                result = await self.options.executor.execute(message, request)
            except ExecutorError as e:
                _logger.error("executor_failed", iteration=iteration, error_type=e.error_type, error=str(e))
                self._fail(task, str(e), EXECUTOR_FAILURE_ACTION)
                break

            if self.cancel_token.cancelled:
                _logger.info("attempt_discarded_after_cancel", iteration=iteration)
                self._fail(task, CANCELLED_MESSAGE)
                break

            accrual.add_attempt(result)
            if result.tool_call_limit_reached:
                _logger.warning("tool_call_limit_reached", iteration=iteration, limit=config.max_tool_calls)

            outcome = await self.evaluator.evaluate(
                task.description,
                self.options.criteria,
                result.tool_output,
                self.options.project_root,
            )
            accrual.input_tokens += outcome.input_tokens
            accrual.output_tokens += outcome.output_tokens
            accrual.reported_cost += outcome.cost

            evaluation = outcome.evaluation
            final_evaluation = evaluation
            logs.append(
                TaskLog(
                    task_id=task.id,
                    iteration=iteration,
                    action="completed" if result.completed else "iteration",
                    output=result.text,
                    evaluation=evaluation,
                )
            )
            task.cost = accrual.cost
            task.tokens_used = accrual.total_tokens

            _logger.info(
                "attempt_evaluated",
                iteration=iteration,
                passed=evaluation.passed,
                score=evaluation.score,
                claimed_complete=result.completed,
                cost=round(task.cost, 4),
            )
            if self.options.on_iteration:
                self.options.on_iteration(iteration, evaluation)
            self._progress(format_evaluation(evaluation))

            if evaluation.passed:
                task.status = TaskStatus.CONVERGED
                break

            if cost_limit is not None and task.cost >= cost_limit:
                self._progress(f"Cost limit reached: ${task.cost:.4f}")
                self._escalate(
                    task,
                    EscalationReason.COST_LIMIT,
                    f"Cost limit of ${cost_limit} exceeded",
                    COST_LIMIT_ACTION,
                )
                break

            if iteration == task.max_iterations:
                messages = ", ".join(f.message for f in evaluation.failures)
                self._escalate(
                    task,
                    EscalationReason.MAX_ITERATIONS,
                    f"Evaluation failed: {messages}",
                    MAX_ITERATIONS_ACTION,
                )

        return logs, final_evaluation, accrual

    async def _finalize(
        self,
        task: Task,
        logs: list[TaskLog],
        final_evaluation: Evaluation | None,
        accrual: _Accrual,
    ) -> FastLoopResult:
        task.completed_at = utc_now()
        task.cost = accrual.cost
        task.tokens_used = accrual.total_tokens

        _logger.info(
            "task_finished",
            status=task.status.value,
            iterations=task.iterations,
            cost=round(task.cost, 4),
            tokens=task.tokens_used,
        )
        self._progress(f"Task {task.status.value}: {task.iterations} iterations, ${task.cost:.4f}")

        self.history.save_task_log(task, logs)
        self._log_context_usage(task, accrual)

        learnings = await self.extractor.extract(task, logs, self.options.project_root)

        notifier = self.options.notifier
        if notifier is not None:
            if task.status == TaskStatus.ESCALATED and task.escalation_reason is not None:
                self._progress(f"Escalation triggered: {task.escalation_reason.value}")
                await notifier.notify_escalation(
                    task,
                    task.escalation_reason.value,
                    last_error=task.last_error,
                    suggested_action=task.suggested_action,
                )
            await notifier.notify_task_complete(task)

        return FastLoopResult(task=task, logs=logs, learnings=learnings, final_evaluation=final_evaluation)

    def _log_context_usage(self, task: Task, accrual: _Accrual) -> None:
        provided = [*self.options.guideline_files, *self.options.criteria_files]
        metrics = ContextUsageStore.compute_metrics(
            provided,
            accrual.usage,
            exploration_tokens=accrual.exploration_tokens,
            total_tokens=accrual.total_tokens,
        )
        try:
            self.context_store.save_log(
                ContextUsageLog(task_id=task.id, task_description=task.description, metrics=metrics)
            )
        except OSError as e:
            _logger.warning("context_usage_log_failed", error=str(e))
            return
        self._progress(f"Context usage logged: hit={metrics.hit_rate:.0f}%, miss={metrics.miss_rate:.0f}%")
