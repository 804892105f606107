"""Tests for ophan.execution.fast_loop.

Covers convergence, escalation on cost and attempt ceilings, executor
failure, cancellation, persistence of task and context logs, and the
notifications sent when a task finishes.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from ophan.core.config import ProjectConfig
from ophan.core.errors import ExecutorError
from ophan.execution.fast_loop import (
    CANCELLED_MESSAGE,
    COST_LIMIT_ACTION,
    EXECUTOR_FAILURE_ACTION,
    MAX_ITERATIONS_ACTION,
    CancellationToken,
    FastLoop,
    FastLoopOptions,
    estimate_cost,
)
from ophan.learning.history import ContextUsageStore, TaskHistory
from ophan.models import EscalationReason, TaskStatus
from ophan.notifications.base import NotificationContext, NotificationEvent, NotificationManager
from tests.helpers import TESTS_FAILED_OUTPUT, TESTS_PASSED_OUTPUT, FakeExecutor, tool_result


class RecordingNotifier:
    name = "recorder"

    def __init__(self) -> None:
        self.sent: list[NotificationContext] = []

    @property
    def subscribed_events(self) -> set[NotificationEvent]:
        return set(NotificationEvent)

    async def send(self, context: NotificationContext) -> bool:
        self.sent.append(context)
        return True

    async def close(self) -> None:
        pass


def make_loop(
    project_root: Path,
    config: ProjectConfig,
    executor: FakeExecutor,
    **kwargs,
) -> FastLoop:
    return FastLoop(FastLoopOptions(project_root=project_root, config=config, executor=executor, **kwargs))


# ─── Convergence ──────────────────────────────────────────────────────


class TestConvergence:
    async def test_converges_on_third_attempt(self, project_root: Path, config: ProjectConfig):
        config.inner_loop.max_iterations = 3
        executor = FakeExecutor(
            [
                tool_result(TESTS_FAILED_OUTPUT),
                tool_result(TESTS_FAILED_OUTPUT),
                tool_result(TESTS_PASSED_OUTPUT, completed=True),
            ]
        )

        result = await make_loop(project_root, config, executor).execute("Add input validation")

        assert result.task.status == TaskStatus.CONVERGED
        assert result.task.iterations == 3
        assert len(result.logs) == 3
        assert result.logs[2].evaluation is not None
        assert result.logs[2].evaluation.passed is True
        assert [log.evaluation.failures[0].criterion for log in result.logs[:2]] == ["Tests", "Tests"]
        assert result.final_evaluation is not None and result.final_evaluation.passed

    async def test_first_attempt_success_yields_no_learnings(self, project_root: Path, config: ProjectConfig):
        executor = FakeExecutor([tool_result(TESTS_PASSED_OUTPUT, completed=True)])

        result = await make_loop(project_root, config, executor).execute("Rename a variable")

        assert result.task.status == TaskStatus.CONVERGED
        assert result.task.iterations == 1
        assert result.learnings == []

    async def test_retry_yields_learning_from_failed_check(self, project_root: Path, config: ProjectConfig):
        executor = FakeExecutor([tool_result(TESTS_FAILED_OUTPUT), tool_result(TESTS_PASSED_OUTPUT)])

        result = await make_loop(project_root, config, executor).execute("Fix the parser")

        assert len(result.learnings) == 1
        assert "Tests" in result.learnings[0].content
        assert result.learnings[0].resolution.startswith("Resolved on attempt 2")

    async def test_completion_claim_alone_never_converges(self, project_root: Path, config: ProjectConfig):
        config.inner_loop.max_iterations = 2
        executor = FakeExecutor([tool_result(TESTS_FAILED_OUTPUT, completed=True)])

        result = await make_loop(project_root, config, executor).execute("Fix the parser")

        assert result.task.status == TaskStatus.ESCALATED
        assert result.task.escalation_reason == EscalationReason.MAX_ITERATIONS
        assert all(log.action == "completed" for log in result.logs)

    async def test_output_without_recognised_checks_converges(self, project_root: Path, config: ProjectConfig):
        executor = FakeExecutor([tool_result("hello world")])

        result = await make_loop(project_root, config, executor).execute("Print a greeting")

        assert result.task.status == TaskStatus.CONVERGED
        assert result.final_evaluation is not None
        assert result.final_evaluation.score == 100

    async def test_regeneration_prompt_carries_feedback(self, project_root: Path, config: ProjectConfig):
        executor = FakeExecutor([tool_result(TESTS_FAILED_OUTPUT), tool_result(TESTS_PASSED_OUTPUT)])

        await make_loop(project_root, config, executor).execute("Fix the parser")

        first_prompt, first_request = executor.calls[0]
        second_prompt, second_request = executor.calls[1]
        assert "Tests" not in first_prompt
        assert "Tests" in second_prompt
        assert "Previous Evaluation Feedback" in second_request.system_prompt
        assert first_request.max_tool_calls == config.inner_loop.max_tool_calls


# ─── Escalation and failure ─────────────────────────────────────────


class TestEscalation:
    async def test_cost_limit_reached_after_second_attempt(self, project_root: Path, config: ProjectConfig):
        config.inner_loop.cost_limit = 1.0
        executor = FakeExecutor([tool_result(TESTS_FAILED_OUTPUT, cost=0.5)])

        result = await make_loop(project_root, config, executor).execute("Refactor the store")

        assert result.task.status == TaskStatus.ESCALATED
        assert result.task.escalation_reason == EscalationReason.COST_LIMIT
        assert result.task.iterations == 2
        assert len(result.logs) == 2
        assert len(executor.calls) == 2
        assert result.task.suggested_action == COST_LIMIT_ACTION
        assert "Cost limit" in (result.task.last_error or "")

    async def test_budget_override_takes_precedence(self, project_root: Path, config: ProjectConfig):
        config.inner_loop.cost_limit = 100.0
        executor = FakeExecutor([tool_result(TESTS_FAILED_OUTPUT, cost=0.5)])

        result = await make_loop(project_root, config, executor, cost_limit=0.5).execute("Refactor")

        assert result.task.escalation_reason == EscalationReason.COST_LIMIT
        assert result.task.iterations == 1

    async def test_remaining_budget_passed_to_executor(self, project_root: Path, config: ProjectConfig):
        config.inner_loop.cost_limit = 1.0
        executor = FakeExecutor([tool_result(TESTS_FAILED_OUTPUT, cost=0.25)])

        await make_loop(project_root, config, executor).execute("Refactor")

        budgets = [request.budget_usd for _, request in executor.calls]
        assert budgets[0] == pytest.approx(1.0)
        assert budgets[1] == pytest.approx(0.75)

    async def test_attempt_ceiling_escalates(self, project_root: Path, config: ProjectConfig):
        config.inner_loop.max_iterations = 3
        executor = FakeExecutor([tool_result(TESTS_FAILED_OUTPUT)])

        result = await make_loop(project_root, config, executor).execute("Fix flaky test")

        assert result.task.status == TaskStatus.ESCALATED
        assert result.task.escalation_reason == EscalationReason.MAX_ITERATIONS
        assert result.task.iterations == 3
        assert len(executor.calls) == 3
        assert result.task.suggested_action == MAX_ITERATIONS_ACTION
        assert (result.task.last_error or "").startswith("Evaluation failed:")

    async def test_executor_error_fails_task(self, project_root: Path, config: ProjectConfig):
        executor = FakeExecutor(
            [tool_result(TESTS_FAILED_OUTPUT), ExecutorError("claude not found", error_type="not_found")]
        )

        result = await make_loop(project_root, config, executor).execute("Fix the parser")

        assert result.task.status == TaskStatus.FAILED
        assert result.task.iterations == 2
        assert len(result.logs) == 1
        assert result.task.last_error == "claude not found"
        assert result.task.suggested_action == EXECUTOR_FAILURE_ACTION

    @pytest.mark.parametrize("ceiling", [1, 2, 4])
    async def test_attempts_never_exceed_ceiling(self, project_root: Path, config: ProjectConfig, ceiling: int):
        config.inner_loop.max_iterations = ceiling
        executor = FakeExecutor([tool_result(TESTS_FAILED_OUTPUT)])

        result = await make_loop(project_root, config, executor).execute("Never passes")

        assert result.task.iterations <= ceiling
        assert len(executor.calls) <= ceiling
        assert result.task.status.is_terminal


# ─── Cancellation ────────────────────────────────────────────────────


class CancellingExecutor(FakeExecutor):
    """Cancels the token while its call is in flight."""

    token: CancellationToken | None = None

    async def execute(self, prompt, request):
        result = await super().execute(prompt, request)
        assert self.token is not None
        self.token.cancel()
        return result


class TestCancellation:
    async def test_cancel_before_start(self, project_root: Path, config: ProjectConfig):
        token = CancellationToken()
        token.cancel()
        executor = FakeExecutor([tool_result(TESTS_PASSED_OUTPUT)])

        result = await make_loop(project_root, config, executor, cancel_token=token).execute("Anything")

        assert result.task.status == TaskStatus.FAILED
        assert result.task.last_error == CANCELLED_MESSAGE
        assert executor.calls == []

    async def test_result_discarded_when_cancelled_mid_call(self, project_root: Path, config: ProjectConfig):
        token = CancellationToken()
        executor = CancellingExecutor([tool_result(TESTS_PASSED_OUTPUT)])
        executor.token = token

        result = await make_loop(project_root, config, executor, cancel_token=token).execute("Anything")

        assert result.task.status == TaskStatus.FAILED
        assert result.logs == []
        assert result.task.cost == 0.0


# ─── Persistence and notifications ───────────────────────────────────


class TestFinalize:
    async def test_task_log_saved(self, project_root: Path, ophan_dir: Path, config: ProjectConfig):
        executor = FakeExecutor([tool_result(TESTS_FAILED_OUTPUT), tool_result(TESTS_PASSED_OUTPUT)])

        result = await make_loop(project_root, config, executor).execute("Fix the parser")

        entry = TaskHistory(ophan_dir).load_task_log(result.task.id)
        assert entry is not None
        assert entry.task.status == TaskStatus.CONVERGED
        assert len(entry.logs) == 2
        assert entry.task.completed_at is not None

    async def test_cost_and_tokens_accrued(self, project_root: Path, config: ProjectConfig):
        executor = FakeExecutor([tool_result(TESTS_FAILED_OUTPUT, tokens=2000), tool_result(TESTS_PASSED_OUTPUT)])

        result = await make_loop(project_root, config, executor).execute("Fix the parser")

        assert result.task.tokens_used == 3000
        assert result.task.cost == pytest.approx(estimate_cost(3000, 0))

    async def test_context_usage_logged(self, project_root: Path, ophan_dir: Path, config: ProjectConfig):
        executor = FakeExecutor(
            [
                tool_result(TESTS_FAILED_OUTPUT, tokens=500),
                tool_result(TESTS_PASSED_OUTPUT, tokens=700, files_written=["src/app.ts"]),
            ]
        )

        result = await make_loop(
            project_root,
            config,
            executor,
            guideline_files=[str(ophan_dir / "guidelines" / "coding.md"), "src/unused.ts"],
        ).execute("Fix the parser")

        log = ContextUsageStore(ophan_dir).load_log(result.task.id)
        assert log is not None
        assert log.metrics.exploration_tokens == 500
        assert log.metrics.total_tokens == 1200
        assert log.metrics.hit_rate == pytest.approx(50.0)
        assert log.metrics.miss_rate == pytest.approx(100.0)

    async def test_escalation_notified_then_completion(self, project_root: Path, config: ProjectConfig):
        config.inner_loop.max_iterations = 1
        notifier = RecordingNotifier()
        manager = NotificationManager([notifier], project_root=project_root)
        executor = FakeExecutor([tool_result(TESTS_FAILED_OUTPUT)])

        await make_loop(project_root, config, executor, notifier=manager).execute("Never passes")

        events = [c.event for c in notifier.sent]
        assert events == [NotificationEvent.ESCALATION, NotificationEvent.TASK_COMPLETE]
        assert notifier.sent[0].reason == "max_iterations"
        assert notifier.sent[0].details["suggested_action"] == MAX_ITERATIONS_ACTION

    async def test_converged_task_only_notifies_completion(self, project_root: Path, config: ProjectConfig):
        notifier = RecordingNotifier()
        manager = NotificationManager([notifier], project_root=project_root)
        executor = FakeExecutor([tool_result(TESTS_PASSED_OUTPUT)])

        await make_loop(project_root, config, executor, notifier=manager).execute("Easy")

        assert [c.event for c in notifier.sent] == [NotificationEvent.TASK_COMPLETE]

    async def test_iteration_callback(self, project_root: Path, config: ProjectConfig):
        seen: list[tuple[int, bool]] = []
        executor = FakeExecutor([tool_result(TESTS_FAILED_OUTPUT), tool_result(TESTS_PASSED_OUTPUT)])

        await make_loop(
            project_root,
            config,
            executor,
            on_iteration=lambda i, e: seen.append((i, e.passed)),
        ).execute("Fix the parser")

        assert seen == [(1, False), (2, True)]
