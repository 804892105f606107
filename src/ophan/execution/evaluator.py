"""Evaluation of one attempt: heuristic checks plus an optional criteria judge.

The heuristic checks are a declarative table. Each entry has a fail pattern
and a success pattern matched against the attempt's concatenated tool
output:

- fail pattern matches: the check contributes a failure
- only the success pattern matches: the check contributes a pass
- neither matches: the check says nothing

Patterns are deliberately specific to real tool output (test runners,
compilers, linters, bundlers) so generic words in logs or model commentary
do not trigger them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from ophan.backends.base import ExecutionRequest, Executor
from ophan.core.errors import ExecutorError
from ophan.core.logging import get_logger
from ophan.execution.prompts import PromptBuilder
from ophan.models import Evaluation, EvaluationFailure
from ophan.utils.parsing import extract_json_object

_logger = get_logger("evaluator")

FAILURE_PENALTY = 25
CRITERIA_CHECK_NAME = "Criteria Check"

JUDGE_SYSTEM_PROMPT = (
    "You are a strict reviewer. Judge the work only against the stated criteria "
    "and respond with the requested JSON and nothing else."
)


@dataclass(frozen=True)
class HeuristicCheck:
    """One named check over tool output."""

    name: str
    fail_pattern: re.Pattern[str]
    success_pattern: re.Pattern[str]

    def outcome(self, text: str) -> bool | None:
        """True for pass, False for fail, None when the output is unrelated."""
        if self.fail_pattern.search(text):
            return False
        if self.success_pattern.search(text):
            return True
        return None


def _check(name: str, fail: str, success: str) -> HeuristicCheck:
    return HeuristicCheck(
        name=name,
        fail_pattern=re.compile(fail, re.IGNORECASE),
        success_pattern=re.compile(success, re.IGNORECASE),
    )


HEURISTIC_CHECKS: tuple[HeuristicCheck, ...] = (
    _check(
        "Tests",
        # Jest "FAIL src/x.test.ts", "Tests: 1 failed", "2 failing", npm test failure
        r"(?:FAIL\s+(?:src|test|spec)/|Tests?:\s*[1-9]\d*\s+failed|[1-9]\d*\s+failing"
        r"|[1-9]\d*\s+failed,|npm ERR!.*test failed)",
        r"(?:Tests?:\s*\d+\s+passed,?\s*\d*\s*total|All\s+\d+\s+tests?\s+passed"
        r"|✓.*\(\d+\s*m?s\)|passed,\s*0\s+failed|\d+\s+pass(?:ed)?[,\s]+0\s+fail)",
    ),
    _check(
        "TypeScript",
        r"(?:error TS\d{4}:|Found [1-9]\d* errors?)",
        r"(?:Successfully compiled \d+ files|Found 0 errors|no errors)",
    ),
    _check(
        "ESLint",
        r"(?:✖\s+[1-9]\d*\s+problems?|[1-9]\d*\s+errors?\s+and\s+\d+\s+warnings?)",
        r"(?:✔\s+No\s+(?:ESLint\s+)?(?:warnings|errors|problems)|0\s+problems?|no\s+problems?)",
    ),
    _check(
        "Build",
        r"(?:Build failed|Failed to compile|Build error:|Compilation failed)",
        r"(?:Build succeeded|Compiled successfully|Build complete|Successfully built)",
    ),
)


def failing_score(failure_count: int) -> int:
    """``100`` with no failures, else ``max(0, 100 - 25 * n)``."""
    if failure_count == 0:
        return 100
    return max(0, 100 - FAILURE_PENALTY * failure_count)


def evaluate_tool_outputs(
    tool_outputs: str,
    checks: tuple[HeuristicCheck, ...] = HEURISTIC_CHECKS,
) -> Evaluation:
    """Run the heuristic checks. Pure and deterministic."""
    failures: list[EvaluationFailure] = []
    passed_criteria: list[str] = []

    for check in checks:
        outcome = check.outcome(tool_outputs)
        if outcome is None:
            continue
        if outcome:
            passed_criteria.append(check.name)
        else:
            failures.append(
                EvaluationFailure(
                    criterion=check.name,
                    message=f"{check.name} check failed - see tool output for details",
                    severity="error",
                )
            )

    return Evaluation(
        passed=not failures,
        score=failing_score(len(failures)),
        criteria=passed_criteria,
        failures=failures,
    )


def format_evaluation(evaluation: Evaluation) -> str:
    """Render an evaluation as the markdown feedback block shown to the executor."""
    lines = [
        f"## Evaluation {'✓ PASSED' if evaluation.passed else '✗ FAILED'}",
        f"Score: {evaluation.score}/100",
        "",
    ]
    if evaluation.criteria:
        lines.append("### Passed Criteria")
        lines.extend(f"- ✓ {criterion}" for criterion in evaluation.criteria)
        lines.append("")
    if evaluation.failures:
        lines.append("### Failed Criteria")
        for failure in evaluation.failures:
            icon = "✗" if failure.severity == "error" else "⚠"
            lines.append(f"- {icon} {failure.criterion}: {failure.message}")
        lines.append("")
    if evaluation.summary:
        lines.extend(["### Summary", evaluation.summary, ""])
    return "\n".join(lines)


def _synthetic_failure(message: str) -> Evaluation:
    return Evaluation(
        passed=False,
        score=failing_score(1),
        failures=[EvaluationFailure(criterion=CRITERIA_CHECK_NAME, message=message)],
    )


def parse_criteria_response(response: str) -> Evaluation:
    """Turn a judge response into an Evaluation.

    Malformed responses degrade to a single synthetic failing criterion;
    this never raises.
    """
    data = extract_json_object(response)
    if data is None:
        return _synthetic_failure("Could not parse criteria evaluation response")

    passed_names: list[str] = []
    failures: list[EvaluationFailure] = []
    items = data.get("criteria")
    if not isinstance(items, list):
        items = []
    for item in items:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name") or "Unnamed criterion")
        if item.get("passed"):
            passed_names.append(name)
            continue
        severity = item.get("severity")
        failures.append(
            EvaluationFailure(
                criterion=name,
                message=str(item.get("message") or "Criterion not met"),
                severity=severity if severity in ("error", "warning") else "error",
            )
        )

    summary = data.get("summary")
    summary = str(summary) if summary else None
    judge_passed = bool(data.get("passed"))

    if not judge_passed and not failures:
        failures.append(
            EvaluationFailure(
                criterion=CRITERIA_CHECK_NAME,
                message=summary or "Criteria judged as not met",
            )
        )

    if not failures:
        return Evaluation(passed=True, score=100, criteria=passed_names, summary=summary)

    try:
        raw_score = int(data.get("score", failing_score(len(failures))))
    except (TypeError, ValueError):
        raw_score = failing_score(len(failures))
    has_errors = any(f.severity == "error" for f in failures)
    return Evaluation(
        passed=judge_passed and not has_errors,
        score=min(99, max(0, raw_score)),
        criteria=passed_names,
        failures=failures,
        summary=summary,
    )


@dataclass
class EvaluationOutcome:
    """An evaluation plus whatever the judge spent producing it."""

    evaluation: Evaluation
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0


class CriteriaJudge:
    """Executor-backed check of an attempt against the criteria documents."""

    def __init__(self, executor: Executor, prompts: PromptBuilder | None = None):
        self.executor = executor
        self.prompts = prompts or PromptBuilder()

    async def evaluate(
        self,
        description: str,
        criteria: str,
        tool_outputs: str,
        project_root: Path,
    ) -> EvaluationOutcome:
        prompt = self.prompts.build_evaluation_prompt(description, criteria, tool_outputs)
        result = await self.executor.execute(
            prompt,
            ExecutionRequest(system_prompt=JUDGE_SYSTEM_PROMPT, project_root=project_root, read_only=True),
        )
        evaluation = parse_criteria_response(result.text)
        _logger.debug(
            "criteria_judged",
            passed=evaluation.passed,
            score=evaluation.score,
            failures=len(evaluation.failures),
        )
        return EvaluationOutcome(
            evaluation=evaluation,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            cost=result.cost,
        )


def combine_evaluations(heuristic: Evaluation, criteria: Evaluation) -> Evaluation:
    """Both must pass; the score is the lower of the two."""
    return Evaluation(
        passed=heuristic.passed and criteria.passed,
        score=min(heuristic.score, criteria.score),
        criteria=[*heuristic.criteria, *criteria.criteria],
        failures=[*heuristic.failures, *criteria.failures],
        summary=criteria.summary,
    )


class Evaluator:
    """Heuristic checks, optionally combined with a criteria judge."""

    def __init__(
        self,
        judge: CriteriaJudge | None = None,
        checks: tuple[HeuristicCheck, ...] = HEURISTIC_CHECKS,
    ):
        self.judge = judge
        self.checks = checks

    async def evaluate(
        self,
        description: str,
        criteria: str,
        tool_outputs: str,
        project_root: Path,
    ) -> EvaluationOutcome:
        heuristic = evaluate_tool_outputs(tool_outputs, self.checks)
        if self.judge is None:
            return EvaluationOutcome(evaluation=heuristic)

        try:
            judged = await self.judge.evaluate(description, criteria, tool_outputs, project_root)
        except ExecutorError as e:
            _logger.warning("criteria_judge_failed", error=str(e))
            failed = _synthetic_failure(f"Criteria evaluation failed: {e}")
            return EvaluationOutcome(evaluation=combine_evaluations(heuristic, failed))
        judged.evaluation = combine_evaluations(heuristic, judged.evaluation)
        return judged
