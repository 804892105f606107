"""Tests for ophan.learning.patterns module."""

from __future__ import annotations

import pytest

from ophan.execution.evaluator import evaluate_tool_outputs
from ophan.learning.patterns import (
    GENERIC_SUCCESS_LABEL,
    PatternDetector,
    extract_task_signature,
    format_patterns,
    normalize_failure_signature,
    suggest_action_for_failure,
)
from ophan.models import EvaluationFailure, TaskStatus
from tests.helpers import TESTS_FAILED_OUTPUT, make_entry

TS_FAILURE = EvaluationFailure(criterion="TypeScript", message="error TS2322: Type mismatch at line 12")
DOCS_WARNING = EvaluationFailure(criterion="Docs", message="Changelog entry is thin", severity="warning")

DESCRIPTIONS = [
    "Add a profile page",
    "Fix the checkout total",
    "Refactor the session store",
    "Implement password reset",
    "Update the billing widget",
]


# ─── Signatures ──────────────────────────────────────────────────────


class TestNormalizeFailureSignature:
    def test_line_numbers_replaced(self):
        assert normalize_failure_signature(TS_FAILURE) == "typescript: error ts2322: type mismatch at line <n>"

    def test_paths_and_positions_replaced(self):
        failure = EvaluationFailure(criterion="Build", message="Cannot find module at /src/app.ts:10:4")
        assert normalize_failure_signature(failure) == "build: cannot find module at <path>"

    def test_quoted_names_replaced(self):
        failure = EvaluationFailure(criterion="Tests", message="Expected 'foo' to equal 'bar'")
        assert normalize_failure_signature(failure) == "tests: expected '<name>' to equal '<name>'"

    def test_truncated(self):
        failure = EvaluationFailure(criterion="Tests", message="x" * 300)
        signature = normalize_failure_signature(failure)
        assert signature == "tests: " + "x" * 100


class TestExtractTaskSignature:
    def test_verb_and_object(self):
        assert extract_task_signature("Add a login button") == "add login button"

    def test_first_listed_verb_wins(self):
        assert extract_task_signature("Fix and add docs") == "add docs"

    def test_no_verb_falls_back_to_first_words(self):
        assert extract_task_signature("Profile page layout tweaks") == "profile page layout"


class TestSuggestActionForFailure:
    @pytest.mark.parametrize(
        ("output", "criterion", "file"),
        [
            (TESTS_FAILED_OUTPUT, "Tests", "testing.md"),
            ("src/app.ts(3,1): error TS2322: Type 'string' is not assignable", "TypeScript", "coding.md"),
            ("✖ 3 problems (3 errors, 0 warnings)", "ESLint", "coding.md"),
            ("Build failed with 2 errors", "Build", "coding.md"),
        ],
    )
    def test_evaluator_failures_routed(self, output: str, criterion: str, file: str):
        [failure] = evaluate_tool_outputs(output).failures
        assert failure.criterion == criterion
        assert suggest_action_for_failure(normalize_failure_signature(failure)).file == file

    def test_lint_and_build_in_one_attempt_go_to_coding(self):
        failures = evaluate_tool_outputs("✖ 3 problems\nBuild failed").failures
        routed = {f.criterion: suggest_action_for_failure(normalize_failure_signature(f)).file for f in failures}
        assert routed == {"ESLint": "coding.md", "Build": "coding.md"}

    def test_fallback_documents_resolution(self):
        action = suggest_action_for_failure("docs: missing changelog")
        assert action.file == "learnings.md"
        assert action.change == "Document resolution for: docs: missing changelog"


# ─── Detection ───────────────────────────────────────────────────────


class TestFailurePatterns:
    def test_repeated_type_error_across_tasks(self):
        entries = [
            make_entry(f"task-{i}", description, failures=[TS_FAILURE])
            for i, description in enumerate(DESCRIPTIONS)
        ]

        patterns = PatternDetector(min_occurrences=3, min_confidence=0.5).detect_patterns(entries)

        assert len(patterns) == 1
        pattern = patterns[0]
        assert pattern.type == "failure"
        assert pattern.occurrences == 5
        assert pattern.confidence == 1.0
        assert pattern.affected_tasks == [f"task-{i}" for i in range(5)]
        assert pattern.suggested_action is not None
        assert pattern.suggested_action.file == "coding.md"

    def test_below_min_occurrences_filtered(self):
        entries = [make_entry("task-1", failures=[TS_FAILURE]), make_entry("task-2", "Other work")]
        assert PatternDetector(min_occurrences=3, min_confidence=0.1).detect_patterns(entries) == []

    def test_below_min_confidence_filtered(self):
        entries = [make_entry(f"task-{i}", DESCRIPTIONS[i]) for i in range(4)]
        entries += [make_entry(f"bad-{i}", failures=[TS_FAILURE], status=TaskStatus.FAILED) for i in range(3)]
        for entry in entries[:4]:
            entry.task.status = TaskStatus.CONVERGED
            entry.task.iterations = 2

        detector = PatternDetector(min_occurrences=3, min_confidence=0.5)
        failure_patterns = [p for p in detector.detect_patterns(entries) if p.type == "failure"]
        assert failure_patterns == []

    def test_every_attempt_counts(self):
        entries = [make_entry("task-1", iterations=4, failures=[TS_FAILURE])]
        patterns = PatternDetector(min_occurrences=3, min_confidence=0.5).detect_patterns(entries)
        failure = next(p for p in patterns if p.type == "failure")
        assert failure.occurrences == 4
        assert failure.confidence == 1.0
        assert failure.affected_tasks == ["task-1"]

    def test_empty_history(self):
        assert PatternDetector().detect_patterns([]) == []


class TestIterationPatterns:
    def test_similar_tasks_needing_many_attempts(self):
        entries = [
            make_entry("task-1", "Add a login button", iterations=3, status=TaskStatus.CONVERGED),
            make_entry("task-2", "add a login button", iterations=2, status=TaskStatus.CONVERGED),
        ]
        patterns = PatternDetector(min_occurrences=2, min_confidence=0.4).detect_patterns(entries)
        iteration = [p for p in patterns if p.type == "iteration"]
        assert len(iteration) == 1
        assert iteration[0].signature.startswith("High iteration count for: add login button")
        assert iteration[0].occurrences == 2
        assert iteration[0].confidence == pytest.approx(0.4)

    def test_ceiling_hits(self):
        entries = [
            make_entry(f"task-{i}", DESCRIPTIONS[i], iterations=5, max_iterations=5, status=TaskStatus.ESCALATED)
            for i in range(3)
        ]
        patterns = PatternDetector(min_occurrences=3, min_confidence=0.5).detect_patterns(entries)
        signatures = {p.signature for p in patterns if p.type == "iteration"}
        assert "Tasks reaching maximum iteration limit" in signatures


class TestSuccessPatterns:
    def test_quick_convergence_and_high_scores(self):
        entries = [
            make_entry(f"task-{i}", "Add a unit test", status=TaskStatus.CONVERGED) for i in range(3)
        ]
        patterns = PatternDetector(min_occurrences=3, min_confidence=0.7).detect_patterns(entries)
        signatures = [p.signature for p in patterns if p.type == "success"]
        assert signatures == [
            "Quick convergence pattern: add unit test",
            "High quality completions (score >= 90)",
        ]

    def test_generic_label_for_unrelated_tasks(self):
        entries = [
            make_entry(
                f"task-{i}", DESCRIPTIONS[i], status=TaskStatus.CONVERGED, failures=[DOCS_WARNING], score=80
            )
            for i in range(3)
        ]
        patterns = PatternDetector(min_occurrences=3, min_confidence=0.7).detect_patterns(entries)
        signatures = [p.signature for p in patterns if p.type == "success"]
        assert signatures == [f"Quick convergence pattern: {GENERIC_SUCCESS_LABEL}"]


class TestFormatPatterns:
    def test_empty(self):
        assert format_patterns([]) == "No significant patterns detected."

    def test_sections(self):
        entries = [make_entry(f"task-{i}", DESCRIPTIONS[i], failures=[TS_FAILURE]) for i in range(3)]
        text = format_patterns(PatternDetector(min_occurrences=3, min_confidence=0.5).detect_patterns(entries))
        assert "### Failure Patterns" in text
        assert "(3 occurrences, 100% confidence)" in text
        assert "Suggested: Update coding.md" in text
