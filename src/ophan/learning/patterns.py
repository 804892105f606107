"""Pattern detection over task history.

Three families of patterns are mined from a lookback window of
``TaskLogEntry`` records:

- failure: the same normalized failure signature recurring across attempts
- iteration: groups of similar tasks that need many attempts, and tasks
  that hit the attempt ceiling
- success: tasks that converged on the first attempt, and high-score
  completions

Every candidate is filtered by ``occurrences >= min_occurrences`` and
``confidence >= min_confidence`` before it is returned.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime

from ophan.core.logging import get_logger
from ophan.models import EvaluationFailure, Pattern, SuggestedAction, TaskLogEntry, TaskStatus

_logger = get_logger("patterns")

ACTION_VERBS = (
    "create",
    "add",
    "fix",
    "update",
    "refactor",
    "remove",
    "delete",
    "implement",
    "write",
    "build",
    "test",
)

SIGNATURE_MAX_LENGTH = 100
HIGH_ITERATION_AVERAGE = 1.5
HIGH_SCORE_THRESHOLD = 90
GENERIC_SUCCESS_LABEL = "Simple, well-defined tasks"

_PATH_RE = re.compile(r"/[^\s]+")
_LINE_RE = re.compile(r"line \d+")
_LINE_COL_RE = re.compile(r":\d+:\d+")
_QUOTED_NAME_RE = re.compile(r"'\w+'")


@dataclass(frozen=True)
class FailureSuggestion:
    """Maps failure signatures matching ``keywords`` to a guideline edit."""

    keywords: re.Pattern[str]
    file: str
    change: str


# Checked in order; first match wins. Every evaluator message ends in
# "check failed", so failure wording alone never selects a document.
FAILURE_SUGGESTIONS: tuple[FailureSuggestion, ...] = (
    FailureSuggestion(
        re.compile(r"typescript|\bts\d*\b"),
        "coding.md",
        "Add reminder to run type checking before completing tasks. "
        "Consider adding TypeScript-specific error handling patterns.",
    ),
    FailureSuggestion(
        re.compile(r"lint|eslint"),
        "coding.md",
        "Add step to run linter before completing tasks. Document common lint rules to follow.",
    ),
    FailureSuggestion(
        re.compile(r"build|compile"),
        "coding.md",
        "Verify build succeeds before completing tasks. "
        "Check for import errors and missing dependencies.",
    ),
    FailureSuggestion(
        re.compile(r"test"),
        "testing.md",
        "Review testing workflow. Ensure tests are run and analyzed before marking task complete.",
    ),
)


def normalize_failure_signature(failure: EvaluationFailure) -> str:
    """``criterion: message`` with paths, line numbers and quoted names
    replaced by placeholders; the message part is truncated to 100 chars."""
    message = failure.message.lower()
    message = _PATH_RE.sub("<path>", message)
    message = _LINE_RE.sub("line <n>", message)
    message = _LINE_COL_RE.sub(":<n>:<n>", message)
    message = _QUOTED_NAME_RE.sub("'<name>'", message)
    return f"{failure.criterion.lower()}: {message.strip()[:SIGNATURE_MAX_LENGTH]}"


def extract_task_signature(description: str) -> str:
    """Bucket a task description by its first action verb and the words after it.

    Falls back to the first three words when no known verb appears.
    """
    lower = description.lower()
    for verb in ACTION_VERBS:
        if verb in lower:
            match = re.search(rf"{verb}\s+(?:a\s+)?([\w\s]{{1,30}})", lower)
            if match:
                return f"{verb} {match.group(1).strip()}"
            return verb
    return " ".join(lower.split()[:3])


def suggest_action_for_failure(signature: str) -> SuggestedAction:
    lower = signature.lower()
    for suggestion in FAILURE_SUGGESTIONS:
        if suggestion.keywords.search(lower):
            return SuggestedAction(target="guideline", file=suggestion.file, change=suggestion.change)
    return SuggestedAction(
        target="guideline",
        file="learnings.md",
        change=f"Document resolution for: {signature}",
    )


@dataclass
class _FailureGroup:
    occurrences: int = 0
    first_seen: datetime | None = None
    last_seen: datetime | None = None
    affected_tasks: list[str] = field(default_factory=list)


class PatternDetector:
    """Detect recurring patterns across task logs."""

    def __init__(self, min_occurrences: int = 3, min_confidence: float = 0.7):
        self.min_occurrences = min_occurrences
        self.min_confidence = min_confidence

    def detect_patterns(self, entries: list[TaskLogEntry]) -> list[Pattern]:
        candidates = [
            *self._detect_failure_patterns(entries),
            *self._detect_iteration_patterns(entries),
            *self._detect_success_patterns(entries),
        ]
        patterns = [
            p
            for p in candidates
            if p.occurrences >= self.min_occurrences and p.confidence >= self.min_confidence
        ]
        _logger.info(
            "patterns_detected",
            tasks=len(entries),
            candidates=len(candidates),
            surfaced=len(patterns),
        )
        return patterns

    def _detect_failure_patterns(self, entries: list[TaskLogEntry]) -> list[Pattern]:
        groups: dict[str, _FailureGroup] = {}
        for entry in entries:
            for log in entry.logs:
                evaluation = log.evaluation
                if evaluation is None or evaluation.passed:
                    continue
                for failure in evaluation.failures:
                    signature = normalize_failure_signature(failure)
                    group = groups.setdefault(signature, _FailureGroup(first_seen=log.timestamp))
                    group.occurrences += 1
                    group.last_seen = log.timestamp
                    if entry.task.id not in group.affected_tasks:
                        group.affected_tasks.append(entry.task.id)

        total = max(len(entries), 1)
        return [
            Pattern(
                type="failure",
                signature=signature,
                occurrences=group.occurrences,
                confidence=min(1.0, group.occurrences / total),
                affected_tasks=group.affected_tasks,
                first_seen=group.first_seen,
                last_seen=group.last_seen,
                suggested_action=suggest_action_for_failure(signature),
            )
            for signature, group in groups.items()
        ]

    def _detect_iteration_patterns(self, entries: list[TaskLogEntry]) -> list[Pattern]:
        patterns: list[Pattern] = []

        groups: dict[str, list[TaskLogEntry]] = {}
        for entry in entries:
            groups.setdefault(extract_task_signature(entry.task.description), []).append(entry)

        for signature, members in groups.items():
            average = sum(m.task.iterations for m in members) / len(members)
            if average > HIGH_ITERATION_AVERAGE and len(members) >= 2:
                patterns.append(
                    Pattern(
                        type="iteration",
                        signature=f"High iteration count for: {signature}",
                        occurrences=len(members),
                        confidence=min(1.0, len(members) / 5),
                        affected_tasks=[m.task.id for m in members],
                        first_seen=members[0].task.started_at,
                        last_seen=members[-1].task.started_at,
                        suggested_action=SuggestedAction(
                            target="guideline",
                            file="coding.md",
                            change=f'Add guidance for handling "{signature}" tasks more '
                            f"efficiently. Average iterations: {average:.1f}",
                        ),
                    )
                )

        ceiling_hits = [e for e in entries if e.task.iterations >= e.task.max_iterations]
        if ceiling_hits and len(ceiling_hits) >= self.min_occurrences:
            patterns.append(
                Pattern(
                    type="iteration",
                    signature="Tasks reaching maximum iteration limit",
                    occurrences=len(ceiling_hits),
                    confidence=min(1.0, len(ceiling_hits) / len(entries)),
                    affected_tasks=[e.task.id for e in ceiling_hits],
                    first_seen=ceiling_hits[0].task.started_at,
                    last_seen=ceiling_hits[-1].task.started_at,
                    suggested_action=SuggestedAction(
                        target="guideline",
                        file="coding.md",
                        change="Review workflow for complex tasks. "
                        "Consider breaking down into smaller subtasks.",
                    ),
                )
            )
        return patterns

    def _detect_success_patterns(self, entries: list[TaskLogEntry]) -> list[Pattern]:
        patterns: list[Pattern] = []

        quick = [
            e for e in entries if e.task.status == TaskStatus.CONVERGED and e.task.iterations == 1
        ]
        if quick and len(quick) >= self.min_occurrences:
            patterns.append(
                Pattern(
                    type="success",
                    signature=f"Quick convergence pattern: {self._common_trait(quick)}",
                    occurrences=len(quick),
                    confidence=min(1.0, len(quick) / len(entries)),
                    affected_tasks=[e.task.id for e in quick],
                    first_seen=quick[0].task.started_at,
                    last_seen=quick[-1].task.started_at,
                )
            )

        high_score = [
            e
            for e in entries
            if e.logs
            and e.logs[-1].evaluation is not None
            and e.logs[-1].evaluation.score >= HIGH_SCORE_THRESHOLD
        ]
        if high_score and len(high_score) >= self.min_occurrences:
            patterns.append(
                Pattern(
                    type="success",
                    signature=f"High quality completions (score >= {HIGH_SCORE_THRESHOLD})",
                    occurrences=len(high_score),
                    confidence=min(1.0, len(high_score) / len(entries)),
                    affected_tasks=[e.task.id for e in high_score],
                    first_seen=high_score[0].task.started_at,
                    last_seen=high_score[-1].task.started_at,
                )
            )
        return patterns

    @staticmethod
    def _common_trait(entries: list[TaskLogEntry]) -> str:
        counts = Counter(extract_task_signature(e.task.description) for e in entries)
        signature, count = counts.most_common(1)[0]
        return signature if count >= 2 else GENERIC_SUCCESS_LABEL


def format_patterns(patterns: list[Pattern]) -> str:
    """Markdown rendering used in the review digest."""
    if not patterns:
        return "No significant patterns detected."

    lines = ["## Detected Patterns\n"]
    sections = (
        ("failure", "### Failure Patterns\n", "occurrences"),
        ("iteration", "### Iteration Patterns\n", "tasks"),
        ("success", "### Success Patterns\n", "tasks"),
    )
    for pattern_type, heading, unit in sections:
        selected = [p for p in patterns if p.type == pattern_type]
        if not selected:
            continue
        lines.append(heading)
        for p in selected:
            lines.append(
                f"- **{p.signature}** ({p.occurrences} {unit}, {p.confidence * 100:.0f}% confidence)"
            )
            if p.suggested_action and pattern_type != "success":
                lines.append(
                    f"  - Suggested: Update {p.suggested_action.file} - {p.suggested_action.change}"
                )
        lines.append("")
    return "\n".join(lines)
