"""Executor-backed analysis of recent task logs.

The pattern detector only counts signatures. This analyzer asks the
executor to read the same history, separate infrastructure trouble from
workflow problems, and recommend guideline or criteria changes for the
actionable ones. Any failure to get or parse a reply yields an empty
result; the review carries on without it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, get_args

from ophan.backends.base import ExecutionRequest, Executor
from ophan.core.errors import ExecutorError
from ophan.core.logging import get_logger
from ophan.execution.prompts import PromptBuilder
from ophan.models import Proposal, TaskLogEntry
from ophan.utils.ids import generate_proposal_id
from ophan.utils.parsing import extract_json_object

_logger = get_logger("log_analyzer")

ANALYSIS_SYSTEM_PROMPT = (
    "You analyze software development task logs to find root causes and "
    "recommend concrete guideline changes. Respond with the requested JSON "
    "and nothing else."
)

# Output excerpts are only worth the tokens when they show an error
OUTPUT_EXCERPT_CHARS = 1000
_ERROR_MARKERS = ("error", "Error", "fail")

PatternCategory = Literal["infrastructure", "workflow", "code_quality", "testing", "configuration", "other"]
_CATEGORIES = frozenset(get_args(PatternCategory))


@dataclass
class AnalyzedPattern:
    description: str
    category: PatternCategory
    root_cause: str
    occurrences: int
    affected_tasks: list[str] = field(default_factory=list)
    actionable: bool = False
    confidence: float = 0.0


@dataclass
class LogAnalysis:
    patterns: list[AnalyzedPattern] = field(default_factory=list)
    proposals: list[Proposal] = field(default_factory=list)
    summary: str = ""


def summarize_entry(entry: TaskLogEntry) -> dict[str, Any]:
    """Template fields for one task: its outcome and the final attempt's failures."""
    task = entry.task
    last = entry.logs[-1] if entry.logs else None
    evaluation = last.evaluation if last else None
    output = last.output[:OUTPUT_EXCERPT_CHARS] if last else ""
    return {
        "id": task.id,
        "description": task.description,
        "status": task.status.value,
        "iterations": task.iterations,
        "max_iterations": task.max_iterations,
        "score": evaluation.score if evaluation else None,
        "failures": [
            f"[{f.severity}] {f.criterion}: {f.message}" for f in (evaluation.failures if evaluation else [])
        ],
        "output": output if any(m in output for m in _ERROR_MARKERS) else "",
    }


def _clamp_confidence(value: Any) -> float:
    try:
        return min(1.0, max(0.0, float(value)))
    except (TypeError, ValueError):
        return 0.5


def parse_analysis_response(response: str, source: str, task_count: int) -> LogAnalysis | None:
    """Turn the executor's JSON reply into patterns and pending proposals.

    Returns None when no JSON object can be found. Malformed items are
    skipped; recommendations without a target or change are dropped.
    """
    data = extract_json_object(response)
    if data is None:
        return None

    patterns: list[AnalyzedPattern] = []
    for item in data.get("patterns") or []:
        if not isinstance(item, dict) or not item.get("description"):
            continue
        category = item.get("category")
        try:
            occurrences = int(item.get("occurrences") or 0)
        except (TypeError, ValueError):
            occurrences = 0
        patterns.append(
            AnalyzedPattern(
                description=str(item["description"]),
                category=category if category in _CATEGORIES else "other",
                root_cause=str(item.get("root_cause") or ""),
                occurrences=max(0, occurrences),
                affected_tasks=[str(t) for t in item.get("affected_task_ids") or []],
                actionable=bool(item.get("is_actionable")),
                confidence=_clamp_confidence(item.get("confidence", 0.0)),
            )
        )

    proposals: list[Proposal] = []
    for item in data.get("recommendations") or []:
        if not isinstance(item, dict):
            continue
        target = str(item.get("target_file") or "").strip()
        change = str(item.get("change") or "").strip()
        if not target or not change:
            continue
        kind = "criteria" if item.get("type") == "criteria" else "guideline"
        if "/" not in target:
            target = f"{'criteria' if kind == 'criteria' else 'guidelines'}/{target}"
        proposals.append(
            Proposal(
                id=generate_proposal_id(),
                type=kind,
                source=source,
                target_file=target,
                change=change,
                reason=str(item.get("reason") or "Recommended by log analysis"),
                confidence=_clamp_confidence(item.get("confidence", 0.5)),
            )
        )

    summary = data.get("summary")
    return LogAnalysis(
        patterns=patterns,
        proposals=proposals,
        summary=str(summary) if summary else f"Analyzed {task_count} tasks, found {len(patterns)} patterns",
    )


class LogAnalyzer:
    """Ask the executor what recent task history says about the guidelines."""

    def __init__(self, executor: Executor, source: str, prompts: PromptBuilder | None = None):
        self.executor = executor
        self.source = source
        self.prompts = prompts or PromptBuilder()

    async def analyze(self, entries: list[TaskLogEntry], project_root: Path) -> LogAnalysis:
        if not entries:
            return LogAnalysis(summary="No task logs to analyze")

        prompt = self.prompts.build_log_analysis_prompt([summarize_entry(e) for e in entries])
        try:
            result = await self.executor.execute(
                prompt,
                ExecutionRequest(
                    system_prompt=ANALYSIS_SYSTEM_PROMPT, project_root=project_root, read_only=True
                ),
            )
        except ExecutorError as e:
            _logger.warning("log_analysis_failed", error=str(e), error_type=e.error_type)
            return LogAnalysis(summary=f"Analysis failed: {e}")

        analysis = parse_analysis_response(result.text, self.source, len(entries))
        if analysis is None:
            _logger.warning("log_analysis_unparseable", response_length=len(result.text))
            return LogAnalysis(summary="Analysis completed but could not parse results")

        _logger.info(
            "log_analysis_completed",
            tasks=len(entries),
            patterns=len(analysis.patterns),
            proposals=len(analysis.proposals),
        )
        return analysis
