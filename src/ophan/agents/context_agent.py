"""The context agent: compares files provided to tasks with files they used.

Guidelines: context.md
Criteria: context-quality.md

Analysis only; it never runs tasks.
"""

from __future__ import annotations

from collections import Counter
from pathlib import PurePosixPath

from ophan.agents.base import AgentAnalysisResult, AgentGuidance, BaseAgent
from ophan.core.logging import get_logger
from ophan.learning.history import ContextUsageStore, is_guidance_file
from ophan.models import AgentMetric, ContextAggregateMetrics, FileCount, Proposal
from ophan.utils.ids import generate_context_proposal_id
from ophan.utils.time import utc_now

_logger = get_logger("context_agent")

MIN_TASKS = 5
TARGET_HIT_RATE = 70.0
TARGET_MISS_RATE = 20.0
ALERT_HIT_RATE = 50.0
ALERT_MISS_RATE = 40.0
ALERT_CONFIDENCE = 0.6
TOP_FILES = 3
METRICS_LOOKBACK_DAYS = 30

CONTEXT_GUIDELINE = "guidelines/context.md"
CONTEXT_CRITERIA = "criteria/context-quality.md"


def extract_path_patterns(files: list[str]) -> str:
    """Directories and extensions shared by at least two of ``files``."""
    dirs = Counter(str(PurePosixPath(f).parent) for f in files if "/" in f)
    extensions = Counter(PurePosixPath(f).suffix for f in files if PurePosixPath(f).suffix)
    lines = [f"- Files in `{d}/` directory are commonly needed" for d, n in dirs.items() if n >= 2]
    lines += [f"- `{ext}` files are commonly needed" for ext, n in extensions.items() if n >= 2]
    return "\n".join(lines)


def _file_list(counts: list[FileCount]) -> str:
    return "\n".join(f"- `{c.file}`" for c in counts)


class ContextAgent(BaseAgent):
    """Proposes context-guideline edits from hit and miss rates."""

    id = "context-agent"
    name = "Context Agent"
    description = "Analyzes context usage to improve file selection for future tasks"
    guidance = AgentGuidance(
        guideline_files=("context.md",),
        criteria_files=("context-quality.md",),
    )

    @property
    def usage_store(self) -> ContextUsageStore:
        return ContextUsageStore(self.ophan_dir)

    async def run_analysis(self, lookback_days: int, auto_apply_guidelines: bool) -> AgentAnalysisResult:
        metrics = self.usage_store.get_aggregate_metrics(lookback_days)
        agent_metrics = self._map_metrics(metrics)

        if metrics.task_count < MIN_TASKS:
            return AgentAnalysisResult(
                metrics=agent_metrics,
                summary=f"Not enough data ({metrics.task_count} tasks, need {MIN_TASKS}+)",
            )

        proposals: list[Proposal] = []
        guidelines_updated: list[str] = []

        candidates: list[Proposal] = []
        if metrics.common_misses and metrics.avg_miss_rate > TARGET_MISS_RATE:
            candidates.append(self._missed_files_proposal(metrics))

        unused = [c for c in metrics.common_unused if not is_guidance_file(c.file)]
        if unused and metrics.avg_hit_rate < TARGET_HIT_RATE:
            candidates.append(self._unused_files_proposal(metrics, unused))

        for proposal in candidates:
            if auto_apply_guidelines and self.try_auto_apply(proposal):
                if proposal.target_file not in guidelines_updated:
                    guidelines_updated.append(proposal.target_file)
            else:
                proposals.append(proposal)

        # Criteria changes always go to a human
        if metrics.avg_hit_rate < ALERT_HIT_RATE or metrics.avg_miss_rate > ALERT_MISS_RATE:
            proposals.append(self._performance_alert_proposal(metrics))

        _logger.info(
            "context_analysis_complete",
            tasks=metrics.task_count,
            hit_rate=round(metrics.avg_hit_rate, 1),
            miss_rate=round(metrics.avg_miss_rate, 1),
            proposals=len(proposals),
        )
        return AgentAnalysisResult(
            proposals=proposals,
            metrics=agent_metrics,
            summary=f"Analyzed {metrics.task_count} tasks, hit rate {metrics.avg_hit_rate:.0f}%, "
            f"miss rate {metrics.avg_miss_rate:.0f}%",
            guidelines_updated=guidelines_updated,
        )

    async def get_metrics(self) -> list[AgentMetric]:
        return self._map_metrics(self.usage_store.get_aggregate_metrics(METRICS_LOOKBACK_DAYS))

    def _missed_files_proposal(self, metrics: ContextAggregateMetrics) -> Proposal:
        top = metrics.common_misses[:TOP_FILES]
        patterns = extract_path_patterns([c.file for c in top])
        pattern_section = f"### Suggested Patterns\n\n{patterns}\n\n" if patterns else ""
        change = (
            "APPEND:\n\n"
            "## Commonly Needed Files\n\n"
            f"Based on {metrics.task_count} tasks analyzed, these files are frequently needed "
            "but not provided:\n\n"
            f"{_file_list(top)}\n\n"
            f"{pattern_section}"
            f"*Generated from context usage analysis on {utc_now().date().isoformat()}*\n"
        )
        return Proposal(
            id=generate_context_proposal_id(),
            type="guideline",
            source=self.id,
            target_file=CONTEXT_GUIDELINE,
            change=change,
            reason=f"Miss rate is {metrics.avg_miss_rate:.1f}% (target: <{TARGET_MISS_RATE:.0f}%). "
            f"These files were needed in {top[0].count}+ tasks but not provided.",
            confidence=min(0.9, 0.5 + top[0].count / metrics.task_count * 0.5),
        )

    def _unused_files_proposal(self, metrics: ContextAggregateMetrics, unused: list[FileCount]) -> Proposal:
        top = unused[:TOP_FILES]
        change = (
            "APPEND:\n\n"
            "## Files to Exclude from Context\n\n"
            f"Based on {metrics.task_count} tasks analyzed, these files are frequently provided "
            "but rarely used:\n\n"
            f"{_file_list(top)}\n\n"
            "Consider removing these from default context packs to reduce token usage.\n\n"
            f"*Generated from context usage analysis on {utc_now().date().isoformat()}*\n"
        )
        return Proposal(
            id=generate_context_proposal_id(),
            type="guideline",
            source=self.id,
            target_file=CONTEXT_GUIDELINE,
            change=change,
            reason=f"Hit rate is {metrics.avg_hit_rate:.1f}% (target: >{TARGET_HIT_RATE:.0f}%). "
            f"These files were provided but unused in {top[0].count}+ tasks.",
            confidence=min(0.8, 0.4 + top[0].count / metrics.task_count * 0.4),
        )

    def _performance_alert_proposal(self, metrics: ContextAggregateMetrics) -> Proposal:
        change = (
            "APPEND:\n\n"
            "## Performance Alert\n\n"
            f"Current metrics ({metrics.task_count} tasks):\n"
            f"- Hit Rate: {metrics.avg_hit_rate:.1f}% (target: >{TARGET_HIT_RATE:.0f}%)\n"
            f"- Miss Rate: {metrics.avg_miss_rate:.1f}% (target: <{TARGET_MISS_RATE:.0f}%)\n\n"
            "Consider adjusting targets or implementing more aggressive context learning.\n\n"
            f"*Flagged on {utc_now().date().isoformat()}*\n"
        )
        return Proposal(
            id=generate_context_proposal_id(),
            type="criteria",
            source=self.id,
            target_file=CONTEXT_CRITERIA,
            change=change,
            reason="Context prediction is significantly underperforming. "
            f"Hit rate {metrics.avg_hit_rate:.1f}%, miss rate {metrics.avg_miss_rate:.1f}%.",
            confidence=ALERT_CONFIDENCE,
        )

    @staticmethod
    def _map_metrics(metrics: ContextAggregateMetrics) -> list[AgentMetric]:
        return [
            AgentMetric(
                name="Hit Rate",
                value=metrics.avg_hit_rate,
                target=TARGET_HIT_RATE,
                passed=metrics.avg_hit_rate >= TARGET_HIT_RATE,
            ),
            AgentMetric(
                name="Miss Rate",
                value=metrics.avg_miss_rate,
                target=TARGET_MISS_RATE,
                passed=metrics.avg_miss_rate <= TARGET_MISS_RATE,
            ),
            AgentMetric(
                name="Tasks Analyzed",
                value=float(metrics.task_count),
                passed=metrics.task_count >= MIN_TASKS,
            ),
        ]
