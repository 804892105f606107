"""The slow loop: a review pass over recent task history.

Sequence per run:

1. load task history within the lookback window
2. detect patterns (informational, rendered in the digest)
3. run every agent's analysis through the registry
4. cap the pending proposals at ``max_proposals``
5. write the digest ``digests/YYYY-MM-DD.md``
6. send the ``digest`` notification (best-effort)

The caller's run-state is updated in place: ``last_review``,
``tasks_since_review`` and ``metrics``. Persisting it is the caller's job.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

import jinja2

from ophan.agents.base import AgentOptions
from ophan.agents.registry import AgentRegistry, create_default_registry
from ophan.backends.base import Executor
from ophan.core.config import OPHAN_DIRNAME, ProjectConfig
from ophan.core.logging import ExecutionContext, get_logger, with_context
from ophan.learning.history import TaskHistory, compute_task_metrics
from ophan.learning.patterns import PatternDetector, format_patterns
from ophan.models import (
    AgentMetric,
    ConsolidationResult,
    Pattern,
    Proposal,
    ProposalStatus,
    TaskLogEntry,
)
from ophan.notifications.base import NotificationManager
from ophan.state.store import RunState
from ophan.utils.time import utc_now

_logger = get_logger("slow_loop")

RECENT_TASKS_LIMIT = 10

# Digest sections for each known proposal source, in this order
PROPOSAL_SOURCES = (
    ("task-agent", "Task Agent"),
    ("context-agent", "Context Agent"),
)

DIGEST_TEMPLATE = """\
# Ophan Review Digest

**Generated:** {{ generated_at }}
**Lookback Period:** {{ lookback_days }} days
**Tasks Analyzed:** {{ metrics.total_tasks }}

---

## Summary

| Metric | Value |
|--------|-------|
| Total Tasks | {{ metrics.total_tasks }} |
| Successful | {{ metrics.successful_tasks }} ({{ "%.1f" | format(metrics.success_rate) }}%) |
| Failed | {{ metrics.failed_tasks }} |
| Escalated | {{ metrics.escalated_tasks }} |
| Avg Iterations | {{ "%.2f" | format(metrics.average_iterations) }} |
| Total Cost | ${{ "%.4f" | format(metrics.total_cost) }} |

---

## Agent Metrics

{% for m in agent_metrics -%}
- {{ "✓" if m.passed else "✗" }} {{ m.name }}: {{ "%.1f" | format(m.value) }}{% if m.target is not none %} (target: {{ m.target }}){% endif %}
{% else -%}
No agent metrics available.
{% endfor %}
---

## Patterns Detected

{{ patterns }}

---

## Learnings Consolidation

- **Kept:** {{ consolidation.kept | length }}
- **Promoted to Guidelines:** {{ consolidation.promoted | length }}
- **Removed (duplicates/old):** {{ consolidation.removed | length }}

---

## Guidelines Updated

{% for target in guidelines_updated -%}
- {{ target }}
{% else -%}
No guidelines updated.
{% endfor %}
---

## Pending Proposals
{% for label, group in proposal_groups %}
### {{ label }} ({{ group | length }})

{% for p in group -%}
#### {{ p.id }}

**Type:** {{ p.type }}
**Target:** {{ p.target_file }}
**Confidence:** {{ "%.0f" | format(p.confidence * 100) }}%

**Reason:** {{ p.reason }}
{% if not loop.last %}
---

{% endif %}
{% else -%}
No proposals.
{% endfor %}
{%- endfor %}
---

## Recent Tasks

{% for t in recent_tasks -%}
- **{{ t.id }}** - {{ t.status.value }} ({{ t.iterations }} iter, ${{ "%.4f" | format(t.cost) }})
  {{ t.description[:80] }}{% if t.description | length > 80 %}...{% endif %}
{% else -%}
No tasks in this period.
{% endfor %}
---

*Generated by Ophan review*
"""


@dataclass
class SlowLoopOptions:
    project_root: Path
    config: ProjectConfig
    state: RunState
    ophan_dir: Path | None = None
    registry: AgentRegistry | None = None
    notifier: NotificationManager | None = None
    executor_factory: Callable[[], Executor] | None = None
    on_progress: Callable[[str], None] | None = None

    @property
    def resolved_ophan_dir(self) -> Path:
        return self.ophan_dir or self.project_root / OPHAN_DIRNAME


@dataclass
class SlowLoopResult:
    patterns: list[Pattern]
    proposals: list[Proposal]
    """Pending proposals for human review, capped at ``max_proposals``."""

    consolidation: ConsolidationResult
    guidelines_updated: list[str]
    agent_metrics: dict[str, list[AgentMetric]] = field(default_factory=dict)
    digest_path: Path | None = None


def group_proposals_by_source(proposals: list[Proposal]) -> list[tuple[str, list[Proposal]]]:
    """Known sources first, in a fixed order, then any other source."""
    groups = [(label, [p for p in proposals if p.source == source]) for source, label in PROPOSAL_SOURCES]
    known = {source for source, _ in PROPOSAL_SOURCES}
    for source in dict.fromkeys(p.source for p in proposals if p.source not in known):
        groups.append((source, [p for p in proposals if p.source == source]))
    return groups


def render_digest(
    entries: list[TaskLogEntry],
    patterns: list[Pattern],
    proposals: list[Proposal],
    consolidation: ConsolidationResult,
    guidelines_updated: list[str],
    agent_metrics: list[AgentMetric],
    lookback_days: int,
    generated_at: datetime | None = None,
) -> str:
    env = jinja2.Environment(undefined=jinja2.StrictUndefined, autoescape=False, keep_trailing_newline=True)
    tasks = [e.task for e in entries]
    return env.from_string(DIGEST_TEMPLATE).render(
        generated_at=(generated_at or utc_now()).isoformat(),
        lookback_days=lookback_days,
        metrics=compute_task_metrics(tasks),
        agent_metrics=agent_metrics,
        patterns=format_patterns(patterns),
        consolidation=consolidation,
        guidelines_updated=guidelines_updated,
        proposal_groups=group_proposals_by_source(proposals),
        recent_tasks=list(reversed(tasks[-RECENT_TASKS_LIMIT:])),
    )


class SlowLoop:
    """Runs one review pass for a project."""

    def __init__(self, options: SlowLoopOptions):
        self.options = options
        self.config = options.config
        self.ophan_dir = options.resolved_ophan_dir
        self.registry = options.registry or create_default_registry()
        self.detector = PatternDetector(
            min_occurrences=self.config.outer_loop.min_occurrences,
            min_confidence=self.config.outer_loop.min_confidence,
        )
        self.history = TaskHistory(self.ophan_dir)

    def _progress(self, message: str) -> None:
        if self.options.on_progress:
            self.options.on_progress(message)

    async def execute(
        self,
        auto_apply_guidelines: bool = False,
        lookback_days: int | None = None,
    ) -> SlowLoopResult:
        ctx = ExecutionContext(project=self.options.project_root.name, component="slow_loop")
        with with_context(ctx):
            return await self._execute(auto_apply_guidelines, lookback_days or self.config.outer_loop.lookback_days)

    async def _execute(self, auto_apply_guidelines: bool, lookback_days: int) -> SlowLoopResult:
        now = utc_now()
        state = self.options.state
        self._progress("Starting review...")

        entries = self.history.load_entries(lookback_days, now=now)
        self._progress(f"Loaded {len(entries)} task logs")

        patterns = self.detector.detect_patterns(entries)
        self._progress(f"Detected {len(patterns)} patterns")

        if not self.registry.initialized:
            await self.registry.initialize_all(
                AgentOptions(
                    project_root=self.options.project_root,
                    ophan_dir=self.ophan_dir,
                    config=self.config,
                    state=state,
                    notifier=self.options.notifier,
                    executor_factory=self.options.executor_factory,
                    on_progress=self.options.on_progress,
                )
            )
        combined = await self.registry.run_all_analyses(lookback_days, auto_apply_guidelines)

        pending = [p for p in combined.proposals if p.status == ProposalStatus.PENDING]
        proposals = pending[: self.config.outer_loop.max_proposals]
        if len(pending) > len(proposals):
            _logger.info("proposals_truncated", generated=len(pending), kept=len(proposals))
        self._progress(f"Generated {len(proposals)} total proposals for review")

        consolidation = ConsolidationResult()
        for result in combined.agent_results.values():
            if result.consolidation is not None:
                consolidation.kept.extend(result.consolidation.kept)
                consolidation.promoted.extend(result.consolidation.promoted)
                consolidation.removed.extend(result.consolidation.removed)

        digest = render_digest(
            entries,
            patterns,
            proposals,
            consolidation,
            combined.guidelines_updated,
            combined.metrics,
            lookback_days,
            generated_at=now,
        )
        digest_path = self.ophan_dir / "digests" / f"{now.date().isoformat()}.md"
        digest_path.parent.mkdir(parents=True, exist_ok=True)
        digest_path.write_text(digest, encoding="utf-8")
        self._progress(f"Generated digest: {digest_path}")

        metrics = compute_task_metrics(
            [e.task for e in entries],
            period_start=now - timedelta(days=lookback_days),
            period_end=now,
        )
        if self.options.notifier is not None:
            await self.options.notifier.notify_digest(
                {
                    "total_tasks": metrics.total_tasks,
                    "successful_tasks": metrics.successful_tasks,
                    "failed_tasks": metrics.failed_tasks,
                    "escalated_tasks": metrics.escalated_tasks,
                    "patterns_detected": len(patterns),
                    "learnings_promoted": len(consolidation.promoted),
                },
                digest_path,
            )

        state.last_review = now
        state.tasks_since_review = 0
        state.metrics = metrics

        _logger.info(
            "review_complete",
            tasks=len(entries),
            patterns=len(patterns),
            proposals=len(proposals),
            guidelines_updated=len(combined.guidelines_updated),
            failed_agents=combined.failed_agents,
        )
        return SlowLoopResult(
            patterns=patterns,
            proposals=proposals,
            consolidation=consolidation,
            guidelines_updated=combined.guidelines_updated,
            agent_metrics={aid: r.metrics for aid, r in combined.agent_results.items()},
            digest_path=digest_path,
        )


def review_due(state: RunState, config: ProjectConfig) -> bool:
    """A review is due once ``after_tasks`` tasks have run since the last one."""
    return state.tasks_since_review >= config.outer_loop.triggers.after_tasks


__all__ = [
    "SlowLoop",
    "SlowLoopOptions",
    "SlowLoopResult",
    "group_proposals_by_source",
    "render_digest",
    "review_due",
]
