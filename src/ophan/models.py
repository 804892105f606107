"""Data model shared by the fast loop, the review cycle and persistence.

Everything here is a pydantic model so the same classes are used in memory
and in the JSON files under ``.ophan/`` (``model_dump(mode="json")`` on
write, ``model_validate`` on read).
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from ophan.utils.time import utc_now


class TaskStatus(str, Enum):
    """Status of one work item.

    ``running`` moves forward to exactly one terminal state.
    """

    PENDING = "pending"
    RUNNING = "running"
    CONVERGED = "converged"
    FAILED = "failed"
    ESCALATED = "escalated"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.CONVERGED, TaskStatus.FAILED, TaskStatus.ESCALATED)


class EscalationReason(str, Enum):
    COST_LIMIT = "cost_limit"
    MAX_ITERATIONS = "max_iterations"


class ProposalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


Severity = Literal["error", "warning"]
ProposalKind = Literal["guideline", "criteria"]
PatternType = Literal["failure", "iteration", "success"]


class Task(BaseModel):
    """One unit of work driven to convergence by the fast loop."""

    id: str
    description: str
    status: TaskStatus = TaskStatus.PENDING
    iterations: int = Field(default=0, ge=0, description="Attempts made so far")
    max_iterations: int = Field(default=5, ge=1, description="Attempt ceiling")
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None
    cost: float = Field(default=0.0, ge=0.0, description="Accrued cost in USD")
    tokens_used: int = Field(default=0, ge=0)
    escalation_reason: EscalationReason | None = None
    last_error: str | None = None
    suggested_action: str | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


class EvaluationFailure(BaseModel):
    """One failed check within an evaluation."""

    criterion: str
    message: str
    severity: Severity = "error"


class Evaluation(BaseModel):
    """Verdict for one attempt.

    ``criteria`` lists the names of checks that passed; ``failures`` lists
    the ones that did not. ``score`` is 100 exactly when there are no
    failures.
    """

    passed: bool
    score: int = Field(ge=0, le=100)
    criteria: list[str] = Field(default_factory=list)
    failures: list[EvaluationFailure] = Field(default_factory=list)
    summary: str | None = None

    @model_validator(mode="after")
    def _validate_score(self) -> Evaluation:
        if (self.score == 100) == bool(self.failures):
            raise ValueError(
                f"score must be 100 exactly when there are no failures "
                f"(score={self.score}, failures={len(self.failures)})"
            )
        return self


class TaskLog(BaseModel):
    """Record of one attempt. Written once, never mutated."""

    task_id: str
    timestamp: datetime = Field(default_factory=utc_now)
    iteration: int = Field(ge=1)
    action: Literal["iteration", "completed"] = "iteration"
    output: str = ""
    evaluation: Evaluation | None = None


class TaskLogEntry(BaseModel):
    """A task together with its attempt records, as stored in ``logs/``."""

    task: Task
    logs: list[TaskLog] = Field(default_factory=list)


class Learning(BaseModel):
    """A distilled, reusable lesson taken from one or more tasks."""

    id: str
    content: str
    context: str = ""
    issue: str = ""
    resolution: str = ""
    guideline_impact: str = ""
    timestamp: datetime = Field(default_factory=utc_now)
    references: int = Field(default=1, ge=0)
    promoted: bool = False


class ConsolidationResult(BaseModel):
    """Outcome of one learning consolidation pass."""

    kept: list[Learning] = Field(default_factory=list)
    promoted: list[Learning] = Field(default_factory=list)
    removed: list[Learning] = Field(default_factory=list)


class SuggestedAction(BaseModel):
    target: ProposalKind = "guideline"
    file: str
    change: str


class Pattern(BaseModel):
    """A recurring signal mined from task history."""

    type: PatternType
    signature: str
    occurrences: int = Field(ge=0)
    confidence: float = Field(ge=0.0, le=1.0)
    affected_tasks: list[str] = Field(default_factory=list)
    first_seen: datetime | None = None
    last_seen: datetime | None = None
    suggested_action: SuggestedAction | None = None


class Proposal(BaseModel):
    """A candidate edit to a guideline or criteria document."""

    id: str
    type: ProposalKind
    source: str
    target_file: str = Field(description="Path relative to the .ophan directory")
    change: str
    reason: str
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=utc_now)
    status: ProposalStatus = ProposalStatus.PENDING
    human_feedback: str | None = None
    reviewed_at: datetime | None = None


class AgentMetric(BaseModel):
    """One scalar health indicator reported by an agent."""

    name: str
    value: float
    target: float | None = None
    passed: bool = True


class FileUsage(BaseModel):
    """Files and commands an executor touched during one attempt or task."""

    files_read: list[str] = Field(default_factory=list)
    files_written: list[str] = Field(default_factory=list)
    files_searched: list[str] = Field(default_factory=list)
    commands_run: list[str] = Field(default_factory=list)

    def merge(self, other: FileUsage) -> FileUsage:
        """Union of both usages, keeping first-seen order."""

        def _union(a: list[str], b: list[str]) -> list[str]:
            return list(dict.fromkeys([*a, *b]))

        return FileUsage(
            files_read=_union(self.files_read, other.files_read),
            files_written=_union(self.files_written, other.files_written),
            files_searched=_union(self.files_searched, other.files_searched),
            commands_run=_union(self.commands_run, other.commands_run),
        )


class ContextUsageMetrics(BaseModel):
    provided_files: list[str] = Field(default_factory=list)
    files_read: list[str] = Field(default_factory=list)
    files_written: list[str] = Field(default_factory=list)
    files_searched: list[str] = Field(default_factory=list)
    commands_run: list[str] = Field(default_factory=list)
    hit_rate: float = Field(default=100.0, ge=0.0, le=100.0)
    miss_rate: float = Field(default=0.0, ge=0.0, le=100.0)
    exploration_tokens: int = 0
    total_tokens: int = 0


class ContextUsageLog(BaseModel):
    """Provided-versus-used record for one task, stored in ``context-logs/``."""

    task_id: str
    task_description: str = ""
    timestamp: datetime = Field(default_factory=utc_now)
    metrics: ContextUsageMetrics


class FileCount(BaseModel):
    file: str
    count: int


class ContextAggregateMetrics(BaseModel):
    task_count: int = 0
    avg_hit_rate: float = 0.0
    avg_miss_rate: float = 0.0
    avg_exploration_tokens: float = 0.0
    common_misses: list[FileCount] = Field(default_factory=list)
    common_unused: list[FileCount] = Field(default_factory=list)


class OphanMetrics(BaseModel):
    """Totals over the tasks in a lookback window."""

    total_tasks: int = 0
    successful_tasks: int = 0
    failed_tasks: int = 0
    escalated_tasks: int = 0
    average_iterations: float = 0.0
    max_iterations_hit: int = 0
    total_tokens_used: int = 0
    total_cost: float = 0.0
    average_cost_per_task: float = 0.0
    average_task_duration: float = Field(default=0.0, description="Seconds")
    total_time_spent: float = Field(default=0.0, description="Seconds")
    period_start: datetime | None = None
    period_end: datetime | None = None

    @property
    def success_rate(self) -> float:
        """Percentage of converged tasks (0 when there are none)."""
        if self.total_tasks == 0:
            return 0.0
        return self.successful_tasks / self.total_tasks * 100


__all__ = [
    "AgentMetric",
    "ConsolidationResult",
    "ContextAggregateMetrics",
    "ContextUsageLog",
    "ContextUsageMetrics",
    "EscalationReason",
    "Evaluation",
    "EvaluationFailure",
    "FileCount",
    "FileUsage",
    "Learning",
    "OphanMetrics",
    "Pattern",
    "PatternType",
    "Proposal",
    "ProposalKind",
    "ProposalStatus",
    "Severity",
    "SuggestedAction",
    "Task",
    "TaskLog",
    "TaskLogEntry",
    "TaskStatus",
]
