"""History store: per-task attempt logs and per-task context-usage logs.

Layout:
    {ophan_dir}/logs/{task_id}.json           TaskLogEntry
    {ophan_dir}/context-logs/{task_id}.json   ContextUsageLog

Read paths treat missing directories and unreadable files as "no data" and
log a warning; write paths let I/O errors propagate to the caller.
"""

from __future__ import annotations

import json
from collections import Counter
from datetime import datetime, timedelta
from pathlib import Path

from pydantic import ValidationError

from ophan.core.logging import get_logger
from ophan.models import (
    ContextAggregateMetrics,
    ContextUsageLog,
    ContextUsageMetrics,
    FileCount,
    FileUsage,
    OphanMetrics,
    Task,
    TaskLog,
    TaskLogEntry,
    TaskStatus,
)
from ophan.utils.time import utc_now

_logger = get_logger("history")

TOP_FILES_LIMIT = 10

GUIDANCE_PATH_MARKERS = (".ophan/guidelines/", ".ophan/criteria/")


def is_guidance_file(path: str) -> bool:
    """Guideline and criteria files are injected into the prompt, so always used."""
    return any(marker in path for marker in GUIDANCE_PATH_MARKERS)


def _write_json(path: Path, data: object) -> None:
    """Atomic JSON write (temp file + rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_file = path.with_suffix(".json.tmp")
    with open(temp_file, "w") as f:
        json.dump(data, f, indent=2)
    temp_file.rename(path)


def _safe_name(task_id: str) -> str:
    return "".join(c if c.isalnum() or c in "-_" else "_" for c in task_id)


class TaskHistory:
    """Append-only store of finished tasks and their attempt records."""

    def __init__(self, ophan_dir: Path):
        self.logs_dir = Path(ophan_dir) / "logs"

    def _path(self, task_id: str) -> Path:
        return self.logs_dir / f"{_safe_name(task_id)}.json"

    def save_task_log(self, task: Task, logs: list[TaskLog]) -> Path:
        path = self._path(task.id)
        entry = TaskLogEntry(task=task, logs=logs)
        payload = entry.model_dump(mode="json")
        payload["saved_at"] = utc_now().isoformat()
        _write_json(path, payload)
        _logger.debug("task_log_saved", task_id=task.id, attempts=len(logs))
        return path

    def _read(self, path: Path) -> TaskLogEntry | None:
        try:
            with open(path) as f:
                data = json.load(f)
            return TaskLogEntry.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            _logger.warning("task_log_unreadable", path=str(path), error=str(e))
            return None

    def load_task_log(self, task_id: str) -> TaskLogEntry | None:
        path = self._path(task_id)
        if not path.exists():
            return None
        return self._read(path)

    def _all_entries(self) -> list[TaskLogEntry]:
        if not self.logs_dir.is_dir():
            return []
        entries = []
        for path in sorted(self.logs_dir.glob("*.json")):
            entry = self._read(path)
            if entry is not None:
                entries.append(entry)
        return entries

    def load_entries(self, lookback_days: int = 30, now: datetime | None = None) -> list[TaskLogEntry]:
        """Entries whose task started within the window, oldest first."""
        cutoff = (now or utc_now()) - timedelta(days=lookback_days)
        entries = [e for e in self._all_entries() if e.task.started_at >= cutoff]
        return sorted(entries, key=lambda e: e.task.started_at)

    def list_recent(self, limit: int = 10) -> list[Task]:
        """Most recent tasks first."""
        tasks = [e.task for e in self._all_entries()]
        tasks.sort(key=lambda t: t.started_at, reverse=True)
        return tasks[:limit]

    def calculate_metrics(self, lookback_days: int = 30, now: datetime | None = None) -> OphanMetrics:
        now = now or utc_now()
        tasks = [e.task for e in self.load_entries(lookback_days, now=now)]
        return compute_task_metrics(tasks, period_start=now - timedelta(days=lookback_days), period_end=now)


def compute_task_metrics(
    tasks: list[Task],
    period_start: datetime | None = None,
    period_end: datetime | None = None,
) -> OphanMetrics:
    metrics = OphanMetrics(
        total_tasks=len(tasks),
        period_start=period_start,
        period_end=period_end,
    )
    if not tasks:
        return metrics

    total_iterations = 0
    total_duration = 0.0
    for task in tasks:
        if task.status == TaskStatus.CONVERGED:
            metrics.successful_tasks += 1
        elif task.status == TaskStatus.FAILED:
            metrics.failed_tasks += 1
        elif task.status == TaskStatus.ESCALATED:
            metrics.escalated_tasks += 1
        total_iterations += task.iterations
        if task.iterations >= task.max_iterations:
            metrics.max_iterations_hit += 1
        metrics.total_tokens_used += task.tokens_used
        metrics.total_cost += task.cost
        if task.duration_seconds is not None:
            total_duration += task.duration_seconds

    count = len(tasks)
    metrics.average_iterations = total_iterations / count
    metrics.average_cost_per_task = metrics.total_cost / count
    metrics.average_task_duration = total_duration / count
    metrics.total_time_spent = total_duration
    return metrics


class ContextUsageStore:
    """Provided-versus-used file records, one per task."""

    def __init__(self, ophan_dir: Path):
        self.logs_dir = Path(ophan_dir) / "context-logs"

    def save_log(self, log: ContextUsageLog) -> Path:
        path = self.logs_dir / f"{_safe_name(log.task_id)}.json"
        _write_json(path, log.model_dump(mode="json"))
        return path

    def _read(self, path: Path) -> ContextUsageLog | None:
        try:
            with open(path) as f:
                return ContextUsageLog.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            _logger.warning("context_log_unreadable", path=str(path), error=str(e))
            return None

    def load_log(self, task_id: str) -> ContextUsageLog | None:
        path = self.logs_dir / f"{_safe_name(task_id)}.json"
        if not path.exists():
            return None
        return self._read(path)

    def load_logs_since(self, since: datetime) -> list[ContextUsageLog]:
        if not self.logs_dir.is_dir():
            return []
        logs = []
        for path in sorted(self.logs_dir.glob("*.json")):
            log = self._read(path)
            if log is not None and log.timestamp >= since:
                logs.append(log)
        return logs

    @staticmethod
    def compute_metrics(
        provided_files: list[str],
        usage: FileUsage,
        exploration_tokens: int = 0,
        total_tokens: int = 0,
    ) -> ContextUsageMetrics:
        """Hit rate: share of provided files that were used (guidance files
        always count as used). Miss rate: share of used files that were not
        provided."""
        provided = set(provided_files)
        used = set(usage.files_read) | set(usage.files_written)

        hits = sum(1 for f in provided if is_guidance_file(f) or f in used)
        hit_rate = hits / len(provided) * 100 if provided else 100.0
        misses = sum(1 for f in used if f not in provided)
        miss_rate = misses / len(used) * 100 if used else 0.0

        return ContextUsageMetrics(
            provided_files=list(provided_files),
            files_read=list(usage.files_read),
            files_written=list(usage.files_written),
            files_searched=list(usage.files_searched),
            commands_run=list(usage.commands_run),
            hit_rate=hit_rate,
            miss_rate=miss_rate,
            exploration_tokens=exploration_tokens,
            total_tokens=total_tokens,
        )

    def get_aggregate_metrics(
        self, lookback_days: int = 30, now: datetime | None = None
    ) -> ContextAggregateMetrics:
        logs = self.load_logs_since((now or utc_now()) - timedelta(days=lookback_days))
        if not logs:
            return ContextAggregateMetrics()

        missed: Counter[str] = Counter()
        unused: Counter[str] = Counter()
        for log in logs:
            provided = set(log.metrics.provided_files)
            used = set(log.metrics.files_read) | set(log.metrics.files_written)
            missed.update(f for f in used if f not in provided)
            unused.update(f for f in provided if f not in used and not is_guidance_file(f))

        count = len(logs)
        return ContextAggregateMetrics(
            task_count=count,
            avg_hit_rate=sum(log.metrics.hit_rate for log in logs) / count,
            avg_miss_rate=sum(log.metrics.miss_rate for log in logs) / count,
            avg_exploration_tokens=sum(log.metrics.exploration_tokens for log in logs) / count,
            common_misses=[FileCount(file=f, count=c) for f, c in missed.most_common(TOP_FILES_LIMIT)],
            common_unused=[FileCount(file=f, count=c) for f, c in unused.most_common(TOP_FILES_LIMIT)],
        )
