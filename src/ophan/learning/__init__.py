"""History, pattern mining and the learning pool."""

from ophan.learning.analyzer import AnalyzedPattern, LogAnalysis, LogAnalyzer
from ophan.learning.guidance import apply_proposal, strip_append_marker
from ophan.learning.history import ContextUsageStore, TaskHistory, compute_task_metrics
from ophan.learning.manager import (
    GuidelineProposal,
    LearningManager,
    calculate_similarity,
)
from ophan.learning.patterns import (
    PatternDetector,
    extract_task_signature,
    format_patterns,
    normalize_failure_signature,
)

__all__ = [
    "AnalyzedPattern",
    "ContextUsageStore",
    "GuidelineProposal",
    "LearningManager",
    "LogAnalysis",
    "LogAnalyzer",
    "PatternDetector",
    "TaskHistory",
    "apply_proposal",
    "calculate_similarity",
    "compute_task_metrics",
    "extract_task_signature",
    "format_patterns",
    "normalize_failure_signature",
    "strip_append_marker",
]
