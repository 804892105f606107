"""Per-task execution: prompts, evaluation, the fast loop and learning extraction."""

from ophan.execution.evaluator import (
    HEURISTIC_CHECKS,
    CriteriaJudge,
    EvaluationOutcome,
    Evaluator,
    HeuristicCheck,
    evaluate_tool_outputs,
    format_evaluation,
    parse_criteria_response,
)
from ophan.execution.extraction import LearningExtractor, extract_heuristic
from ophan.execution.fast_loop import (
    CancellationToken,
    FastLoop,
    FastLoopOptions,
    FastLoopResult,
    estimate_cost,
)
from ophan.execution.prompts import PromptBuilder, TaskContext

__all__ = [
    "HEURISTIC_CHECKS",
    "CancellationToken",
    "CriteriaJudge",
    "EvaluationOutcome",
    "Evaluator",
    "FastLoop",
    "FastLoopOptions",
    "FastLoopResult",
    "HeuristicCheck",
    "LearningExtractor",
    "PromptBuilder",
    "TaskContext",
    "estimate_cost",
    "evaluate_tool_outputs",
    "extract_heuristic",
    "format_evaluation",
    "parse_criteria_response",
]
