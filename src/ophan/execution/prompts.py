"""Prompt construction for the fast loop, the criteria judge and the executor-backed analyses.

Templates are Jinja2 strings rendered with StrictUndefined so a missing
variable fails loudly instead of producing a silently incomplete prompt.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import jinja2

from ophan.core.config import RegenerationStrategy

REGENERATION_GUIDANCE: dict[str, str] = {
    "full": (
        'In "full" regeneration mode, you should approach this iteration fresh.\n'
        "Discard your previous approach if it wasn't working and try a fundamentally "
        "different solution.\n"
        "The goal is to improve your understanding and generate better output from scratch."
    ),
    "informed": (
        'In "informed" regeneration mode, keep structurally sound parts of previous work\n'
        "but regenerate problematic sections. Focus on the specific areas that failed "
        "evaluation\nwhile preserving what was working correctly."
    ),
    "incremental": (
        'In "incremental" mode, make targeted minimal edits to fix specific issues.\n'
        "Only change what's necessary to pass the failing criteria. This is appropriate for\n"
        "small fixes and adjustments, not fundamental problems."
    ),
}

SYSTEM_TEMPLATE = """\
You are Ophan, a self-improving AI development agent. Your task is to complete \
the given work while following the guidelines and meeting the criteria.

## Your Guidelines (How to Work)
{{ guidelines }}

## Quality Criteria (What Good Looks Like)
{{ criteria }}
{% if learnings %}
## Learnings from Previous Tasks
{{ learnings }}
{% endif %}
{% if iteration > 1 %}
## Current Iteration: {{ iteration }}/{{ max_iterations }}

You are in iteration {{ iteration }}. Previous attempts have not fully satisfied the criteria.
{% if previous_evaluation %}
### Previous Evaluation Feedback
{{ previous_evaluation }}
{% endif %}
### Regeneration Strategy: {{ regeneration_strategy }}
{{ regeneration_guidance }}
{% endif %}
## Project Context
Working directory: {{ project_root }}

## Tools Available
You have access to tools for:
- Running shell commands (tests, linting, builds)
- Reading and writing files
- Searching the codebase

## Important Instructions

1. **Understand First**: Read relevant files before making changes
2. **Follow Guidelines**: Your guidelines exist because of past learnings - follow them
3. **Meet Criteria**: Your work must satisfy all quality criteria
4. **Verify Your Work**: Run tests, linting, and type checking after changes
5. **Signal Completion**: After completing your work and verifying it passes, state \
clearly "TASK COMPLETE" followed by a brief summary. Do not continue exploring or \
verifying after this point.

**IMPORTANT**: Once you have made your changes and verified they work (tests pass, \
types check, lint passes), STOP. Do not continue exploring the codebase or looking \
for additional things to verify. Be efficient.

When you encounter an error or test failure:
1. Analyze what went wrong
2. Think about what you learned
3. Apply that learning to fix the issue
4. Verify the fix works

If you cannot complete the task after trying your best, explain what's blocking you.
"""

TASK_TEMPLATE = """\
Please complete the following task:

{{ description }}

Start by understanding the current state of the code, then make the necessary changes.
Run verification (tests, type checking, linting) after your changes.
State "TASK COMPLETE" with a brief summary when finished.

Remember: Once verification passes, STOP. Do not continue exploring."""

REGENERATION_TEMPLATE = """\
## Iteration {{ iteration }} - Regeneration Required

The previous attempt did not fully satisfy the criteria. Here's the evaluation feedback:

{{ feedback }}

## Original Task
{{ description }}

Please address the issues identified in the evaluation and complete the task.
Focus on what went wrong and apply your learning to this iteration.

State "TASK COMPLETE" with a brief summary when finished.

Remember: Once verification passes, STOP. Do not continue exploring."""

EVALUATION_TEMPLATE = """\
Evaluate whether the task output meets the quality criteria.

## Task
{{ description }}

## Quality Criteria
{{ criteria }}

## Tool Outputs from Task Execution
{{ tool_outputs }}

## Instructions
Evaluate the work against each criterion. For each criterion:
1. Determine if it passed or failed
2. If failed, explain why with severity (error or warning)

Respond in JSON format:
{
  "passed": boolean,
  "score": number (0-100),
  "criteria": [
    {
      "name": "criterion name",
      "passed": boolean,
      "message": "explanation if failed",
      "severity": "error" | "warning"
    }
  ],
  "summary": "Brief overall assessment"
}"""

LEARNING_EXTRACTION_TEMPLATE = """\
Analyze this completed task and extract learnings that could improve future performance.

## Task
{{ description }}

## Outcome
{{ outcome }} after {{ iterations }} iteration(s)

## Evaluation History
{% for evaluation in evaluation_history %}
### Iteration {{ loop.index }}
{{ evaluation }}
{% endfor %}
## Instructions
Extract 0-3 learnings from this task. Only extract learnings that are:
1. Generalizable to future tasks (not specific to this one task)
2. Actionable (can be applied in future work)
3. Not already covered in existing guidelines

Respond in JSON format:
{
  "learnings": [
    {
      "content": "Brief description of the learning",
      "context": "What happened that led to this",
      "issue": "The problem encountered",
      "resolution": "How it was resolved",
      "guideline_impact": "Which guideline this relates to and how to update it"
    }
  ]
}"""


LOG_ANALYSIS_TEMPLATE = """\
Analyze these recent task logs from an AI coding agent that works in an \
iterative loop and is evaluated against criteria after each attempt.

## Task Logs
{% for task in tasks %}
### Task: {{ task.id }}
Description: {{ task.description }}
Status: {{ task.status }}
Iterations: {{ task.iterations }}/{{ task.max_iterations }}
{% if task.score is not none %}Final Score: {{ task.score }}/100
{% endif %}{% for failure in task.failures %}- {{ failure }}
{% endfor %}{% if task.output %}Output excerpt:
```
{{ task.output }}
```
{% endif %}{% endfor %}
## Instructions
1. Identify recurring patterns. Separate infrastructure issues (API errors, \
authentication, network) from workflow issues (test failures, code quality, \
missing steps). Infrastructure issues are not actionable through guideline changes.
2. Give the root cause of each pattern, not just its symptoms.
3. For actionable patterns only, recommend a specific change. Target coding.md \
for workflow, testing.md for tests, security.md for security.

Respond in JSON format:
{
  "patterns": [
    {
      "description": "What is happening",
      "category": "infrastructure" | "workflow" | "code_quality" | "testing" | "configuration" | "other",
      "root_cause": "Why it is happening",
      "occurrences": number,
      "affected_task_ids": ["task-..."],
      "is_actionable": boolean,
      "confidence": number (0-1)
    }
  ],
  "recommendations": [
    {
      "target_file": "testing.md",
      "type": "guideline" | "criteria",
      "change": "Specific text to add",
      "reason": "Why this will help",
      "confidence": number (0-1)
    }
  ],
  "summary": "Brief overall assessment"
}
Return empty lists when nothing is actionable."""


@dataclass
class TaskContext:
    """Everything needed to render the system prompt for one attempt."""

    description: str
    project_root: Path
    guidelines: str
    criteria: str
    learnings: str
    iteration: int
    max_iterations: int
    regeneration_strategy: RegenerationStrategy = "informed"
    previous_evaluation: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "project_root": str(self.project_root),
            "guidelines": self.guidelines,
            "criteria": self.criteria,
            "learnings": self.learnings,
            "iteration": self.iteration,
            "max_iterations": self.max_iterations,
            "regeneration_strategy": self.regeneration_strategy,
            "regeneration_guidance": REGENERATION_GUIDANCE[self.regeneration_strategy],
            "previous_evaluation": self.previous_evaluation,
        }


class PromptBuilder:
    """Renders the prompt templates."""

    def __init__(self, jinja_env: jinja2.Environment | None = None) -> None:
        self.env = jinja_env or jinja2.Environment(
            undefined=jinja2.StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )

    def _render(self, template: str, **context: Any) -> str:
        return self.env.from_string(template).render(**context)

    def build_system_prompt(self, context: TaskContext) -> str:
        return self._render(SYSTEM_TEMPLATE, **context.to_dict())

    def build_task_message(self, description: str) -> str:
        return self._render(TASK_TEMPLATE, description=description)

    def build_regeneration_message(self, description: str, feedback: str, iteration: int) -> str:
        return self._render(
            REGENERATION_TEMPLATE,
            description=description,
            feedback=feedback,
            iteration=iteration,
        )

    def build_evaluation_prompt(self, description: str, criteria: str, tool_outputs: str) -> str:
        return self._render(
            EVALUATION_TEMPLATE,
            description=description,
            criteria=criteria,
            tool_outputs=tool_outputs,
        )

    def build_learning_extraction_prompt(
        self,
        description: str,
        iterations: int,
        evaluation_history: list[str],
        outcome: str,
    ) -> str:
        return self._render(
            LEARNING_EXTRACTION_TEMPLATE,
            description=description,
            iterations=iterations,
            evaluation_history=evaluation_history,
            outcome=outcome,
        )

    def build_log_analysis_prompt(self, tasks: list[dict[str, Any]]) -> str:
        return self._render(LOG_ANALYSIS_TEMPLATE, tasks=tasks)
