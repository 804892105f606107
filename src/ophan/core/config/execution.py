"""Fast-loop, executor, and guardrail configuration models."""

from __future__ import annotations

from typing import Literal

from pydantic import Field

from ophan.core.config._base import ConfigModel

RegenerationStrategy = Literal["full", "informed", "incremental"]


class InnerLoopConfig(ConfigModel):
    """Configuration for the per-item convergence loop."""

    max_iterations: int = Field(
        default=5,
        ge=1,
        description="Attempt ceiling per item. Reaching it without a passing "
        "evaluation escalates the item with reason max_iterations.",
    )
    regeneration_strategy: RegenerationStrategy = Field(
        default="informed",
        description="Hint given to the executor from attempt 2 on: "
        "full (start over), informed (redo failing areas), incremental (minimal edit).",
    )
    cost_limit: float | None = Field(
        default=None,
        gt=0,
        description="Cost ceiling in USD. Accrued cost >= limit escalates the item "
        "with reason cost_limit. None disables the check.",
    )
    max_tool_calls: int = Field(
        default=50,
        ge=1,
        description="Hard cap on tool invocations inside one attempt.",
    )
    criteria_check: bool = Field(
        default=False,
        description="Also ask the executor to judge output against the criteria "
        "documents. When False the evaluation is heuristic-only.",
    )
    learning_extraction: Literal["heuristic", "executor"] = Field(
        default="heuristic",
        description="How learnings are distilled after a task: from failed checks "
        "(heuristic) or by asking the executor to summarize the attempt history.",
    )


class ExecutorConfig(ConfigModel):
    """Configuration for the code-generation executor."""

    backend: Literal["claude_cli", "anthropic_api"] = Field(
        default="claude_cli",
        description="claude_cli drives the `claude` executable; anthropic_api runs "
        "a tool-use loop over the Anthropic Messages API.",
    )
    model: str = Field(
        default="sonnet",
        description="Model alias (claude_cli) or full model id (anthropic_api).",
    )
    permission_mode: Literal["default", "acceptEdits", "bypassPermissions"] = "acceptEdits"
    allowed_tools: list[str] = Field(
        default_factory=lambda: ["Read", "Write", "Edit", "Bash", "Glob", "Grep"],
    )
    max_turns: int = Field(default=50, ge=1)
    api_key_env: str = Field(
        default="ANTHROPIC_API_KEY",
        description="Environment variable holding the API key (anthropic_api only).",
    )
    max_tokens: int = Field(default=4096, ge=1)
    timeout_seconds: float = Field(default=1800.0, gt=0)


class GuardrailsConfig(ConfigModel):
    """Limits applied by the tool runner."""

    protected_paths: list[str] = Field(
        default_factory=lambda: [".ophan/criteria/**"],
        description="Paths the executor may not read or write through the tool runner.",
    )
    allowed_commands: list[str] = Field(
        default_factory=list,
        description="If non-empty, shell commands must start with one of these prefixes.",
    )
    blocked_commands: list[str] = Field(
        default_factory=lambda: ["rm -rf /", "sudo rm"],
        description="Shell commands containing any of these substrings are refused.",
    )
    command_timeout_seconds: float = Field(default=30.0, gt=0)
