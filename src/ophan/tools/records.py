"""Records of tool invocations made during one attempt."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

TOOL_OUTPUT_SEPARATOR = "\n\n---\n\n"


@dataclass
class ToolCallRecord:
    """One tool invocation made by the executor and its result."""

    name: str
    input: dict[str, Any] = field(default_factory=dict)
    output: str = ""
    success: bool = True
    error: str | None = None

    def format(self) -> str:
        """Render as ``[tool] SUCCESS|FAILED`` block for evaluation."""
        status = "SUCCESS" if self.success else "FAILED"
        text = f"[{self.name}] {status}\n{self.output}"
        if self.error:
            text += f"\nError: {self.error}"
        return text


def join_tool_outputs(records: list[ToolCallRecord]) -> str:
    """Concatenate tool records the way the evaluator expects them."""
    return TOOL_OUTPUT_SEPARATOR.join(record.format() for record in records)
