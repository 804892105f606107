"""Tool execution collaborator used by the API executor."""

from ophan.tools.records import TOOL_OUTPUT_SEPARATOR, ToolCallRecord, join_tool_outputs
from ophan.tools.runner import (
    READ_ONLY_TOOL_NAMES,
    READ_ONLY_TOOL_SCHEMAS,
    TOOL_SCHEMAS,
    ToolResult,
    ToolRunner,
    is_protected_path,
)

__all__ = [
    "READ_ONLY_TOOL_NAMES",
    "READ_ONLY_TOOL_SCHEMAS",
    "TOOL_OUTPUT_SEPARATOR",
    "TOOL_SCHEMAS",
    "ToolCallRecord",
    "ToolResult",
    "ToolRunner",
    "is_protected_path",
    "join_tool_outputs",
]
