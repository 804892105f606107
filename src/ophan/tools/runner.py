"""Sandboxed tool execution for executors that do not bring their own tools.

The tool runner performs file and shell operations inside the project root,
enforcing the guardrails from the project configuration, and keeps a
record of every call for evaluation.

Security Note: shell commands run through ``asyncio.create_subprocess_exec``
with ``sh -c``, so the command string is interpreted by the shell on
purpose. Guardrails (blocked substrings, optional allow-list) are checked
before anything is spawned.
"""

from __future__ import annotations

import asyncio
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ophan.core.config import GuardrailsConfig
from ophan.core.logging import get_logger
from ophan.models import FileUsage
from ophan.tools.records import ToolCallRecord, join_tool_outputs

_logger = get_logger("tools")

SEARCH_IGNORED_DIRS = frozenset({"node_modules", ".git", "dist"})
SEARCH_MAX_FILES = 100
SEARCH_MAX_RESULTS = 50


@dataclass
class ToolResult:
    success: bool
    output: str
    error: str | None = None


TOOL_SCHEMAS: list[dict[str, Any]] = [
    {
        "name": "run_command",
        "description": "Execute a shell command in the project directory. "
        "Use for running tests, linting, building, etc.",
        "input_schema": {
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "The shell command to execute"},
                "timeout": {
                    "type": "number",
                    "description": "Timeout in seconds (default: 30)",
                },
            },
            "required": ["command"],
        },
    },
    {
        "name": "read_file",
        "description": "Read the contents of a file",
        "input_schema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path relative to project root"},
            },
            "required": ["path"],
        },
    },
    {
        "name": "write_file",
        "description": "Write content to a file, creating it if it does not exist",
        "input_schema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path relative to project root"},
                "content": {"type": "string", "description": "Content to write"},
            },
            "required": ["path", "content"],
        },
    },
    {
        "name": "list_files",
        "description": "List files in a directory",
        "input_schema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": 'Directory (default: ".")'},
                "pattern": {"type": "string", "description": 'Glob filter, e.g. "*.py"'},
            },
            "required": [],
        },
    },
    {
        "name": "search_files",
        "description": "Search for a regular expression in files",
        "input_schema": {
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Regular expression"},
                "path": {"type": "string", "description": 'Directory (default: ".")'},
                "file_pattern": {"type": "string", "description": 'Glob filter, e.g. "*.py"'},
            },
            "required": ["pattern"],
        },
    },
    {
        "name": "task_complete",
        "description": "Signal that the task is complete.",
        "input_schema": {
            "type": "object",
            "properties": {
                "summary": {"type": "string", "description": "What was accomplished"},
            },
            "required": ["summary"],
        },
    },
]

# Tools that never modify the project
READ_ONLY_TOOL_NAMES = frozenset({"read_file", "list_files", "search_files"})

READ_ONLY_TOOL_SCHEMAS: list[dict[str, Any]] = [s for s in TOOL_SCHEMAS if s["name"] in READ_ONLY_TOOL_NAMES]


def is_protected_path(file_path: str, protected_paths: list[str]) -> bool:
    """Match ``file_path`` against guardrail patterns.

    ``**`` patterns match by prefix (``.ophan/criteria/**`` protects anything
    under that directory, at any depth in the path). Other patterns match
    exactly or as a path suffix.
    """
    for pattern in protected_paths:
        if "**" in pattern:
            prefix = pattern.replace("/**", "", 1).replace("**/", "", 1)
            if file_path.startswith(prefix) or f"/{prefix}" in file_path:
                return True
        elif file_path == pattern or file_path.endswith(pattern):
            return True
    return False


class ToolRunner:
    """Execute tool requests within a project root and record the results."""

    def __init__(self, project_root: Path, guardrails: GuardrailsConfig | None = None):
        self.project_root = Path(project_root)
        self.guardrails = guardrails or GuardrailsConfig()
        self._records: list[ToolCallRecord] = []
        self._usage = FileUsage()

    @property
    def records(self) -> list[ToolCallRecord]:
        return list(self._records)

    def get_tool_outputs(self) -> str:
        return join_tool_outputs(self._records)

    def clear(self) -> None:
        """Forget recorded calls and usage (start of a new attempt)."""
        self._records = []
        self._usage = FileUsage()

    def usage_summary(self) -> FileUsage:
        return self._usage.model_copy(deep=True)

    async def run_tool(self, name: str, args: dict[str, Any]) -> ToolResult:
        """Run one tool and record it. Unknown tools fail without raising."""
        if name == "run_command":
            result = await self._run_command(str(args.get("command", "")), args.get("timeout"))
        elif name == "read_file":
            result = self._read_file(str(args.get("path", "")))
        elif name == "write_file":
            result = self._write_file(str(args.get("path", "")), str(args.get("content", "")))
        elif name == "list_files":
            result = self._list_files(args.get("path") or ".", args.get("pattern"))
        elif name == "search_files":
            result = self._search_files(
                str(args.get("pattern", "")),
                args.get("path") or ".",
                args.get("file_pattern") or args.get("filePattern"),
            )
        elif name == "task_complete":
            result = ToolResult(True, f"Task completed: {args.get('summary', '')}")
        else:
            result = ToolResult(False, "", f"Unknown tool: {name}")

        self._records.append(
            ToolCallRecord(
                name=name,
                input=dict(args),
                output=result.output,
                success=result.success,
                error=result.error,
            )
        )
        _logger.debug("tool_executed", tool=name, success=result.success)
        return result

    def _resolve(self, file_path: str) -> Path:
        path = Path(file_path)
        if path.is_absolute():
            return path
        return (self.project_root / path).resolve()

    def _command_refusal(self, command: str) -> str | None:
        for blocked in self.guardrails.blocked_commands:
            if blocked in command:
                return f"Command blocked by guardrails: {blocked}"
        allowed = self.guardrails.allowed_commands
        if allowed and not any(command.strip().startswith(prefix) for prefix in allowed):
            return f"Command not in allowed list: {command.split()[0] if command.split() else command}"
        return None

    async def _run_command(self, command: str, timeout: Any = None) -> ToolResult:
        refusal = self._command_refusal(command)
        if refusal:
            _logger.warning("command_blocked", command=command, reason=refusal)
            return ToolResult(False, "", refusal)

        self._usage.commands_run.append(command)
        timeout_seconds = float(timeout) if timeout else self.guardrails.command_timeout_seconds

        try:
            process = await asyncio.create_subprocess_exec(
                "sh",
                "-c",
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.project_root,
                env=os.environ.copy(),
            )
        except OSError as e:
            return ToolResult(False, "", str(e))

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=timeout_seconds
            )
        except TimeoutError:
            process.kill()
            await process.wait()
            return ToolResult(False, "", f"Command timed out after {timeout_seconds}s")

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        output = stdout + (f"\nStderr:\n{stderr}" if stderr else "")
        if process.returncode == 0:
            return ToolResult(True, output or "(no output)")
        return ToolResult(False, output, f"Command exited with code {process.returncode}")

    def _read_file(self, file_path: str) -> ToolResult:
        if is_protected_path(file_path, self.guardrails.protected_paths):
            return ToolResult(False, "", f"Cannot read protected file: {file_path}")
        try:
            content = self._resolve(file_path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            return ToolResult(False, "", f"Failed to read file: {e}")
        self._usage.files_read.append(file_path)
        return ToolResult(True, content)

    def _write_file(self, file_path: str, content: str) -> ToolResult:
        if is_protected_path(file_path, self.guardrails.protected_paths):
            return ToolResult(False, "", f"Cannot write to protected file: {file_path}")
        full_path = self._resolve(file_path)
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_text(content, encoding="utf-8")
        except OSError as e:
            return ToolResult(False, "", f"Failed to write file: {e}")
        self._usage.files_written.append(file_path)
        return ToolResult(True, f"Successfully wrote to {file_path}")

    def _list_files(self, dir_path: str, pattern: str | None) -> ToolResult:
        full_path = self._resolve(dir_path)
        try:
            if pattern:
                files = sorted(
                    str(p.relative_to(full_path)) for p in full_path.glob(pattern)
                )
                return ToolResult(True, "\n".join(files) or "(no files found)")
            entries = sorted(full_path.iterdir(), key=lambda p: p.name)
        except (OSError, ValueError) as e:
            return ToolResult(False, "", f"Failed to list directory: {e}")
        output = "\n".join(f"{e.name}/" if e.is_dir() else e.name for e in entries)
        return ToolResult(True, output or "(empty directory)")

    def _search_files(self, pattern: str, dir_path: str, file_pattern: str | None) -> ToolResult:
        full_path = self._resolve(dir_path)
        try:
            regex = re.compile(pattern)
        except re.error as e:
            return ToolResult(False, "", f"Search failed: {e}")

        candidates = [
            p
            for p in full_path.glob(file_pattern or "**/*")
            if p.is_file() and not SEARCH_IGNORED_DIRS.intersection(p.relative_to(full_path).parts)
        ]

        results: list[str] = []
        for file in candidates[:SEARCH_MAX_FILES]:
            try:
                lines = file.read_text(encoding="utf-8").splitlines()
            except (OSError, UnicodeDecodeError):
                continue
            relative = str(file.relative_to(full_path))
            for index, line in enumerate(lines, start=1):
                if regex.search(line):
                    results.append(f"{relative}:{index}: {line.strip()}")
                    if relative not in self._usage.files_searched:
                        self._usage.files_searched.append(relative)

        return ToolResult(
            True,
            "\n".join(results[:SEARCH_MAX_RESULTS]) or f"No matches found for pattern: {pattern}",
        )
