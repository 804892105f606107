"""Claude CLI executor using subprocess.

Wraps the `claude` CLI in print mode with ``--output-format stream-json`` and
turns the event stream into an :class:`ExecutorResult`: free text, tool-call
records, file usage, token counts and the reported cost.

Security Note: This module uses asyncio.create_subprocess_exec() which does
NOT use shell=True. Arguments are passed as a list, not interpolated into a
shell command string.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
import shutil
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from ophan.backends.base import (
    DEFAULT_MAX_TOOL_CALLS,
    TASK_COMPLETE_PATTERN,
    ExecutionRequest,
    ExecutorResult,
)
from ophan.core.config import ExecutorConfig
from ophan.core.errors import ExecutorError
from ophan.core.logging import get_logger
from ophan.models import FileUsage
from ophan.tools.records import ToolCallRecord

_logger = get_logger("backend.claude_cli")

ProgressCallback = Callable[[str], None]

# Subscription auth is used by the CLI; an API key in the env would override it
FILTERED_ENV_VARS = frozenset({"ANTHROPIC_API_KEY"})

# Tools a read-only request may use; everything that edits or runs commands is denied
READ_ONLY_TOOLS = ("Read", "Glob", "Grep")
WRITE_TOOLS = ("Write", "Edit", "MultiEdit", "NotebookEdit", "Bash")


def find_claude_executable() -> str | None:
    """Locate `claude` on PATH, preferring installs outside node_modules."""
    candidates: list[str] = []
    for directory in os.environ.get("PATH", "").split(os.pathsep):
        found = shutil.which("claude", path=directory) if directory else None
        if found and found not in candidates:
            candidates.append(found)
    preferred = [c for c in candidates if "node_modules" not in c]
    if preferred:
        return preferred[0]
    return candidates[0] if candidates else None


def _result_text(content: Any) -> str:
    """Tool results arrive as a string or as a list of text blocks."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            block.get("text", "")
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        return "\n".join(parts)
    return ""


class StreamEventParser:
    """Accumulates the state of one CLI run from its stream-json events.

    Event kinds handled:
    - ``assistant``: text blocks (output, completion signal) and tool_use blocks
    - ``user``: tool_result blocks, matched to pending tool calls by id
    - ``result``: final cost, usage and success flag
    """

    def __init__(self, max_tool_calls: int = DEFAULT_MAX_TOOL_CALLS):
        self.max_tool_calls = max_tool_calls
        self.text_parts: list[str] = []
        self.completed = False
        self.cost = 0.0
        self.input_tokens = 0
        self.output_tokens = 0
        self.tool_calls: list[ToolCallRecord] = []
        self.tool_call_count = 0
        self.limit_reached = False
        self.saw_result = False
        self.result_is_error = False
        self._pending: dict[str, tuple[str, dict[str, Any]]] = {}
        self._read: dict[str, None] = {}
        self._written: dict[str, None] = {}
        self._searched: dict[str, None] = {}
        self._commands: list[str] = []

    @property
    def text(self) -> str:
        return "\n".join(self.text_parts)

    def file_usage(self) -> FileUsage:
        return FileUsage(
            files_read=list(self._read),
            files_written=list(self._written),
            files_searched=list(self._searched),
            commands_run=list(self._commands),
        )

    def feed_line(self, line: str) -> None:
        """Parse one line of output; non-JSON lines are ignored."""
        line = line.strip()
        if not line:
            return
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            _logger.debug("stream_line_not_json", line=line[:200])
            return
        if isinstance(event, dict):
            self.handle_event(event)

    def handle_event(self, event: dict[str, Any]) -> None:
        event_type = event.get("type")
        if event_type == "assistant":
            self._handle_assistant(event)
        elif event_type == "user":
            self._handle_user(event)
        elif event_type == "result":
            self._handle_result(event)

    def _append_text(self, text: str) -> None:
        self.text_parts.append(text)
        if re.search(TASK_COMPLETE_PATTERN, text, re.IGNORECASE):
            self.completed = True

    def _handle_assistant(self, event: dict[str, Any]) -> None:
        for block in (event.get("message") or {}).get("content") or []:
            block_type = block.get("type")
            if block_type == "text" and block.get("text"):
                self._append_text(block["text"])
            elif block_type == "tool_use" and block.get("name"):
                self.tool_call_count += 1
                if self.tool_call_count > self.max_tool_calls:
                    self.limit_reached = True
                    continue
                tool_input = block.get("input") or {}
                if block.get("id"):
                    self._pending[block["id"]] = (block["name"], tool_input)
                self._track_call(block["name"], tool_input)

    def _handle_user(self, event: dict[str, Any]) -> None:
        for block in (event.get("message") or {}).get("content") or []:
            if block.get("type") != "tool_result" or not block.get("tool_use_id"):
                continue
            pending = self._pending.pop(block["tool_use_id"], None)
            if pending is None:
                continue
            name, tool_input = pending
            output = _result_text(block.get("content"))
            is_error = bool(block.get("is_error"))
            self.tool_calls.append(
                ToolCallRecord(
                    name=name,
                    input=tool_input,
                    output=output,
                    success=not is_error,
                    error=output[:200] if is_error else None,
                )
            )
            self._track_result(name, output)

    def _handle_result(self, event: dict[str, Any]) -> None:
        self.saw_result = True
        self.result_is_error = bool(event.get("is_error"))
        if not self.result_is_error and event.get("subtype") == "success":
            self.completed = True
        self.cost = float(event.get("total_cost_usd") or 0.0)
        usage = event.get("usage") or {}
        self.input_tokens = int(usage.get("input_tokens") or 0)
        self.output_tokens = int(usage.get("output_tokens") or 0)
        if event.get("result"):
            self._append_text(str(event["result"]))

    def _track_call(self, tool_name: str, tool_input: dict[str, Any]) -> None:
        name = tool_name.lower()
        if name == "read" and tool_input.get("file_path"):
            self._read[str(tool_input["file_path"])] = None
        elif name in ("write", "edit") and tool_input.get("file_path"):
            self._written[str(tool_input["file_path"])] = None
        elif name == "bash" and tool_input.get("command"):
            self._commands.append(str(tool_input["command"]))

    def _track_result(self, tool_name: str, output: str) -> None:
        if tool_name.lower() not in ("grep", "glob"):
            return
        for line in output.split("\n"):
            colon = line.find(":")
            if colon > 0:
                candidate = line[:colon]
                if not candidate.isdigit():
                    self._searched[candidate] = None
            elif line.strip() and not line.startswith("(") and " " not in line:
                self._searched[line.strip()] = None


class ClaudeCliExecutor:
    """Run attempts via the Claude CLI.

    The CLI brings its own tools (Read, Write, Edit, Bash, Glob, Grep); this
    executor only observes them through the event stream. When the tool-call
    cap is exceeded the subprocess is terminated and the attempt ends
    without a completion signal.
    """

    def __init__(
        self,
        model: str = "sonnet",
        permission_mode: str = "acceptEdits",
        allowed_tools: list[str] | None = None,
        max_turns: int = 50,
        timeout_seconds: float = 1800.0,
        progress_callback: ProgressCallback | None = None,
    ):
        self.model = model
        self.permission_mode = permission_mode
        self.allowed_tools = allowed_tools or ["Read", "Write", "Edit", "Bash", "Glob", "Grep"]
        self.max_turns = max_turns
        self.timeout_seconds = timeout_seconds
        self.progress_callback = progress_callback
        self._claude_path = find_claude_executable()

    @classmethod
    def from_config(
        cls, config: ExecutorConfig, progress_callback: ProgressCallback | None = None
    ) -> ClaudeCliExecutor:
        return cls(
            model=config.model,
            permission_mode=config.permission_mode,
            allowed_tools=config.allowed_tools,
            max_turns=config.max_turns,
            timeout_seconds=config.timeout_seconds,
            progress_callback=progress_callback,
        )

    @property
    def name(self) -> str:
        return "claude-cli"

    def _build_command(self, prompt: str, request: ExecutionRequest) -> list[str]:
        """Build the claude command. Returns an argument list, not a shell string."""
        if not self._claude_path:
            raise ExecutorError(
                "Claude Code executable not found. Ensure `claude` is installed "
                "and available in your PATH.",
                error_type="not_found",
            )
        full_prompt = f"{request.system_prompt}\n\n---\n\nTask:\n{prompt}"
        allowed_tools = self.allowed_tools
        permission_mode = self.permission_mode
        if request.read_only:
            allowed_tools = [t for t in allowed_tools if t in READ_ONLY_TOOLS] or list(READ_ONLY_TOOLS)
            permission_mode = "default"
        cmd = [
            self._claude_path,
            "-p",
            full_prompt,
            "--output-format",
            "stream-json",
            "--verbose",
            "--model",
            self.model,
            "--permission-mode",
            permission_mode,
            "--max-turns",
            str(self.max_turns),
            "--allowedTools",
            ",".join(allowed_tools),
        ]
        if request.read_only:
            cmd.extend(["--disallowedTools", ",".join(WRITE_TOOLS)])
        return cmd

    def _build_env(self) -> dict[str, str]:
        return {k: v for k, v in os.environ.items() if k not in FILTERED_ENV_VARS}

    def _progress(self, message: str) -> None:
        if self.progress_callback is not None:
            self.progress_callback(message)

    async def execute(self, prompt: str, request: ExecutionRequest) -> ExecutorResult:
        cmd = self._build_command(prompt, request)
        parser = StreamEventParser(max_tool_calls=request.max_tool_calls)
        start_time = time.monotonic()

        # Prompt is not logged: it may be large and contain project content
        _logger.debug(
            "executing_command",
            command=cmd[0],
            model=self.model,
            cwd=str(request.project_root),
            prompt_length=len(cmd[2]),
        )

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=Path(request.project_root),
                env=self._build_env(),
            )
        except FileNotFoundError as e:
            raise ExecutorError(f"claude CLI not found: {e}", error_type="not_found") from e

        self._progress("Starting Claude Code execution...")
        stderr_task = asyncio.create_task(self._read_stderr(process))
        timed_out = False
        try:
            await asyncio.wait_for(
                self._consume(process, parser), timeout=self.timeout_seconds
            )
        except TimeoutError:
            timed_out = True
            _logger.error(
                "execution_timeout",
                timeout_seconds=self.timeout_seconds,
                tool_calls=parser.tool_call_count,
            )
            await self._stop(process)

        await process.wait()
        stderr = await stderr_task
        duration = time.monotonic() - start_time
        stderr_text = stderr.decode("utf-8", errors="replace")

        if not parser.saw_result and not parser.limit_reached and not timed_out:
            if process.returncode not in (0, None):
                _logger.error(
                    "execution_failed",
                    exit_code=process.returncode,
                    stderr_tail=stderr_text[-500:],
                    duration_seconds=duration,
                )
                raise ExecutorError(
                    f"claude exited with code {process.returncode}: {stderr_text[-500:].strip()}",
                    error_type="process_failed",
                )

        completed = parser.completed and not parser.limit_reached
        _logger.info(
            "execution_completed",
            duration_seconds=duration,
            completed=completed,
            tool_calls=len(parser.tool_calls),
            tool_call_limit_reached=parser.limit_reached,
            input_tokens=parser.input_tokens,
            output_tokens=parser.output_tokens,
        )
        return ExecutorResult(
            text=parser.text,
            completed=completed,
            input_tokens=parser.input_tokens,
            output_tokens=parser.output_tokens,
            cost=parser.cost,
            tool_calls=parser.tool_calls,
            file_usage=parser.file_usage(),
            tool_call_limit_reached=parser.limit_reached,
        )

    async def _consume(
        self, process: asyncio.subprocess.Process, parser: StreamEventParser
    ) -> None:
        if process.stdout is None:
            return
        while True:
            raw = await process.stdout.readline()
            if not raw:
                break
            before = len(parser.tool_calls)
            parser.feed_line(raw.decode("utf-8", errors="replace"))
            for record in parser.tool_calls[before:]:
                self._progress(f"[Tool: {record.name}]")
            if parser.limit_reached:
                _logger.warning(
                    "tool_call_limit_reached",
                    max_tool_calls=parser.max_tool_calls,
                )
                await self._stop(process)
                break

    async def _read_stderr(self, process: asyncio.subprocess.Process) -> bytes:
        if process.stderr is None:
            return b""
        return await process.stderr.read()

    async def _stop(self, process: asyncio.subprocess.Process) -> None:
        """Terminate gracefully, then kill if still running."""
        if process.returncode is not None:
            return
        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=5.0)
        except TimeoutError:
            process.kill()
            await process.wait()
