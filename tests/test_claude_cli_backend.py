"""Tests for ophan.backends.claude_cli module.

The stream parser is tested on synthetic events; the executor is run
against a small shell script standing in for the ``claude`` executable.
"""

from __future__ import annotations

import json
import os
import stat
from pathlib import Path

import pytest

from ophan.backends.base import ExecutionRequest
from ophan.backends.claude_cli import ClaudeCliExecutor, StreamEventParser
from ophan.core.config import ExecutorConfig
from ophan.core.errors import ExecutorError


def assistant(*blocks: dict) -> dict:
    return {"type": "assistant", "message": {"content": list(blocks)}}


def tool_use(tool_id: str, name: str, **tool_input) -> dict:
    return {"type": "tool_use", "id": tool_id, "name": name, "input": tool_input}


def tool_result(tool_id: str, content, is_error: bool = False) -> dict:
    return {
        "type": "user",
        "message": {"content": [{"type": "tool_result", "tool_use_id": tool_id, "content": content, "is_error": is_error}]},
    }


RESULT_EVENT = {
    "type": "result",
    "subtype": "success",
    "is_error": False,
    "total_cost_usd": 0.0123,
    "usage": {"input_tokens": 1500, "output_tokens": 300},
    "result": "All done.",
}


# ─── StreamEventParser ───────────────────────────────────────────────


class TestStreamEventParser:
    def test_tool_calls_and_usage(self):
        parser = StreamEventParser()
        for event in (
            assistant({"type": "text", "text": "Reading the file"}, tool_use("t1", "Read", file_path="src/a.ts")),
            tool_result("t1", "export const a = 1;"),
            assistant(tool_use("t2", "Edit", file_path="src/a.ts"), tool_use("t3", "Bash", command="npm test")),
            tool_result("t2", "ok"),
            tool_result("t3", [{"type": "text", "text": "Tests: 3 passed, 3 total"}]),
            RESULT_EVENT,
        ):
            parser.handle_event(event)

        assert [r.name for r in parser.tool_calls] == ["Read", "Edit", "Bash"]
        assert parser.tool_calls[2].output == "Tests: 3 passed, 3 total"
        usage = parser.file_usage()
        assert usage.files_read == ["src/a.ts"]
        assert usage.files_written == ["src/a.ts"]
        assert usage.commands_run == ["npm test"]
        assert parser.completed is True
        assert parser.cost == pytest.approx(0.0123)
        assert (parser.input_tokens, parser.output_tokens) == (1500, 300)
        assert parser.text == "Reading the file\nAll done."

    def test_error_result(self):
        parser = StreamEventParser()
        parser.handle_event(tool_result("missing", "ignored"))
        parser.handle_event(assistant(tool_use("t1", "Bash", command="npm run build")))
        parser.handle_event(tool_result("t1", "Build failed", is_error=True))
        parser.handle_event({"type": "result", "subtype": "error_max_turns", "is_error": True})

        assert parser.completed is False
        assert parser.result_is_error is True
        assert parser.tool_calls[0].success is False
        assert parser.tool_calls[0].error == "Build failed"

    def test_completion_signal_in_text(self):
        parser = StreamEventParser()
        parser.handle_event(assistant({"type": "text", "text": "TASK COMPLETE: added the page"}))
        assert parser.completed is True

    def test_search_results_tracked(self):
        parser = StreamEventParser()
        parser.handle_event(assistant(tool_use("g", "Grep", pattern="answer"), tool_use("h", "Glob", pattern="*.ts")))
        parser.handle_event(tool_result("g", "src/a.ts:1:answer\nsrc/b.ts:4:answer"))
        parser.handle_event(tool_result("h", "src/c.ts\n(no more)"))
        assert parser.file_usage().files_searched == ["src/a.ts", "src/b.ts", "src/c.ts"]

    def test_tool_call_cap(self):
        parser = StreamEventParser(max_tool_calls=1)
        parser.handle_event(assistant(tool_use("a", "Read", file_path="x"), tool_use("b", "Read", file_path="y")))
        assert parser.limit_reached is True
        assert parser.file_usage().files_read == ["x"]

    def test_non_json_lines_ignored(self):
        parser = StreamEventParser()
        parser.feed_line("warming up...")
        parser.feed_line("")
        parser.feed_line(json.dumps(RESULT_EVENT))
        assert parser.saw_result is True


# ─── Executor against a fake CLI ─────────────────────────────────────


def install_fake_claude(bin_dir: Path, script_body: str, monkeypatch: pytest.MonkeyPatch) -> None:
    bin_dir.mkdir(parents=True, exist_ok=True)
    script = bin_dir / "claude"
    script.write_text("#!/bin/sh\n" + script_body)
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")


def stream_script(*events: dict) -> str:
    lines = "".join(f"echo '{json.dumps(event)}'\n" for event in events)
    return lines


class TestClaudeCliExecutor:
    async def test_stream_parsed_into_result(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        install_fake_claude(
            tmp_path / "bin",
            stream_script(
                assistant(tool_use("t1", "Bash", command="npm test")),
                tool_result("t1", "Tests: 3 passed, 3 total"),
                RESULT_EVENT,
            ),
            monkeypatch,
        )
        executor = ClaudeCliExecutor.from_config(ExecutorConfig(model="haiku"))

        result = await executor.execute("Do it", ExecutionRequest(system_prompt="Be good", project_root=tmp_path))

        assert executor.name == "claude-cli"
        assert result.completed is True
        assert result.input_tokens == 1500
        assert result.cost == pytest.approx(0.0123)
        assert "Tests: 3 passed" in result.tool_output
        assert result.file_usage.commands_run == ["npm test"]

    async def test_nonzero_exit_without_result_raises(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        install_fake_claude(tmp_path / "bin", "echo 'auth refused' >&2\nexit 2\n", monkeypatch)
        executor = ClaudeCliExecutor()

        with pytest.raises(ExecutorError) as exc_info:
            await executor.execute("Do it", ExecutionRequest(system_prompt="", project_root=tmp_path))

        assert exc_info.value.error_type == "process_failed"
        assert "auth refused" in str(exc_info.value)

    async def test_missing_executable(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("PATH", str(tmp_path / "empty"))
        executor = ClaudeCliExecutor()

        with pytest.raises(ExecutorError) as exc_info:
            await executor.execute("Do it", ExecutionRequest(system_prompt="", project_root=tmp_path))

        assert exc_info.value.error_type == "not_found"

    def test_api_key_not_passed_to_cli(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        monkeypatch.setenv("OPHAN_KEEP", "1")
        env = ClaudeCliExecutor()._build_env()
        assert "ANTHROPIC_API_KEY" not in env
        assert env["OPHAN_KEEP"] == "1"

    def test_command_arguments(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        install_fake_claude(tmp_path / "bin", "exit 0\n", monkeypatch)
        executor = ClaudeCliExecutor(model="opus", allowed_tools=["Read", "Bash"], max_turns=7)

        cmd = executor._build_command("Fix it", ExecutionRequest(system_prompt="SYS", project_root=tmp_path))

        assert cmd[1:3] == ["-p", "SYS\n\n---\n\nTask:\nFix it"]
        assert cmd[cmd.index("--model") + 1] == "opus"
        assert cmd[cmd.index("--max-turns") + 1] == "7"
        assert cmd[cmd.index("--allowedTools") + 1] == "Read,Bash"
        assert "stream-json" in cmd

    def test_read_only_request_denies_editing_tools(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        install_fake_claude(tmp_path / "bin", "exit 0\n", monkeypatch)
        executor = ClaudeCliExecutor()

        cmd = executor._build_command(
            "Judge it", ExecutionRequest(system_prompt="SYS", project_root=tmp_path, read_only=True)
        )

        assert cmd[cmd.index("--allowedTools") + 1] == "Read,Glob,Grep"
        assert cmd[cmd.index("--permission-mode") + 1] == "default"
        denied = cmd[cmd.index("--disallowedTools") + 1].split(",")
        assert {"Write", "Edit", "Bash"} <= set(denied)
