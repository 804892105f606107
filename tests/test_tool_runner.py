"""Tests for ophan.tools.runner module."""

from __future__ import annotations

from pathlib import Path

import pytest

from ophan.core.config import GuardrailsConfig
from ophan.tools.records import ToolCallRecord, join_tool_outputs
from ophan.tools.runner import TOOL_SCHEMAS, ToolRunner, is_protected_path


@pytest.fixture
def runner(tmp_path: Path) -> ToolRunner:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.ts").write_text("export const answer = 42;\n")
    return ToolRunner(tmp_path)


class TestIsProtectedPath:
    @pytest.mark.parametrize(
        "path",
        [".ophan/criteria/quality.md", ".ophan/criteria/nested/deep.md", "/abs/project/.ophan/criteria/x.md"],
    )
    def test_double_star_prefix(self, path: str):
        assert is_protected_path(path, [".ophan/criteria/**"])

    def test_exact_and_suffix(self):
        assert is_protected_path("config/.env", [".env"])
        assert is_protected_path(".env", [".env"])

    def test_unprotected(self):
        assert not is_protected_path("src/app.ts", [".ophan/criteria/**", ".env"])


class TestSchemas:
    def test_names(self):
        assert [s["name"] for s in TOOL_SCHEMAS] == [
            "run_command",
            "read_file",
            "write_file",
            "list_files",
            "search_files",
            "task_complete",
        ]


class TestFiles:
    async def test_read(self, runner: ToolRunner):
        result = await runner.run_tool("read_file", {"path": "src/app.ts"})
        assert result.success
        assert "answer = 42" in result.output
        assert runner.usage_summary().files_read == ["src/app.ts"]

    async def test_read_missing(self, runner: ToolRunner):
        result = await runner.run_tool("read_file", {"path": "nope.ts"})
        assert result.success is False
        assert result.error.startswith("Failed to read file")
        assert runner.usage_summary().files_read == []

    async def test_write_creates_parents(self, runner: ToolRunner, tmp_path: Path):
        result = await runner.run_tool("write_file", {"path": "src/new/util.ts", "content": "x"})
        assert result.success
        assert (tmp_path / "src" / "new" / "util.ts").read_text() == "x"
        assert runner.usage_summary().files_written == ["src/new/util.ts"]

    async def test_protected_criteria_refused(self, runner: ToolRunner, tmp_path: Path):
        write = await runner.run_tool("write_file", {"path": ".ophan/criteria/quality.md", "content": "x"})
        read = await runner.run_tool("read_file", {"path": ".ophan/criteria/quality.md"})
        assert write.success is False
        assert "protected" in write.error
        assert read.success is False
        assert not (tmp_path / ".ophan").exists()

    async def test_list_files(self, runner: ToolRunner):
        result = await runner.run_tool("list_files", {})
        assert result.output == "src/"
        globbed = await runner.run_tool("list_files", {"path": "src", "pattern": "*.ts"})
        assert globbed.output == "app.ts"

    async def test_search_skips_ignored_dirs(self, runner: ToolRunner, tmp_path: Path):
        (tmp_path / "node_modules" / "lib").mkdir(parents=True)
        (tmp_path / "node_modules" / "lib" / "index.js").write_text("answer\n")

        result = await runner.run_tool("search_files", {"pattern": r"answer\s*="})

        assert result.output == "src/app.ts:1: export const answer = 42;"
        assert runner.usage_summary().files_searched == ["src/app.ts"]

    async def test_search_invalid_regex(self, runner: ToolRunner):
        result = await runner.run_tool("search_files", {"pattern": "("})
        assert result.success is False

    async def test_search_no_matches(self, runner: ToolRunner):
        result = await runner.run_tool("search_files", {"pattern": "zzz"})
        assert result.output == "No matches found for pattern: zzz"


class TestCommands:
    async def test_output_captured(self, runner: ToolRunner):
        result = await runner.run_tool("run_command", {"command": "echo hello"})
        assert result.success
        assert result.output.strip() == "hello"
        assert runner.usage_summary().commands_run == ["echo hello"]

    async def test_nonzero_exit(self, runner: ToolRunner):
        result = await runner.run_tool("run_command", {"command": "echo oops >&2; exit 3"})
        assert result.success is False
        assert result.error == "Command exited with code 3"
        assert "Stderr:\noops" in result.output

    async def test_blocked(self, runner: ToolRunner):
        result = await runner.run_tool("run_command", {"command": "sudo rm -f x"})
        assert result.success is False
        assert result.error == "Command blocked by guardrails: sudo rm"
        assert runner.usage_summary().commands_run == []

    async def test_allow_list(self, tmp_path: Path):
        runner = ToolRunner(tmp_path, GuardrailsConfig(allowed_commands=["npm test"]))
        result = await runner.run_tool("run_command", {"command": "curl example.com"})
        assert result.error == "Command not in allowed list: curl"

    async def test_timeout(self, runner: ToolRunner):
        result = await runner.run_tool("run_command", {"command": "sleep 5", "timeout": 0.2})
        assert result.success is False
        assert "timed out" in result.error


class TestRecords:
    async def test_every_call_recorded(self, runner: ToolRunner):
        await runner.run_tool("task_complete", {"summary": "done"})
        await runner.run_tool("teleport", {})

        records = runner.records
        assert [r.name for r in records] == ["task_complete", "teleport"]
        assert records[0].output == "Task completed: done"
        assert records[1].success is False
        assert records[1].error == "Unknown tool: teleport"
        outputs = runner.get_tool_outputs()
        assert "[task_complete] SUCCESS" in outputs
        assert "[teleport] FAILED" in outputs

    async def test_clear(self, runner: ToolRunner):
        await runner.run_tool("read_file", {"path": "src/app.ts"})
        runner.clear()
        assert runner.records == []
        assert runner.usage_summary().files_read == []

    def test_join_format(self):
        text = join_tool_outputs(
            [ToolCallRecord(name="Bash", output="ok"), ToolCallRecord(name="Read", success=False, error="nope")]
        )
        assert text == "[Bash] SUCCESS\nok\n\n---\n\n[Read] FAILED\n\nError: nope"
