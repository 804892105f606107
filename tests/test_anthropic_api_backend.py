"""Tests for ophan.backends.anthropic_api module.

A fake client replays scripted Messages API responses so the tool-use
loop runs against a real ToolRunner in a temporary project.
"""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from typing import Any

import anthropic
import httpx
import pytest
from anthropic.types import TextBlock, ToolUseBlock

from ophan.backends.anthropic_api import DEFAULT_API_MODEL, AnthropicApiExecutor
from ophan.backends.base import ExecutionRequest
from ophan.backends.claude_cli import ClaudeCliExecutor
from ophan.backends.factory import create_executor
from ophan.core.config import ExecutorConfig, ProjectConfig
from ophan.core.errors import ExecutorError

API_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def response(*blocks, input_tokens: int = 100, output_tokens: int = 20) -> SimpleNamespace:
    return SimpleNamespace(
        content=list(blocks),
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
    )


def text(value: str) -> TextBlock:
    return TextBlock(type="text", text=value)


def tool(tool_id: str, name: str, **tool_input: Any) -> ToolUseBlock:
    return ToolUseBlock(type="tool_use", id=tool_id, name=name, input=tool_input)


class FakeMessages:
    def __init__(self, steps: list[Any]):
        self.steps = steps
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        # Snapshot: the executor keeps appending to the same list
        self.calls.append({**kwargs, "messages": list(kwargs["messages"])})
        step = self.steps.pop(0)
        if isinstance(step, Exception):
            raise step
        return step


class FakeClient:
    def __init__(self, *steps: Any):
        self.messages = FakeMessages(list(steps))
        self.closed = False

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def request_for(tmp_path: Path):
    def build(max_tool_calls: int = 50) -> ExecutionRequest:
        return ExecutionRequest(system_prompt="SYS", project_root=tmp_path, max_tool_calls=max_tool_calls)

    return build


# ─── Tool-use loop ───────────────────────────────────────────────────


class TestToolUseLoop:
    async def test_tools_run_until_task_complete(self, tmp_path: Path, request_for):
        client = FakeClient(
            response(text("Writing the page"), tool("t1", "write_file", path="src/page.ts", content="ok")),
            response(tool("t2", "task_complete", summary="added page"), output_tokens=5),
        )
        executor = AnthropicApiExecutor(client=client)

        result = await executor.execute("Add a page", request_for())

        assert (tmp_path / "src" / "page.ts").read_text() == "ok"
        assert result.completed is True
        assert result.text == "Writing the page"
        assert (result.input_tokens, result.output_tokens) == (200, 25)
        assert result.cost == 0.0
        assert [r.name for r in result.tool_calls] == ["write_file", "task_complete"]
        assert result.file_usage.files_written == ["src/page.ts"]

        first, second = client.messages.calls
        assert first["system"] == "SYS"
        assert first["model"] == DEFAULT_API_MODEL
        assert [t["name"] for t in first["tools"]][-1] == "task_complete"
        tool_results = second["messages"][-1]["content"]
        assert tool_results[0]["tool_use_id"] == "t1"
        assert tool_results[0]["is_error"] is False

    async def test_text_only_response_ends_attempt(self, request_for):
        client = FakeClient(response(text("Done. TASK COMPLETE")))
        result = await AnthropicApiExecutor(client=client).execute("x", request_for())
        assert result.completed is True
        assert len(client.messages.calls) == 1

    async def test_no_claim_not_completed(self, request_for):
        client = FakeClient(response(text("I could not find the file")))
        result = await AnthropicApiExecutor(client=client).execute("x", request_for())
        assert result.completed is False

    async def test_failed_tool_reported_as_error(self, request_for):
        client = FakeClient(
            response(tool("t1", "read_file", path="missing.ts")),
            response(text("giving up")),
        )
        await AnthropicApiExecutor(client=client).execute("x", request_for())

        tool_result = client.messages.calls[1]["messages"][-1]["content"][0]
        assert tool_result["is_error"] is True
        assert tool_result["content"].startswith("Failed to read file")

    async def test_tool_call_cap(self, request_for):
        client = FakeClient(
            response(
                tool("t1", "list_files"),
                tool("t2", "list_files"),
                tool("t3", "task_complete", summary="done"),
            ),
        )
        result = await AnthropicApiExecutor(client=client).execute("x", request_for(max_tool_calls=2))

        assert result.tool_call_limit_reached is True
        assert result.completed is False
        assert len(result.tool_calls) == 2
        assert len(client.messages.calls) == 1

    async def test_read_only_request_refuses_writes(self, tmp_path: Path):
        client = FakeClient(
            response(tool("t1", "write_file", path="src/page.ts", content="changed")),
            response(text("Verdict ready")),
        )
        request = ExecutionRequest(system_prompt="SYS", project_root=tmp_path, read_only=True)

        result = await AnthropicApiExecutor(client=client).execute("judge", request)

        assert not (tmp_path / "src" / "page.ts").exists()
        assert result.tool_calls == []
        assert {t["name"] for t in client.messages.calls[0]["tools"]} == {"read_file", "list_files", "search_files"}
        refused = client.messages.calls[1]["messages"][-1]["content"][0]
        assert refused["is_error"] is True
        assert refused["content"] == "Tool not allowed here: write_file"


# ─── Errors ──────────────────────────────────────────────────────────


class TestErrors:
    def test_missing_api_key(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("OPHAN_TEST_KEY", raising=False)
        executor = AnthropicApiExecutor(api_key_env="OPHAN_TEST_KEY")
        with pytest.raises(ExecutorError) as exc_info:
            executor._get_client()
        assert exc_info.value.error_type == "configuration"
        assert "OPHAN_TEST_KEY" in str(exc_info.value)

    @pytest.mark.parametrize(
        ("error", "error_type"),
        [
            (
                anthropic.AuthenticationError(
                    "bad key", response=httpx.Response(401, request=API_REQUEST), body=None
                ),
                "authentication",
            ),
            (
                anthropic.RateLimitError(
                    "slow down", response=httpx.Response(429, request=API_REQUEST), body=None
                ),
                "rate_limit",
            ),
            (anthropic.APITimeoutError(request=API_REQUEST), "timeout"),
            (anthropic.APIConnectionError(request=API_REQUEST), "connection"),
            (
                anthropic.InternalServerError(
                    "overloaded", response=httpx.Response(500, request=API_REQUEST), body=None
                ),
                "api_error",
            ),
        ],
    )
    async def test_api_errors_become_executor_errors(self, request_for, error, error_type):
        executor = AnthropicApiExecutor(client=FakeClient(error))
        with pytest.raises(ExecutorError) as exc_info:
            await executor.execute("x", request_for())
        assert exc_info.value.error_type == error_type

    async def test_close(self):
        client = FakeClient()
        executor = AnthropicApiExecutor(client=client)
        await executor.close()
        await executor.close()
        assert client.closed is True


# ─── Construction ────────────────────────────────────────────────────


class TestFromConfig:
    def test_cli_alias_replaced_with_api_model(self):
        executor = AnthropicApiExecutor.from_config(ExecutorConfig(model="sonnet"))
        assert executor.model == DEFAULT_API_MODEL
        assert executor.name == "anthropic-api"

    def test_full_model_id_kept(self):
        executor = AnthropicApiExecutor.from_config(
            ExecutorConfig(model="claude-opus-4-20250514", max_tokens=2048)
        )
        assert executor.model == "claude-opus-4-20250514"
        assert executor.max_tokens == 2048

    def test_factory_picks_backend(self):
        api = create_executor(ProjectConfig.model_validate({"executor": {"backend": "anthropic_api"}}))
        cli = create_executor(ProjectConfig())
        assert isinstance(api, AnthropicApiExecutor)
        assert isinstance(cli, ClaudeCliExecutor)
