"""Anthropic API executor using the official SDK.

Runs a tool-use conversation over the Messages API, executing each
requested tool through a :class:`ToolRunner`. The conversation is an
explicit bounded loop: at most ``max_tool_calls`` tool invocations happen
inside one attempt.
"""

from __future__ import annotations

import os
import re
from collections.abc import Callable
from pathlib import Path
from typing import Any

import anthropic

from ophan.backends.base import TASK_COMPLETE_PATTERN, ExecutionRequest, ExecutorResult
from ophan.core.config import ExecutorConfig, GuardrailsConfig
from ophan.core.errors import ExecutorError
from ophan.core.logging import get_logger
from ophan.tools import READ_ONLY_TOOL_NAMES, READ_ONLY_TOOL_SCHEMAS, TOOL_SCHEMAS, ToolResult, ToolRunner

_logger = get_logger("backend.anthropic_api")

DEFAULT_API_MODEL = "claude-sonnet-4-20250514"

ProgressCallback = Callable[[str], None]


class AnthropicApiExecutor:
    """Run attempts directly via the Anthropic API."""

    def __init__(
        self,
        model: str = DEFAULT_API_MODEL,
        api_key_env: str = "ANTHROPIC_API_KEY",
        max_tokens: int = 4096,
        timeout_seconds: float = 300.0,
        guardrails: GuardrailsConfig | None = None,
        progress_callback: ProgressCallback | None = None,
        client: anthropic.AsyncAnthropic | None = None,
    ):
        """Initialize API executor.

        Args:
            model: Model ID to use (e.g., claude-sonnet-4-20250514)
            api_key_env: Environment variable containing API key
            max_tokens: Maximum tokens per response
            timeout_seconds: Maximum time for one API request
            guardrails: Limits for the tool runner
            progress_callback: Receives short status lines
            client: Pre-built client (tests inject a fake here)
        """
        self.model = model
        self.api_key_env = api_key_env
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds
        self.guardrails = guardrails or GuardrailsConfig()
        self.progress_callback = progress_callback
        self._api_key = os.environ.get(api_key_env)
        self._client = client

    @classmethod
    def from_config(
        cls,
        config: ExecutorConfig,
        guardrails: GuardrailsConfig | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> AnthropicApiExecutor:
        # CLI aliases like "sonnet" are not API model ids
        model = config.model if config.model.startswith("claude-") else DEFAULT_API_MODEL
        return cls(
            model=model,
            api_key_env=config.api_key_env,
            max_tokens=config.max_tokens,
            timeout_seconds=config.timeout_seconds,
            guardrails=guardrails,
            progress_callback=progress_callback,
        )

    @property
    def name(self) -> str:
        return "anthropic-api"

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            if not self._api_key:
                raise ExecutorError(
                    f"API key not found in environment variable: {self.api_key_env}",
                    error_type="configuration",
                )
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key,
                timeout=self.timeout_seconds,
            )
        return self._client

    def _progress(self, message: str) -> None:
        if self.progress_callback is not None:
            self.progress_callback(message)

    async def execute(self, prompt: str, request: ExecutionRequest) -> ExecutorResult:
        client = self._get_client()
        runner = ToolRunner(Path(request.project_root), self.guardrails)
        tools = READ_ONLY_TOOL_SCHEMAS if request.read_only else TOOL_SCHEMAS
        messages: list[dict[str, Any]] = [{"role": "user", "content": prompt}]
        text_parts: list[str] = []
        input_tokens = 0
        output_tokens = 0
        completed = False
        limit_reached = False
        tool_calls = 0

        while not completed and not limit_reached:
            response = await self._create(client, request.system_prompt, messages, tools)
            input_tokens += response.usage.input_tokens
            output_tokens += response.usage.output_tokens

            tool_uses = []
            for block in response.content:
                if block.type == "text" and block.text:
                    text_parts.append(block.text)
                    self._progress(block.text)
                    if re.search(TASK_COMPLETE_PATTERN, block.text, re.IGNORECASE):
                        completed = True
                elif block.type == "tool_use":
                    tool_uses.append(block)

            if not tool_uses:
                break

            messages.append(
                {"role": "assistant", "content": [b.model_dump() for b in response.content]}
            )
            results: list[dict[str, Any]] = []
            for block in tool_uses:
                if tool_calls >= request.max_tool_calls:
                    limit_reached = True
                    _logger.warning(
                        "tool_call_limit_reached", max_tool_calls=request.max_tool_calls
                    )
                    break
                tool_calls += 1
                self._progress(f"[Tool: {block.name}]")
                if request.read_only and block.name not in READ_ONLY_TOOL_NAMES:
                    result = ToolResult(
                        success=False, output="", error=f"Tool not allowed here: {block.name}"
                    )
                else:
                    result = await runner.run_tool(block.name, dict(block.input or {}))
                    if block.name == "task_complete":
                        completed = True
                results.append(
                    {
                        "type": "tool_result",
                        "tool_use_id": block.id,
                        "content": result.output if result.success else (result.error or "failed"),
                        "is_error": not result.success,
                    }
                )
            messages.append({"role": "user", "content": results})

        _logger.info(
            "execution_completed",
            completed=completed,
            tool_calls=tool_calls,
            tool_call_limit_reached=limit_reached,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
        return ExecutorResult(
            text="\n".join(text_parts),
            completed=completed and not limit_reached,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            tool_calls=runner.records,
            file_usage=runner.usage_summary(),
            tool_call_limit_reached=limit_reached,
        )

    async def _create(
        self,
        client: anthropic.AsyncAnthropic,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> Any:
        """One Messages API call; unrecoverable errors become ExecutorError."""
        try:
            return await client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system_prompt,
                messages=messages,
                tools=tools,
            )
        except anthropic.AuthenticationError as e:
            raise ExecutorError(f"Authentication failed: {e}", error_type="authentication") from e
        except anthropic.PermissionDeniedError as e:
            raise ExecutorError(f"Permission denied: {e}", error_type="permission") from e
        except anthropic.BadRequestError as e:
            raise ExecutorError(f"Bad request: {e}", error_type="bad_request") from e
        except anthropic.RateLimitError as e:
            raise ExecutorError(f"Rate limited: {e}", error_type="rate_limit") from e
        except anthropic.APITimeoutError as e:
            raise ExecutorError(
                f"API timeout after {self.timeout_seconds}s: {e}", error_type="timeout"
            ) from e
        except anthropic.APIConnectionError as e:
            raise ExecutorError(f"Connection error: {e}", error_type="connection") from e
        except anthropic.APIStatusError as e:
            raise ExecutorError(str(e), error_type="api_error") from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
