"""Tests for ophan.core.config module."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from ophan.core.config import (
    CONFIG_FILENAME,
    InnerLoopConfig,
    LearningsConfig,
    ProjectConfig,
    WebhookConfig,
    load_project_config,
)
from ophan.core.errors import ConfigurationError


class TestInnerLoopConfig:
    """Tests for InnerLoopConfig model."""

    def test_defaults(self):
        config = InnerLoopConfig()
        assert config.max_iterations == 5
        assert config.regeneration_strategy == "informed"
        assert config.cost_limit is None
        assert config.max_tool_calls == 50
        assert config.criteria_check is False
        assert config.learning_extraction == "heuristic"

    @pytest.mark.parametrize(
        "values",
        [
            {"max_iterations": 0},
            {"cost_limit": 0},
            {"max_tool_calls": 0},
            {"regeneration_strategy": "yolo"},
        ],
    )
    def test_invalid(self, values: dict):
        with pytest.raises(ValidationError):
            InnerLoopConfig(**values)


class TestLearningsConfig:
    def test_defaults(self):
        config = LearningsConfig()
        assert (config.max_count, config.retention_days) == (50, 90)
        assert config.promotion_threshold == 3
        assert config.similarity_threshold == 0.9

    def test_similarity_bounds(self):
        with pytest.raises(ValidationError):
            LearningsConfig(similarity_threshold=1.5)


class TestProjectConfig:
    """Tests for ProjectConfig loading."""

    def test_camel_case_keys(self):
        config = ProjectConfig.from_yaml_string(
            """
innerLoop:
  maxIterations: 3
  costLimit: 1.5
outerLoop:
  minOccurrences: 2
  learnings:
    promotionThreshold: 4
  triggers:
    afterTasks: 20
"""
        )
        assert config.inner_loop.max_iterations == 3
        assert config.inner_loop.cost_limit == 1.5
        assert config.outer_loop.min_occurrences == 2
        assert config.outer_loop.learnings.promotion_threshold == 4
        assert config.outer_loop.triggers.after_tasks == 20

    def test_snake_case_keys(self):
        config = ProjectConfig.from_yaml_string("inner_loop:\n  max_iterations: 7\n")
        assert config.inner_loop.max_iterations == 7

    def test_claude_code_section_configures_executor(self):
        config = ProjectConfig.from_yaml_string(
            "claudeCode:\n  model: opus\n  maxTurns: 10\n  permissionMode: bypassPermissions\n"
        )
        assert config.executor.model == "opus"
        assert config.executor.max_turns == 10
        assert config.executor.permission_mode == "bypassPermissions"

    def test_executor_key_also_accepted(self):
        config = ProjectConfig.model_validate({"executor": {"backend": "anthropic_api"}})
        assert config.executor.backend == "anthropic_api"

    def test_webhooks(self):
        config = ProjectConfig.from_yaml_string(
            """
escalations:
  webhooks:
    - name: slack
      url: https://hooks.example.com/${SLACK_PATH}
      events: [escalation, digest]
      headers:
        Authorization: Bearer ${TOKEN}
"""
        )
        [webhook] = config.escalations.webhooks
        assert webhook.events == ["escalation", "digest"]
        assert webhook.url.endswith("${SLACK_PATH}")
        assert webhook.method == "POST"

    def test_unknown_keys_ignored(self):
        config = ProjectConfig.from_yaml_string("somethingNew: true\n")
        assert config == ProjectConfig()

    def test_empty_document_is_defaults(self):
        assert ProjectConfig.from_yaml_string("") == ProjectConfig()

    @pytest.mark.parametrize(
        "text",
        [
            "innerLoop: [unclosed",
            "- just\n- a list\n",
            "innerLoop:\n  maxIterations: zero\n",
        ],
    )
    def test_invalid_raises_configuration_error(self, text: str):
        with pytest.raises(ConfigurationError):
            ProjectConfig.from_yaml_string(text)

    def test_webhook_event_validated(self):
        with pytest.raises(ValidationError):
            WebhookConfig(name="x", url="https://x", events=["whenever"])


class TestLoadProjectConfig:
    def test_missing_file_gives_defaults(self, tmp_path: Path):
        assert load_project_config(tmp_path) == ProjectConfig()

    def test_reads_project_file(self, tmp_path: Path):
        (tmp_path / CONFIG_FILENAME).write_text("innerLoop:\n  criteriaCheck: true\n")
        assert load_project_config(tmp_path).inner_loop.criteria_check is True

    def test_invalid_file(self, tmp_path: Path):
        (tmp_path / CONFIG_FILENAME).write_text("logging:\n  level: LOUD\n")
        with pytest.raises(ConfigurationError) as exc_info:
            load_project_config(tmp_path)
        assert CONFIG_FILENAME in str(exc_info.value)
