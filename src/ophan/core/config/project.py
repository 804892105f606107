"""Project-level configuration: the ``.ophan.yaml`` file at a project root."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import Field, ValidationError

from ophan.core.config._base import ConfigModel
from ophan.core.config.execution import ExecutorConfig, GuardrailsConfig, InnerLoopConfig
from ophan.core.config.learning import OuterLoopConfig
from ophan.core.config.notifications import EscalationsConfig
from ophan.core.errors import ConfigurationError

CONFIG_FILENAME = ".ophan.yaml"
OPHAN_DIRNAME = ".ophan"


class LogConfig(ConfigModel):
    """Logging settings applied by the CLI when no flags override them."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
    format: Literal["json", "console", "both"] = "console"
    file: Path | None = Field(
        default=None,
        description="Log file path. Relative paths resolve against the .ophan directory.",
    )


class ProjectConfig(ConfigModel):
    """Complete configuration for one Ophan-managed project."""

    inner_loop: InnerLoopConfig = Field(default_factory=InnerLoopConfig)
    outer_loop: OuterLoopConfig = Field(default_factory=OuterLoopConfig)
    guardrails: GuardrailsConfig = Field(default_factory=GuardrailsConfig)
    escalations: EscalationsConfig = Field(default_factory=EscalationsConfig)
    executor: ExecutorConfig = Field(
        default_factory=ExecutorConfig,
        validation_alias="claudeCode",
    )
    logging: LogConfig = Field(default_factory=LogConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> ProjectConfig:
        """Load project configuration from a YAML file."""
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read {path}: {e}") from e
        return cls._validate(data or {}, source=str(path))

    @classmethod
    def from_yaml_string(cls, yaml_str: str) -> ProjectConfig:
        """Load project configuration from a YAML string."""
        try:
            data = yaml.safe_load(yaml_str)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML: {e}") from e
        return cls._validate(data or {}, source="<string>")

    @classmethod
    def _validate(cls, data: object, source: str) -> ProjectConfig:
        if not isinstance(data, dict):
            raise ConfigurationError(f"{source}: top level must be a mapping")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"{source}: {e}") from e


def load_project_config(project_root: Path) -> ProjectConfig:
    """Load ``<project_root>/.ophan.yaml``, or defaults when it is absent."""
    path = project_root / CONFIG_FILENAME
    if not path.exists():
        return ProjectConfig()
    return ProjectConfig.from_yaml(path)
