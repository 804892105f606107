"""Shared base for configuration models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ConfigModel(BaseModel):
    """Base for all config sections.

    Accepts both ``snake_case`` and ``camelCase`` keys so project files
    written as ``innerLoop: {maxIterations: 5}`` load the same as
    ``inner_loop: {max_iterations: 5}``.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )
