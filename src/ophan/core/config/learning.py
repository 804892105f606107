"""Slow-loop and learning-pool configuration models."""

from __future__ import annotations

from pydantic import Field

from ophan.core.config._base import ConfigModel


class LearningsConfig(ConfigModel):
    """Bounds and thresholds for the learning pool."""

    max_count: int = Field(default=50, ge=1, description="Cap on kept learnings.")
    retention_days: int = Field(
        default=90,
        ge=1,
        description="Singleton learnings older than this with fewer than 2 "
        "references are pruned at consolidation.",
    )
    promotion_threshold: int = Field(
        default=3,
        ge=1,
        description="References needed before a learning becomes a guideline proposal.",
    )
    similarity_threshold: float = Field(
        default=0.9,
        ge=0.0,
        le=1.0,
        description="Jaccard similarity at or above which two learnings are duplicates.",
    )


class TriggersConfig(ConfigModel):
    """When a review cycle is due."""

    after_tasks: int = Field(default=10, ge=1)
    schedule: str | None = None


class OuterLoopConfig(ConfigModel):
    """Configuration for the review cycle."""

    triggers: TriggersConfig = Field(default_factory=TriggersConfig)
    min_occurrences: int = Field(default=3, ge=1)
    min_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    lookback_days: int = Field(default=30, ge=1)
    max_proposals: int = Field(default=5, ge=1)
    log_analysis: bool = Field(
        default=True,
        description="Ask the executor to read recent task logs during review and "
        "recommend guideline or criteria changes. Needs a working executor.",
    )
    learnings: LearningsConfig = Field(default_factory=LearningsConfig)
