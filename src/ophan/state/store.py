"""Persisted run-state for one project.

The run-state is a plain struct loaded at the start of an operation,
threaded explicitly through the calls that mutate it, and saved at the end.
Nothing here is cached at module level.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from ophan.core.logging import get_logger
from ophan.models import Learning, OphanMetrics, Proposal, ProposalStatus

_logger = get_logger("state")

STATE_VERSION = "0.1.0"


class RunState(BaseModel):
    """Everything Ophan remembers between invocations."""

    version: str = STATE_VERSION
    last_review: datetime | None = None
    tasks_since_review: int = Field(default=0, ge=0)
    pending_proposals: list[Proposal] = Field(default_factory=list)
    learnings: list[Learning] = Field(default_factory=list)
    metrics: OphanMetrics = Field(default_factory=OphanMetrics)

    def queue_proposals(self, proposals: list[Proposal]) -> None:
        """Add proposals to the pending list, replacing any with the same id."""
        incoming = {p.id for p in proposals}
        kept = [p for p in self.pending_proposals if p.id not in incoming]
        queued = [p.model_copy(update={"status": ProposalStatus.PENDING}) for p in proposals]
        self.pending_proposals = kept + queued

    def remove_proposals(self, ids: set[str]) -> None:
        self.pending_proposals = [p for p in self.pending_proposals if p.id not in ids]


class StateStore:
    """JSON file storage for :class:`RunState`.

    File: ``{ophan_dir}/state.json``
    """

    def __init__(self, state_file: Path):
        self.state_file = Path(state_file)

    def load(self) -> RunState:
        """Load state, or a fresh default when the file is missing or unreadable."""
        if not self.state_file.exists():
            return RunState()
        try:
            with open(self.state_file) as f:
                data = json.load(f)
            return RunState.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            _logger.warning("state_load_failed", path=str(self.state_file), error=str(e))
            return RunState()

    def save(self, state: RunState) -> None:
        """Write state atomically (temp file + rename). Errors propagate."""
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.state_file.with_suffix(".json.tmp")
        with open(temp_file, "w") as f:
            json.dump(state.model_dump(mode="json"), f, indent=2)
        temp_file.rename(self.state_file)
        _logger.debug(
            "state_saved",
            path=str(self.state_file),
            learnings=len(state.learnings),
            pending_proposals=len(state.pending_proposals),
        )
