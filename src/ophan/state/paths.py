"""Layout of the per-project ``.ophan/`` working area."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ophan.core.config import OPHAN_DIRNAME


@dataclass(frozen=True)
class OphanPaths:
    """Resolved locations inside ``<project>/.ophan``."""

    project_root: Path

    @property
    def ophan_dir(self) -> Path:
        return self.project_root / OPHAN_DIRNAME

    @property
    def state_file(self) -> Path:
        return self.ophan_dir / "state.json"

    @property
    def guidelines_dir(self) -> Path:
        return self.ophan_dir / "guidelines"

    @property
    def criteria_dir(self) -> Path:
        return self.ophan_dir / "criteria"

    @property
    def logs_dir(self) -> Path:
        return self.ophan_dir / "logs"

    @property
    def context_logs_dir(self) -> Path:
        return self.ophan_dir / "context-logs"

    @property
    def digests_dir(self) -> Path:
        return self.ophan_dir / "digests"

    @property
    def learnings_file(self) -> Path:
        return self.guidelines_dir / "learnings.md"

    def ensure(self) -> None:
        """Create every directory of the layout."""
        for directory in (
            self.guidelines_dir,
            self.criteria_dir,
            self.logs_dir,
            self.context_logs_dir,
            self.digests_dir,
        ):
            directory.mkdir(parents=True, exist_ok=True)
