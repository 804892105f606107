"""Tests for ophan.state module."""

from __future__ import annotations

import json
from pathlib import Path

from ophan.models import Proposal, ProposalStatus
from ophan.state import STATE_VERSION, OphanPaths, RunState, StateStore
from tests.helpers import make_learning


def make_proposal(pid: str, change: str = "APPEND: rule") -> Proposal:
    return Proposal(
        id=pid,
        type="guideline",
        source="task-agent",
        target_file="guidelines/coding.md",
        change=change,
        reason="r",
    )


class TestOphanPaths:
    def test_layout(self, tmp_path: Path):
        paths = OphanPaths(tmp_path)
        assert paths.ophan_dir == tmp_path / ".ophan"
        assert paths.state_file == tmp_path / ".ophan" / "state.json"
        assert paths.learnings_file == tmp_path / ".ophan" / "guidelines" / "learnings.md"

    def test_ensure_creates_directories(self, tmp_path: Path):
        paths = OphanPaths(tmp_path)
        paths.ensure()
        paths.ensure()
        for directory in ("guidelines", "criteria", "logs", "context-logs", "digests"):
            assert (tmp_path / ".ophan" / directory).is_dir()


class TestRunState:
    def test_defaults(self):
        state = RunState()
        assert state.version == STATE_VERSION
        assert state.last_review is None
        assert state.tasks_since_review == 0
        assert state.pending_proposals == []

    def test_queue_replaces_same_id(self):
        state = RunState()
        state.queue_proposals([make_proposal("p1", "old"), make_proposal("p2")])
        replacement = make_proposal("p1", "new")
        replacement.status = ProposalStatus.SKIPPED

        state.queue_proposals([replacement])

        assert [p.id for p in state.pending_proposals] == ["p2", "p1"]
        assert state.pending_proposals[1].change == "new"
        assert state.pending_proposals[1].status == ProposalStatus.PENDING
        assert replacement.status == ProposalStatus.SKIPPED

    def test_remove(self):
        state = RunState()
        state.queue_proposals([make_proposal("p1"), make_proposal("p2"), make_proposal("p3")])
        state.remove_proposals({"p1", "p3", "unknown"})
        assert [p.id for p in state.pending_proposals] == ["p2"]


class TestStateStore:
    def test_missing_file_gives_default(self, tmp_path: Path):
        assert StateStore(tmp_path / "state.json").load() == RunState()

    def test_save_and_load(self, tmp_path: Path):
        store = StateStore(tmp_path / "nested" / "state.json")
        state = RunState(tasks_since_review=4, learnings=[make_learning("l1", "Run the linter", references=2)])
        state.queue_proposals([make_proposal("p1")])

        store.save(state)
        loaded = store.load()

        assert loaded.tasks_since_review == 4
        assert loaded.learnings[0].references == 2
        assert loaded.pending_proposals[0].id == "p1"
        assert not (tmp_path / "nested" / "state.json.tmp").exists()

    def test_file_is_plain_json(self, tmp_path: Path):
        store = StateStore(tmp_path / "state.json")
        store.save(RunState(tasks_since_review=1))
        data = json.loads((tmp_path / "state.json").read_text())
        assert data["tasks_since_review"] == 1
        assert data["version"] == STATE_VERSION

    def test_corrupt_file_gives_default(self, tmp_path: Path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        assert StateStore(path).load() == RunState()

    def test_invalid_shape_gives_default(self, tmp_path: Path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"tasks_since_review": -3}))
        assert StateStore(path).load().tasks_since_review == 0
