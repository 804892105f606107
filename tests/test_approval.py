"""Tests for ophan.review.approval module.

Covers the three review policies, each interactive action, and a failing
application falling back to skipped.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from ophan.models import Proposal, ProposalStatus
from ophan.review.approval import (
    ReviewDecision,
    ReviewPolicy,
    review_proposals,
)


def make_proposal(pid: str, kind: str = "guideline", target: str | None = None) -> Proposal:
    return Proposal(
        id=pid,
        type=kind,
        source="task-agent",
        target_file=target or ("guidelines/coding.md" if kind == "guideline" else "criteria/quality.md"),
        change=f"APPEND: rule {pid}",
        reason="Recurring failure",
    )


def scripted(*decisions: ReviewDecision):
    """A prompt that returns ``decisions`` in order and records what it saw."""
    seen: list[tuple[str, int, int]] = []
    queue = list(decisions)

    def prompt(proposal: Proposal, position: int, total: int) -> ReviewDecision:
        seen.append((proposal.id, position, total))
        return queue.pop(0)

    prompt.seen = seen  # type: ignore[attr-defined]
    return prompt


# ─── Policies ────────────────────────────────────────────────────────


class TestNonInteractive:
    def test_everything_skipped(self, ophan_dir: Path):
        proposals = [make_proposal("g1"), make_proposal("c1", "criteria")]

        result = review_proposals(proposals, ReviewPolicy.NON_INTERACTIVE_QUEUE_ALL, ophan_dir)

        assert [p.id for p in result.skipped] == ["g1", "c1"]
        assert result.approved == []
        assert all(p.status == ProposalStatus.SKIPPED for p in proposals)
        assert not (ophan_dir / "guidelines" / "coding.md").exists()

    def test_policy_accepts_string(self, ophan_dir: Path):
        result = review_proposals([make_proposal("g1")], "non_interactive_queue_all", ophan_dir)
        assert result.summary.skipped_count == 1


class TestAutoApproveGuidelines:
    def test_guidelines_applied_criteria_skipped(self, ophan_dir: Path):
        proposals = [make_proposal("g1"), make_proposal("c1", "criteria")]

        result = review_proposals(proposals, ReviewPolicy.AUTO_APPROVE_GUIDELINES_ONLY, ophan_dir)

        assert [p.id for p in result.approved] == ["g1"]
        assert [p.id for p in result.skipped] == ["c1"]
        assert result.summary.guidelines_updated == ["guidelines/coding.md"]
        assert result.summary.criteria_updated == []
        assert (ophan_dir / "guidelines" / "coding.md").read_text() == "rule g1\n"
        assert not (ophan_dir / "criteria" / "quality.md").exists()
        assert proposals[0].reviewed_at is not None

    def test_apply_failure_skips(self, ophan_dir: Path):
        proposal = make_proposal("bad", target="../../escape.md")

        result = review_proposals([proposal], ReviewPolicy.AUTO_APPROVE_GUIDELINES_ONLY, ophan_dir)

        assert result.approved == []
        assert [p.id for p in result.skipped] == ["bad"]
        assert proposal.status == ProposalStatus.SKIPPED


class TestInteractive:
    def test_requires_prompt(self, ophan_dir: Path):
        with pytest.raises(ValueError):
            review_proposals([make_proposal("g1")], ReviewPolicy.INTERACTIVE, ophan_dir)

    def test_each_action(self, ophan_dir: Path):
        proposals = [
            make_proposal("approve-me"),
            make_proposal("reject-me"),
            make_proposal("edit-me", "criteria"),
            make_proposal("skip-me"),
        ]
        prompt = scripted(
            ReviewDecision("approve"),
            ReviewDecision("reject", feedback="Too vague"),
            ReviewDecision("edit", edited_change="- Errors must be logged"),
            ReviewDecision("skip"),
        )

        result = review_proposals(proposals, ReviewPolicy.INTERACTIVE, ophan_dir, prompt=prompt)

        assert prompt.seen == [
            ("approve-me", 1, 4),
            ("reject-me", 2, 4),
            ("edit-me", 3, 4),
            ("skip-me", 4, 4),
        ]
        assert [p.id for p in result.approved] == ["approve-me", "edit-me"]
        assert [p.id for p in result.rejected] == ["reject-me"]
        assert [p.id for p in result.skipped] == ["skip-me"]
        assert proposals[1].human_feedback == "Too vague"
        assert proposals[1].status == ProposalStatus.REJECTED
        assert (ophan_dir / "criteria" / "quality.md").read_text() == "- Errors must be logged\n"
        assert result.summary.criteria_updated == ["criteria/quality.md"]
        assert result.summary.total_reviewed == 4
        assert result.summary.ended_early is False

    def test_edit_without_change_applies_original(self, ophan_dir: Path):
        prompt = scripted(ReviewDecision("edit", edited_change=""))
        review_proposals([make_proposal("g1")], ReviewPolicy.INTERACTIVE, ophan_dir, prompt=prompt)
        assert (ophan_dir / "guidelines" / "coding.md").read_text() == "rule g1\n"

    def test_quit_skips_remaining(self, ophan_dir: Path):
        proposals = [make_proposal("g1"), make_proposal("g2"), make_proposal("g3")]
        prompt = scripted(ReviewDecision("approve"), ReviewDecision("quit"))

        result = review_proposals(proposals, ReviewPolicy.INTERACTIVE, ophan_dir, prompt=prompt)

        assert [p.id for p in result.approved] == ["g1"]
        assert [p.id for p in result.skipped] == ["g2", "g3"]
        assert result.summary.ended_early is True
        assert result.summary.total_reviewed == 3
        assert len(prompt.seen) == 2

    def test_repeated_target_listed_once(self, ophan_dir: Path):
        prompt = scripted(ReviewDecision("approve"), ReviewDecision("approve"))
        result = review_proposals(
            [make_proposal("g1"), make_proposal("g2")], ReviewPolicy.INTERACTIVE, ophan_dir, prompt=prompt
        )
        assert result.summary.guidelines_updated == ["guidelines/coding.md"]
        assert (ophan_dir / "guidelines" / "coding.md").read_text() == "rule g1\n\nrule g2\n"
