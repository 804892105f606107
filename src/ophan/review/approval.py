"""The human approval step for proposals produced by a review.

Policies:

* ``non_interactive_queue_all``: nothing is applied; every proposal is skipped
  so the caller can queue it for later.
* ``auto_approve_guidelines_only``: guideline proposals are applied, criteria
  proposals are skipped for a human.
* ``interactive``: a :class:`ReviewPrompt` decides each proposal.

A proposal whose application fails is moved to ``skipped`` and stays pending.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Literal

from ophan.core.errors import ProposalApplyError
from ophan.core.logging import get_logger
from ophan.learning.guidance import apply_proposal
from ophan.models import Proposal, ProposalStatus
from ophan.utils.time import utc_now

_logger = get_logger("approval")

ReviewAction = Literal["approve", "reject", "edit", "skip", "quit"]


class ReviewPolicy(str, Enum):
    INTERACTIVE = "interactive"
    AUTO_APPROVE_GUIDELINES_ONLY = "auto_approve_guidelines_only"
    NON_INTERACTIVE_QUEUE_ALL = "non_interactive_queue_all"


@dataclass
class ReviewDecision:
    """What a reviewer chose for one proposal.

    ``feedback`` is recorded on rejection; ``edited_change`` replaces the
    proposal's change when the action is ``edit``.
    """

    action: ReviewAction
    feedback: str | None = None
    edited_change: str | None = None


# Called with (proposal, position, total); position is 1-based
ReviewPrompt = Callable[[Proposal, int, int], ReviewDecision]


@dataclass
class ReviewSummary:
    total_reviewed: int = 0
    approved_count: int = 0
    rejected_count: int = 0
    skipped_count: int = 0
    guidelines_updated: list[str] = field(default_factory=list)
    criteria_updated: list[str] = field(default_factory=list)
    ended_early: bool = False


@dataclass
class ReviewResult:
    approved: list[Proposal] = field(default_factory=list)
    rejected: list[Proposal] = field(default_factory=list)
    skipped: list[Proposal] = field(default_factory=list)
    summary: ReviewSummary = field(default_factory=ReviewSummary)


def _approve(proposal: Proposal, ophan_dir: Path, result: ReviewResult) -> None:
    try:
        apply_proposal(proposal, ophan_dir)
    except ProposalApplyError as e:
        _logger.warning("proposal_apply_failed", proposal_id=proposal.id, error=str(e))
        _skip(proposal, result)
        return

    proposal.status = ProposalStatus.APPROVED
    proposal.reviewed_at = utc_now()
    result.approved.append(proposal)
    result.summary.approved_count += 1
    updated = result.summary.guidelines_updated if proposal.type == "guideline" else result.summary.criteria_updated
    if proposal.target_file not in updated:
        updated.append(proposal.target_file)


def _skip(proposal: Proposal, result: ReviewResult) -> None:
    proposal.status = ProposalStatus.SKIPPED
    result.skipped.append(proposal)
    result.summary.skipped_count += 1


def _reject(proposal: Proposal, feedback: str | None, result: ReviewResult) -> None:
    proposal.status = ProposalStatus.REJECTED
    proposal.human_feedback = feedback
    proposal.reviewed_at = utc_now()
    result.rejected.append(proposal)
    result.summary.rejected_count += 1


def review_proposals(
    proposals: list[Proposal],
    policy: ReviewPolicy,
    ophan_dir: Path,
    prompt: ReviewPrompt | None = None,
) -> ReviewResult:
    """Decide every proposal under ``policy``.

    Proposals are updated in place (status, reviewed_at, human_feedback).

    Raises:
        ValueError: If ``policy`` is interactive and no ``prompt`` is given.
    """
    policy = ReviewPolicy(policy)
    if policy == ReviewPolicy.INTERACTIVE and prompt is None:
        raise ValueError("Interactive review requires a prompt")

    result = ReviewResult()
    total = len(proposals)
    for index, proposal in enumerate(proposals):
        if policy == ReviewPolicy.NON_INTERACTIVE_QUEUE_ALL:
            _skip(proposal, result)
        elif policy == ReviewPolicy.AUTO_APPROVE_GUIDELINES_ONLY:
            if proposal.type == "guideline":
                _approve(proposal, ophan_dir, result)
            else:
                _skip(proposal, result)
        else:
            assert prompt is not None
            decision = prompt(proposal, index + 1, total)
            if decision.action == "quit":
                for remaining in proposals[index:]:
                    _skip(remaining, result)
                result.summary.total_reviewed = total
                result.summary.ended_early = True
                _logger.info("review_ended_early", reviewed=index, total=total)
                return result
            if decision.action == "approve":
                _approve(proposal, ophan_dir, result)
            elif decision.action == "edit":
                if decision.edited_change:
                    proposal.change = decision.edited_change
                _approve(proposal, ophan_dir, result)
            elif decision.action == "reject":
                _reject(proposal, decision.feedback, result)
            else:
                _skip(proposal, result)
        result.summary.total_reviewed += 1

    _logger.info(
        "proposals_reviewed",
        policy=policy.value,
        approved=result.summary.approved_count,
        rejected=result.summary.rejected_count,
        skipped=result.summary.skipped_count,
    )
    return result
