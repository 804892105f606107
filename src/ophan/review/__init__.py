"""The review cycle: slow-loop analysis, digests, and the approval step."""

from ophan.review.approval import (
    ReviewAction,
    ReviewDecision,
    ReviewPolicy,
    ReviewPrompt,
    ReviewResult,
    ReviewSummary,
    review_proposals,
)
from ophan.review.slow_loop import (
    SlowLoop,
    SlowLoopOptions,
    SlowLoopResult,
    group_proposals_by_source,
    render_digest,
    review_due,
)

__all__ = [
    "ReviewAction",
    "ReviewDecision",
    "ReviewPolicy",
    "ReviewPrompt",
    "ReviewResult",
    "ReviewSummary",
    "SlowLoop",
    "SlowLoopOptions",
    "SlowLoopResult",
    "group_proposals_by_source",
    "render_digest",
    "review_due",
]
