"""Small shared helpers."""

from ophan.utils.ids import (
    generate_context_proposal_id,
    generate_learning_id,
    generate_proposal_id,
    generate_task_id,
)
from ophan.utils.time import utc_now

__all__ = [
    "generate_context_proposal_id",
    "generate_learning_id",
    "generate_proposal_id",
    "generate_task_id",
    "utc_now",
]
