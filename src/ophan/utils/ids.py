"""Identifier formats for tasks, learnings and proposals.

All ids embed a UTC timestamp so that lexical order matches creation order
within one format.
"""

from __future__ import annotations

import secrets
from datetime import datetime

from ophan.utils.time import utc_now


def _suffix() -> str:
    return secrets.token_hex(2)


def generate_task_id(now: datetime | None = None) -> str:
    """``task-YYYYMMDD-HHMMSS-xxxx``."""
    now = now or utc_now()
    return f"task-{now:%Y%m%d-%H%M%S}-{_suffix()}"


def generate_learning_id(now: datetime | None = None) -> str:
    """``YYYYMMDDHHMMSS-xxxx``."""
    now = now or utc_now()
    return f"{now:%Y%m%d%H%M%S}-{_suffix()}"


def generate_proposal_id(now: datetime | None = None) -> str:
    """``proposal-YYYYMMDDHHMMSS-xxxx``."""
    now = now or utc_now()
    return f"proposal-{now:%Y%m%d%H%M%S}-{_suffix()}"


def generate_context_proposal_id(now: datetime | None = None) -> str:
    """``ctx-YYYYMMDDHHMMSS-xxxx``."""
    now = now or utc_now()
    return f"ctx-{now:%Y%m%d%H%M%S}-{_suffix()}"
