"""Writing approved proposals into guideline and criteria documents.

Edits are append-only: existing document text is kept verbatim and the
proposal's change is added as a new section at the end.
"""

from __future__ import annotations

import re
from pathlib import Path

from ophan.core.errors import ProposalApplyError
from ophan.core.logging import get_logger
from ophan.models import Proposal

_logger = get_logger("guidance")

APPEND_MARKER = "APPEND:"
_APPEND_RE = re.compile(r"^\s*APPEND:\s*", re.DOTALL)


def strip_append_marker(change: str) -> str:
    """Drop a leading ``APPEND:`` marker and surrounding whitespace."""
    match = _APPEND_RE.match(change)
    if match is None:
        return change
    return change[match.end():].strip()


def resolve_target(ophan_dir: Path, target_file: str) -> Path:
    """``ophan_dir / target_file``, refusing paths that escape ``ophan_dir``."""
    root = ophan_dir.resolve()
    path = (root / target_file).resolve()
    if not path.is_relative_to(root):
        raise ProposalApplyError(f"Target {target_file} is outside {ophan_dir}")
    return path


def apply_proposal(proposal: Proposal, ophan_dir: Path) -> Path:
    """Append a proposal's change to ``.ophan/<target_file>``.

    Raises:
        ProposalApplyError: If the target cannot be read or written.
    """
    path = resolve_target(Path(ophan_dir), proposal.target_file)
    content = strip_append_marker(proposal.change)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        existing = path.read_text(encoding="utf-8") if path.exists() else ""
        new_content = f"{existing.rstrip()}\n\n{content}\n" if existing.strip() else f"{content}\n"
        path.write_text(new_content, encoding="utf-8")
    except OSError as e:
        raise ProposalApplyError(f"Failed to apply {proposal.id} to {proposal.target_file}: {e}") from e

    _logger.info(
        "proposal_applied",
        proposal_id=proposal.id,
        kind=proposal.type,
        target_file=proposal.target_file,
    )
    return path
