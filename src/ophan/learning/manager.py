"""Learning pool management: dedup, consolidation, promotion, persistence.

The pool itself lives in the caller's run-state; this class only computes
on lists of learnings and writes the guideline documents under
``{ophan_dir}/guidelines``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

from ophan.core.config import LearningsConfig
from ophan.core.errors import ProposalApplyError
from ophan.core.logging import get_logger
from ophan.models import ConsolidationResult, Learning
from ophan.utils.time import utc_now

_logger = get_logger("learning_manager")

LEARNINGS_FILENAME = "learnings.md"
LEARNINGS_HEADER = "# Learnings\n\nAutomatically extracted learnings from task execution.\n"

# Singletons referenced at least this often survive the retention window
MIN_REFERENCES_TO_RETAIN = 2


def calculate_similarity(text1: str, text2: str) -> float:
    """Jaccard index over lower-cased whitespace-separated words."""
    words1 = set(text1.lower().split())
    words2 = set(text2.lower().split())
    union = words1 | words2
    if not union:
        return 1.0
    return len(words1 & words2) / len(union)


@dataclass
class AddLearningResult:
    added: bool
    reason: str | None = None
    duplicate_of: Learning | None = None


@dataclass
class GuidelineProposal:
    """A promoted learning rendered as an append to a guideline file."""

    file: str
    content: str
    reason: str
    learning_content: str


class LearningManager:
    """Operations on the learning pool for one project."""

    def __init__(self, ophan_dir: Path, config: LearningsConfig | None = None):
        self.ophan_dir = Path(ophan_dir)
        self.guidelines_dir = self.ophan_dir / "guidelines"
        self.config = config or LearningsConfig()

    @property
    def learnings_file(self) -> Path:
        return self.guidelines_dir / LEARNINGS_FILENAME

    def is_duplicate(self, a: Learning, b: Learning) -> bool:
        # Disjoint word sets never merge, even with a zero threshold
        similarity = calculate_similarity(a.content, b.content)
        return similarity > 0 and similarity >= self.config.similarity_threshold

    def find_duplicate(self, learning: Learning, existing: list[Learning]) -> Learning | None:
        for candidate in existing:
            if self.is_duplicate(learning, candidate):
                return candidate
        return None

    def add_learning(self, learning: Learning, existing: list[Learning]) -> AddLearningResult:
        """Append ``learning`` to learnings.md unless it duplicates an existing one."""
        duplicate = self.find_duplicate(learning, existing)
        if duplicate is not None:
            return AddLearningResult(
                added=False, reason="Duplicate learning detected", duplicate_of=duplicate
            )
        self._append_to_learnings_file(learning)
        return AddLearningResult(added=True)

    def record(self, learnings: list[Learning], new: list[Learning]) -> list[Learning]:
        """Fold new learnings into a pool.

        Novel learnings are appended; a duplicate instead bumps the reference
        count of the learning it matches.
        """
        pool = list(learnings)
        for learning in new:
            result = self.add_learning(learning, pool)
            if result.added:
                pool.append(learning)
                _logger.info("learning_added", learning_id=learning.id)
            elif result.duplicate_of is not None:
                pool = self.increment_reference(pool, result.duplicate_of.id)
                _logger.debug("learning_reinforced", learning_id=result.duplicate_of.id)
        return pool

    @staticmethod
    def increment_reference(learnings: list[Learning], learning_id: str) -> list[Learning]:
        return [
            l.model_copy(update={"references": l.references + 1}) if l.id == learning_id else l
            for l in learnings
        ]

    def group_similar(self, learnings: list[Learning]) -> list[list[Learning]]:
        """Group learnings around seeds.

        A learning joins a group when it is similar to the group's seed,
        not to any member; similarity is not followed transitively.
        """
        groups: list[list[Learning]] = []
        assigned: set[str] = set()
        for seed in learnings:
            if seed.id in assigned:
                continue
            group = [seed]
            assigned.add(seed.id)
            for other in learnings:
                if other.id not in assigned and self.is_duplicate(seed, other):
                    group.append(other)
                    assigned.add(other.id)
            groups.append(group)
        return groups

    def consolidate(self, learnings: list[Learning], now: datetime | None = None) -> ConsolidationResult:
        """Dedupe, promote and prune.

        Each similarity group collapses to its most referenced member. That
        member is promoted when it reaches the promotion threshold, and the
        promoted copy carries the references of every duplicate folded into
        it. A surviving singleton below the threshold is removed when older
        than the retention window with fewer than two references. Finally
        the kept set is capped at ``max_count``, evicting the least
        referenced, oldest first.
        """
        now = now or utc_now()
        cutoff = now - timedelta(days=self.config.retention_days)
        threshold = self.config.promotion_threshold

        kept: list[Learning] = []
        promoted: list[Learning] = []
        removed: list[Learning] = []

        for group in self.group_similar(learnings):
            ranked = sorted(group, key=lambda l: l.references, reverse=True)
            best, duplicates = ranked[0], ranked[1:]
            removed.extend(duplicates)
            if best.references >= threshold:
                total = sum(l.references for l in ranked)
                promoted.append(best.model_copy(update={"promoted": True, "references": total}))
            elif (
                not duplicates
                and best.timestamp < cutoff
                and best.references < MIN_REFERENCES_TO_RETAIN
            ):
                removed.append(best)
            else:
                kept.append(best)

        excess = len(kept) - self.config.max_count
        if excess > 0:
            evict = sorted(kept, key=lambda l: (l.references, l.timestamp))[:excess]
            evict_ids = {l.id for l in evict}
            kept = [l for l in kept if l.id not in evict_ids]
            removed.extend(evict)

        _logger.info(
            "learnings_consolidated",
            kept=len(kept),
            promoted=len(promoted),
            removed=len(removed),
        )
        return ConsolidationResult(kept=kept, promoted=promoted, removed=removed)

    @staticmethod
    def determine_target_file(learning: Learning) -> str:
        content = learning.content.lower()
        impact = learning.guideline_impact.lower()
        if "test" in content or "test" in impact or "coverage" in content:
            return "testing.md"
        return "coding.md"

    @staticmethod
    def format_learning_for_guideline(learning: Learning, now: datetime | None = None) -> str:
        added = (now or utc_now()).isoformat()
        return (
            "## Promoted Learning\n\n"
            f"**Added:** {added}\n"
            f"**References:** {learning.references}\n\n"
            f"{learning.content}\n\n"
            f"**Context:** {learning.context}\n\n"
            "---\n"
        )

    def generate_guideline_proposals(self, promoted: list[Learning]) -> list[GuidelineProposal]:
        return [
            GuidelineProposal(
                file=self.determine_target_file(learning),
                content=self.format_learning_for_guideline(learning),
                reason=f"Learning promoted after {learning.references} references: "
                f"{learning.content[:100]}",
                learning_content=learning.content,
            )
            for learning in promoted
        ]

    def apply_guideline_update(self, file: str, content: str) -> Path:
        """Append ``content`` to ``guidelines/<file>``, creating it if needed.

        Existing guideline text is never rewritten or removed.

        Raises:
            ProposalApplyError: If the file cannot be read or written.
        """
        path = self.guidelines_dir / file
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            existing = path.read_text(encoding="utf-8") if path.exists() else ""
            path.write_text(existing + "\n\n" + content, encoding="utf-8")
        except OSError as e:
            raise ProposalApplyError(f"Failed to update guideline {file}: {e}") from e
        _logger.info("guideline_updated", file=file, appended_chars=len(content))
        return path

    @staticmethod
    def format_learning_entry(learning: Learning) -> str:
        return (
            f"## Learning: {learning.id}\n\n"
            f"{learning.content}\n\n"
            f"**Context:** {learning.context}\n"
            f"**Issue:** {learning.issue}\n"
            f"**Resolution:** {learning.resolution}\n"
            f"**Guideline Impact:** {learning.guideline_impact}\n"
            f"**References:** {learning.references}\n"
            f"**Promoted:** {'Yes' if learning.promoted else 'No'}\n\n"
            "---\n\n"
        )

    def format_learnings(self, learnings: list[Learning]) -> str:
        return "".join(self.format_learning_entry(l) for l in learnings)

    def rewrite_learnings_file(self, learnings: list[Learning], now: datetime | None = None) -> Path:
        """Replace learnings.md with the consolidated pool."""
        stamp = (now or utc_now()).isoformat()
        content = f"{LEARNINGS_HEADER}Last consolidated: {stamp}\n\n---\n\n"
        content += self.format_learnings(learnings)
        self.learnings_file.parent.mkdir(parents=True, exist_ok=True)
        self.learnings_file.write_text(content, encoding="utf-8")
        return self.learnings_file

    def _append_to_learnings_file(self, learning: Learning) -> None:
        path = self.learnings_file
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            content = path.read_text(encoding="utf-8")
        else:
            content = f"{LEARNINGS_HEADER}\n---\n\n"
        path.write_text(content + self.format_learning_entry(learning), encoding="utf-8")
