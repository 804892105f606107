"""``ophan review``: run the review pass, then decide its proposals."""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich.prompt import Prompt

from ophan.api import run_review
from ophan.models import Proposal
from ophan.review.approval import ReviewDecision, ReviewPolicy, review_proposals
from ophan.review.slow_loop import review_due
from ophan.state.paths import OphanPaths
from ophan.state.store import StateStore

from ..helpers import is_quiet, load_config_or_exit, resolve_project
from ..output import console, proposal_panel

_CHOICES = {"a": "approve", "r": "reject", "e": "edit", "s": "skip", "q": "quit"}


def rich_review_prompt(proposal: Proposal, position: int, total: int) -> ReviewDecision:
    """Ask on the console what to do with one proposal."""
    console.print(proposal_panel(proposal, position, total))
    key = Prompt.ask(
        "[A]pprove, [R]eject, [E]dit, [S]kip, [Q]uit",
        choices=list(_CHOICES),
        default="s",
        console=console,
    )
    action = _CHOICES[key]
    if action == "reject":
        return ReviewDecision("reject", feedback=Prompt.ask("Why are you rejecting this proposal?", console=console))
    if action == "edit":
        console.print("Enter the replacement change; finish with a line containing only '.'")
        lines: list[str] = []
        while (line := console.input()) != ".":
            lines.append(line)
        return ReviewDecision("edit", edited_change="\n".join(lines))
    return ReviewDecision(action)  # type: ignore[arg-type]


def review(
    project: Path | None = typer.Option(None, "--project", "-p", help="Project directory"),
    force: bool = typer.Option(False, "--force", "-f", help="Run even if the task threshold is not reached"),
    auto_apply: bool = typer.Option(
        False,
        "--auto-apply",
        help="Apply guideline proposals without asking; criteria still need a human",
    ),
    non_interactive: bool = typer.Option(
        False,
        "--non-interactive",
        help="Queue every proposal for later instead of asking",
    ),
) -> None:
    """Run the review pass: consolidate learnings, write a digest, propose guidance edits."""
    project_root = resolve_project(project, console)
    config = load_config_or_exit(project_root, console)
    store = StateStore(OphanPaths(project_root).state_file)

    state = store.load()
    if not force and not review_due(state, config):
        console.print(
            f"Only {state.tasks_since_review} tasks since last review "
            f"(threshold: {config.outer_loop.triggers.after_tasks}). Use --force to run anyway."
        )
        return

    def on_progress(message: str) -> None:
        if not is_quiet():
            console.print(f"[dim]{message}[/dim]")

    result = asyncio.run(
        run_review(project_root, auto_apply_guidelines=auto_apply, config=config, on_progress=on_progress)
    )

    if not is_quiet():
        console.print("\n[bold]Review complete[/bold]")
        console.print(f"  Patterns detected: {len(result.patterns)}")
        console.print(f"  Proposals: {len(result.proposals)}")
        c = result.consolidation
        console.print(f"  Learnings kept/promoted/removed: {len(c.kept)}/{len(c.promoted)}/{len(c.removed)}")
        for target in result.guidelines_updated:
            console.print(f"  [green]updated[/green] {target}")
        if result.digest_path:
            console.print(f"  Digest: {result.digest_path}")

    if not result.proposals:
        return

    if non_interactive:
        policy = ReviewPolicy.NON_INTERACTIVE_QUEUE_ALL
    elif auto_apply:
        policy = ReviewPolicy.AUTO_APPROVE_GUIDELINES_ONLY
    else:
        policy = ReviewPolicy.INTERACTIVE
    outcome = review_proposals(
        result.proposals,
        policy,
        OphanPaths(project_root).ophan_dir,
        prompt=rich_review_prompt if policy == ReviewPolicy.INTERACTIVE else None,
    )

    # Decided proposals leave the queue; skipped ones stay pending
    state = store.load()
    state.remove_proposals({p.id for p in (*outcome.approved, *outcome.rejected)})
    store.save(state)

    s = outcome.summary
    if not is_quiet():
        console.print(
            f"\nApproved {s.approved_count}, rejected {s.rejected_count}, "
            f"skipped {s.skipped_count}. {len(state.pending_proposals)} proposal(s) pending."
        )
