"""``ophan init``: create the ``.ophan/`` layout for a project."""

from __future__ import annotations

from pathlib import Path

import typer
import yaml

from ophan.core.config import CONFIG_FILENAME, ProjectConfig
from ophan.learning.manager import LEARNINGS_HEADER
from ophan.state.paths import OphanPaths
from ophan.state.store import RunState, StateStore

from ..helpers import is_initialized, is_quiet
from ..output import console

STARTER_GUIDELINES: dict[str, str] = {
    "coding.md": (
        "# Coding Guidelines\n\n"
        "- Follow the existing style of the surrounding code.\n"
        "- Keep functions small and focused.\n"
        "- Handle errors explicitly; do not silence them.\n"
    ),
    "testing.md": (
        "# Testing Guidelines\n\n"
        "- Add or update tests for every behavior change.\n"
        "- Run the test suite before declaring a task complete.\n"
    ),
    "context.md": (
        "# Context Guidelines\n\n"
        "Notes on which files are usually needed for tasks in this project.\n"
    ),
    "learnings.md": LEARNINGS_HEADER,
}

STARTER_CRITERIA: dict[str, str] = {
    "quality.md": (
        "# Quality Criteria\n\n"
        "- The change does what the task asks and nothing more.\n"
        "- Tests, lint and type checks pass.\n"
    ),
    "security.md": (
        "# Security Criteria\n\n"
        "- No secrets or credentials in code or logs.\n"
        "- External input is validated.\n"
    ),
    "context-quality.md": (
        "# Context Quality Criteria\n\n"
        "- Hit rate of provided files stays above 70%.\n"
        "- Miss rate stays below 20%.\n"
    ),
}


def write_starter_files(project_root: Path, force: bool = False) -> list[Path]:
    """Create the layout, config, state and starter documents.

    Existing documents are kept unless ``force`` is set.
    """
    paths = OphanPaths(project_root)
    paths.ensure()
    created: list[Path] = []

    config_path = project_root / CONFIG_FILENAME
    if force or not config_path.exists():
        data = ProjectConfig().model_dump(mode="json", exclude={"logging": {"file"}})
        config_path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
        created.append(config_path)

    if force or not paths.state_file.exists():
        StateStore(paths.state_file).save(RunState())
        created.append(paths.state_file)

    for directory, files in ((paths.guidelines_dir, STARTER_GUIDELINES), (paths.criteria_dir, STARTER_CRITERIA)):
        for name, content in files.items():
            path = directory / name
            if force or not path.exists():
                path.write_text(content, encoding="utf-8")
                created.append(path)
    return created


def init(
    project: Path | None = typer.Option(
        None,
        "--project",
        "-p",
        help="Project directory (defaults to the current directory)",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing configuration and starter documents",
    ),
) -> None:
    """Initialize Ophan in a project."""
    project_root = (project or Path.cwd()).resolve()
    project_root.mkdir(parents=True, exist_ok=True)

    if is_initialized(project_root) and not force:
        console.print("[yellow]Ophan is already initialized here. Use --force to reinitialize.[/yellow]")
        raise typer.Exit(1)

    created = write_starter_files(project_root, force=force)
    if not is_quiet():
        console.print("[green]Ophan initialized.[/green]")
        for path in created:
            console.print(f"  [dim]created[/dim] {path.relative_to(project_root)}")
        console.print('\nRun [bold]ophan task "your first task"[/bold] to begin.')
