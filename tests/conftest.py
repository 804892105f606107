"""Pytest fixtures for Ophan tests."""

from __future__ import annotations

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
import structlog

from ophan.core.config import ProjectConfig
from ophan.state.paths import OphanPaths


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset structlog and root handlers around each test."""
    import ophan.cli.helpers as helpers

    helpers.reset_logging_state()
    structlog.reset_defaults()
    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    helpers.reset_logging_state()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """A project with an empty ``.ophan/`` layout."""
    root = tmp_path / "project"
    OphanPaths(root).ensure()
    return root


@pytest.fixture
def ophan_dir(project_root: Path) -> Path:
    return OphanPaths(project_root).ophan_dir


@pytest.fixture
def config() -> ProjectConfig:
    """Defaults with the executor-backed checks switched off."""
    cfg = ProjectConfig()
    cfg.inner_loop.criteria_check = False
    cfg.inner_loop.learning_extraction = "heuristic"
    cfg.outer_loop.log_analysis = False
    return cfg
