"""Run-state persistence and the ``.ophan`` directory layout."""

from ophan.state.paths import OphanPaths
from ophan.state.store import STATE_VERSION, RunState, StateStore

__all__ = ["STATE_VERSION", "OphanPaths", "RunState", "StateStore"]
