"""Ophan - self-improving propose, verify, refine orchestration.

A fast loop drives a single work item to convergence through repeated
executor attempts; a slow loop mines item history to refine the guidance
and criteria documents that steer the fast loop.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
