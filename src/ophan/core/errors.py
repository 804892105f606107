"""Exception hierarchy for Ophan.

All Ophan-specific exceptions inherit from OphanError, enabling callers
to catch broad (OphanError) or narrow (e.g., ExecutorError).
"""

from __future__ import annotations


class OphanError(Exception):
    """Base exception for all Ophan errors."""


class ConfigurationError(OphanError):
    """Raised when the project configuration cannot be read or validated."""


class ExecutorError(OphanError):
    """Raised when the code-generation executor fails unrecoverably.

    Examples: executable missing from PATH, authentication refused,
    budget refused, backend unreachable. The fast loop ends the item as
    ``failed`` and does not retry.
    """

    def __init__(self, message: str, error_type: str = "executor") -> None:
        super().__init__(message)
        self.error_type = error_type


class PreconditionError(OphanError):
    """Raised when an operation is called before its required setup step.

    Examples: running analyses before ``initialize_all``, executing a task
    on an agent that was never initialized.
    """


class DuplicateAgentError(PreconditionError):
    """Raised when registering an agent whose id is already registered."""


class ProposalApplyError(OphanError):
    """Raised when a proposal cannot be written to its target document."""


__all__ = [
    "ConfigurationError",
    "DuplicateAgentError",
    "ExecutorError",
    "OphanError",
    "PreconditionError",
    "ProposalApplyError",
]
