"""Error taxonomy for analysis runs."""

from __future__ import annotations


class GoauditError(Exception):
    """Base class for all goaudit errors."""


class ResolutionError(GoauditError):
    """A symbol's type could not be determined; the symbol is skipped."""

    def __init__(self, handle: str, reason: str) -> None:
        super().__init__(f"{handle}: {reason}")
        self.handle = handle
        self.reason = reason


class ConfigurationError(GoauditError):
    """Invalid caller input (config or program document); fails the run."""


class ProgramLoadError(ConfigurationError):
    """The program document is malformed."""


class InternalInvariantError(GoauditError):
    """A computed result violates an engine invariant (engine bug)."""

    def __init__(self, handle: str, detail: str) -> None:
        super().__init__(f"{handle}: {detail}")
        self.handle = handle
        self.detail = detail


__all__ = [
    "ConfigurationError",
    "GoauditError",
    "InternalInvariantError",
    "ProgramLoadError",
    "ResolutionError",
]
