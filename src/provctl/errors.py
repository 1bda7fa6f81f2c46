"""Error taxonomy shared by the convergence engine and its providers."""
from __future__ import annotations

from collections.abc import Iterable, Mapping


class ProvctlError(RuntimeError):
    """Base class for all provctl errors."""


class ValidationError(ProvctlError):
    """Raised when the declared resources are malformed.

    Every problem found during validation is collected into :attr:`problems`
    so a misconfigured manifest is reported completely in a single pass.
    """

    def __init__(self, problems: Iterable[str]) -> None:
        """Store the collected problems and build a readable message."""
        self.problems: tuple[str, ...] = tuple(problems)
        count = len(self.problems)
        noun = "problem" if count == 1 else "problems"
        lines = [f"Manifest validation failed with {count} {noun}:"]
        lines.extend(f"  - {problem}" for problem in self.problems)
        super().__init__("\n".join(lines))


class ProbeError(ProvctlError):
    """Raised when the current state of a resource cannot be read."""

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        """Record the short reason and an optional detail string."""
        super().__init__(message)
        self.reason = message
        self.detail = detail


class ExecutionError(ProvctlError):
    """Raised when an external command used to apply an action fails."""

    def __init__(
        self,
        message: str,
        *,
        command: Iterable[str] | None = None,
        returncode: int | None = None,
    ) -> None:
        """Record the failing command and its exit status when known."""
        super().__init__(message)
        self.command = tuple(command) if command is not None else None
        self.returncode = returncode


class DependencyBlocked(ProvctlError):
    """Raised when an upstream resource did not converge."""

    def __init__(self, key: str, blockers: Mapping[str, str]) -> None:
        """Record which dependencies blocked *key* and why."""
        self.key = key
        self.blockers = dict(blockers)
        joined = ", ".join(sorted(self.blockers))
        super().__init__(f"blocked by {joined}")


__all__ = [
    "DependencyBlocked",
    "ExecutionError",
    "ProbeError",
    "ProvctlError",
    "ValidationError",
]
