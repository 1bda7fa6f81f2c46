"""Run report aggregating per-resource outcomes."""
from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..exit_codes import ExitCode
from .models import ActionType, OutcomeStatus, ReportEntry


@dataclass(slots=True, frozen=True)
class RunSummary:
    """Counts derived from the report entries."""

    total: int
    by_outcome: Mapping[OutcomeStatus, int]
    by_action: Mapping[ActionType, int]
    changed: int
    exit_code: int

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly representation."""
        return {
            "total": self.total,
            "outcomes": {status.value: count for status, count in self.by_outcome.items()},
            "actions": {kind.value: count for kind, count in self.by_action.items()},
            "changed": self.changed,
            "exit_code": self.exit_code,
        }


def summarize(entries: Iterable[ReportEntry]) -> RunSummary:
    """Compute totals per outcome and per action type."""
    by_outcome = {status: 0 for status in OutcomeStatus}
    by_action = {kind: 0 for kind in ActionType}
    total = 0
    changed = 0
    for entry in entries:
        total += 1
        by_outcome[entry.outcome.status] += 1
        if entry.action is not None:
            by_action[entry.action] += 1
            if entry.action is not ActionType.NOOP and entry.outcome.status is OutcomeStatus.SUCCESS:
                changed += 1
    exit_code = ExitCode.FAILED if by_outcome[OutcomeStatus.FAILED] else ExitCode.OK
    return RunSummary(
        total=total,
        by_outcome=by_outcome,
        by_action=by_action,
        changed=changed,
        exit_code=int(exit_code),
    )


def _entry_to_dict(entry: ReportEntry) -> dict[str, Any]:
    outcome = entry.outcome
    return {
        "key": entry.key,
        "kind": entry.kind.value,
        "identity": entry.identity,
        "action": entry.action.value if entry.action is not None else None,
        "rationale": entry.rationale,
        "steps": list(entry.steps),
        "notes": list(entry.notes),
        "outcome": outcome.status.value,
        "reason": outcome.reason,
        "category": outcome.category.value if outcome.category is not None else None,
        "detail": outcome.detail,
        "duration_ms": entry.duration_ms,
    }


@dataclass(slots=True)
class RunReport:
    """Ordered record of what happened to every resource in one run.

    The report never raises; the caller decides how to turn it into an exit
    status (usually through :attr:`exit_code`).
    """

    entries: list[ReportEntry] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def record(self, entry: ReportEntry) -> None:
        """Append *entry* in execution order."""
        self.entries.append(entry)

    def get(self, key: str) -> ReportEntry | None:
        """Return the entry recorded for resource *key*, if any."""
        for entry in self.entries:
            if entry.key == key:
                return entry
        return None

    def summary(self) -> RunSummary:
        """Return counts by outcome and by action type."""
        return summarize(self.entries)

    def failures(self) -> Sequence[ReportEntry]:
        """Return the entries whose outcome failed."""
        return tuple(entry for entry in self.entries if entry.outcome.is_failure)

    def skipped(self) -> Sequence[ReportEntry]:
        """Return the entries that were skipped (blocked or dry-run)."""
        return tuple(
            entry for entry in self.entries if entry.outcome.status is OutcomeStatus.SKIPPED
        )

    @property
    def has_failures(self) -> bool:
        """Return ``True`` when at least one resource failed."""
        return any(entry.outcome.is_failure for entry in self.entries)

    @property
    def exit_code(self) -> int:
        """Return 0 when nothing failed, 1 otherwise."""
        return int(ExitCode.FAILED if self.has_failures else ExitCode.OK)

    @property
    def changed_count(self) -> int:
        """Return how many resources were successfully changed."""
        return self.summary().changed

    def to_dict(self) -> dict[str, Any]:
        """Return the full report as JSON-serialisable data."""
        return {
            "metadata": dict(self.metadata),
            "summary": self.summary().to_dict(),
            "entries": [_entry_to_dict(entry) for entry in self.entries],
        }

    def summary_line(self) -> str:
        """Return a one-line human summary of the run."""
        summary = self.summary()
        counts = summary.by_outcome
        line = (
            f"{summary.total} resources: {summary.changed} changed, "
            f"{counts[OutcomeStatus.SUCCESS]} ok, {counts[OutcomeStatus.FAILED]} failed, "
            f"{counts[OutcomeStatus.SKIPPED]} skipped"
        )
        return line


__all__ = ["RunReport", "RunSummary", "summarize"]
