"""Convergence engine: validate, order, probe, reconcile and execute."""
from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import replace
from typing import Any

from ..errors import DependencyBlocked, ProbeError
from .executor import Executor
from .graph import build_dependency_graph, topological_order
from .models import (
    Action,
    ErrorCategory,
    Outcome,
    OutcomeStatus,
    ReportEntry,
    Resource,
)
from .probes import Prober
from .reconcile import escalate, reconcile
from .report import RunReport
from .validation import validate_resources

LOGGER = logging.getLogger(__name__)


def _duration_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _blocks_dependents(outcome: Outcome) -> bool:
    if outcome.status is OutcomeStatus.FAILED:
        return True
    return (
        outcome.status is OutcomeStatus.SKIPPED
        and outcome.category is not ErrorCategory.DRY_RUN
    )


class ConvergenceEngine:
    """Drive one convergence pass over a set of declared resources.

    Resources are validated up front (raising :class:`ValidationError`),
    ordered by their dependency graph and processed one at a time. A
    resource whose dependency failed or was skipped is itself skipped
    without being probed.
    """

    def __init__(self, prober: Prober, executor: Executor) -> None:
        """Store the probe and execution collaborators."""
        self.prober = prober
        self.executor = executor

    def run(
        self,
        resources: Sequence[Resource],
        *,
        metadata: Mapping[str, Any] | None = None,
    ) -> RunReport:
        """Converge *resources* and return the run report."""
        return self._converge(resources, execute=True, metadata=metadata)

    def plan(
        self,
        resources: Sequence[Resource],
        *,
        metadata: Mapping[str, Any] | None = None,
    ) -> RunReport:
        """Probe and reconcile *resources* without executing anything."""
        return self._converge(resources, execute=False, metadata=metadata)

    # ------------------------------------------------------------------
    def _converge(
        self,
        resources: Sequence[Resource],
        *,
        execute: bool,
        metadata: Mapping[str, Any] | None,
    ) -> RunReport:
        validate_resources(resources)
        graph = build_dependency_graph(resources)
        ordered = topological_order(resources, graph)

        dry_run = not execute or self.executor.dry_run
        report = RunReport(metadata={**(metadata or {}), "dry_run": dry_run})
        outcomes: dict[str, Outcome] = {}
        changed: set[str] = set()
        started = time.perf_counter()

        for resource in ordered:
            start = time.perf_counter()
            deps = graph.get(resource.key, ())
            entry = self._process(resource, deps, outcomes, changed, execute=execute)
            entry = replace(entry, duration_ms=_duration_ms(start))
            outcomes[resource.key] = entry.outcome
            report.record(entry)
            LOGGER.debug(
                "%s: %s -> %s",
                resource.key,
                entry.action.value if entry.action else "-",
                entry.outcome.status.value,
            )

        report.metadata["duration_ms"] = _duration_ms(started)
        return report

    def _process(
        self,
        resource: Resource,
        deps: Sequence[str],
        outcomes: Mapping[str, Outcome],
        changed: set[str],
        *,
        execute: bool,
    ) -> ReportEntry:
        blockers = {
            dep: outcomes[dep].status.value
            for dep in deps
            if dep in outcomes and _blocks_dependents(outcomes[dep])
        }
        if blockers:
            blocked = DependencyBlocked(resource.key, blockers)
            return _entry(resource, None, Outcome.skipped(str(blocked)))

        try:
            observed = self.prober.observe(resource)
        except ProbeError as exc:
            return _entry(
                resource,
                None,
                Outcome.failed(exc.reason, category=ErrorCategory.PROBE, detail=exc.detail),
            )

        action = reconcile(resource, observed)
        action = escalate(action, [dep for dep in deps if dep in changed])

        if action.is_noop:
            outcome = Outcome.success()
        elif execute:
            outcome = self.executor.execute(action)
        else:
            outcome = Outcome.skipped("dry-run", category=ErrorCategory.DRY_RUN)

        if action.changes_host and (
            outcome.status is OutcomeStatus.SUCCESS or outcome.category is ErrorCategory.DRY_RUN
        ):
            changed.add(resource.key)
        return _entry(resource, action, outcome)


def _entry(resource: Resource, action: Action | None, outcome: Outcome) -> ReportEntry:
    return ReportEntry(
        key=resource.key,
        kind=resource.kind,
        identity=resource.identity,
        action=action.type if action is not None else None,
        outcome=outcome,
        rationale=action.rationale if action is not None else None,
        steps=action.steps if action is not None else (),
        notes=action.notes if action is not None else (),
    )


__all__ = ["ConvergenceEngine"]
