"""Convergence core: resource model, probes, reconciler, executor and report."""

from __future__ import annotations

from .engine import ConvergenceEngine
from .executor import Executor
from .graph import build_dependency_graph, find_cycles, topological_order
from .models import (
    Action,
    ActionType,
    ErrorCategory,
    ObservedState,
    Outcome,
    OutcomeStatus,
    ReportEntry,
    Resource,
    ResourceKind,
    resource_key,
)
from .probes import Prober
from .reconcile import escalate, normalize_content, reconcile
from .report import RunReport, RunSummary
from .validation import check_resource, validate_resources

__all__ = [
    "Action",
    "ActionType",
    "ConvergenceEngine",
    "ErrorCategory",
    "Executor",
    "ObservedState",
    "Outcome",
    "OutcomeStatus",
    "Prober",
    "ReportEntry",
    "Resource",
    "ResourceKind",
    "RunReport",
    "RunSummary",
    "build_dependency_graph",
    "check_resource",
    "escalate",
    "find_cycles",
    "normalize_content",
    "reconcile",
    "resource_key",
    "topological_order",
    "validate_resources",
]
