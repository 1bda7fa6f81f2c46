"""Data models shared by the probe, reconcile and execute phases."""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any


class ResourceKind(str, Enum):
    """Kinds of host state that provctl knows how to converge."""

    DIRECTORY = "directory"
    FILE_CONTENT = "file"
    SYSTEM_USER = "user"
    FIREWALL_PORT = "firewall_port"
    SERVICE_UNIT = "service"
    REPO_DEFINITION = "repo"
    PACKAGE = "package"
    REPO_METADATA = "repo_metadata"
    BINARY_RELEASE = "binary"
    DCONF_DATABASE = "dconf"

    @classmethod
    def parse(cls, raw: object) -> ResourceKind:
        """Return the kind named by *raw* or raise ``ValueError``."""
        text = str(raw).strip().lower().replace("-", "_")
        for kind in cls:
            if kind.value == text:
                return kind
        raise ValueError(f"unknown resource kind {raw!r}")


def resource_key(kind: ResourceKind, identity: str) -> str:
    """Return the ``<kind>:<identity>`` key used for dependencies and reports."""
    return f"{kind.value}:{identity}"


def _freeze(value: object) -> object:
    if isinstance(value, Mapping):
        return MappingProxyType({str(key): _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


@dataclass(slots=True, frozen=True)
class Resource:
    """One declared unit of desired host state.

    Attributes are frozen on construction so a resource cannot change while a
    run is in flight.
    """

    kind: ResourceKind
    identity: str
    desired_attributes: Mapping[str, Any] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    index: int = 0

    def __post_init__(self) -> None:
        """Freeze attribute mappings and normalise dependency keys."""
        object.__setattr__(self, "desired_attributes", _freeze(dict(self.desired_attributes)))
        object.__setattr__(self, "depends_on", tuple(str(dep) for dep in self.depends_on))

    @property
    def key(self) -> str:
        """Return the unique ``<kind>:<identity>`` key."""
        return resource_key(self.kind, self.identity)

    def attr(self, name: str, default: Any = None) -> Any:
        """Return a desired attribute or *default*."""
        return self.desired_attributes.get(name, default)


@dataclass(slots=True, frozen=True)
class ObservedState:
    """Current host state for one resource.

    ``exists`` is ``False`` when the probe found nothing; attribute values of
    ``None`` mean the host has no value for that attribute.
    """

    exists: bool
    attributes: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def absent(cls) -> ObservedState:
        """Return the observed state of a resource that does not exist."""
        return cls(exists=False)

    def get(self, name: str, default: Any = None) -> Any:
        """Return an observed attribute or *default*."""
        return self.attributes.get(name, default)


class ActionType(str, Enum):
    """What the executor must do to converge a resource."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "noop"


@dataclass(slots=True, frozen=True)
class Action:
    """Action computed for one resource by the reconciler."""

    type: ActionType
    resource: Resource
    rationale: str
    changes: tuple[str, ...] = ()
    steps: tuple[str, ...] = ()
    notes: tuple[str, ...] = ()

    @property
    def is_noop(self) -> bool:
        """Return ``True`` when the host already matches the declaration."""
        return self.type is ActionType.NOOP

    @property
    def changes_host(self) -> bool:
        """Return ``True`` when executing the action mutates the host."""
        return not self.is_noop


class OutcomeStatus(str, Enum):
    """Final status of one resource within a run."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class ErrorCategory(str, Enum):
    """Which phase produced a failed or skipped outcome."""

    PROBE = "probe"
    EXECUTION = "execution"
    DEPENDENCY = "dependency"
    DRY_RUN = "dry-run"


@dataclass(slots=True, frozen=True)
class Outcome:
    """Result of executing (or not executing) an action."""

    status: OutcomeStatus
    reason: str | None = None
    category: ErrorCategory | None = None
    detail: str | None = None

    @classmethod
    def success(cls) -> Outcome:
        """Return a successful outcome."""
        return cls(status=OutcomeStatus.SUCCESS)

    @classmethod
    def failed(
        cls,
        reason: str,
        *,
        category: ErrorCategory = ErrorCategory.EXECUTION,
        detail: str | None = None,
    ) -> Outcome:
        """Return a failed outcome with *reason*."""
        return cls(status=OutcomeStatus.FAILED, reason=reason, category=category, detail=detail)

    @classmethod
    def skipped(
        cls,
        reason: str,
        *,
        category: ErrorCategory = ErrorCategory.DEPENDENCY,
    ) -> Outcome:
        """Return a skipped outcome with *reason*."""
        return cls(status=OutcomeStatus.SKIPPED, reason=reason, category=category)

    @property
    def is_failure(self) -> bool:
        """Return ``True`` for failed outcomes."""
        return self.status is OutcomeStatus.FAILED


@dataclass(slots=True, frozen=True)
class ReportEntry:
    """One itemised line of a run report."""

    key: str
    kind: ResourceKind
    identity: str
    action: ActionType | None
    outcome: Outcome
    rationale: str | None = None
    steps: Sequence[str] = ()
    notes: Sequence[str] = ()
    duration_ms: int | None = None


__all__ = [
    "Action",
    "ActionType",
    "ErrorCategory",
    "ObservedState",
    "Outcome",
    "OutcomeStatus",
    "ReportEntry",
    "Resource",
    "ResourceKind",
    "resource_key",
]
