"""Reconciler: pure diff of desired against observed state.

Nothing in this module touches the host. Comparisons are exact after trimming
trailing whitespace from text content, so repeated runs cannot oscillate.
"""
from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import replace

from .models import Action, ActionType, ObservedState, Resource, ResourceKind

_OWNERSHIP_KEYS = ("owner", "group", "mode")


def normalize_content(text: str | None) -> str | None:
    """Trim trailing whitespace so editors' final newlines never cause drift."""
    if text is None:
        return None
    return text.rstrip()


def _format_value(name: str, value: object) -> str:
    if name == "mode" and isinstance(value, int):
        return f"{value:04o}"
    return str(value)


def _ownership_changes(desired: Resource, observed: ObservedState) -> list[str]:
    changes: list[str] = []
    for name in _OWNERSHIP_KEYS:
        wanted = desired.attr(name)
        if wanted is None:
            continue
        actual = observed.get(name)
        if actual != wanted:
            changes.append(
                f"{name} {_format_value(name, actual)} -> {_format_value(name, wanted)}"
            )
    return changes


def _action(
    kind: ActionType,
    desired: Resource,
    rationale: str,
    *,
    changes: Sequence[str] = (),
    steps: Sequence[str] = (),
    notes: Sequence[str] = (),
) -> Action:
    return Action(
        type=kind,
        resource=desired,
        rationale=rationale,
        changes=tuple(changes),
        steps=tuple(steps),
        notes=tuple(notes),
    )


def _noop(desired: Resource, rationale: str = "in desired state", **kwargs: Sequence[str]) -> Action:
    return _action(ActionType.NOOP, desired, rationale, **kwargs)


def _reconcile_directory(desired: Resource, observed: ObservedState) -> Action:
    if not observed.exists:
        return _action(ActionType.CREATE, desired, "directory absent", steps=("mkdir",))
    if not observed.get("is_dir", False):
        return _action(
            ActionType.UPDATE,
            desired,
            "path exists but is not a directory",
            changes=("type",),
            steps=("mkdir",),
        )
    changes = _ownership_changes(desired, observed)
    if changes:
        return _action(
            ActionType.UPDATE,
            desired,
            "; ".join(changes),
            changes=changes,
            steps=("set-attributes",),
        )
    return _noop(desired)


def _reconcile_file(desired: Resource, observed: ObservedState) -> Action:
    if desired.attr("ensure", "present") == "absent":
        if observed.exists:
            return _action(ActionType.DELETE, desired, "declared absent", steps=("remove",))
        return _noop(desired, "already absent")
    if not observed.exists:
        return _action(ActionType.CREATE, desired, "file absent", steps=("write",))
    if not observed.get("is_file", False):
        return _action(
            ActionType.UPDATE,
            desired,
            "path exists but is not a regular file",
            changes=("type",),
            steps=("write",),
        )
    changes: list[str] = []
    if normalize_content(observed.get("content")) != normalize_content(desired.attr("content")):
        changes.append("content differs")
    ownership = _ownership_changes(desired, observed)
    changes.extend(ownership)
    if not changes:
        return _noop(desired)
    steps = ("write",) if changes[0] == "content differs" else ("set-attributes",)
    return _action(ActionType.UPDATE, desired, "; ".join(changes), changes=changes, steps=steps)


def _reconcile_user(desired: Resource, observed: ObservedState) -> Action:
    if not observed.exists:
        return _action(ActionType.CREATE, desired, "user absent", steps=("useradd",))
    notes: list[str] = []
    for name, observed_name in (("home", "home"), ("shell", "shell"), ("group", "primary_group")):
        wanted = desired.attr(name)
        actual = observed.get(observed_name)
        if wanted and actual and str(actual) != str(wanted):
            notes.append(f"{name} is '{actual}', declared '{wanted}' (left unchanged)")
    return _noop(desired, "user exists", notes=notes)


def _reconcile_firewall_port(desired: Resource, observed: ObservedState) -> Action:
    if observed.get("open", observed.exists):
        return _noop(desired, "port already open")
    return _action(
        ActionType.CREATE,
        desired,
        "port not open",
        steps=("add-port", "reload"),
    )


def _reconcile_service(desired: Resource, observed: ObservedState) -> Action:
    kind: ActionType | None = None
    changes: list[str] = []
    steps: list[str] = []

    wanted_content = desired.attr("content")
    if wanted_content is not None:
        current = observed.get("content")
        if current is None:
            kind = ActionType.CREATE
            changes.append("unit file absent")
            steps.extend(("write-unit", "daemon-reload"))
        elif normalize_content(current) != normalize_content(wanted_content):
            kind = ActionType.UPDATE
            changes.append("unit content differs")
            steps.extend(("write-unit", "daemon-reload"))

    if desired.attr("enabled", True) and not observed.get("enabled", False):
        changes.append("unit not enabled")
        steps.append("enable")

    if desired.attr("running", True):
        if not observed.get("active", False):
            changes.append("service not running")
            steps.append("start")
        elif kind is ActionType.UPDATE:
            steps.append("restart")

    if not steps:
        return _noop(desired, "unit current and running")
    return _action(
        kind or ActionType.CREATE,
        desired,
        "; ".join(changes),
        changes=changes,
        steps=steps,
    )


def _reconcile_package(desired: Resource, observed: ObservedState) -> Action:
    if observed.exists:
        return _noop(desired, "package installed")
    return _action(ActionType.CREATE, desired, "package not installed", steps=("install",))


def _reconcile_repo_metadata(desired: Resource, observed: ObservedState) -> Action:
    if observed.exists:
        return _noop(desired, "repository metadata present")
    return _action(
        ActionType.CREATE, desired, "repository metadata missing", steps=("createrepo",)
    )


def _reconcile_binary(desired: Resource, observed: ObservedState) -> Action:
    if not observed.exists:
        return _action(ActionType.CREATE, desired, "binary absent", steps=("download", "install"))
    wanted_digest = desired.attr("sha256")
    if not observed.get("is_file", False) or (
        wanted_digest and observed.get("sha256") != wanted_digest
    ):
        return _action(
            ActionType.UPDATE,
            desired,
            "binary checksum differs",
            changes=("sha256",),
            steps=("download", "install"),
        )
    changes = _ownership_changes(desired, observed)
    if changes:
        return _action(
            ActionType.UPDATE,
            desired,
            "; ".join(changes),
            changes=changes,
            steps=("set-attributes",),
        )
    return _noop(desired)


def _reconcile_dconf(desired: Resource, observed: ObservedState) -> Action:
    if not observed.exists:
        return _action(
            ActionType.CREATE, desired, "database not compiled", steps=("dconf-update",)
        )
    if observed.get("stale", False):
        return _action(
            ActionType.UPDATE,
            desired,
            "keyfiles newer than database",
            changes=("stale",),
            steps=("dconf-update",),
        )
    return _noop(desired, "database current")


_POLICIES: dict[ResourceKind, Callable[[Resource, ObservedState], Action]] = {
    ResourceKind.DIRECTORY: _reconcile_directory,
    ResourceKind.FILE_CONTENT: _reconcile_file,
    ResourceKind.REPO_DEFINITION: _reconcile_file,
    ResourceKind.SYSTEM_USER: _reconcile_user,
    ResourceKind.FIREWALL_PORT: _reconcile_firewall_port,
    ResourceKind.SERVICE_UNIT: _reconcile_service,
    ResourceKind.PACKAGE: _reconcile_package,
    ResourceKind.REPO_METADATA: _reconcile_repo_metadata,
    ResourceKind.BINARY_RELEASE: _reconcile_binary,
    ResourceKind.DCONF_DATABASE: _reconcile_dconf,
}


def reconcile(desired: Resource, observed: ObservedState) -> Action:
    """Return the action that moves *observed* to *desired*."""
    return _POLICIES[desired.kind](desired, observed)


def escalate(action: Action, changed_dependencies: Sequence[str]) -> Action:
    """Upgrade *action* when upstream resources changed during this run.

    Services declared with ``restart_on_change`` restart when a dependency
    changed, and dconf databases are recompiled after their keyfiles change.
    """
    if not changed_dependencies:
        return action
    resource = action.resource
    trigger = f"dependency changed: {', '.join(changed_dependencies)}"

    if resource.kind is ResourceKind.SERVICE_UNIT:
        if not resource.attr("restart_on_change", False) or not resource.attr("running", True):
            return action
        if "start" in action.steps or "restart" in action.steps:
            return action
        if action.is_noop:
            return replace(
                action,
                type=ActionType.UPDATE,
                rationale=trigger,
                changes=(trigger,),
                steps=("restart",),
            )
        return replace(
            action,
            rationale=f"{action.rationale}; {trigger}",
            changes=(*action.changes, trigger),
            steps=(*action.steps, "restart"),
        )

    if resource.kind is ResourceKind.DCONF_DATABASE and action.is_noop:
        return replace(
            action,
            type=ActionType.UPDATE,
            rationale=trigger,
            changes=(trigger,),
            steps=("dconf-update",),
        )
    return action


__all__ = ["escalate", "normalize_content", "reconcile"]
