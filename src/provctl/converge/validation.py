"""Well-formedness checks run before any probing happens."""
from __future__ import annotations

import re
from collections import Counter
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from ..errors import ValidationError
from .graph import build_dependency_graph, find_cycles
from .models import Resource, ResourceKind

_USER_NAME = re.compile(r"^[a-z_][a-z0-9_-]{0,31}\$?$")
_PACKAGE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+-]*$")
_UNIT_NAME = re.compile(r"^[A-Za-z0-9:_.@\\-]+\.(service|socket|timer)$")
_SHA256 = re.compile(r"^[0-9a-f]{64}$")
_PROTOCOLS = {"tcp", "udp", "sctp"}
_ENSURE = {"present", "absent"}


def _is_str(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _is_bool(value: object) -> bool:
    return isinstance(value, bool)


def _is_optional_bool(value: object) -> bool:
    return value is None or isinstance(value, bool)


def _is_optional_str(value: object) -> bool:
    return value is None or isinstance(value, str)


def _is_mode(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 0o7777


def _is_abs_path(value: object) -> bool:
    return isinstance(value, str) and value.startswith("/")


def _is_text(value: object) -> bool:
    return isinstance(value, str)


@dataclass(slots=True, frozen=True)
class KindSchema:
    """Allowed attributes for one resource kind."""

    identity: Callable[[str], bool]
    identity_hint: str
    required: Mapping[str, Callable[[object], bool]]
    optional: Mapping[str, Callable[[object], bool]]
    required_when_present: tuple[str, ...] = ()


_OWNERSHIP: dict[str, Callable[[object], bool]] = {
    "owner": _is_str,
    "group": _is_str,
    "mode": _is_mode,
}

SCHEMAS: dict[ResourceKind, KindSchema] = {
    ResourceKind.DIRECTORY: KindSchema(
        identity=_is_abs_path,
        identity_hint="an absolute path",
        required={},
        optional=dict(_OWNERSHIP),
    ),
    ResourceKind.FILE_CONTENT: KindSchema(
        identity=_is_abs_path,
        identity_hint="an absolute path",
        required={},
        optional={**_OWNERSHIP, "content": _is_text, "ensure": lambda v: v in _ENSURE},
        required_when_present=("content",),
    ),
    ResourceKind.SYSTEM_USER: KindSchema(
        identity=lambda value: bool(_USER_NAME.match(value)),
        identity_hint="a valid user name",
        required={},
        optional={
            "home": _is_abs_path,
            "shell": _is_abs_path,
            "system": _is_bool,
            "group": _is_str,
        },
    ),
    ResourceKind.FIREWALL_PORT: KindSchema(
        identity=lambda value: bool(re.match(r"^\d+/[a-z]+$", value)),
        identity_hint="'<port>/<protocol>'",
        required={
            "port": lambda v: isinstance(v, int) and not isinstance(v, bool) and 0 < v < 65536,
            "protocol": lambda v: v in _PROTOCOLS,
        },
        optional={"zone": _is_optional_str},
    ),
    ResourceKind.SERVICE_UNIT: KindSchema(
        identity=lambda value: bool(_UNIT_NAME.match(value)),
        identity_hint="a systemd unit name",
        required={},
        optional={
            "content": _is_text,
            "path": _is_abs_path,
            "enabled": _is_bool,
            "running": _is_bool,
            "restart_on_change": _is_bool,
        },
    ),
    ResourceKind.REPO_DEFINITION: KindSchema(
        identity=lambda value: bool(re.match(r"^[A-Za-z0-9._:-]+$", value)),
        identity_hint="a repository id",
        required={"path": _is_abs_path},
        optional={
            "content": _is_text,
            "name": _is_str,
            "baseurl": _is_str,
            "enabled": _is_bool,
            "gpgcheck": _is_bool,
            "repo_gpgcheck": _is_optional_bool,
            "gpgkey": _is_optional_str,
            "sslverify": _is_optional_bool,
            "ensure": lambda v: v in _ENSURE,
            "owner": _is_str,
            "group": _is_str,
            "mode": _is_mode,
        },
        required_when_present=("content", "baseurl"),
    ),
    ResourceKind.PACKAGE: KindSchema(
        identity=lambda value: bool(_PACKAGE_NAME.match(value)),
        identity_hint="a package name",
        required={},
        optional={},
    ),
    ResourceKind.REPO_METADATA: KindSchema(
        identity=_is_abs_path,
        identity_hint="an absolute path",
        required={},
        optional={},
    ),
    ResourceKind.BINARY_RELEASE: KindSchema(
        identity=_is_abs_path,
        identity_hint="an absolute path",
        required={"url": _is_str},
        optional={
            **_OWNERSHIP,
            "member": _is_str,
            "sha256": lambda v: isinstance(v, str) and bool(_SHA256.match(v)),
        },
    ),
    ResourceKind.DCONF_DATABASE: KindSchema(
        identity=lambda value: bool(re.match(r"^[A-Za-z0-9_-]+$", value)),
        identity_hint="a dconf database name",
        required={"db_dir": _is_abs_path},
        optional={},
    ),
}


def _describe(resource: Resource) -> str:
    label = resource.identity or "<empty>"
    return f"resource #{resource.index + 1} ({resource.kind.value}:{label})"


def check_resource(resource: Resource) -> list[str]:
    """Return the problems found in a single resource declaration."""
    problems: list[str] = []
    where = _describe(resource)
    if not resource.identity or not resource.identity.strip():
        problems.append(f"{where}: identity must not be empty.")
        return problems

    schema = SCHEMAS[resource.kind]
    if not schema.identity(resource.identity):
        problems.append(f"{where}: identity must be {schema.identity_hint}.")

    attributes: Mapping[str, Any] = resource.desired_attributes
    allowed = set(schema.required) | set(schema.optional)
    unknown = sorted(set(attributes) - allowed)
    if unknown:
        problems.append(f"{where}: unknown attributes: {', '.join(unknown)}.")

    for name in schema.required:
        if name not in attributes:
            problems.append(f"{where}: missing required attribute '{name}'.")

    if attributes.get("ensure", "present") == "present":
        for name in schema.required_when_present:
            if name not in attributes:
                problems.append(f"{where}: missing required attribute '{name}'.")

    checks = {**schema.optional, **schema.required}
    for name, value in attributes.items():
        check = checks.get(name)
        if check is not None and not check(value):
            problems.append(f"{where}: invalid value for '{name}': {value!r}.")

    if resource.kind is ResourceKind.FIREWALL_PORT:
        port = attributes.get("port")
        protocol = attributes.get("protocol")
        if f"{port}/{protocol}" != resource.identity:
            problems.append(f"{where}: identity must match '<port>/<protocol>' attributes.")

    if resource.kind is ResourceKind.SERVICE_UNIT and "content" in attributes:
        if "path" not in attributes:
            problems.append(f"{where}: managed unit content requires a 'path'.")

    return problems


def validate_resources(resources: Sequence[Resource], *, extra_problems: Sequence[str] = ()) -> None:
    """Raise :class:`ValidationError` listing every malformed declaration."""
    problems: list[str] = list(extra_problems)
    for resource in resources:
        problems.extend(check_resource(resource))

    counts = Counter(resource.key for resource in resources)
    for key, count in counts.items():
        if count > 1:
            problems.append(f"duplicate resource '{key}' declared {count} times.")

    declared = set(counts)
    for resource in resources:
        for dep in resource.depends_on:
            if dep == resource.key:
                problems.append(f"{_describe(resource)}: depends on itself.")
            elif dep not in declared:
                problems.append(f"{_describe(resource)}: depends on undeclared resource '{dep}'.")

    graph = build_dependency_graph(resources)
    for cycle in find_cycles(graph):
        problems.append(f"dependency cycle: {' -> '.join(cycle)}.")

    if problems:
        raise ValidationError(problems)


__all__ = ["SCHEMAS", "KindSchema", "check_resource", "validate_resources"]
