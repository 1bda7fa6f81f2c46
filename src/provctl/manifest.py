"""Manifest loading: YAML declarations to immutable resources.

A manifest is a YAML mapping with two keys::

    vars:
      loki_version: 2.9.7
    resources:
      - kind: directory
        path: /etc/loki
        owner: loki
        mode: "0755"
      - kind: firewall_port
        port: 3100
        when: open_loki_port | string | lower in ("yes", "true")

String values are rendered with Jinja2 against the merged variables, ``when``
expressions drop resources before validation and ``template`` names are
rendered into the resource ``content``. Every problem found while loading is
collected and reported together with the resource validation problems.
"""
from __future__ import annotations

import logging
import platform
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from importlib import resources as importlib_resources
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml
from jinja2 import StrictUndefined

from .config import AppConfig
from .converge.models import Resource, ResourceKind, resource_key
from .converge.validation import validate_resources
from .errors import ProvctlError
from .templates import TemplateEngine, TemplateRenderError

LOGGER = logging.getLogger(__name__)

BUNDLED_PACKAGE = "provctl"
BUNDLED_DIR = "manifests"
MANIFEST_SUFFIX = ".yml"

# Keys consumed by the loader itself; everything else is a desired attribute.
_CONTROL_KEYS = {"kind", "depends_on", "when", "template", "context"}
_IDENTITY_FIELDS: Mapping[ResourceKind, str] = {
    ResourceKind.DIRECTORY: "path",
    ResourceKind.FILE_CONTENT: "path",
    ResourceKind.BINARY_RELEASE: "path",
    ResourceKind.REPO_METADATA: "path",
    ResourceKind.SYSTEM_USER: "name",
    ResourceKind.PACKAGE: "name",
    ResourceKind.SERVICE_UNIT: "name",
    ResourceKind.DCONF_DATABASE: "name",
    ResourceKind.REPO_DEFINITION: "id",
    ResourceKind.FIREWALL_PORT: "port",
}
_UNIT_SUFFIXES = (".service", ".socket", ".timer")
_REPO_TEMPLATE = "yum/repo.j2"
_REPO_KEYS = ("name", "baseurl", "enabled", "gpgcheck", "repo_gpgcheck", "gpgkey", "sslverify")
_ARCH_ALIASES = {"x86_64": "amd64", "amd64": "amd64", "aarch64": "arm64", "arm64": "arm64"}
_OCTAL_SCALAR = re.compile(r"^[-+]?0[0-7_]+$")


class ManifestError(ProvctlError):
    """Raised when a manifest cannot be located, read or parsed."""


class OctalInt(int):
    """Integer written with a leading zero in YAML (``mode: 0755``)."""


class _ManifestLoader(yaml.SafeLoader):
    """SafeLoader that marks integers written in octal notation."""


def _construct_int(loader: _ManifestLoader, node: yaml.ScalarNode) -> int:
    value = loader.construct_yaml_int(node)
    if _OCTAL_SCALAR.match(str(node.value)):
        return OctalInt(value)
    return value


_ManifestLoader.add_constructor("tag:yaml.org,2002:int", _construct_int)


@dataclass(slots=True, frozen=True)
class Manifest:
    """Resources declared by one manifest after variables were resolved."""

    source: str
    variables: Mapping[str, Any]
    resources: tuple[Resource, ...]
    dropped: tuple[str, ...] = field(default_factory=tuple)


def host_facts() -> dict[str, Any]:
    """Return host facts exposed to manifests as variables.

    ``arch`` uses release naming (``amd64``, ``arm64``). On other machines it
    is left undefined, so any manifest value that uses it fails validation
    with the unsupported machine name.
    """
    machine = platform.machine()
    arch: Any = _ARCH_ALIASES.get(machine.lower())
    if arch is None:
        supported = ", ".join(sorted(set(_ARCH_ALIASES.values())))
        arch = StrictUndefined(
            hint=f"unsupported architecture '{machine}' (supported: {supported})",
            name="arch",
        )
    return {
        "arch": arch,
        "machine": machine,
        "hostname": platform.node(),
    }


def list_bundled() -> list[str]:
    """Return the names of the manifests shipped with provctl."""
    root = importlib_resources.files(BUNDLED_PACKAGE) / BUNDLED_DIR
    names = [
        entry.name[: -len(MANIFEST_SUFFIX)]
        for entry in root.iterdir()
        if entry.name.endswith(MANIFEST_SUFFIX)
    ]
    return sorted(names)


def read_bundled(name: str) -> str:
    """Return the YAML source of the bundled manifest *name*."""
    entry = importlib_resources.files(BUNDLED_PACKAGE) / BUNDLED_DIR / f"{name}{MANIFEST_SUFFIX}"
    if not entry.is_file():
        available = ", ".join(list_bundled()) or "none"
        raise ManifestError(f"Unknown bundled manifest '{name}' (available: {available}).")
    return entry.read_text(encoding="utf-8")


def load_manifest(
    path: Path | None = None,
    *,
    bundled: str | None = None,
    config: AppConfig,
    templates: TemplateEngine | None = None,
    facts: Mapping[str, Any] | None = None,
) -> Manifest:
    """Load a manifest from *path* or the bundled manifest *bundled*.

    Raises :class:`ManifestError` when the file cannot be read or parsed and
    :class:`~provctl.errors.ValidationError` listing every declaration problem.
    """
    if bundled is not None:
        source = f"bundled:{bundled}"
        text = read_bundled(bundled)
    else:
        target = path or config.manifest
        source = str(target)
        try:
            text = target.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise ManifestError(f"Manifest file not found: {target}") from exc
        except OSError as exc:
            raise ManifestError(f"Unable to read manifest {target}: {exc}") from exc
    engine = templates or TemplateEngine.with_overrides(config.templates_dir)
    return parse_manifest(text, source=source, config=config, templates=engine, facts=facts)


def parse_manifest(
    text: str,
    *,
    source: str,
    config: AppConfig,
    templates: TemplateEngine,
    facts: Mapping[str, Any] | None = None,
) -> Manifest:
    """Parse manifest YAML *text* into validated resources."""
    try:
        document = yaml.load(text, Loader=_ManifestLoader) or {}  # noqa: S506
    except yaml.YAMLError as exc:
        raise ManifestError(f"Invalid YAML in manifest {source}: {exc}") from exc
    if not isinstance(document, Mapping):
        raise ManifestError(f"Manifest {source} must contain a mapping at the top level.")

    builder = _ManifestBuilder(config=config, templates=templates)
    unknown = sorted(set(document) - {"vars", "resources"})
    if unknown:
        builder.problems.append(f"unknown top-level keys: {', '.join(map(str, unknown))}.")

    variables = builder.resolve_variables(document.get("vars"), facts)
    raw_resources = document.get("resources") or []
    if not isinstance(raw_resources, list):
        builder.problems.append("'resources' must be a list.")
        raw_resources = []

    for index, raw in enumerate(raw_resources):
        builder.add(index, raw, variables)

    resources = builder.finish()
    validate_resources(resources, extra_problems=builder.problems)
    LOGGER.debug("loaded %d resources from %s", len(resources), source)
    return Manifest(
        source=source,
        variables=MappingProxyType(variables),
        resources=tuple(resources),
        dropped=tuple(builder.dropped),
    )


class _ManifestBuilder:
    """Accumulate resources and problems while walking a manifest."""

    def __init__(self, *, config: AppConfig, templates: TemplateEngine) -> None:
        self.config = config
        self.templates = templates
        self.problems: list[str] = []
        self.dropped: list[str] = []
        self._pending: list[tuple[int, ResourceKind, str, dict[str, Any], list[str]]] = []

    # ------------------------------------------------------------------
    def resolve_variables(
        self,
        raw: object,
        facts: Mapping[str, Any] | None,
    ) -> dict[str, Any]:
        declared: dict[str, Any] = {}
        if raw is None:
            raw = {}
        if not isinstance(raw, Mapping):
            self.problems.append("'vars' must be a mapping.")
            raw = {}
        declared.update({str(key): value for key, value in raw.items()})
        declared.update(self.config.vars)

        merged: dict[str, Any] = dict(host_facts() if facts is None else facts)
        merged.update({name: str(value) for name, value in self.config.paths.to_dict().items()})
        merged.update(declared)
        resolved = dict(merged)
        for name, value in declared.items():
            try:
                resolved[name] = self._render(value, resolved)
            except TemplateRenderError as exc:
                self.problems.append(f"variable '{name}': {exc}")
        return resolved

    def add(self, index: int, raw: object, variables: Mapping[str, Any]) -> None:
        where = f"resource #{index + 1}"
        if not isinstance(raw, Mapping):
            self.problems.append(f"{where}: must be a mapping.")
            return
        try:
            kind = ResourceKind.parse(raw.get("kind"))
        except ValueError as exc:
            self.problems.append(f"{where}: {exc}.")
            return

        try:
            if not self._included(raw.get("when"), variables):
                self.dropped.append(self._dropped_key(kind, raw, variables))
                return
            body = {
                str(key): self._render(value, variables)
                for key, value in raw.items()
                if key not in {"when", "context"}
            }
            context = self._render(raw.get("context") or {}, variables)
        except TemplateRenderError as exc:
            self.problems.append(f"{where} ({kind.value}): {exc}")
            return
        if not isinstance(context, Mapping):
            self.problems.append(f"{where} ({kind.value}): 'context' must be a mapping.")
            return

        identity = self._identity(kind, body)
        if identity is None:
            field_name = _IDENTITY_FIELDS[kind]
            self.problems.append(f"{where} ({kind.value}): missing '{field_name}'.")
            return

        attributes = {
            key: value
            for key, value in body.items()
            if key not in _CONTROL_KEYS and key != _IDENTITY_FIELDS[kind]
        }
        if kind is ResourceKind.FIREWALL_PORT:
            attributes["port"] = _coerce_port(body.get("port"))
            attributes.setdefault("protocol", "tcp")
        try:
            self._apply_defaults(kind, identity, attributes, body.get("template"), {**variables, **context})
        except (TemplateRenderError, ValueError) as exc:
            self.problems.append(f"{where} ({kind.value}:{identity}): {exc}")
            return

        depends_on = body.get("depends_on") or []
        if isinstance(depends_on, str):
            depends_on = [depends_on]
        if not isinstance(depends_on, list):
            self.problems.append(f"{where} ({kind.value}:{identity}): 'depends_on' must be a list.")
            depends_on = []
        deps = [normalize_key(str(dep)) for dep in depends_on]
        self._pending.append((index, kind, identity, attributes, deps))

    def finish(self) -> list[Resource]:
        dropped = set(self.dropped)
        resources: list[Resource] = []
        for index, kind, identity, attributes, deps in self._pending:
            kept = [dep for dep in deps if dep not in dropped]
            resources.append(
                Resource(
                    kind=kind,
                    identity=identity,
                    desired_attributes=attributes,
                    depends_on=tuple(kept),
                    index=index,
                )
            )
        return resources

    # ------------------------------------------------------------------
    def _render(self, value: Any, context: Mapping[str, Any]) -> Any:
        if isinstance(value, str):
            return self.templates.render_string(value, context)
        if isinstance(value, Mapping):
            return {str(key): self._render(item, context) for key, item in value.items()}
        if isinstance(value, list):
            return [self._render(item, context) for item in value]
        return value

    def _included(self, when: object, variables: Mapping[str, Any]) -> bool:
        if when is None:
            return True
        if isinstance(when, bool):
            return when
        return bool(self.templates.evaluate(str(when), variables))

    def _dropped_key(self, kind: ResourceKind, raw: Mapping[str, Any], variables: Mapping[str, Any]) -> str:
        try:
            body = {key: self._render(value, variables) for key, value in raw.items() if key != "when"}
        except TemplateRenderError:
            return resource_key(kind, "")
        return resource_key(kind, self._identity(kind, body) or "")

    def _identity(self, kind: ResourceKind, body: Mapping[str, Any]) -> str | None:
        raw = body.get(_IDENTITY_FIELDS[kind])
        if raw is None or raw == "":
            return None
        identity = str(raw).strip()
        if kind is ResourceKind.FIREWALL_PORT:
            return f"{identity}/{body.get('protocol', 'tcp')}"
        if kind is ResourceKind.SERVICE_UNIT:
            return unit_name(identity)
        return identity

    def _apply_defaults(
        self,
        kind: ResourceKind,
        identity: str,
        attributes: dict[str, Any],
        template: object,
        context: Mapping[str, Any],
    ) -> None:
        if "mode" in attributes:
            attributes["mode"] = parse_mode(attributes["mode"])

        if template is not None:
            if kind not in {
                ResourceKind.FILE_CONTENT,
                ResourceKind.SERVICE_UNIT,
                ResourceKind.REPO_DEFINITION,
            }:
                raise ValueError(f"'template' is not supported for {kind.value} resources")
            if "content" in attributes:
                raise ValueError("declare either 'content' or 'template', not both")
            attributes["content"] = self.templates.render_to_string(str(template), context)

        paths = self.config.paths
        if kind is ResourceKind.SERVICE_UNIT and "content" in attributes:
            attributes.setdefault("path", str(paths.unit_dir / identity))
        elif kind is ResourceKind.REPO_DEFINITION:
            attributes.setdefault("path", str(paths.repos_dir / f"{identity}.repo"))
            attributes.setdefault("enabled", True)
            attributes.setdefault("gpgcheck", True)
            if "content" not in attributes and attributes.get("baseurl"):
                repo_context = {key: attributes.get(key) for key in _REPO_KEYS}
                repo_context["name"] = repo_context["name"] or identity
                attributes["content"] = self.templates.render_to_string(
                    _REPO_TEMPLATE, {"repo_id": identity, **repo_context}
                )
        elif kind is ResourceKind.DCONF_DATABASE:
            attributes.setdefault("db_dir", str(paths.dconf_dir))
        elif kind is ResourceKind.BINARY_RELEASE:
            attributes.setdefault("mode", 0o755)


def _coerce_port(value: object) -> object:
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    return value


def parse_mode(value: object) -> int:
    """Return a permission mode from ``"0755"``, ``"755"`` or a YAML octal int.

    Unquoted YAML integers without a leading zero are decimal (``755`` is
    ``0o1363``) and are rejected.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid mode {value!r}")
    if isinstance(value, int):
        if isinstance(value, OctalInt) or value == 0:
            return int(value)
        raise ValueError(
            f"invalid mode {value!r}: unquoted integers are decimal, write '0{value}' instead"
        )
    text = str(value).strip()
    try:
        return int(text, 8)
    except ValueError as exc:
        raise ValueError(f"invalid mode {value!r}: expected an octal string such as '0644'") from exc


def unit_name(name: str) -> str:
    """Append ``.service`` to bare unit names."""
    if name.endswith(_UNIT_SUFFIXES):
        return name
    return f"{name}.service"


def normalize_key(key: str) -> str:
    """Normalise a ``depends_on`` key (``service:loki`` -> ``service:loki.service``)."""
    kind_text, sep, identity = key.partition(":")
    if not sep:
        return key
    try:
        kind = ResourceKind.parse(kind_text)
    except ValueError:
        return key
    identity = identity.strip()
    if kind is ResourceKind.SERVICE_UNIT:
        identity = unit_name(identity)
    elif kind is ResourceKind.FIREWALL_PORT and "/" not in identity:
        identity = f"{identity}/tcp"
    return resource_key(kind, identity)


__all__ = [
    "BUNDLED_DIR",
    "Manifest",
    "ManifestError",
    "OctalInt",
    "host_facts",
    "list_bundled",
    "load_manifest",
    "normalize_key",
    "parse_manifest",
    "parse_mode",
    "read_bundled",
    "unit_name",
]
