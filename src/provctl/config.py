"""Configuration loader for provctl.

This module centralises the logic for reading configuration values from
multiple sources:

1. Built-in defaults.
2. ``/etc/provctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``PROVCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export PROVCTL_PATHS__UNIT_DIR=/run/systemd/system
    export PROVCTL_VARS__LOKI_VERSION=2.9.8

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load provctl configuration. Install with "
        "`pip install provctl` or ensure PyYAML>=6.0 is available."
    ) from exc

from .errors import ProvctlError

ENV_PREFIX = "PROVCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(ProvctlError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class PathsConfig:
    """Host locations managed by the providers."""

    unit_dir: Path = Path("/etc/systemd/system")
    repos_dir: Path = Path("/etc/yum.repos.d")
    dconf_dir: Path = Path("/etc/dconf/db")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "unit_dir": str(self.unit_dir),
            "repos_dir": str(self.repos_dir),
            "dconf_dir": str(self.dconf_dir),
        }


@dataclass(frozen=True)
class CommandsConfig:
    """External binaries invoked by the providers."""

    systemctl: str = "systemctl"
    firewall_cmd: str = "firewall-cmd"
    dnf: str = "dnf"
    rpm: str = "rpm"
    createrepo: str = "createrepo"
    useradd: str = "useradd"
    groupadd: str = "groupadd"
    dconf: str = "dconf"
    curl: str = "curl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {name: getattr(self, name) for name in COMMAND_KEYS}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for provctl."""

    config_file: Path
    manifest: Path
    logs_dir: Path
    templates_dir: Path
    paths: PathsConfig
    commands: CommandsConfig
    vars: Mapping[str, object] = field(default_factory=lambda: MappingProxyType({}))

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "manifest": str(self.manifest),
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "vars": dict(self.vars),
            "paths": self.paths.to_dict(),
            "commands": self.commands.to_dict(),
        }


COMMAND_KEYS = (
    "systemctl",
    "firewall_cmd",
    "dnf",
    "rpm",
    "createrepo",
    "useradd",
    "groupadd",
    "dconf",
    "curl",
)

DEFAULTS: dict[str, object] = {
    "config_file": "/etc/provctl/config.yml",
    "manifest": "/etc/provctl/manifest.yml",
    "logs_dir": "/var/log/provctl",
    "templates_dir": "/etc/provctl/templates",
    "vars": {},
    "paths": {
        "unit_dir": "/etc/systemd/system",
        "repos_dir": "/etc/yum.repos.d",
        "dconf_dir": "/etc/dconf/db",
    },
    "commands": {
        "systemctl": "systemctl",
        "firewall_cmd": "firewall-cmd",
        "dnf": "dnf",
        "rpm": "rpm",
        "createrepo": "createrepo",
        "useradd": "useradd",
        "groupadd": "groupadd",
        "dconf": "dconf",
        "curl": "curl",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_PATH_KEYS = {"unit_dir", "repos_dir", "dconf_dir"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    _as_dict(raw.get("vars"), "vars")

    paths = _as_dict(raw.get("paths"), "paths")
    unknown = set(paths.keys()) - ALLOWED_PATH_KEYS
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown paths configuration keys: {joined}.")

    commands = _as_dict(raw.get("commands"), "commands")
    unknown = set(commands.keys()) - set(COMMAND_KEYS)
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown commands configuration keys: {joined}.")
    for key, value in commands.items():
        if not isinstance(value, str) or not value.strip():
            raise ConfigError(f"commands.{key} must be a non-empty string.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    paths_mapping = _as_dict(raw.get("paths"), "paths")
    defaults = PathsConfig()
    paths = PathsConfig(
        unit_dir=_to_path(paths_mapping.get("unit_dir", defaults.unit_dir)),
        repos_dir=_to_path(paths_mapping.get("repos_dir", defaults.repos_dir)),
        dconf_dir=_to_path(paths_mapping.get("dconf_dir", defaults.dconf_dir)),
    )

    commands_mapping = _as_dict(raw.get("commands"), "commands")
    commands = CommandsConfig(
        **{key: str(commands_mapping[key]) for key in COMMAND_KEYS if key in commands_mapping}
    )

    variables = _as_dict(raw.get("vars"), "vars")

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        manifest=_to_path(raw.get("manifest")),
        logs_dir=_to_path(raw.get("logs_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        paths=paths,
        commands=commands,
        vars=MappingProxyType(variables),
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "CommandsConfig",
    "ConfigError",
    "PathsConfig",
    "load_config",
]
