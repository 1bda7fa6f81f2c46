"""Probe layer: read-only observation of current host state per resource."""
from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from ..providers import HostProviders
from ..providers.accounts import AccountSpec
from ..providers.filesystem import read_text, sha256sum, stat_path
from .models import ObservedState, Resource, ResourceKind

LOGGER = logging.getLogger(__name__)


def account_spec(resource: Resource) -> AccountSpec:
    """Translate a ``user`` resource into an :class:`AccountSpec`."""
    home = resource.attr("home")
    return AccountSpec(
        name=resource.identity,
        group=resource.attr("group"),
        system=bool(resource.attr("system", True)),
        home=Path(home) if home else None,
        shell=resource.attr("shell"),
    )


class Prober:
    """Dispatch ``observe`` calls to the kind-specific probe.

    Probes never mutate the host. Absence is reported through
    :meth:`ObservedState.absent`; inability to query raises
    :class:`~provctl.errors.ProbeError`.
    """

    def __init__(self, providers: HostProviders) -> None:
        """Store the providers used to query the host."""
        self._providers = providers
        self._handlers: dict[ResourceKind, Callable[[Resource], ObservedState]] = {
            ResourceKind.DIRECTORY: self._observe_directory,
            ResourceKind.FILE_CONTENT: self._observe_file,
            ResourceKind.REPO_DEFINITION: self._observe_file,
            ResourceKind.SYSTEM_USER: self._observe_user,
            ResourceKind.FIREWALL_PORT: self._observe_firewall_port,
            ResourceKind.SERVICE_UNIT: self._observe_service,
            ResourceKind.PACKAGE: self._observe_package,
            ResourceKind.REPO_METADATA: self._observe_repo_metadata,
            ResourceKind.BINARY_RELEASE: self._observe_binary,
            ResourceKind.DCONF_DATABASE: self._observe_dconf,
        }

    def observe(self, resource: Resource) -> ObservedState:
        """Return the current host state for *resource*."""
        LOGGER.debug("probing %s", resource.key)
        return self._handlers[resource.kind](resource)

    # ------------------------------------------------------------------
    def _observe_directory(self, resource: Resource) -> ObservedState:
        info = stat_path(Path(resource.identity))
        if info is None:
            return ObservedState.absent()
        return ObservedState(
            exists=True,
            attributes={
                "is_dir": info.is_dir,
                "owner": info.owner,
                "group": info.group,
                "mode": info.mode,
            },
        )

    def _observe_file(self, resource: Resource) -> ObservedState:
        path = Path(resource.attr("path") or resource.identity)
        info = stat_path(path)
        if info is None:
            return ObservedState.absent()
        content = read_text(path) if info.is_file else None
        return ObservedState(
            exists=True,
            attributes={
                "is_file": info.is_file,
                "owner": info.owner,
                "group": info.group,
                "mode": info.mode,
                "content": content,
            },
        )

    def _observe_user(self, resource: Resource) -> ObservedState:
        status = self._providers.accounts.inspect(account_spec(resource))
        if not status.user_exists:
            return ObservedState.absent()
        return ObservedState(
            exists=True,
            attributes={
                "uid": status.uid,
                "home": str(status.home) if status.home else None,
                "shell": status.shell,
                "primary_group": status.primary_group,
            },
        )

    def _observe_firewall_port(self, resource: Resource) -> ObservedState:
        is_open = self._providers.firewall.is_open(
            int(resource.attr("port")),
            str(resource.attr("protocol")),
            zone=resource.attr("zone"),
        )
        return ObservedState(exists=is_open, attributes={"open": is_open})

    def _observe_service(self, resource: Resource) -> ObservedState:
        systemd = self._providers.systemd
        content: str | None = None
        managed = resource.attr("content") is not None
        if managed:
            content = systemd.read_unit(Path(resource.attr("path")))
        enabled = systemd.is_enabled(resource.identity)
        active = systemd.is_active(resource.identity)
        return ObservedState(
            exists=content is not None if managed else True,
            attributes={"content": content, "enabled": enabled, "active": active},
        )

    def _observe_package(self, resource: Resource) -> ObservedState:
        installed = self._providers.packages.is_installed(resource.identity)
        return ObservedState(exists=installed, attributes={"installed": installed})

    def _observe_repo_metadata(self, resource: Resource) -> ObservedState:
        present = self._providers.packages.metadata_exists(Path(resource.identity))
        return ObservedState(exists=present, attributes={"generated": present})

    def _observe_binary(self, resource: Resource) -> ObservedState:
        path = Path(resource.identity)
        info = stat_path(path)
        if info is None:
            return ObservedState.absent()
        digest = sha256sum(path) if resource.attr("sha256") and info.is_file else None
        return ObservedState(
            exists=True,
            attributes={
                "is_file": info.is_file,
                "owner": info.owner,
                "group": info.group,
                "mode": info.mode,
                "sha256": digest,
            },
        )

    def _observe_dconf(self, resource: Resource) -> ObservedState:
        dconf = self._providers.dconf
        db_dir = Path(resource.attr("db_dir"))
        compiled = dconf.database_mtime(db_dir, resource.identity)
        newest = dconf.newest_keyfile_mtime(db_dir, resource.identity)
        if compiled is None:
            return ObservedState.absent()
        stale = newest is not None and newest > compiled
        return ObservedState(exists=True, attributes={"stale": stale})


__all__ = ["Prober", "account_spec"]
