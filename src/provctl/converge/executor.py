"""Action executor: apply reconciler actions through the providers."""
from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from ..errors import ExecutionError, ProbeError
from ..providers import HostProviders
from ..providers.filesystem import (
    FilesystemError,
    apply_ownership,
    ensure_directory,
    install_file,
    remove_file,
)
from .models import Action, ActionType, ErrorCategory, Outcome, Resource, ResourceKind
from .probes import account_spec

LOGGER = logging.getLogger(__name__)


class Executor:
    """Execute actions using idempotent primitives.

    NoOp actions succeed without touching the host. In dry-run mode every
    other action is reported as skipped and nothing is invoked.
    """

    def __init__(self, providers: HostProviders, *, dry_run: bool = False) -> None:
        """Store providers and the dry-run flag."""
        self._providers = providers
        self.dry_run = dry_run
        self._handlers: dict[ResourceKind, Callable[[Action], None]] = {
            ResourceKind.DIRECTORY: self._apply_directory,
            ResourceKind.FILE_CONTENT: self._apply_file,
            ResourceKind.REPO_DEFINITION: self._apply_file,
            ResourceKind.SYSTEM_USER: self._apply_user,
            ResourceKind.FIREWALL_PORT: self._apply_firewall_port,
            ResourceKind.SERVICE_UNIT: self._apply_service,
            ResourceKind.PACKAGE: self._apply_package,
            ResourceKind.REPO_METADATA: self._apply_repo_metadata,
            ResourceKind.BINARY_RELEASE: self._apply_binary,
            ResourceKind.DCONF_DATABASE: self._apply_dconf,
        }

    def execute(self, action: Action) -> Outcome:
        """Apply *action* and return its outcome."""
        if action.is_noop:
            return Outcome.success()
        if self.dry_run:
            return Outcome.skipped("dry-run", category=ErrorCategory.DRY_RUN)
        LOGGER.debug(
            "executing %s on %s (steps: %s)",
            action.type.value,
            action.resource.key,
            ", ".join(action.steps),
        )
        try:
            self._handlers[action.resource.kind](action)
        except ExecutionError as exc:
            return Outcome.failed(str(exc), category=ErrorCategory.EXECUTION)
        except ProbeError as exc:
            return Outcome.failed(exc.reason, category=ErrorCategory.PROBE, detail=exc.detail)
        except OSError as exc:
            return Outcome.failed(
                f"{action.resource.key}: {exc}", category=ErrorCategory.EXECUTION
            )
        return Outcome.success()

    # ------------------------------------------------------------------
    def _apply_directory(self, action: Action) -> None:
        resource = action.resource
        ensure_directory(
            Path(resource.identity),
            owner=resource.attr("owner"),
            group=resource.attr("group"),
            mode=resource.attr("mode"),
        )

    def _apply_file(self, action: Action) -> None:
        resource = action.resource
        path = _target_path(resource)
        if action.type is ActionType.DELETE:
            remove_file(path)
            return
        owner = resource.attr("owner")
        group = resource.attr("group")
        mode = resource.attr("mode")
        if "write" in action.steps:
            install_file(path, resource.attr("content", ""), owner=owner, group=group, mode=mode)
        else:
            apply_ownership(path, owner, group, mode)

    def _apply_user(self, action: Action) -> None:
        accounts = self._providers.accounts
        # plan() re-inspects the host, so a user created since probing is left alone.
        plan = accounts.plan(account_spec(action.resource))
        for warning in plan.warnings:
            LOGGER.info("%s: %s", action.resource.key, warning)
        accounts.apply(plan)

    def _apply_firewall_port(self, action: Action) -> None:
        resource = action.resource
        firewall = self._providers.firewall
        firewall.add_port(
            int(resource.attr("port")),
            str(resource.attr("protocol")),
            zone=resource.attr("zone"),
        )
        firewall.reload()

    def _apply_service(self, action: Action) -> None:
        resource = action.resource
        systemd = self._providers.systemd
        unit = resource.identity
        for step in action.steps:
            if step == "write-unit":
                systemd.write_unit(Path(resource.attr("path")), resource.attr("content"))
            elif step == "daemon-reload":
                systemd.daemon_reload()
            elif step == "enable":
                systemd.enable(unit)
            elif step == "start":
                systemd.start(unit)
            elif step == "restart":
                systemd.restart(unit)
            else:
                raise ExecutionError(f"unknown service step '{step}' for {resource.key}")

    def _apply_package(self, action: Action) -> None:
        self._providers.packages.install(action.resource.identity)

    def _apply_repo_metadata(self, action: Action) -> None:
        path = Path(action.resource.identity)
        if not path.is_dir():
            raise FilesystemError(f"cannot generate metadata: {path} is not a directory")
        self._providers.packages.create_metadata(path)

    def _apply_binary(self, action: Action) -> None:
        resource = action.resource
        path = Path(resource.identity)
        owner = resource.attr("owner")
        group = resource.attr("group")
        mode = resource.attr("mode", 0o755)
        if "download" not in action.steps:
            apply_ownership(path, owner, group, mode)
            return
        self._providers.downloads.install_binary(
            str(resource.attr("url")),
            path,
            member=resource.attr("member"),
            sha256=resource.attr("sha256"),
            owner=owner,
            group=group,
            mode=mode,
        )

    def _apply_dconf(self, action: Action) -> None:
        self._providers.dconf.update()


def _target_path(resource: Resource) -> Path:
    return Path(resource.attr("path") or resource.identity)


__all__ = ["Executor"]
