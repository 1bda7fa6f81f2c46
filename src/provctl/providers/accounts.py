"""Utilities for inspecting and creating system accounts."""
from __future__ import annotations

import grp
import pwd
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from ..errors import ExecutionError
from .commands import Runner, default_runner, run_checked


class AccountError(ExecutionError):
    """Raised when useradd or groupadd fails."""


@dataclass(slots=True)
class AccountSpec:
    """Desired attributes for a system account."""

    name: str
    group: str | None = None
    system: bool = True
    home: Path | None = None
    shell: str | None = None


@dataclass(slots=True)
class AccountStatus:
    """Current state of the account on the host."""

    user_exists: bool
    group_exists: bool
    uid: int | None = None
    gid: int | None = None
    home: Path | None = None
    shell: str | None = None
    primary_group: str | None = None


@dataclass(slots=True)
class AccountCommand:
    """Single command required to satisfy the desired state."""

    kind: Literal["ensure-group", "create-user"]
    description: str
    command: list[str]


@dataclass(slots=True)
class AccountPlan:
    """Commands and warnings required to create the account."""

    spec: AccountSpec
    status: AccountStatus
    commands: list[AccountCommand] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def inspect_account(name: str, group: str | None = None) -> AccountStatus:
    """Return the current status for *name* from system passwd/group databases."""
    try:
        pw_entry = pwd.getpwnam(name)
        user_exists = True
        uid = pw_entry.pw_uid
        gid = pw_entry.pw_gid
        home = Path(pw_entry.pw_dir)
        shell = pw_entry.pw_shell
        try:
            primary_group = grp.getgrgid(gid).gr_name
        except KeyError:
            primary_group = None
    except KeyError:
        user_exists = False
        uid = None
        gid = None
        home = None
        shell = None
        primary_group = None

    group_exists = False
    if group:
        try:
            grp.getgrnam(group)
        except KeyError:
            pass
        else:
            group_exists = True

    return AccountStatus(
        user_exists=user_exists,
        group_exists=group_exists,
        uid=uid,
        gid=gid,
        home=home,
        shell=shell,
        primary_group=primary_group,
    )


@dataclass(slots=True)
class AccountProvider:
    """Plan and apply system account creation with useradd/groupadd."""

    useradd_bin: str = "useradd"
    groupadd_bin: str = "groupadd"
    runner: Runner = default_runner

    def inspect(self, spec: AccountSpec) -> AccountStatus:
        """Return the host status for *spec*."""
        return inspect_account(spec.name, spec.group)

    def plan(self, spec: AccountSpec) -> AccountPlan:
        """Return the commands needed to create the account described by *spec*.

        Existing accounts are never modified; mismatching attributes only
        produce warnings.
        """
        status = self.inspect(spec)
        plan = AccountPlan(spec=spec, status=status)

        if spec.group and spec.group != spec.name and not status.group_exists:
            command = [self.groupadd_bin]
            if spec.system:
                command.append("--system")
            command.append(spec.group)
            plan.commands.append(
                AccountCommand(
                    kind="ensure-group",
                    description=f"Create group '{spec.group}'.",
                    command=command,
                )
            )

        if not status.user_exists:
            command = [self.useradd_bin]
            if spec.system:
                command.append("--system")
            if spec.home:
                command.extend(["--home-dir", str(spec.home)])
            else:
                command.append("--no-create-home")
            if spec.shell:
                command.extend(["--shell", str(spec.shell)])
            if spec.group and spec.group != spec.name:
                command.extend(["--gid", spec.group])
            command.append(spec.name)
            plan.commands.append(
                AccountCommand(
                    kind="create-user",
                    description=f"Create system user '{spec.name}'.",
                    command=command,
                )
            )
        else:
            plan.warnings.extend(account_drift(spec, status))

        return plan

    def apply(self, plan: AccountPlan) -> None:
        """Execute the commands described by *plan*."""
        for step in plan.commands:
            run_checked(
                self.runner,
                step.command,
                error_cls=AccountError,
                error_prefix=f"{step.command[0]} {plan.spec.name}",
            )


def account_drift(spec: AccountSpec, status: AccountStatus) -> list[str]:
    """Describe how an existing account differs from *spec*."""
    warnings: list[str] = []
    expected_group = spec.group or spec.name
    if status.primary_group and status.primary_group != expected_group:
        warnings.append(
            "User "
            f"'{spec.name}' primary group is '{status.primary_group}', "
            f"expected '{expected_group}'."
        )
    if spec.home and status.home and status.home != spec.home:
        warnings.append(
            f"User '{spec.name}' home '{status.home}' differs from desired '{spec.home}'."
        )
    if spec.shell and status.shell and str(status.shell) != str(spec.shell):
        warnings.append(
            f"User '{spec.name}' shell '{status.shell}' differs from desired '{spec.shell}'."
        )
    return warnings


__all__ = [
    "AccountCommand",
    "AccountError",
    "AccountPlan",
    "AccountProvider",
    "AccountSpec",
    "AccountStatus",
    "account_drift",
    "inspect_account",
]
