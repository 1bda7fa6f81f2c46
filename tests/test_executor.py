"""Tests for the action executor."""
from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from provctl.converge import (
    Action,
    ActionType,
    ErrorCategory,
    Executor,
    ObservedState,
    OutcomeStatus,
    Resource,
    ResourceKind,
    reconcile,
)
from provctl.providers import HostProviders, accounts

from conftest import FakeFirewall, FakeRunner


def _action(kind: ActionType, resource: Resource, *steps: str) -> Action:
    return Action(type=kind, resource=resource, rationale="test", steps=steps)


def test_noop_succeeds_without_commands(providers: HostProviders, fake_runner: FakeRunner) -> None:
    """NoOp actions never reach a provider."""
    resource = Resource(ResourceKind.PACKAGE, "curl")

    outcome = Executor(providers).execute(_action(ActionType.NOOP, resource))

    assert outcome.status is OutcomeStatus.SUCCESS
    assert fake_runner.calls == []


def test_dry_run_skips_changes(providers: HostProviders, fake_runner: FakeRunner) -> None:
    """Dry-run reports changing actions as skipped and runs nothing."""
    resource = Resource(ResourceKind.PACKAGE, "curl")

    outcome = Executor(providers, dry_run=True).execute(
        _action(ActionType.CREATE, resource, "install")
    )

    assert outcome.status is OutcomeStatus.SKIPPED
    assert outcome.category is ErrorCategory.DRY_RUN
    assert fake_runner.calls == []


def test_directory_and_file_are_written(tmp_path: Path, providers: HostProviders) -> None:
    """Directory then file creation converges the filesystem."""
    executor = Executor(providers)
    directory = Resource(ResourceKind.DIRECTORY, str(tmp_path / "srv" / "7.9"), {"mode": 0o755})
    readme = Resource(
        ResourceKind.FILE_CONTENT,
        str(tmp_path / "srv" / "7.9" / "readme.txt"),
        {"content": "Dummy package\n", "mode": 0o644},
    )

    assert executor.execute(_action(ActionType.CREATE, directory, "mkdir")).status is OutcomeStatus.SUCCESS
    assert executor.execute(_action(ActionType.CREATE, readme, "write")).status is OutcomeStatus.SUCCESS
    assert (tmp_path / "srv" / "7.9" / "readme.txt").read_text() == "Dummy package\n"


def test_file_without_parent_fails(tmp_path: Path, providers: HostProviders) -> None:
    """Writing into a missing directory is an execution failure."""
    readme = Resource(
        ResourceKind.FILE_CONTENT, str(tmp_path / "missing" / "readme.txt"), {"content": "x"}
    )

    outcome = Executor(providers).execute(_action(ActionType.CREATE, readme, "write"))

    assert outcome.status is OutcomeStatus.FAILED
    assert outcome.category is ErrorCategory.EXECUTION
    assert "parent directory" in (outcome.reason or "")


def test_file_delete_and_chmod(tmp_path: Path, providers: HostProviders) -> None:
    """DELETE removes the file; set-attributes only changes the mode."""
    target = tmp_path / "motd"
    target.write_text("hello\n")
    executor = Executor(providers)

    chmod = Resource(ResourceKind.FILE_CONTENT, str(target), {"content": "hello\n", "mode": 0o600})
    executor.execute(_action(ActionType.UPDATE, chmod, "set-attributes"))
    assert (target.stat().st_mode & 0o777) == 0o600
    assert target.read_text() == "hello\n"

    absent = Resource(ResourceKind.FILE_CONTENT, str(target), {"ensure": "absent"})
    executor.execute(_action(ActionType.DELETE, absent, "remove"))
    assert not target.exists()


def test_firewall_port_added_and_reloaded(
    fake_runner: FakeRunner,
    providers: HostProviders,
) -> None:
    """Opening a port runs --add-port then --reload."""
    firewall = FakeFirewall()
    firewall.install(fake_runner)
    resource = Resource(ResourceKind.FIREWALL_PORT, "6558/tcp", {"port": 6558, "protocol": "tcp"})

    outcome = Executor(providers).execute(
        _action(ActionType.CREATE, resource, "add-port", "reload")
    )

    assert outcome.status is OutcomeStatus.SUCCESS
    assert firewall.runtime == {"6558/tcp"}
    assert fake_runner.calls == [
        ["firewall-cmd", "--permanent", "--add-port=6558/tcp"],
        ["firewall-cmd", "--reload"],
    ]


def test_service_steps_run_in_order(
    tmp_path: Path,
    fake_runner: FakeRunner,
    providers: HostProviders,
) -> None:
    """Unit write, daemon-reload, enable and start happen in sequence."""
    unit = tmp_path / "systemd" / "reposhare-7.9.service"
    resource = Resource(
        ResourceKind.SERVICE_UNIT,
        "reposhare-7.9.service",
        {"content": "[Unit]\n", "path": str(unit)},
    )
    action = reconcile(
        resource,
        ObservedState(False, {"content": None, "enabled": False, "active": False}),
    )

    outcome = Executor(providers).execute(action)

    assert outcome.status is OutcomeStatus.SUCCESS
    assert unit.read_text() == "[Unit]\n"
    assert fake_runner.calls == [
        ["systemctl", "daemon-reload"],
        ["systemctl", "enable", "reposhare-7.9.service"],
        ["systemctl", "start", "reposhare-7.9.service"],
    ]


def test_service_start_failure_is_reported(
    tmp_path: Path,
    fake_runner: FakeRunner,
    providers: HostProviders,
) -> None:
    """A failing systemctl start yields a failed execution outcome."""
    fake_runner.on("systemctl", "start", returncode=1, stderr="Job failed")
    resource = Resource(ResourceKind.SERVICE_UNIT, "loki.service")

    outcome = Executor(providers).execute(_action(ActionType.CREATE, resource, "start"))

    assert outcome.status is OutcomeStatus.FAILED
    assert outcome.category is ErrorCategory.EXECUTION
    assert "Job failed" in (outcome.reason or "")


def test_package_install(fake_runner: FakeRunner, providers: HostProviders) -> None:
    """Packages are installed through dnf."""
    Executor(providers).execute(
        _action(ActionType.CREATE, Resource(ResourceKind.PACKAGE, "createrepo"), "install")
    )

    assert fake_runner.calls == [["dnf", "-y", "install", "createrepo"]]


def test_repo_metadata_requires_directory(
    tmp_path: Path,
    fake_runner: FakeRunner,
    providers: HostProviders,
) -> None:
    """createrepo only runs against an existing directory."""
    executor = Executor(providers)
    missing = Resource(ResourceKind.REPO_METADATA, str(tmp_path / "absent"))

    failed = executor.execute(_action(ActionType.CREATE, missing, "createrepo"))
    assert failed.status is OutcomeStatus.FAILED
    assert fake_runner.calls == []

    present = Resource(ResourceKind.REPO_METADATA, str(tmp_path))
    assert executor.execute(_action(ActionType.CREATE, present, "createrepo")).status is OutcomeStatus.SUCCESS
    assert fake_runner.calls == [["createrepo", str(tmp_path)]]


def test_user_creation_rechecks_host(
    monkeypatch: pytest.MonkeyPatch,
    fake_runner: FakeRunner,
    providers: HostProviders,
) -> None:
    """A user that appeared after probing is not recreated."""
    resource = Resource(ResourceKind.SYSTEM_USER, "loki", {"shell": "/sbin/nologin"})
    existing = SimpleNamespace(
        pw_name="loki", pw_uid=990, pw_gid=990, pw_dir="/", pw_shell="/sbin/nologin"
    )
    monkeypatch.setattr(accounts.pwd, "getpwnam", lambda name: existing)
    monkeypatch.setattr(
        accounts.grp, "getgrgid", lambda gid: SimpleNamespace(gr_name="loki", gr_gid=gid)
    )

    outcome = Executor(providers).execute(_action(ActionType.CREATE, resource, "useradd"))

    assert outcome.status is OutcomeStatus.SUCCESS
    assert fake_runner.calls == []


def test_dconf_update(fake_runner: FakeRunner, providers: HostProviders) -> None:
    """dconf databases are rebuilt with dconf update."""
    resource = Resource(ResourceKind.DCONF_DATABASE, "gdm", {"db_dir": "/etc/dconf/db"})

    Executor(providers).execute(_action(ActionType.CREATE, resource, "dconf-update"))

    assert fake_runner.calls == [["dconf", "update"]]


def test_binary_mode_only_update(tmp_path: Path, providers: HostProviders) -> None:
    """Ownership drift on a binary is fixed without downloading."""
    binary = tmp_path / "loki"
    binary.write_bytes(b"loki")
    binary.chmod(0o644)
    resource = Resource(
        ResourceKind.BINARY_RELEASE, str(binary), {"url": "https://example.invalid/loki.zip", "mode": 0o755}
    )

    outcome = Executor(providers).execute(_action(ActionType.UPDATE, resource, "set-attributes"))

    assert outcome.status is OutcomeStatus.SUCCESS
    assert (binary.stat().st_mode & 0o777) == 0o755
