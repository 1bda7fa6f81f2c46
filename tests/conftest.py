"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import subprocess
from collections.abc import Callable, Sequence
from pathlib import Path

import pytest

from provctl.config import AppConfig, load_config
from provctl.providers import HostProviders, build_providers

Response = tuple[int, str, str]
Handler = Callable[[list[str]], Response]


class FakeRunner:
    """Command runner double standing in for systemctl, firewall-cmd, rpm and friends.

    Rules are matched by argument prefix; the most recently added rule wins.
    Unmatched commands succeed with empty output.
    """

    def __init__(self) -> None:
        """Start with no rules and an empty call log."""
        self.calls: list[list[str]] = []
        self._rules: list[tuple[tuple[str, ...], Handler]] = []

    def on(
        self,
        *prefix: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        handler: Handler | None = None,
    ) -> None:
        """Register a canned response for commands starting with *prefix*."""
        if handler is None:
            def handler(args: list[str]) -> Response:
                return returncode, stdout, stderr

        self._rules.insert(0, (tuple(prefix), handler))

    def count(self, *prefix: str) -> int:
        """Return how many recorded calls start with *prefix*."""
        return sum(1 for call in self.calls if tuple(call[: len(prefix)]) == prefix)

    def __call__(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        """Record *args* and return the matching canned response."""
        command = list(args)
        self.calls.append(command)
        for prefix, handler in self._rules:
            if tuple(command[: len(prefix)]) == prefix:
                returncode, stdout, stderr = handler(command)
                return subprocess.CompletedProcess(command, returncode, stdout, stderr)
        return subprocess.CompletedProcess(command, 0, "", "")


class FakeFirewall:
    """Minimal stateful firewalld: ``--add-port`` + ``--reload`` opens a port."""

    def __init__(self, *, running: bool = True) -> None:
        """Create a firewall with no open ports."""
        self.running = running
        self.permanent: set[str] = set()
        self.runtime: set[str] = set()

    def install(self, runner: FakeRunner) -> None:
        """Route firewall-cmd invocations on *runner* to this fake."""
        runner.on("firewall-cmd", handler=self._handle)

    def _handle(self, args: list[str]) -> Response:
        if "--state" in args:
            return (0, "running", "") if self.running else (252, "not running", "")
        if not self.running:
            return 252, "", "FirewallD is not running"
        if "--reload" in args:
            self.runtime = set(self.permanent)
            return 0, "success", ""
        for arg in args:
            if arg.startswith("--add-port="):
                self.permanent.add(arg.split("=", 1)[1])
                return 0, "success", ""
            if arg.startswith("--query-port="):
                port = arg.split("=", 1)[1]
                pool = self.permanent if "--permanent" in args else self.runtime
                return (0, "yes", "") if port in pool else (1, "no", "")
        return 0, "", ""


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Return an empty command runner double."""
    return FakeRunner()


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    """Return a configuration rooted in the temporary directory."""
    unit_dir = tmp_path / "systemd"
    repos_dir = tmp_path / "yum.repos.d"
    dconf_dir = tmp_path / "dconf"
    for directory in (unit_dir, repos_dir, dconf_dir):
        directory.mkdir()
    return load_config(
        config_file=tmp_path / "missing.yml",
        env={},
        overrides={
            "manifest": str(tmp_path / "manifest.yml"),
            "logs_dir": str(tmp_path / "logs"),
            "templates_dir": str(tmp_path / "templates"),
            "paths": {
                "unit_dir": str(unit_dir),
                "repos_dir": str(repos_dir),
                "dconf_dir": str(dconf_dir),
            },
        },
    )


@pytest.fixture
def providers(config: AppConfig, fake_runner: FakeRunner) -> HostProviders:
    """Return providers wired to the fake runner."""
    return build_providers(config, fake_runner)
