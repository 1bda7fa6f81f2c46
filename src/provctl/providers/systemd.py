"""Systemd provider for managing service units."""
from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path

from ..errors import ExecutionError, ProbeError
from ..templates import write_if_changed
from .commands import Runner, default_runner, describe_failure, run_checked, run_query

# ``systemctl is-enabled`` states that mean the unit will start at boot or
# cannot be enabled at all.
_ENABLED_STATES = {"enabled", "enabled-runtime", "static", "alias", "indirect", "generated"}
_BUS_FAILURE_MARKERS = ("failed to connect to bus", "system has not been booted with systemd")


class SystemdError(ExecutionError):
    """Raised when systemd operations fail."""


@dataclass(slots=True)
class SystemdProvider:
    """Inspect and manage systemd service units."""

    systemctl_bin: str = "systemctl"
    runner: Runner = default_runner

    def read_unit(self, path: Path) -> str | None:
        """Return the unit file content, or ``None`` when it does not exist."""
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise ProbeError(f"cannot read unit file {path}", detail=str(exc)) from exc

    def is_enabled(self, unit: str) -> bool:
        """Return ``True`` when *unit* is enabled (or static)."""
        result = self._query("is-enabled", unit)
        state = (result.stdout or "").strip().splitlines()
        return bool(state) and state[0] in _ENABLED_STATES

    def is_active(self, unit: str) -> bool:
        """Return ``True`` when *unit* is currently running."""
        result = self._query("is-active", unit)
        return result.returncode == 0

    def write_unit(self, path: Path, content: str) -> bool:
        """Write the unit file; return ``True`` when the content changed."""
        try:
            return write_if_changed(path, content, mode=0o644)
        except OSError as exc:
            raise SystemdError(f"cannot write unit file {path}: {exc}") from exc

    def daemon_reload(self) -> subprocess.CompletedProcess[str]:
        """Ask systemd to re-read unit files."""
        return self._systemctl("daemon-reload")

    def enable(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Enable *unit*."""
        return self._systemctl("enable", unit)

    def start(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Start *unit*."""
        return self._systemctl("start", unit)

    def restart(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Restart *unit*."""
        return self._systemctl("restart", unit)

    # ------------------------------------------------------------------
    def _query(self, command: str, unit: str) -> subprocess.CompletedProcess[str]:
        result = run_query(self.runner, [self.systemctl_bin, command, unit])
        if result.returncode != 0:
            message = describe_failure(result).lower()
            if any(marker in message for marker in _BUS_FAILURE_MARKERS):
                raise ProbeError("probe unreachable", detail=f"systemd: {message}")
        return result

    def _systemctl(self, command: str, unit: str | None = None) -> subprocess.CompletedProcess[str]:
        args = [self.systemctl_bin, command]
        if unit is not None:
            args.append(unit)
        return run_checked(
            self.runner,
            args,
            error_cls=SystemdError,
            error_prefix=f"{self.systemctl_bin} {command}",
        )


__all__ = ["SystemdError", "SystemdProvider"]
