"""firewalld provider used to open ports."""
from __future__ import annotations

import subprocess
from dataclasses import dataclass

from ..errors import ExecutionError, ProbeError
from .commands import Runner, default_runner, describe_failure, run_checked, run_query


class FirewallError(ExecutionError):
    """Raised when firewall-cmd cannot apply a change."""


@dataclass(slots=True)
class FirewallProvider:
    """Query and open firewalld ports through ``firewall-cmd``."""

    firewall_cmd_bin: str = "firewall-cmd"
    runner: Runner = default_runner

    def is_running(self) -> bool:
        """Return ``True`` when the firewalld daemon answers."""
        try:
            result = run_query(self.runner, [self.firewall_cmd_bin, "--state"])
        except ProbeError as exc:
            raise ProbeError("probe unreachable", detail=exc.detail or str(exc)) from exc
        return result.returncode == 0

    def query_port(
        self,
        port: int,
        protocol: str,
        *,
        zone: str | None = None,
        permanent: bool = False,
    ) -> bool:
        """Return ``True`` when ``port/protocol`` is open in the given configuration."""
        args = [self.firewall_cmd_bin]
        if zone:
            args.append(f"--zone={zone}")
        if permanent:
            args.append("--permanent")
        args.append(f"--query-port={port}/{protocol}")
        result = run_query(self.runner, args)
        if result.returncode == 0:
            return True
        if result.returncode == 1:
            return False
        raise ProbeError(
            "probe unreachable",
            detail=f"{' '.join(args)} exited {result.returncode}: {describe_failure(result)}",
        )

    def is_open(self, port: int, protocol: str, *, zone: str | None = None) -> bool:
        """Return ``True`` when the port is open both permanently and at runtime."""
        if not self.is_running():
            raise ProbeError("probe unreachable", detail="firewalld is not running")
        permanent = self.query_port(port, protocol, zone=zone, permanent=True)
        runtime = self.query_port(port, protocol, zone=zone, permanent=False)
        return permanent and runtime

    def add_port(
        self,
        port: int,
        protocol: str,
        *,
        zone: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Permanently open ``port/protocol``."""
        args = [self.firewall_cmd_bin]
        if zone:
            args.append(f"--zone={zone}")
        args.extend(["--permanent", f"--add-port={port}/{protocol}"])
        return run_checked(
            self.runner,
            args,
            error_cls=FirewallError,
            error_prefix=f"{self.firewall_cmd_bin} --add-port={port}/{protocol}",
        )

    def reload(self) -> subprocess.CompletedProcess[str]:
        """Reload firewalld so permanent rules take effect."""
        return run_checked(
            self.runner,
            [self.firewall_cmd_bin, "--reload"],
            error_cls=FirewallError,
            error_prefix=f"{self.firewall_cmd_bin} --reload",
        )


__all__ = ["FirewallError", "FirewallProvider"]
