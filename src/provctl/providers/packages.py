"""Package manager and repository metadata provider (dnf/rpm/createrepo)."""
from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path

from ..errors import ExecutionError, ProbeError
from .commands import Runner, default_runner, describe_failure, run_checked, run_query

REPOMD_RELATIVE = Path("repodata") / "repomd.xml"


class PackageError(ExecutionError):
    """Raised when a package or repository command fails."""


@dataclass(slots=True)
class PackageProvider:
    """Install packages and generate repository metadata."""

    dnf_bin: str = "dnf"
    rpm_bin: str = "rpm"
    createrepo_bin: str = "createrepo"
    runner: Runner = default_runner

    def is_installed(self, name: str) -> bool:
        """Return ``True`` when an installed package provides *name*."""
        result = run_query(self.runner, [self.rpm_bin, "-q", "--whatprovides", name])
        if result.returncode == 0:
            return True
        if result.returncode == 1:
            return False
        raise ProbeError(
            f"cannot query package {name}",
            detail=f"rpm exited {result.returncode}: {describe_failure(result)}",
        )

    def install(self, name: str) -> subprocess.CompletedProcess[str]:
        """Install *name*; dnf treats already-installed packages as success."""
        return run_checked(
            self.runner,
            [self.dnf_bin, "-y", "install", name],
            error_cls=PackageError,
            error_prefix=f"{self.dnf_bin} install {name}",
        )

    def metadata_exists(self, path: Path) -> bool:
        """Return ``True`` when *path* already carries createrepo metadata."""
        try:
            return (path / REPOMD_RELATIVE).is_file()
        except PermissionError as exc:
            raise ProbeError(f"cannot inspect {path}", detail=str(exc)) from exc

    def create_metadata(self, path: Path) -> subprocess.CompletedProcess[str]:
        """Generate repository metadata for *path*."""
        return run_checked(
            self.runner,
            [self.createrepo_bin, str(path)],
            error_cls=PackageError,
            error_prefix=f"{self.createrepo_bin} {path}",
        )


__all__ = ["PackageError", "PackageProvider"]
