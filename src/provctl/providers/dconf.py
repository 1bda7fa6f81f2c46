"""dconf system database provider."""
from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path

from ..errors import ExecutionError, ProbeError
from .commands import Runner, default_runner, run_checked


class DconfError(ExecutionError):
    """Raised when ``dconf update`` fails."""


@dataclass(slots=True)
class DconfProvider:
    """Compile dconf keyfile directories into binary databases."""

    dconf_bin: str = "dconf"
    runner: Runner = default_runner

    def database_path(self, db_dir: Path, name: str) -> Path:
        """Return the compiled database path for *name*."""
        return db_dir / name

    def keyfile_dir(self, db_dir: Path, name: str) -> Path:
        """Return the keyfile directory (``<name>.d``) for *name*."""
        return db_dir / f"{name}.d"

    def newest_keyfile_mtime(self, db_dir: Path, name: str) -> float | None:
        """Return the newest mtime among keyfiles and locks, ``None`` if there are none."""
        keyfiles = self.keyfile_dir(db_dir, name)
        try:
            if not keyfiles.is_dir():
                return None
            mtimes = [keyfiles.stat().st_mtime]
            for entry in keyfiles.rglob("*"):
                mtimes.append(entry.stat().st_mtime)
        except PermissionError as exc:
            raise ProbeError(f"cannot inspect {keyfiles}", detail=str(exc)) from exc
        return max(mtimes)

    def database_mtime(self, db_dir: Path, name: str) -> float | None:
        """Return the compiled database mtime, ``None`` when it was never built."""
        path = self.database_path(db_dir, name)
        try:
            return path.stat().st_mtime
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise ProbeError(f"cannot inspect {path}", detail=str(exc)) from exc

    def update(self) -> subprocess.CompletedProcess[str]:
        """Run ``dconf update`` to rebuild stale databases."""
        return run_checked(
            self.runner,
            [self.dconf_bin, "update"],
            error_cls=DconfError,
            error_prefix=f"{self.dconf_bin} update",
        )


__all__ = ["DconfError", "DconfProvider"]
