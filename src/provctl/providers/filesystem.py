"""Filesystem inspection and mutation helpers for directories and files."""
from __future__ import annotations

import grp
import hashlib
import os
import pwd
import shutil
import stat
import tempfile
from dataclasses import dataclass
from pathlib import Path

from ..errors import ExecutionError, ProbeError


class FilesystemError(ExecutionError):
    """Raised when a directory or file cannot be converged."""


@dataclass(slots=True, frozen=True)
class PathStat:
    """Observed ownership, mode and type of a filesystem entry."""

    is_dir: bool
    is_file: bool
    owner: str | None
    group: str | None
    mode: int


def _username(uid: int) -> str:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


def _groupname(gid: int) -> str:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return str(gid)


def stat_path(path: Path) -> PathStat | None:
    """Return ownership and mode for *path*, ``None`` when it does not exist.

    Symlinks are followed, so a link to a directory observes as that directory.
    """
    try:
        info = path.stat()
    except FileNotFoundError:
        return None
    except NotADirectoryError:
        return None
    except OSError as exc:
        raise ProbeError(f"cannot stat {path}", detail=str(exc)) from exc
    return PathStat(
        is_dir=stat.S_ISDIR(info.st_mode),
        is_file=stat.S_ISREG(info.st_mode),
        owner=_username(info.st_uid),
        group=_groupname(info.st_gid),
        mode=stat.S_IMODE(info.st_mode),
    )


def read_text(path: Path) -> str | None:
    """Return file content, ``None`` when missing or not valid UTF-8."""
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except UnicodeDecodeError:
        return None
    except OSError as exc:
        raise ProbeError(f"cannot read {path}", detail=str(exc)) from exc


def sha256sum(path: Path) -> str | None:
    """Return the SHA-256 digest of *path*, ``None`` when it does not exist."""
    digest = hashlib.sha256()
    try:
        with path.open("rb") as handle:
            for chunk in iter(lambda: handle.read(1024 * 1024), b""):
                digest.update(chunk)
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise ProbeError(f"cannot read {path}", detail=str(exc)) from exc
    return digest.hexdigest()


def apply_ownership(path: Path, owner: str | None, group: str | None, mode: int | None) -> None:
    """Set owner, group and mode on *path* when they are declared."""
    try:
        kwargs: dict[str, str] = {}
        if owner:
            kwargs["user"] = owner
        if group:
            kwargs["group"] = group
        if kwargs:
            shutil.chown(path, **kwargs)
        if mode is not None:
            os.chmod(path, mode)
    except (OSError, LookupError) as exc:
        raise FilesystemError(f"cannot set ownership on {path}: {exc}") from exc


def ensure_directory(path: Path, *, owner: str | None, group: str | None, mode: int | None) -> None:
    """Create *path* (and parents) and converge its ownership and mode."""
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise FilesystemError(f"cannot create directory {path}: {exc}") from exc
    if not path.is_dir():
        raise FilesystemError(f"{path} exists and is not a directory")
    apply_ownership(path, owner, group, mode)


def install_file(
    path: Path,
    source: Path | bytes | str,
    *,
    owner: str | None,
    group: str | None,
    mode: int | None,
) -> None:
    """Atomically place *source* at *path* with the requested ownership.

    The parent directory must already exist; it is declared separately.
    """
    parent = path.parent
    if not parent.is_dir():
        raise FilesystemError(f"cannot write {path}: parent directory {parent} does not exist")
    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(parent))
    except OSError as exc:
        raise FilesystemError(f"cannot write {path}: {exc}") from exc
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            if isinstance(source, Path):
                with source.open("rb") as src:
                    shutil.copyfileobj(src, handle)
            elif isinstance(source, str):
                handle.write(source.encode("utf-8"))
            else:
                handle.write(source)
        apply_ownership(tmp_path, owner, group, mode if mode is not None else 0o644)
        os.replace(tmp_path, path)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise FilesystemError(f"cannot write {path}: {exc}") from exc
    except FilesystemError:
        tmp_path.unlink(missing_ok=True)
        raise


def remove_file(path: Path) -> None:
    """Delete *path* if present."""
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        raise FilesystemError(f"cannot remove {path}: {exc}") from exc


__all__ = [
    "FilesystemError",
    "PathStat",
    "apply_ownership",
    "ensure_directory",
    "install_file",
    "read_text",
    "remove_file",
    "sha256sum",
    "stat_path",
]
