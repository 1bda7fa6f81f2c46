"""Fetch and install upstream release binaries."""
from __future__ import annotations

import hashlib
import tempfile
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from ..errors import ExecutionError
from .commands import Runner, default_runner, run_checked
from .filesystem import install_file


class DownloadError(ExecutionError):
    """Raised when a release artefact cannot be fetched or unpacked."""


@dataclass(slots=True)
class DownloadProvider:
    """Download release archives with curl and install the contained binary."""

    curl_bin: str = "curl"
    runner: Runner = default_runner

    def fetch(self, url: str, destination: Path) -> None:
        """Download *url* into *destination*."""
        run_checked(
            self.runner,
            [self.curl_bin, "--fail", "--silent", "--show-error", "--location",
             "--retry", "3", "--output", str(destination), url],
            error_cls=DownloadError,
            error_prefix=f"{self.curl_bin} {url}",
        )

    def install_binary(
        self,
        url: str,
        path: Path,
        *,
        member: str | None = None,
        sha256: str | None = None,
        owner: str | None = None,
        group: str | None = None,
        mode: int = 0o755,
    ) -> None:
        """Fetch *url*, unpack *member* from zip archives and install it at *path*."""
        with tempfile.TemporaryDirectory(prefix="provctl-") as workdir:
            download = Path(workdir) / PurePosixPath(url).name
            self.fetch(url, download)
            if not download.is_file():
                raise DownloadError(f"{url} did not produce a file")
            payload = download
            if zipfile.is_zipfile(download):
                payload = self._extract(download, member or path.name, Path(workdir) / "unpacked")
            if sha256 is not None:
                digest = _digest(payload)
                if digest != sha256:
                    raise DownloadError(
                        f"checksum mismatch for {url}: expected {sha256}, got {digest}"
                    )
            install_file(path, payload, owner=owner, group=group, mode=mode)

    def _extract(self, archive: Path, member: str, target: Path) -> Path:
        target.mkdir()
        try:
            with zipfile.ZipFile(archive) as bundle:
                names = bundle.namelist()
                candidates = [name for name in names if PurePosixPath(name).name == member]
                if member in names:
                    candidates = [member]
                if not candidates:
                    raise DownloadError(f"{archive.name} does not contain {member!r}")
                extracted = target / PurePosixPath(candidates[0]).name
                with bundle.open(candidates[0]) as src, extracted.open("wb") as dst:
                    dst.write(src.read())
        except zipfile.BadZipFile as exc:
            raise DownloadError(f"cannot unpack {archive.name}: {exc}") from exc
        return extracted


def _digest(path: Path) -> str:
    digest = hashlib.sha256()
    digest.update(path.read_bytes())
    return digest.hexdigest()


__all__ = ["DownloadError", "DownloadProvider"]
