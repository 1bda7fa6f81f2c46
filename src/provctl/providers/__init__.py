"""Provider interfaces wrapping the external host services."""
from __future__ import annotations

from dataclasses import dataclass

from ..config import AppConfig
from .accounts import AccountError, AccountProvider
from .commands import Runner, default_runner
from .dconf import DconfError, DconfProvider
from .downloads import DownloadError, DownloadProvider
from .filesystem import FilesystemError
from .firewall import FirewallError, FirewallProvider
from .packages import PackageError, PackageProvider
from .systemd import SystemdError, SystemdProvider


@dataclass(slots=True)
class HostProviders:
    """All providers used by one run, sharing a single command runner."""

    systemd: SystemdProvider
    firewall: FirewallProvider
    packages: PackageProvider
    accounts: AccountProvider
    dconf: DconfProvider
    downloads: DownloadProvider


def build_providers(config: AppConfig, runner: Runner = default_runner) -> HostProviders:
    """Create providers configured from *config*."""
    commands = config.commands
    return HostProviders(
        systemd=SystemdProvider(
            systemctl_bin=commands.systemctl,
            runner=runner,
        ),
        firewall=FirewallProvider(firewall_cmd_bin=commands.firewall_cmd, runner=runner),
        packages=PackageProvider(
            dnf_bin=commands.dnf,
            rpm_bin=commands.rpm,
            createrepo_bin=commands.createrepo,
            runner=runner,
        ),
        accounts=AccountProvider(
            useradd_bin=commands.useradd,
            groupadd_bin=commands.groupadd,
            runner=runner,
        ),
        dconf=DconfProvider(dconf_bin=commands.dconf, runner=runner),
        downloads=DownloadProvider(curl_bin=commands.curl, runner=runner),
    )


__all__ = [
    "AccountError",
    "AccountProvider",
    "DconfError",
    "DconfProvider",
    "DownloadError",
    "DownloadProvider",
    "FilesystemError",
    "FirewallError",
    "FirewallProvider",
    "HostProviders",
    "PackageError",
    "PackageProvider",
    "Runner",
    "SystemdError",
    "SystemdProvider",
    "build_providers",
]
