"""
RPM package backend for the RHEL family (CentOS, RHEL, Rocky, AlmaLinux).
Uses dnf when present and falls back to yum on older releases.
"""

import shutil
from typing import Optional, Sequence

from src.i18n import _
from src.zabbix_installer.core.async_utils import CommandRunner, run_command_async
from src.zabbix_installer.core.exceptions import PackageError
from src.zabbix_installer.core.models import DistroInfo
from src.zabbix_installer.core.version import ZABBIX_RELEASE
from src.zabbix_installer.operations.package_base import (
    INSTALL_TIMEOUT,
    REPO_BASE_URL,
    PackageBackend,
)

# Extra Packages for Enterprise Linux; agent dependencies may come from it
EPEL_PACKAGE = "epel-release"


class RpmPackageBackend(PackageBackend):
    """Handles packages on RHEL-family systems."""

    required_commands = ("rpm",)

    def __init__(
        self, runner: CommandRunner = run_command_async, tool: Optional[str] = None
    ):
        super().__init__(runner)
        self.tool = tool or ("dnf" if shutil.which("dnf") else "yum")

    def missing_commands(self):
        missing = super().missing_commands()
        if shutil.which(self.tool) is None:
            missing.append(self.tool)
        return missing

    async def prepare(self, dry_run: bool = False) -> None:
        """Report the package tool and add EPEL when it is missing."""
        self.logger.info("Using %s as package manager", self.tool)
        if await self.is_installed(EPEL_PACKAGE):
            return
        if dry_run:
            self.logger.info("%s is not installed, it would be added", EPEL_PACKAGE)
            return

        self.logger.info(_("Installing EPEL repository..."))
        result = await self.runner(
            [self.tool, "install", "-y", EPEL_PACKAGE], timeout=INSTALL_TIMEOUT
        )
        if not result.ok:
            self.logger.warning(
                _("Could not install EPEL, continuing: %s"), result.output()
            )

    async def is_installed(self, package: str) -> bool:
        result = await self.runner(["rpm", "-q", package], timeout=30)
        return result.ok

    async def installed_version(self, package: str) -> Optional[str]:
        result = await self.runner(
            ["rpm", "-q", "--qf", "%{VERSION}-%{RELEASE}", package], timeout=30
        )
        version = result.stdout.strip()
        return version if result.ok and version else None

    def repository_url(self, distro: DistroInfo) -> str:
        major = distro.major_version
        return (
            f"{REPO_BASE_URL}/rhel/{major}/x86_64/"
            f"zabbix-release-{ZABBIX_RELEASE}-2.el{major}.noarch.rpm"
        )

    async def install_repository(self, distro: DistroInfo) -> None:
        url = self.repository_url(distro)
        self.logger.info("Installing repository: %s", url)
        result = await self.runner(["rpm", "-Uvh", url], timeout=300)
        # rpm exits non-zero when the same release package is already present
        if not result.ok and "already installed" not in result.output():
            raise PackageError(
                _("%s failed (exit %d): %s")
                % ("Zabbix repository install", result.returncode, result.output())
            )
        await self._run([self.tool, "clean", "all"], "%s clean all" % self.tool)

    async def install(self, packages: Sequence[str]) -> None:
        self.logger.info("Installing packages: %s", " ".join(packages))
        await self._run(
            [self.tool, "install", "-y", *packages], _("Package installation")
        )

    async def remove(self, packages: Sequence[str], purge: bool = False) -> None:
        # rpm has no separate purge; config files become .rpmsave
        self.logger.info("Removing packages: %s", " ".join(packages))
        await self._run([self.tool, "remove", "-y", *packages], _("Package removal"))
