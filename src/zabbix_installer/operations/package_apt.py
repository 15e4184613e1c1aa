"""
APT/dpkg package backend for Debian and Ubuntu.
"""

import asyncio
import os
import tempfile
from typing import Optional, Sequence

import aiohttp

from src.i18n import _
from src.zabbix_installer.core.exceptions import PackageError
from src.zabbix_installer.core.models import DistroInfo
from src.zabbix_installer.core.version import ZABBIX_RELEASE
from src.zabbix_installer.operations.package_base import (
    REPO_BASE_URL,
    PackageBackend,
)

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}

PREREQUISITES = ("gnupg", "ca-certificates")

SUPPORTED_UBUNTU = ("18.04", "20.04", "22.04", "24.04")
DEFAULT_UBUNTU = "22.04"
SUPPORTED_DEBIAN = ("9", "10", "11", "12")
DEFAULT_DEBIAN = "11"

DOWNLOAD_TIMEOUT = aiohttp.ClientTimeout(total=120, connect=15)


class AptPackageBackend(PackageBackend):
    """Handles packages on Debian-family systems."""

    required_commands = ("apt-get", "dpkg", "dpkg-query")

    async def prepare(self, dry_run: bool = False) -> None:
        if dry_run:
            self.logger.info("Dry run: skipping apt-get update and prerequisites")
            return

        self.logger.info(_("Updating APT repositories..."))
        await self._run(["apt-get", "update", "-qq"], "apt-get update", env=APT_ENV)

        for package in PREREQUISITES:
            if not await self.is_installed(package):
                self.logger.info("Installing dependency: %s", package)
                await self.install([package])

    async def is_installed(self, package: str) -> bool:
        result = await self.runner(
            ["dpkg-query", "-W", "-f=${Status}", package], timeout=30
        )
        return result.ok and "install ok installed" in result.stdout

    async def installed_version(self, package: str) -> Optional[str]:
        if not await self.is_installed(package):
            return None
        result = await self.runner(
            ["dpkg-query", "-W", "-f=${Version}", package], timeout=30
        )
        version = result.stdout.strip()
        return version if result.ok and version else None

    def repository_url(self, distro: DistroInfo) -> str:
        if distro.distro_id == "ubuntu":
            version = next(
                (v for v in SUPPORTED_UBUNTU if distro.version.startswith(v[:3])),
                None,
            )
            if version is None:
                self.logger.warning(
                    "Ubuntu version not recognised, using repository for %s",
                    DEFAULT_UBUNTU,
                )
                version = DEFAULT_UBUNTU
            suffix = f"ubuntu{version}"
        else:
            version = distro.major_version
            if version not in SUPPORTED_DEBIAN:
                self.logger.warning(
                    "Debian version not recognised, using repository for Debian %s",
                    DEFAULT_DEBIAN,
                )
                version = DEFAULT_DEBIAN
            suffix = f"debian{version}"

        return (
            f"{REPO_BASE_URL}/{distro.distro_id}/pool/main/z/zabbix-release/"
            f"zabbix-release_{ZABBIX_RELEASE}-2+{suffix}_all.deb"
        )

    async def _download(self, url: str) -> bytes:
        """Fetch a release package."""
        try:
            async with aiohttp.ClientSession(timeout=DOWNLOAD_TIMEOUT) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        raise PackageError(
                            _("Failed to download %s: HTTP %d") % (url, response.status)
                        )
                    content = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as error:
            raise PackageError(
                _("Failed to download %s: %s") % (url, error)
            ) from error

        if not content:
            raise PackageError(_("Downloaded file is empty: %s") % url)
        return content

    async def install_repository(self, distro: DistroInfo) -> None:
        url = self.repository_url(distro)
        self.logger.info("Downloading and installing repository: %s", url)
        deb_content = await self._download(url)

        with tempfile.NamedTemporaryFile(
            mode="wb", suffix=".deb", delete=False
        ) as file_handle:
            file_handle.write(deb_content)
            deb_file = file_handle.name

        try:
            await self._run(
                ["dpkg", "-i", deb_file], "Zabbix repository install", env=APT_ENV
            )
        finally:
            if os.path.exists(deb_file):
                os.unlink(deb_file)

        await self._run(["apt-get", "update", "-qq"], "apt-get update", env=APT_ENV)

    async def install(self, packages: Sequence[str]) -> None:
        self.logger.info("Installing packages: %s", " ".join(packages))
        await self._run(
            ["apt-get", "install", "-y", *packages],
            _("Package installation"),
            env=APT_ENV,
        )

    async def remove(self, packages: Sequence[str], purge: bool = False) -> None:
        action = "purge" if purge else "remove"
        self.logger.info("Removing packages (%s): %s", action, " ".join(packages))
        await self._run(
            ["apt-get", action, "-y", *packages], _("Package removal"), env=APT_ENV
        )
        result = await self.runner(
            ["apt-get", "autoremove", "-y"], timeout=600, env=APT_ENV
        )
        if not result.ok:
            self.logger.warning("apt-get autoremove failed: %s", result.output())
