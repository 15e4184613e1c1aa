"""
Base module for package-manager backends.

One backend exists per distribution family; the installer only talks to this
interface and never branches on the distribution itself.
"""

import logging
import shutil
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from src.i18n import _
from src.zabbix_installer.core.async_utils import (
    AsyncProcessResult,
    CommandRunner,
    run_command_async,
)
from src.zabbix_installer.core.exceptions import PackageError
from src.zabbix_installer.core.models import DistroInfo
from src.zabbix_installer.core.version import ZABBIX_RELEASE

REPOSITORY_PACKAGE = "zabbix-release"
REPO_BASE_URL = f"https://repo.zabbix.com/zabbix/{ZABBIX_RELEASE}"

# Package installs can take a while on slow mirrors
INSTALL_TIMEOUT = 900


class PackageBackend(ABC):
    """Base class for distribution-family package backends."""

    # Binaries that must exist for this backend to work
    required_commands: Sequence[str] = ()

    def __init__(self, runner: CommandRunner = run_command_async):
        self.runner = runner
        self.logger = logging.getLogger(__name__)

    def missing_commands(self) -> List[str]:
        """Required binaries not found on PATH."""
        return [cmd for cmd in self.required_commands if shutil.which(cmd) is None]

    async def _run(
        self,
        cmd: List[str],
        description: str,
        timeout: float = INSTALL_TIMEOUT,
        env=None,
    ) -> AsyncProcessResult:
        """Run a package command and raise PackageError when it fails."""
        self.logger.debug("Running: %s", " ".join(cmd))
        result = await self.runner(cmd, timeout=timeout, env=env)
        if not result.ok:
            raise PackageError(
                _("%s failed (exit %d): %s")
                % (description, result.returncode, result.output())
            )
        return result

    @abstractmethod
    async def prepare(self, dry_run: bool = False) -> None:
        """
        Refresh package metadata and install missing prerequisites.

        With dry_run only the read-only checks are performed.
        """

    @abstractmethod
    async def is_installed(self, package: str) -> bool:
        """Whether a package is currently installed."""

    @abstractmethod
    async def installed_version(self, package: str) -> Optional[str]:
        """Installed version of a package, or None."""

    @abstractmethod
    def repository_url(self, distro: DistroInfo) -> str:
        """URL of the vendor release package for a distribution."""

    @abstractmethod
    async def install_repository(self, distro: DistroInfo) -> None:
        """Install the vendor repository definition."""

    @abstractmethod
    async def install(self, packages: Sequence[str]) -> None:
        """Install packages; raises PackageError on failure."""

    @abstractmethod
    async def remove(self, packages: Sequence[str], purge: bool = False) -> None:
        """Remove packages; raises PackageError on failure."""

    async def installed_subset(self, packages: Sequence[str]) -> List[str]:
        """The packages from the list that are currently installed."""
        installed = []
        for package in packages:
            if await self.is_installed(package):
                installed.append(package)
        return installed
