"""
Agent package installation: existing-installation check, version policy,
forced reinstall, vendor repository and agent package install.
"""

import logging
import os
import re
import shutil
from dataclasses import dataclass
from typing import List, Optional, Tuple

from src.i18n import _
from src.zabbix_installer.core.async_utils import CommandRunner, run_command_async
from src.zabbix_installer.core.config import InstallerConfig
from src.zabbix_installer.core.exceptions import PackageError
from src.zabbix_installer.core.models import (
    AGENT_FLAVORS,
    ZABBIX_AGENT,
    AgentFlavor,
    SystemInfo,
)
from src.zabbix_installer.core.rollback import RollbackStack
from src.zabbix_installer.operations.backup import BackupManager
from src.zabbix_installer.operations.package_base import (
    REPOSITORY_PACKAGE,
    PackageBackend,
)

_VERSION_OUTPUT = re.compile(r"(\d+\.\d+(?:\.\d+)*)")


def normalize_version(version: str) -> Tuple[int, ...]:
    """
    Numeric parts of a package version.

    A leading epoch ("1:") and any packaging suffix ("-1ubuntu1", "-2.el8")
    are ignored, so "1:7.0.3-1+ubuntu22.04" becomes (7, 0, 3).
    """
    version = version.strip()
    if ":" in version:
        version = version.split(":", 1)[1]
    version = version.split("-", 1)[0]
    parts = []
    for part in version.split("."):
        match = re.match(r"\d+", part)
        if not match:
            break
        parts.append(int(match.group()))
    return tuple(parts)


def compare_versions(installed: str, expected: str) -> int:
    """-1, 0 or 1 as installed is older than, equal to or newer than expected."""
    left, right = normalize_version(installed), normalize_version(expected)
    length = max(len(left), len(right))
    left += (0,) * (length - len(left))
    right += (0,) * (length - len(right))
    if left == right:
        return 0
    return -1 if left < right else 1


@dataclass(frozen=True)
class InstalledAgent:
    """An agent found on the host before this run."""

    flavor: AgentFlavor
    version: str


class AgentInstallation:
    """Installs or keeps the agent package and records what was added."""

    def __init__(
        self,
        backend: PackageBackend,
        backup_manager: BackupManager,
        rollback: RollbackStack,
        runner: CommandRunner = run_command_async,
    ):
        self.logger = logging.getLogger(__name__)
        self.backend = backend
        self.backup_manager = backup_manager
        self.rollback = rollback
        self.runner = runner
        self.installed_packages: List[str] = []

    async def _version_from_binary(self) -> Optional[InstalledAgent]:
        for flavor in AGENT_FLAVORS:
            if shutil.which(flavor.binary) is None:
                continue
            result = await self.runner([flavor.binary, "-V"], timeout=30)
            match = _VERSION_OUTPUT.search(result.stdout)
            if result.ok and match:
                return InstalledAgent(flavor, match.group(1))
        return None

    async def detect_installed(self) -> Optional[InstalledAgent]:
        """Installed agent flavor and version, from the package DB or the binary."""
        for flavor in AGENT_FLAVORS:
            version = await self.backend.installed_version(flavor.package)
            if version:
                return InstalledAgent(flavor, version)
        return await self._version_from_binary()

    def needs_upgrade(self, installed: InstalledAgent, expected: Optional[str]) -> bool:
        """Whether the installed version falls short of the expected one."""
        if not expected:
            self.logger.info(
                "No expected version given, keeping installed version %s",
                installed.version,
            )
            return False

        comparison = compare_versions(installed.version, expected)
        if comparison < 0:
            self.logger.warning(
                _("Installed version (%s) is older than expected (%s), upgrading"),
                installed.version,
                expected,
            )
            return True
        if comparison == 0:
            self.logger.info("Installed version matches expected version %s", expected)
        else:
            self.logger.info(
                "Installed version (%s) is newer than expected (%s), keeping it",
                installed.version,
                expected,
            )
        return False

    async def remove_existing(self, installed: InstalledAgent) -> None:
        """Stop the agent and purge every agent package for a clean reinstall."""
        self.logger.info(_("Force reinstall requested, removing existing agent..."))
        result = await self.runner(
            ["systemctl", "stop", installed.flavor.service], timeout=60
        )
        if not result.ok:
            self.logger.debug(
                "Stopping %s failed: %s", installed.flavor.service, result.output()
            )

        present = await self.backend.installed_subset(
            [flavor.package for flavor in AGENT_FLAVORS]
        )
        if present:
            await self.backend.remove(present, purge=True)

    def _backup_config(self, flavor: AgentFlavor) -> None:
        # One restore per file; a forced reinstall backs up the same file twice
        if self.backup_manager.has_backup(flavor.config_file):
            return
        if self.backup_manager.backup_file(flavor.config_file):
            self.rollback.push(
                "restore %s" % flavor.config_file,
                self.backup_manager.restore_file,
                flavor.config_file,
            )

    async def _remove_added_packages(self, packages: List[str]) -> None:
        await self.backend.remove(packages, purge=True)

    def _record_added(self, package: str) -> None:
        self.installed_packages.append(package)
        self.rollback.push(
            "remove package %s" % package, self._remove_added_packages, [package]
        )

    async def _install_packages(self, system: SystemInfo) -> None:
        if not await self.backend.is_installed(REPOSITORY_PACKAGE):
            await self.backend.install_repository(system.distro)
            self._record_added(REPOSITORY_PACKAGE)

        # Upgrades of a pre-existing package are not undone
        agent_present = await self.backend.is_installed(ZABBIX_AGENT.package)
        await self.backend.install([ZABBIX_AGENT.package])
        if not agent_present:
            self._record_added(ZABBIX_AGENT.package)

    async def ensure_installed(
        self, system: SystemInfo, config: InstallerConfig
    ) -> AgentFlavor:
        """
        Make sure a usable agent is installed.

        An existing agent is kept and only reconfigured unless it is older
        than the expected version or a forced reinstall was requested.

        Returns:
            The flavor whose config file and service the later stages use.
        """
        self.logger.info(_("Checking existing Zabbix installation..."))
        installed = await self.detect_installed()

        if installed is not None:
            self.logger.info(
                "Installed agent: %s %s", installed.flavor.package, installed.version
            )
            if config.force_reinstall:
                self._backup_config(installed.flavor)
                await self.remove_existing(installed)
            elif not self.needs_upgrade(installed, config.expected_version):
                if os.path.isfile(installed.flavor.config_file):
                    self.logger.info(
                        _("Agent already installed, reconfiguring existing agent")
                    )
                    self._backup_config(installed.flavor)
                    return installed.flavor
                self.logger.warning(
                    "Configuration file %s not found, installing agent",
                    installed.flavor.config_file,
                )
        else:
            self.logger.info("Zabbix agent is not installed")

        self.logger.info(_("Installing Zabbix agent..."))
        self._backup_config(ZABBIX_AGENT)
        await self._install_packages(system)

        if not os.path.isfile(ZABBIX_AGENT.config_file):
            raise PackageError(
                _("Configuration file not found after install: %s")
                % ZABBIX_AGENT.config_file
            )
        return ZABBIX_AGENT
