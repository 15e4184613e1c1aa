"""
OS information collection module for the Zabbix agent installer.
Classifies the Linux distribution and reads the machine architecture.
"""

import logging
import os
import platform
import re
from typing import Dict, Optional

from src.i18n import _
from src.zabbix_installer.core.exceptions import UnsupportedDistributionError
from src.zabbix_installer.core.models import (
    SUPPORTED_DISTROS,
    DistroFamily,
    DistroInfo,
)

OS_RELEASE_FILE = "/etc/os-release"
DEBIAN_VERSION_FILE = "/etc/debian_version"
ISSUE_FILE = "/etc/issue"
REDHAT_RELEASE_FILE = "/etc/redhat-release"

# os-release ID values that map onto a supported distro id
_OS_RELEASE_ALIASES = {"redhat": "rhel"}

# Marker text in /etc/redhat-release -> distro id
_REDHAT_MARKERS = (
    ("CentOS", "centos"),
    ("Red Hat", "rhel"),
    ("Rocky", "rocky"),
    ("AlmaLinux", "almalinux"),
)

SUPPORTED_ARCHITECTURES = ("x86_64", "aarch64")


def parse_os_release(content: str) -> Dict[str, str]:
    """Parse os-release KEY=value lines, unquoting values."""
    values = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _sep, value = line.partition("=")
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        values[key.strip()] = value
    return values


class OSInfoCollector:
    """Collects distribution and architecture information on Linux hosts."""

    def __init__(
        self,
        os_release_file: str = OS_RELEASE_FILE,
        debian_version_file: str = DEBIAN_VERSION_FILE,
        issue_file: str = ISSUE_FILE,
        redhat_release_file: str = REDHAT_RELEASE_FILE,
    ):
        self.logger = logging.getLogger(__name__)
        self.os_release_file = os_release_file
        self.debian_version_file = debian_version_file
        self.issue_file = issue_file
        self.redhat_release_file = redhat_release_file

    @staticmethod
    def _read(path: str) -> Optional[str]:
        try:
            with open(path, "r", encoding="utf-8") as file_handle:
                return file_handle.read()
        except OSError:
            return None

    def _from_os_release(self) -> Optional[DistroInfo]:
        """Classify using /etc/os-release (modern systems)."""
        content = self._read(self.os_release_file)
        if content is None:
            return None

        values = parse_os_release(content)
        distro_id = values.get("ID", "").lower()
        distro_id = _OS_RELEASE_ALIASES.get(distro_id, distro_id)
        if distro_id not in SUPPORTED_DISTROS:
            self.logger.debug("os-release ID %r is not supported", distro_id)
            return None

        version = values.get("VERSION_ID", "")
        self.logger.info("Detected via os-release: %s %s", distro_id, version)
        return DistroInfo(distro_id, version)

    def _from_legacy_files(self) -> Optional[DistroInfo]:
        """Classify using the pre-os-release marker files."""
        if os.path.exists(self.debian_version_file):
            issue = self._read(self.issue_file) or ""
            if "Ubuntu" in issue:
                match = re.search(r"Ubuntu (\d+\.\d+)", issue)
                return DistroInfo("ubuntu", match.group(1) if match else "")
            debian_version = (self._read(self.debian_version_file) or "").strip()
            return DistroInfo("debian", debian_version.split(".")[0])

        release = self._read(self.redhat_release_file)
        if release:
            for marker, distro_id in _REDHAT_MARKERS:
                if marker in release:
                    match = re.search(re.escape(marker) + r"\D*?(\d+)", release)
                    return DistroInfo(distro_id, match.group(1) if match else "")
        return None

    def detect_distribution(self) -> DistroInfo:
        """
        Classify the running distribution.

        Raises:
            UnsupportedDistributionError: when neither os-release nor the legacy
                marker files identify a supported distribution.
        """
        self.logger.info(_("Detecting system distribution..."))
        distro = self._from_os_release()
        if distro is None:
            distro = self._from_legacy_files()
            if distro is not None:
                self.logger.info("Detected via legacy files: %s", distro)

        if distro is None:
            raise UnsupportedDistributionError(
                _(
                    "Could not detect a supported distribution. Supported: "
                    "Ubuntu, Debian, CentOS, RHEL, Rocky Linux, AlmaLinux"
                )
            )

        self.warn_if_untested(distro)
        return distro

    def warn_if_untested(self, distro: DistroInfo) -> None:
        """Log a warning for versions outside the tested range."""
        if distro.distro_id == "ubuntu":
            if not re.match(r"^(18|20|22|24)\.", distro.version):
                self.logger.warning(
                    "Ubuntu version not fully tested: %s (tested: 18.04, 20.04, "
                    "22.04, 24.04)",
                    distro.version,
                )
            return

        tested = (9, 12) if distro.family == DistroFamily.DEBIAN else (7, 9)
        try:
            major = int(distro.major_version)
        except ValueError:
            major = -1
        if not tested[0] <= major <= tested[1]:
            self.logger.warning(
                "%s version not fully tested: %s (tested: %d-%d)",
                distro.distro_id,
                distro.version,
                tested[0],
                tested[1],
            )

    def get_architecture(self) -> str:
        """Machine architecture as reported by uname -m."""
        arch = platform.machine()
        if arch not in SUPPORTED_ARCHITECTURES:
            self.logger.warning("Architecture not fully supported: %s", arch)
        return arch

    @staticmethod
    def get_kernel_description() -> str:
        """Equivalent of `uname -a`, used for host inventory."""
        uname = platform.uname()
        return " ".join(
            part
            for part in (
                uname.system,
                uname.node,
                uname.release,
                uname.version,
                uname.machine,
            )
            if part
        )
