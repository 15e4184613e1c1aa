"""
Installer version detection module.
Provides the version string shown by --version and sent as User-Agent.
"""

import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version

logger = logging.getLogger(__name__)

PACKAGE_NAME = "zabbix-agent-installer"

# Used when running from a source checkout without installed metadata
FALLBACK_VERSION = "1.0.0"

# Zabbix release series whose repositories the installer targets
ZABBIX_RELEASE = "7.0"

_CACHED_VERSION: dict[str, str] = {}


def get_installer_version() -> str:
    """
    Get the installer version string.

    Resolution order:
    1. importlib.metadata (installed package)
    2. FALLBACK_VERSION

    The result is cached after the first call.
    """
    if "value" in _CACHED_VERSION:
        return _CACHED_VERSION["value"]

    try:
        _CACHED_VERSION["value"] = pkg_version(PACKAGE_NAME)
    except PackageNotFoundError:
        logger.debug("Package metadata not found, using %s", FALLBACK_VERSION)
        _CACHED_VERSION["value"] = FALLBACK_VERSION

    return _CACHED_VERSION["value"]


def get_version_banner() -> str:
    """Multi-line text printed by --version."""
    return "\n".join(
        [
            f"Zabbix Agent Installer v{get_installer_version()}",
            f"Compatible with Zabbix {ZABBIX_RELEASE}",
            "Supports Ubuntu, Debian, CentOS, RHEL, Rocky Linux, AlmaLinux",
        ]
    )
