"""
Selects the package backend for a classified distribution.
"""

from src.zabbix_installer.core.async_utils import CommandRunner, run_command_async
from src.zabbix_installer.core.models import DistroFamily, DistroInfo
from src.zabbix_installer.operations.package_apt import AptPackageBackend
from src.zabbix_installer.operations.package_base import PackageBackend
from src.zabbix_installer.operations.package_rpm import RpmPackageBackend

_BACKENDS = {
    DistroFamily.DEBIAN: AptPackageBackend,
    DistroFamily.RHEL: RpmPackageBackend,
}


def get_package_backend(
    distro: DistroInfo, runner: CommandRunner = run_command_async
) -> PackageBackend:
    """Backend instance for the distribution's package family."""
    return _BACKENDS[distro.family](runner=runner)
