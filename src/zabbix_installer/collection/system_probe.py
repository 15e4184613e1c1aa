"""
Host probing: combines distribution, architecture, hostname and primary IP
into the SystemInfo every later stage reads.
"""

import logging
from typing import Optional

from src.i18n import _
from src.zabbix_installer.collection.os_info_collection import OSInfoCollector
from src.zabbix_installer.communication.network_utils import NetworkUtils
from src.zabbix_installer.core.exceptions import PreconditionError
from src.zabbix_installer.core.models import SystemInfo


class SystemProber:
    """Builds SystemInfo once per run or fails fast."""

    def __init__(
        self,
        os_info_collector: Optional[OSInfoCollector] = None,
        network_utils: Optional[NetworkUtils] = None,
    ):
        self.logger = logging.getLogger(__name__)
        self.os_info_collector = os_info_collector or OSInfoCollector()
        self.network_utils = network_utils or NetworkUtils()

    async def probe(self) -> SystemInfo:
        """Collect system information."""
        self.logger.info(_("Collecting system information..."))

        hostname = self.network_utils.get_hostname()
        self.logger.info("Hostname: %s", hostname)

        primary_ip = await self.network_utils.detect_primary_ip()
        if not primary_ip:
            raise PreconditionError(_("Could not determine the system IP address"))
        self.logger.info("System IP: %s", primary_ip)

        distro = self.os_info_collector.detect_distribution()
        architecture = self.os_info_collector.get_architecture()
        self.logger.info("Distribution: %s, architecture: %s", distro, architecture)

        return SystemInfo(
            distro=distro,
            architecture=architecture,
            hostname=hostname,
            primary_ip=primary_ip,
            kernel=self.os_info_collector.get_kernel_description(),
        )
