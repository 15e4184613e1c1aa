"""
Post-install verification of the running agent.
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from typing import List

from src.i18n import _
from src.zabbix_installer.communication.network_utils import tcp_port_open
from src.zabbix_installer.core.async_utils import (
    CommandRunner,
    read_file_async,
    run_command_async,
)
from src.zabbix_installer.core.exceptions import VerificationError
from src.zabbix_installer.core.models import AgentFlavor
from src.zabbix_installer.operations.service_manager import ServiceManager

# Only this many trailing log lines count as "recent"
RECENT_LOG_LINES = 50
TCP_CHECK_TIMEOUT = 5.0


@dataclass
class VerificationReport:
    """Outcome of the post-install checks."""

    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def count_log_errors(content: str, recent_lines: int = RECENT_LOG_LINES) -> int:
    """Number of lines mentioning ERROR among the last recent_lines lines."""
    lines = content.splitlines()[-recent_lines:]
    return sum(1 for line in lines if "ERROR" in line)


class AgentVerifier:
    """Checks that the agent runs, listens and accepts its config."""

    def __init__(
        self,
        service_manager: ServiceManager,
        runner: CommandRunner = run_command_async,
    ):
        self.logger = logging.getLogger(__name__)
        self.service_manager = service_manager
        self.runner = runner

    async def _check_agent_ping(self, port: int, report: VerificationReport) -> None:
        if shutil.which("zabbix_get") is None:
            self.logger.debug("zabbix_get not available, skipping agent.ping")
            return
        result = await self.runner(
            ["zabbix_get", "-s", "127.0.0.1", "-p", str(port), "-k", "agent.ping"],
            timeout=30,
        )
        if result.ok and result.stdout.strip() == "1":
            self.logger.info("Agent answers agent.ping locally")
        else:
            report.warnings.append(_("Agent does not answer agent.ping locally"))

    async def _check_port(self, port: int, report: VerificationReport) -> None:
        if await tcp_port_open("127.0.0.1", port, TCP_CHECK_TIMEOUT):
            self.logger.info("Port %d is open locally", port)
        else:
            report.errors.append(_("Port %d is not reachable locally") % port)

    async def _check_log(self, flavor: AgentFlavor, report: VerificationReport) -> None:
        if not os.path.isfile(flavor.log_file):
            return
        try:
            content = await read_file_async(flavor.log_file, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as error:
            self.logger.debug("Could not read %s: %s", flavor.log_file, error)
            return
        errors = count_log_errors(content)
        if errors:
            report.warnings.append(
                _("Found %d recent errors in the agent log") % errors
            )
        else:
            self.logger.info("No recent errors in the agent log")

    async def _check_service(
        self, flavor: AgentFlavor, report: VerificationReport
    ) -> None:
        if await self.service_manager.is_active(flavor.service):
            self.logger.info("Service %s is running", flavor.service)
        else:
            report.errors.append(_("Service %s is not running") % flavor.service)

    async def _check_config(
        self, flavor: AgentFlavor, report: VerificationReport
    ) -> None:
        result = await self.runner(
            [flavor.binary, "-T", "-c", flavor.config_file], timeout=60
        )
        if result.ok:
            self.logger.info("Agent configuration is valid")
        else:
            report.errors.append(
                _("Agent configuration has errors: %s") % result.output()
            )

    async def verify(
        self, flavor: AgentFlavor, agent_port: int
    ) -> VerificationReport:
        """
        Run every check and raise when a hard check failed.

        Raises:
            VerificationError: listing the failed hard checks.
        """
        self.logger.info(_("Running final verification..."))
        report = VerificationReport()

        await self._check_agent_ping(agent_port, report)
        await self._check_port(agent_port, report)
        await self._check_log(flavor, report)
        await self._check_service(flavor, report)
        await self._check_config(flavor, report)

        for warning in report.warnings:
            self.logger.warning(warning)
        for error in report.errors:
            self.logger.error(error)

        if not report.ok:
            raise VerificationError(
                _("Post-install verification failed: %s") % "; ".join(report.errors)
            )
        return report
