"""
Agent service management.

The agent unit was renamed between major versions (zabbix-agent and
zabbix-agent2), so the unit name is resolved at runtime before the
enable / stop / start cycle.
"""

import asyncio
import logging
from abc import ABC, abstractmethod

import psutil

from src.i18n import _
from src.zabbix_installer.core.async_utils import (
    COMMAND_TIMED_OUT,
    AsyncProcessResult,
    CommandRunner,
    run_command_async,
)
from src.zabbix_installer.core.exceptions import ServiceError
from src.zabbix_installer.core.models import (
    AGENT_FLAVORS,
    ZABBIX_AGENT,
    ZABBIX_AGENT2,
    AgentFlavor,
)
from src.zabbix_installer.operations.package_base import PackageBackend

MAX_START_ATTEMPTS = 3

SYSTEMCTL_TIMEOUT = 60


class ServiceManager(ABC):
    """Base class for init-system backends."""

    def __init__(self, runner: CommandRunner = run_command_async):
        self.runner = runner
        self.logger = logging.getLogger(__name__)

    @abstractmethod
    async def resolve_flavor(self, backend: PackageBackend) -> AgentFlavor:
        """Which installed agent the service belongs to."""

    @abstractmethod
    async def is_active(self, service: str) -> bool:
        """Whether the service is running."""

    @abstractmethod
    async def restart_agent(self, flavor: AgentFlavor, agent_port: int) -> None:
        """Enable the agent service and (re)start it with the new config."""


def is_port_listening(port: int) -> bool:
    """True when some local socket listens on the TCP port."""
    try:
        connections = psutil.net_connections(kind="tcp")
    except (psutil.AccessDenied, OSError) as error:
        logging.getLogger(__name__).debug("Cannot list connections: %s", error)
        return False
    return any(
        conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port == port
        for conn in connections
    )


class SystemdServiceManager(ServiceManager):
    """Drives the agent unit through systemctl."""

    def __init__(
        self,
        runner: CommandRunner = run_command_async,
        stop_settle_delay: float = 2.0,
        start_check_delay: float = 3.0,
        retry_delay: float = 5.0,
    ):
        super().__init__(runner)
        self.stop_settle_delay = stop_settle_delay
        self.start_check_delay = start_check_delay
        self.retry_delay = retry_delay

    async def _systemctl(self, *args: str) -> AsyncProcessResult:
        cmd = ["systemctl", *args]
        try:
            return await self.runner(cmd, timeout=SYSTEMCTL_TIMEOUT)
        except asyncio.TimeoutError:
            return AsyncProcessResult(
                returncode=COMMAND_TIMED_OUT,
                stdout="",
                stderr=f"systemctl {args[0]}: timed out after {SYSTEMCTL_TIMEOUT} s",
            )

    async def _unit_file_exists(self, service: str) -> bool:
        result = await self._systemctl(
            "list-unit-files", "--type=service", "--no-legend"
        )
        if not result.ok:
            return False
        return any(
            line.split()[0] == f"{service}.service"
            for line in result.stdout.splitlines()
            if line.strip()
        )

    async def resolve_flavor(self, backend: PackageBackend) -> AgentFlavor:
        """
        Resolve the agent unit name.

        Unit files are checked first; when systemd does not know either unit
        the package database decides, preferring agent2.

        Raises:
            ServiceError: when neither unit nor package is present.
        """
        for flavor in AGENT_FLAVORS:
            if await self._unit_file_exists(flavor.service):
                self.logger.info("Detected service: %s", flavor.service)
                return flavor

        for flavor in (ZABBIX_AGENT2, ZABBIX_AGENT):
            if await backend.is_installed(flavor.package):
                self.logger.info(
                    "Service resolved from installed package: %s", flavor.service
                )
                return flavor

        raise ServiceError(_("Could not determine the Zabbix agent service name"))

    async def is_active(self, service: str) -> bool:
        result = await self._systemctl("is-active", "--quiet", service)
        return result.ok

    async def _enable(self, service: str) -> None:
        self.logger.info("Enabling service %s at boot...", service)
        result = await self._systemctl("enable", service)
        if result.ok:
            self.logger.info("Service %s enabled", service)
        else:
            self.logger.warning(
                "Could not enable %s at boot: %s", service, result.output()
            )

    async def _stop_if_active(self, service: str) -> None:
        if not await self.is_active(service):
            return
        self.logger.info("Stopping running service %s...", service)
        result = await self._systemctl("stop", service)
        if not result.ok:
            self.logger.warning(
                "Could not stop %s cleanly: %s", service, result.output()
            )
            return
        # let the old process release the listening port
        await asyncio.sleep(self.stop_settle_delay)

    async def _start_once(self, service: str, attempt: int) -> bool:
        self.logger.debug(
            "Start attempt %d of %d for %s", attempt, MAX_START_ATTEMPTS, service
        )
        result = await self._systemctl("start", service)
        if not result.ok:
            self.logger.warning(
                "systemctl start %s failed (attempt %d): %s",
                service,
                attempt,
                result.output(),
            )
            return False

        await asyncio.sleep(self.start_check_delay)
        if await self.is_active(service):
            return True
        self.logger.warning(
            "Service %s is not active after start (attempt %d)", service, attempt
        )
        return False

    async def _dump_diagnostics(self, flavor: AgentFlavor) -> None:
        service = flavor.service
        status = await self._systemctl("status", service, "--no-pager", "-l")
        self.logger.info("Service status:\n%s", status.stdout.strip())

        journal = await self.runner(
            ["journalctl", "-u", service, "--no-pager", "-l", "-n", "20"], timeout=60
        )
        self.logger.info("Recent service logs:\n%s", journal.stdout.strip())

        config_test = await self.runner(
            [flavor.binary, "-T", "-c", flavor.config_file], timeout=60
        )
        output = (config_test.stdout + config_test.stderr).strip()
        if output:
            self.logger.info("Configuration test result: %s", output)

    async def restart_agent(self, flavor: AgentFlavor, agent_port: int) -> None:
        """
        Enable the unit and run a full stop/start cycle.

        Raises:
            ServiceError: when the unit is not active after every attempt.
        """
        service = flavor.service
        self.logger.info(_("Configuring Zabbix service %s..."), service)

        await self._enable(service)
        await self._stop_if_active(service)

        result = await self._systemctl("daemon-reload")
        if not result.ok:
            self.logger.debug("daemon-reload failed: %s", result.output())

        self.logger.info("Starting service %s...", service)
        for attempt in range(1, MAX_START_ATTEMPTS + 1):
            if await self._start_once(service, attempt):
                self.logger.info(_("Service %s started"), service)
                self._check_listening(service, agent_port)
                return
            if attempt < MAX_START_ATTEMPTS:
                self.logger.info("Retrying in %s seconds...", self.retry_delay)
                await asyncio.sleep(self.retry_delay)

        self.logger.error(
            _("Could not start %s after %d attempts"), service, MAX_START_ATTEMPTS
        )
        await self._dump_diagnostics(flavor)
        raise ServiceError(_("Service %s failed to start") % service)

    def _check_listening(self, service: str, port: int) -> bool:
        listening = is_port_listening(port)
        if listening:
            self.logger.info("Service %s is listening on port %d", service, port)
        else:
            self.logger.warning(
                "Service %s is running but does not appear to listen on port %d",
                service,
                port,
            )
        return listening
