"""
Host firewall handling for the agent port.

Security Note: commands are built from fixed arguments plus an integer port,
run without a shell, and only call trusted system utilities.
"""

import logging
import shutil
from typing import List

from src.i18n import _
from src.zabbix_installer.core.async_utils import CommandRunner, run_command_async


class FirewallOperations:
    """Opens the agent port in whichever host firewall is active."""

    def __init__(self, runner: CommandRunner = run_command_async):
        self.logger = logging.getLogger(__name__)
        self.runner = runner

    @staticmethod
    def _available(command: str) -> bool:
        return shutil.which(command) is not None

    async def _ufw(self, port: int) -> bool:
        if not self._available("ufw"):
            return False
        status = await self.runner(["ufw", "status"], timeout=30)
        if "Status: active" not in status.stdout:
            return False

        self.logger.info("UFW is active, adding rule for port %d/tcp", port)
        result = await self.runner(  # nosec B603 B607
            ["ufw", "allow", f"{port}/tcp", "comment", "Zabbix Agent"], timeout=30
        )
        if not result.ok:
            self.logger.warning(
                _("Could not configure UFW, manual configuration may be needed: %s"),
                result.output(),
            )
        return True

    async def _firewalld(self, port: int) -> bool:
        if not self._available("firewall-cmd"):
            return False
        active = await self.runner(
            ["systemctl", "is-active", "--quiet", "firewalld"], timeout=30
        )
        if not active.ok:
            return False

        self.logger.info("firewalld is active, adding rule for port %d/tcp", port)
        result = await self.runner(  # nosec B603 B607
            ["firewall-cmd", "--permanent", f"--add-port={port}/tcp"], timeout=60
        )
        if not result.ok:
            self.logger.warning(
                _(
                    "Could not configure firewalld, manual configuration may be "
                    "needed: %s"
                ),
                result.output(),
            )
        reload_result = await self.runner(["firewall-cmd", "--reload"], timeout=60)
        if not reload_result.ok:
            self.logger.warning(
                "firewall-cmd --reload failed: %s", reload_result.output()
            )
        return True

    async def _iptables(self, port: int) -> bool:
        if not self._available("iptables"):
            return False
        result = await self.runner(["iptables", "-L", "INPUT", "-n"], timeout=30)
        if not result.ok or "Chain INPUT" not in result.stdout:
            return False
        if str(port) in result.stdout:
            return False

        self.logger.info("iptables detected, the port may need to be opened manually")
        self.logger.info(
            "Suggested rule: iptables -A INPUT -p tcp --dport %d -j ACCEPT", port
        )
        return True

    async def configure(self, port: int) -> List[str]:
        """
        Allow the agent port in each active firewall.

        Every problem is logged as a warning; nothing here fails the run.

        Returns:
            Names of the firewalls that were found and handled.
        """
        self.logger.info(_("Configuring firewall if needed..."))
        handled = []
        for name, handler in (
            ("ufw", self._ufw),
            ("firewalld", self._firewalld),
            ("iptables", self._iptables),
        ):
            if await handler(port):
                handled.append(name)

        if not handled:
            self.logger.info("No active firewall detected")
        return handled
