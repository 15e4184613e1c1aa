"""
This module is the entry point of the Zabbix agent installer. It resolves the
run configuration, then drives the installation pipeline from preconditions
through host registration and verification, rolling back host changes when a
stage fails.
"""

import asyncio
import logging
import os
import shutil
import sys
from typing import Any, Callable, Optional

import click

from src.i18n import _, set_language
from src.zabbix_installer.collection.system_probe import SystemProber
from src.zabbix_installer.communication.zabbix_api_client import ZabbixApiClient
from src.zabbix_installer.core.async_utils import CommandRunner, run_command_async
from src.zabbix_installer.core.config import (
    ConfigManager,
    InstallerConfig,
    PasswordAuth,
    resolve_config,
)
from src.zabbix_installer.core.exceptions import InstallerError, PreconditionError
from src.zabbix_installer.core.models import RegistrationOutcome, SystemInfo
from src.zabbix_installer.core.rollback import RollbackStack
from src.zabbix_installer.core.version import get_version_banner
from src.zabbix_installer.operations.agent_installation import AgentInstallation
from src.zabbix_installer.operations.agent_verification import AgentVerifier
from src.zabbix_installer.operations.backup import BackupManager
from src.zabbix_installer.operations.config_patcher import ConfigPatcher
from src.zabbix_installer.operations.firewall_operations import FirewallOperations
from src.zabbix_installer.operations.package_base import PackageBackend
from src.zabbix_installer.operations.package_operations import get_package_backend
from src.zabbix_installer.operations.service_manager import (
    ServiceManager,
    SystemdServiceManager,
)
from src.zabbix_installer.registration.host_registration import HostRegistrar
from src.zabbix_installer.utils.logging_setup import log_success, setup_logging

# Needed on every supported distribution regardless of package family;
# HTTP goes through aiohttp so curl and wget are not required
BASE_COMMANDS = ("systemctl",)


def is_running_as_root() -> bool:
    """Check whether the process has root privileges."""
    return os.geteuid() == 0


class AgentInstaller:  # pylint: disable=too-many-instance-attributes
    """Runs the installation pipeline for one host."""

    def __init__(
        self,
        config: InstallerConfig,
        runner: CommandRunner = run_command_async,
        prober: Optional[SystemProber] = None,
        backend_factory: Callable[..., PackageBackend] = get_package_backend,
        api_client: Optional[ZabbixApiClient] = None,
        service_manager: Optional[ServiceManager] = None,
        backup_manager: Optional[BackupManager] = None,
    ):
        self.logger = logging.getLogger(__name__)
        self.config = config
        self.runner = runner
        self.prober = prober or SystemProber()
        self.backend_factory = backend_factory
        self.api_client = api_client or ZabbixApiClient(config)
        self.service_manager = service_manager or SystemdServiceManager(runner)
        self.backup_manager = backup_manager or BackupManager()

    def validate_preconditions(self, backend: Optional[PackageBackend] = None) -> None:
        """
        Check privileges and required commands before touching the host.

        Raises:
            PreconditionError: when not root or a required command is missing.
        """
        if not is_running_as_root():
            raise PreconditionError(_("This installer must be run as root"))

        missing = [cmd for cmd in BASE_COMMANDS if shutil.which(cmd) is None]
        if backend is not None:
            missing.extend(backend.missing_commands())
        if missing:
            raise PreconditionError(
                _("Required commands not found: %s") % ", ".join(missing)
            )

    def show_summary(self, system: SystemInfo) -> None:
        """Log what the run is about to do."""
        config = self.config
        auth_mode = (
            "user %s" % config.auth.user
            if isinstance(config.auth, PasswordAuth)
            else "API token"
        )
        self.logger.info("=== %s ===", _("Installation summary"))
        self.logger.info("Distribution: %s (%s)", system.distro, system.architecture)
        self.logger.info("Hostname: %s", system.hostname)
        self.logger.info("IP address: %s", system.primary_ip)
        self.logger.info("Zabbix server: %s", config.server_url)
        self.logger.info("Authentication: %s", auth_mode)
        self.logger.info("Host group: %s", config.host_group)
        self.logger.info("Template: %s", config.template_name)
        self.logger.info(
            "Ports: server %d, agent %d", config.server_port, config.agent_port
        )
        self.logger.info(
            "Force reinstall: %s, update existing host: %s",
            config.force_reinstall,
            config.update_existing,
        )

    async def _report_host_left_registered(self, hostname: str) -> None:
        # Rollback only undoes host changes; the server record is kept
        self.logger.warning(
            _(
                "Host %s remains registered on the Zabbix server; the next run "
                "will find it and skip creation unless --update-existing is given"
            ),
            hostname,
        )

    async def _install(
        self, system: SystemInfo, backend: PackageBackend
    ) -> RegistrationOutcome:
        config = self.config
        async with RollbackStack() as rollback:
            installation = AgentInstallation(
                backend, self.backup_manager, rollback, self.runner
            )
            flavor = await installation.ensure_installed(system, config)
            log_success(self.logger, _("Zabbix agent package ready"))

            await ConfigPatcher(self.backup_manager, self.runner).patch(
                flavor, config, system
            )
            log_success(self.logger, _("Zabbix agent configured"))

            await FirewallOperations(self.runner).configure(config.agent_port)

            service_flavor = await self.service_manager.resolve_flavor(backend)
            await self.service_manager.restart_agent(service_flavor, config.agent_port)
            log_success(self.logger, _("Zabbix agent service running"))

            outcome = await HostRegistrar(self.api_client, config).register(system)
            log_success(self.logger, _("Host registration: %s"), outcome.value)
            if outcome == RegistrationOutcome.CREATED:
                rollback.push(
                    "report host record %s" % system.hostname,
                    self._report_host_left_registered,
                    system.hostname,
                )

            await AgentVerifier(self.service_manager, self.runner).verify(
                service_flavor, config.agent_port
            )
            rollback.commit()
        return outcome

    async def run(self) -> Optional[RegistrationOutcome]:
        """
        Run every stage in order.

        Returns:
            The registration outcome, or None for a dry run.

        Raises:
            InstallerError: from the first stage that fails.
        """
        self.logger.info(_("Starting Zabbix agent installation"))
        self.validate_preconditions()

        system = await self.prober.probe()
        backend = self.backend_factory(system.distro, runner=self.runner)
        self.validate_preconditions(backend)
        await backend.prepare(dry_run=self.config.dry_run)

        await self.api_client.check_connection()
        await self.api_client.probe_server_port()

        self.show_summary(system)
        if self.config.dry_run:
            log_success(
                self.logger, _("Dry run completed, no changes were made to the host")
            )
            return None

        outcome = await self._install(system, backend)
        log_success(self.logger, _("=== Installation completed successfully ==="))
        return outcome


async def run_installer(config: InstallerConfig, log_file: str) -> int:
    """Run the pipeline and map the result to a process exit code."""
    logger = logging.getLogger(__name__)
    try:
        await AgentInstaller(config).run()
    except InstallerError as error:
        logger.error(_("Installation failed: %s"), error)
        logger.info(_("Log saved to: %s"), log_file)
        return 1
    logger.info(_("Log saved to: %s"), log_file)
    return 0


def _print_version(ctx: click.Context, _param: Any, value: bool) -> None:
    if not value or ctx.resilient_parsing:
        return
    click.echo(get_version_banner())
    ctx.exit()


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--server-url", "-s", "server_url", help="Zabbix server URL")
@click.option("--api-user", "-u", "api_user", help="Zabbix API user")
@click.option("--api-password", "-p", "api_password", help="Zabbix API password")
@click.option("--api-token", "-t", "api_token", help="Zabbix API token")
@click.option("--host-group", "-g", "host_group", help="Host group name")
@click.option("--template-name", help="Template to link to the host")
@click.option("--known-group-id", help="Host group ID to use without lookup")
@click.option("--known-template-id", help="Template ID to use without lookup")
@click.option("--expected-version", help="Minimum acceptable agent version")
@click.option("--server-port", type=int, help="Zabbix server port (default 10051)")
@click.option("--agent-port", type=int, help="Zabbix agent port (default 10050)")
@click.option("--force-reinstall", is_flag=True, help="Remove and reinstall the agent")
@click.option("--update-existing", is_flag=True, help="Update an existing host record")
@click.option("--no-verify-ssl", is_flag=True, help="Skip TLS certificate checks")
@click.option("--config", "-c", "config_file", help="YAML configuration file")
@click.option("--debug", is_flag=True, help="Verbose logging")
@click.option("--dry-run", is_flag=True, help="Validate only, change nothing")
@click.option(
    "--version",
    "-v",
    is_flag=True,
    expose_value=False,
    is_eager=True,
    callback=_print_version,
    help="Show version and exit",
)
def cli(
    config_file: Optional[str],
    no_verify_ssl: bool,
    **options: Any,
) -> None:
    """Install, configure and register a Zabbix agent on this host."""
    # Unset flags must not override environment or file values
    cli_values = {
        name: (value or None) if isinstance(value, bool) else value
        for name, value in options.items()
    }
    cli_values["verify_ssl"] = False if no_verify_ssl else None

    log_file = setup_logging(debug=bool(options.get("debug")))
    logger = logging.getLogger(__name__)

    try:
        config_manager = ConfigManager(
            config_file or os.environ.get("ZABBIX_INSTALLER_CONFIG")
        )
        config = resolve_config(cli_values, os.environ, config_manager)
    except PreconditionError as error:
        logger.error("%s", error)
        sys.exit(1)

    set_language(config.language)
    if config.debug and not options.get("debug"):
        setup_logging(debug=True, log_file=log_file)

    logger.info(get_version_banner().splitlines()[0])
    logger.debug("Run log: %s", log_file)
    sys.exit(asyncio.run(run_installer(config, log_file)))


if __name__ == "__main__":
    cli()  # pylint: disable=no-value-for-parameter
