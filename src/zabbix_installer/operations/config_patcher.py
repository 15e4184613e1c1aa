"""
Agent configuration patching.

The agent config is a flat Key=value file where most keys ship commented out
("# Key=default"). Patching is expressed as pure text transformations so it
can be checked for idempotence without touching the filesystem; the
ConfigPatcher class wraps them with backup, validation and restore.
"""

import logging
import os
import re
import shutil
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from src.i18n import _
from src.zabbix_installer.core.async_utils import (
    AsyncProcessResult,
    CommandRunner,
    read_file_async,
    run_command_async,
    write_file_async,
)
from src.zabbix_installer.core.config import InstallerConfig
from src.zabbix_installer.core.exceptions import ConfigPatchError
from src.zabbix_installer.core.models import ZABBIX_AGENT2, AgentFlavor, SystemInfo
from src.zabbix_installer.operations.backup import BackupManager

AGENT_LOG_DIR = "/var/log/zabbix"
AGENT_USER = "zabbix"
AUTO_CONFIG_COMMENT = "# Auto-configured by Zabbix installer"

# Keys zabbix_agent2 rejects
AGENT2_UNSUPPORTED_KEYS = (
    "StartAgents",
    "BufferSend",
    "EnableRemoteCommands",
    "LogRemoteCommands",
)


@dataclass(frozen=True)
class ConfigRule:
    """Set one key to a fixed value."""

    key: str
    value: str

    def render(self) -> str:
        return f"{self.key}={self.value}"


def build_rules(
    config: InstallerConfig, system: SystemInfo, flavor: AgentFlavor
) -> List[ConfigRule]:
    """Ordered rewrite rules for one run."""
    server_host = config.server_host
    rules = [
        ConfigRule("Server", server_host),
        ConfigRule("ServerActive", f"{server_host}:{config.server_port}"),
        ConfigRule("Hostname", system.hostname),
        ConfigRule("ListenPort", str(config.agent_port)),
        ConfigRule("ListenIP", "0.0.0.0"),  # nosec B104
        ConfigRule("StartAgents", "3"),
        ConfigRule("RefreshActiveChecks", "60"),
        ConfigRule("BufferSend", "5"),
        ConfigRule("BufferSize", "100"),
        ConfigRule("Timeout", "3"),
        ConfigRule("EnableRemoteCommands", "0"),
        ConfigRule("LogRemoteCommands", "0"),
    ]
    if flavor.package == ZABBIX_AGENT2.package:
        rules = [rule for rule in rules if rule.key not in AGENT2_UNSUPPORTED_KEYS]
    return rules


def build_appends(
    system: SystemInfo, flavor: AgentFlavor
) -> List[Tuple[str, List[str]]]:
    """Keys added only when no active line exists, with the lines to append."""
    metadata = (
        f"HostMetadata=Linux {system.distro.distro_id} "
        f"{system.distro.version} {system.architecture}"
    )
    return [
        ("HostMetadata", ["", AUTO_CONFIG_COMMENT, metadata]),
        ("LogFile", [f"LogFile={flavor.log_file}"]),
        ("LogFileSize", ["LogFileSize=10"]),
    ]


def _active_pattern(key: str):
    return re.compile(r"^\s*" + re.escape(key) + r"\s*=")


def _commented_pattern(key: str):
    return re.compile(r"^\s*#\s*" + re.escape(key) + r"\s*=")


def apply_rule(lines: List[str], rule: ConfigRule) -> List[str]:
    """
    Rewrite one key.

    The first active line is rewritten and later active duplicates dropped.
    Without an active line, the first commented-out line is rewritten. A key
    that appears in neither form is left alone.
    """
    active = _active_pattern(rule.key)
    result = []
    replaced = False
    for line in lines:
        if active.match(line):
            if not replaced:
                result.append(rule.render())
                replaced = True
            continue
        result.append(line)
    if replaced:
        return result

    commented = _commented_pattern(rule.key)
    for index, line in enumerate(result):
        if commented.match(line):
            result[index] = rule.render()
            break
    return result


def has_active_key(lines: Sequence[str], key: str) -> bool:
    pattern = _active_pattern(key)
    return any(pattern.match(line) for line in lines)


def patch_text(
    text: str,
    rules: Sequence[ConfigRule],
    appends: Sequence[Tuple[str, List[str]]] = (),
) -> str:
    """Apply rewrite rules then the append-if-absent keys to config text."""
    lines = text.splitlines()
    for rule in rules:
        lines = apply_rule(lines, rule)
    for key, new_lines in appends:
        if not has_active_key(lines, key):
            lines.extend(new_lines)
    return "\n".join(lines) + "\n"


class ConfigPatcher:
    """Patches, validates and if needed restores the agent config file."""

    def __init__(
        self,
        backup_manager: BackupManager,
        runner: CommandRunner = run_command_async,
        log_dir: str = AGENT_LOG_DIR,
    ):
        self.logger = logging.getLogger(__name__)
        self.backup_manager = backup_manager
        self.runner = runner
        self.log_dir = log_dir

    def ensure_log_dir(self) -> None:
        """Create the agent log directory owned by the agent user."""
        os.makedirs(self.log_dir, exist_ok=True)
        try:
            shutil.chown(self.log_dir, user=AGENT_USER, group=AGENT_USER)
        except (LookupError, OSError) as error:
            self.logger.debug("Could not chown %s: %s", self.log_dir, error)

    async def validate(self, flavor: AgentFlavor) -> AsyncProcessResult:
        """Run the agent binary's config test."""
        return await self.runner(
            [flavor.binary, "-T", "-c", flavor.config_file], timeout=60
        )

    async def patch(
        self, flavor: AgentFlavor, config: InstallerConfig, system: SystemInfo
    ) -> None:
        """
        Patch the agent config for this host.

        Raises:
            ConfigPatchError: when the file is missing or the agent rejects
                the patched file; the pre-patch content is put back first.
        """
        config_file = flavor.config_file
        self.logger.info(_("Configuring Zabbix agent..."))
        if not os.path.isfile(config_file):
            raise ConfigPatchError(
                _("Configuration file not found: %s") % config_file
            )

        self.logger.info("Zabbix server: %s", config.server_host)
        self.logger.info("Agent hostname: %s", system.hostname)

        original = await read_file_async(config_file)
        self.backup_manager.backup_file(config_file)

        patched = patch_text(
            original,
            build_rules(config, system, flavor),
            build_appends(system, flavor),
        )
        if patched == original:
            self.logger.debug("%s already up to date", config_file)
        else:
            await write_file_async(config_file, patched)

        self.ensure_log_dir()

        result = await self.validate(flavor)
        if not result.ok:
            self.logger.error(
                _("Invalid Zabbix agent configuration: %s"), result.output()
            )
            self.logger.info(_("Restoring original configuration..."))
            await write_file_async(config_file, original)
            raise ConfigPatchError(
                _("Agent rejected the patched configuration: %s") % result.output()
            )
