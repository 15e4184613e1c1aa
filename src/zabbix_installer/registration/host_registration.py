"""
Host registration with the Zabbix server.

Host groups and templates are resolved with the same lookup-with-fallback
pattern: a pre-supplied ID is verified and used, otherwise the object is
searched by name. Groups that do not exist are created; templates fall back
to a list of well-known Linux template names and IDs.
"""

import logging
from typing import Any, Dict, List, Optional

from src.i18n import _
from src.zabbix_installer.communication.zabbix_api_client import ZabbixApiClient
from src.zabbix_installer.core.config import InstallerConfig
from src.zabbix_installer.core.exceptions import ApiError, RegistrationError
from src.zabbix_installer.core.models import (
    HostRegistration,
    RegistrationOutcome,
    SystemInfo,
)

FALLBACK_TEMPLATES = (
    "Linux by Zabbix agent",
    "Template OS Linux",
    "Template OS Linux by Zabbix agent",
    "10001",
)

TEMPLATE_OUTPUT = ["templateid", "host", "name"]


def build_inventory(system: SystemInfo, software: str) -> Dict[str, str]:
    """Inventory fields written on host.create and host.update."""
    return {
        "os": system.kernel,
        "os_full": str(system.distro),
        "hardware": system.architecture,
        "software": software,
    }


def _first(result: Any) -> Optional[Dict[str, Any]]:
    if isinstance(result, list) and result and isinstance(result[0], dict):
        return result[0]
    return None


class HostRegistrar:
    """Creates, updates or leaves alone the host record for this machine."""

    def __init__(self, client: ZabbixApiClient, config: InstallerConfig):
        self.logger = logging.getLogger(__name__)
        self.client = client
        self.config = config

    async def _verify_known_group(self, group_id: str) -> bool:
        try:
            result = await self.client.call(
                "hostgroup.get", {"output": ["groupid", "name"], "groupids": [group_id]}
            )
        except ApiError as error:
            self.logger.warning(
                "Could not verify known group ID %s (%s), searching by name",
                group_id,
                error,
            )
            return False

        group = _first(result)
        if group and group.get("name"):
            self.logger.info(
                "Using known group ID %s (name: %s)", group_id, group["name"]
            )
            return True
        self.logger.warning(
            "Known group ID %s is not valid, searching by name", group_id
        )
        return False

    async def create_host_group(self, name: str) -> str:
        self.logger.info(_("Creating host group: %s"), name)
        result = await self.client.call("hostgroup.create", {"name": name})
        group_ids = result.get("groupids") if isinstance(result, dict) else None
        if not group_ids:
            raise RegistrationError(_("hostgroup.create returned no group ID"))
        self.logger.info("Host group created with ID %s", group_ids[0])
        return str(group_ids[0])

    async def resolve_host_group(self) -> str:
        """ID of the configured host group, creating the group when absent."""
        name = self.config.host_group
        self.logger.info(_("Resolving host group: %s"), name)

        known_id = self.config.known_group_id
        if known_id and await self._verify_known_group(known_id):
            return known_id

        result = await self.client.call(
            "hostgroup.get", {"output": ["groupid", "name"], "filter": {"name": [name]}}
        )
        group = _first(result)
        if group and group.get("groupid"):
            self.logger.info("Host group '%s' has ID %s", name, group["groupid"])
            return str(group["groupid"])

        self.logger.warning(_("Host group '%s' not found, creating it"), name)
        return await self.create_host_group(name)

    async def _template_get(self, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        params = {"output": TEMPLATE_OUTPUT, **params}
        try:
            return _first(await self.client.call("template.get", params))
        except ApiError as error:
            self.logger.debug("template.get %s failed: %s", params, error)
            return None

    async def _template_candidates(self, name: str) -> Optional[str]:
        """Try the name filter, then the technical host name filter."""
        for field in ("name", "host"):
            template = await self._template_get({"filter": {field: [name]}})
            if template and template.get("templateid"):
                return str(template["templateid"])
        return None

    async def _fallback_template(self, configured: str) -> Optional[str]:
        for fallback in FALLBACK_TEMPLATES:
            if fallback == configured:
                continue
            self.logger.info("Trying fallback template: %s", fallback)
            if fallback.isdigit():
                template = await self._template_get({"templateids": [fallback]})
            else:
                template = await self._template_get({"search": {"name": fallback}})
            if template and template.get("templateid"):
                self.logger.info(
                    "Using fallback template %s (ID: %s)",
                    fallback,
                    template["templateid"],
                )
                return str(template["templateid"])
        return None

    async def resolve_template(self) -> Optional[str]:
        """
        ID of the template to link, or None.

        A missing template is not fatal: the host is then created without one.
        """
        name = self.config.template_name
        self.logger.info(_("Resolving template: %s"), name)

        known_id = self.config.known_template_id
        if known_id:
            template = await self._template_get({"templateids": [known_id]})
            if template and (template.get("name") or template.get("host")):
                self.logger.info("Using known template ID %s", known_id)
                return known_id
            self.logger.warning(
                "Known template ID %s is not valid, searching by name", known_id
            )

        template_id = await self._template_candidates(name)
        if template_id:
            self.logger.info("Template '%s' has ID %s", name, template_id)
            return template_id

        self.logger.warning(_("Template '%s' not found"), name)
        template_id = await self._fallback_template(name)
        if template_id is None:
            self.logger.warning(
                _("No usable Linux template found, registering host without one")
            )
        return template_id

    async def find_hosts_by_ip(self, ip: str) -> List[Dict[str, Any]]:
        """Hosts whose interface carries the given IP."""
        result = await self.client.call(
            "host.get",
            {"output": ["hostid", "host", "name", "status"], "filter": {"ip": ip}},
        )
        return [host for host in result or [] if isinstance(host, dict)]

    async def register(self, system: SystemInfo) -> RegistrationOutcome:
        """
        Register this machine; exactly one of create, update or skip happens.

        Raises:
            RegistrationError: when a create or update call fails.
        """
        self.logger.info(_("Registering host in Zabbix..."))
        registration = HostRegistration(
            host_name=system.hostname,
            ip=system.primary_ip,
            port=self.config.agent_port,
        )

        try:
            existing = await self.find_hosts_by_ip(system.primary_ip)
            if existing:
                return await self._handle_existing(existing[0], registration, system)
            self.logger.info("No existing host with IP %s", system.primary_ip)

            registration.group_id = await self.resolve_host_group()
            registration.template_id = await self.resolve_template()
            registration.inventory = build_inventory(
                system, "Zabbix Agent Auto-installed"
            )
            result = await self.client.call(
                "host.create", registration.to_create_params()
            )
        except ApiError as error:
            raise RegistrationError(
                _("Host registration failed: %s") % error
            ) from error

        host_ids = result.get("hostids") if isinstance(result, dict) else None
        if not host_ids:
            raise RegistrationError(_("host.create returned no host ID"))
        registration.host_id = str(host_ids[0])
        self.logger.info(_("Host registered with ID %s"), registration.host_id)
        return RegistrationOutcome.CREATED

    async def _handle_existing(
        self,
        host: Dict[str, Any],
        registration: HostRegistration,
        system: SystemInfo,
    ) -> RegistrationOutcome:
        self.logger.warning(
            "Found existing host with IP %s: ID %s, name %s, status %s",
            system.primary_ip,
            host.get("hostid"),
            host.get("host"),
            host.get("status"),
        )
        if not self.config.update_existing:
            self.logger.info(
                _("Host already registered, skipping (use --update-existing to update)")
            )
            return RegistrationOutcome.SKIPPED

        if not host.get("hostid"):
            raise RegistrationError(
                _("host.get returned a host without an ID for IP %s")
                % system.primary_ip
            )
        registration.host_id = str(host["hostid"])
        registration.inventory = build_inventory(system, "Zabbix Agent Auto-updated")
        self.logger.info(_("Updating existing host %s"), registration.host_id)
        await self.client.call("host.update", registration.to_update_params())
        self.logger.info(_("Host updated"))
        return RegistrationOutcome.UPDATED
