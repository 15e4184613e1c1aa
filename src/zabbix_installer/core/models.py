"""
Data types shared between installer stages.
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class DistroFamily(str, enum.Enum):
    """Package-manager family of a supported distribution."""

    DEBIAN = "debian"
    RHEL = "rhel"


SUPPORTED_DISTROS: Dict[str, DistroFamily] = {
    "ubuntu": DistroFamily.DEBIAN,
    "debian": DistroFamily.DEBIAN,
    "centos": DistroFamily.RHEL,
    "rhel": DistroFamily.RHEL,
    "rocky": DistroFamily.RHEL,
    "almalinux": DistroFamily.RHEL,
}


@dataclass(frozen=True)
class DistroInfo:
    """A classified Linux distribution."""

    distro_id: str
    version: str

    @property
    def family(self) -> DistroFamily:
        return SUPPORTED_DISTROS[self.distro_id]

    @property
    def major_version(self) -> str:
        return self.version.split(".")[0]

    def __str__(self) -> str:
        return f"{self.distro_id} {self.version}"


@dataclass(frozen=True)
class SystemInfo:
    """Everything the later stages need to know about the host."""

    distro: DistroInfo
    architecture: str
    hostname: str
    primary_ip: str
    kernel: str = ""


@dataclass(frozen=True)
class AgentFlavor:
    """Files and names belonging to one agent implementation."""

    package: str
    service: str
    binary: str
    config_file: str
    log_file: str


ZABBIX_AGENT = AgentFlavor(
    package="zabbix-agent",
    service="zabbix-agent",
    binary="zabbix_agentd",
    config_file="/etc/zabbix/zabbix_agentd.conf",
    log_file="/var/log/zabbix/zabbix_agentd.log",
)

ZABBIX_AGENT2 = AgentFlavor(
    package="zabbix-agent2",
    service="zabbix-agent2",
    binary="zabbix_agent2",
    config_file="/etc/zabbix/zabbix_agent2.conf",
    log_file="/var/log/zabbix/zabbix_agent2.log",
)

AGENT_FLAVORS = (ZABBIX_AGENT, ZABBIX_AGENT2)


class RegistrationOutcome(str, enum.Enum):
    """What happened to the host record on the server."""

    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


# Zabbix interface type 1 is the passive agent interface
AGENT_INTERFACE_TYPE = 1


@dataclass
class HostRegistration:  # pylint: disable=too-many-instance-attributes
    """A host record as the installer wants it to look on the server."""

    host_name: str
    ip: str
    port: int
    group_id: Optional[str] = None
    template_id: Optional[str] = None
    host_id: Optional[str] = None
    inventory: Dict[str, str] = field(default_factory=dict)

    def _interfaces(self) -> List[Dict[str, Any]]:
        return [
            {
                "type": AGENT_INTERFACE_TYPE,
                "main": 1,
                "useip": 1,
                "ip": self.ip,
                "dns": "",
                "port": str(self.port),
            }
        ]

    def to_create_params(self) -> Dict[str, Any]:
        """Params for host.create."""
        params: Dict[str, Any] = {
            "host": self.host_name,
            "name": self.host_name,
            "interfaces": self._interfaces(),
            "groups": [{"groupid": self.group_id}],
            "inventory_mode": 1,
            "inventory": dict(self.inventory),
        }
        if self.template_id:
            params["templates"] = [{"templateid": self.template_id}]
        return params

    def to_update_params(self) -> Dict[str, Any]:
        """Params for host.update; requires host_id."""
        if not self.host_id:
            raise ValueError("host_id is required to update a host")
        return {
            "hostid": self.host_id,
            "host": self.host_name,
            "name": self.host_name,
            "interfaces": self._interfaces(),
            "inventory": dict(self.inventory),
        }
