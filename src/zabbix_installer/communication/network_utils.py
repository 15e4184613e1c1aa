"""
Network utilities module for the Zabbix agent installer.
Handles hostname resolution and primary IP address detection.

The primary address is picked by scoring candidates, because the first
non-loopback address on a real host is often a Docker bridge or a VPN tunnel.
"""

import asyncio
import logging
import re
import socket
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import psutil

from src.i18n import _
from src.zabbix_installer.core.async_utils import CommandRunner, run_command_async

# Loopback interface name prefixes; wlo1 and similar wireless names are kept
EXCLUDED_INTERFACE_PREFIXES = ("lo",)

# Interface name substrings that indicate virtual, tunnel or aggregate links
EXCLUDED_INTERFACES = (
    "loopback",
    "docker",
    "br-",
    "veth",
    "virbr",
    "vmnet",
    "vbox",
    "tun",
    "tap",
    "ppp",
    "wg",
    "vpn",
    "vlan",
    "bond",
    "team",
)

# Loopback, link-local, Docker, VirtualBox host-only and Hyper-V ranges
EXCLUDED_IP_PATTERNS = tuple(
    re.compile(pattern)
    for pattern in (
        r"^127\.",
        r"^169\.254\.",
        r"^172\.1[6-9]\.",
        r"^172\.2[0-9]\.",
        r"^172\.3[0-1]\.",
        r"^192\.168\.27\.",
        r"^192\.168\.56\.",
        r"^10\.0\.75\.",
    )
)

DEFAULT_ROUTE_SCORE = 100

_PRIVATE_172 = re.compile(r"^172\.(1[6-9]|2[0-9]|3[0-1])\.")
_WIRED_PREFIX = re.compile(r"^(eth|ens|enp|eno|em)")
_WIRELESS_PREFIX = re.compile(r"^wl")


@dataclass(frozen=True)
class AddressCandidate:
    """An IPv4 address bound to a named interface."""

    interface: str
    address: str


def is_excluded_interface(interface: str) -> bool:
    """True when the interface name contains a virtual/tunnel marker."""
    if interface.startswith(EXCLUDED_INTERFACE_PREFIXES):
        return True
    return any(marker in interface for marker in EXCLUDED_INTERFACES)


def is_excluded_address(address: str) -> bool:
    """True for reserved, link-local and container-range addresses."""
    return any(pattern.search(address) for pattern in EXCLUDED_IP_PATTERNS)


def score_candidate(candidate: AddressCandidate) -> int:
    """
    Score an enumerated address.

    Public addresses beat 192.168/16, which beats 10/8, which beats 172.16/12;
    conventional wired and wireless interface names get a bonus.
    """
    address = candidate.address
    if address.startswith("192.168."):
        score = 50
    elif address.startswith("10."):
        score = 40
    elif _PRIVATE_172.match(address):
        score = 30
    else:
        score = 60

    if _WIRED_PREFIX.match(candidate.interface):
        score += 20
    elif _WIRELESS_PREFIX.match(candidate.interface):
        score += 15
    return score


def select_primary_address(
    default_route: Optional[AddressCandidate],
    candidates: Iterable[AddressCandidate],
) -> Optional[Tuple[AddressCandidate, int]]:
    """
    Pick the best address.

    The default-route address wins outright unless its interface or address is
    excluded. Otherwise every non-excluded candidate is scored; a later
    candidate replaces the best only with a strictly higher score, so ties
    keep the first one seen.
    """
    if (
        default_route is not None
        and not is_excluded_interface(default_route.interface)
        and not is_excluded_address(default_route.address)
    ):
        return default_route, DEFAULT_ROUTE_SCORE

    best: Optional[Tuple[AddressCandidate, int]] = None
    for candidate in candidates:
        if is_excluded_address(candidate.address):
            continue
        if is_excluded_interface(candidate.interface):
            continue
        score = score_candidate(candidate)
        if best is None or score > best[1]:
            best = (candidate, score)
    return best


class NetworkUtils:
    """Handles network-related utilities for the installer."""

    def __init__(self, runner: CommandRunner = run_command_async):
        self.logger = logging.getLogger(__name__)
        self.runner = runner

    def get_hostname(self) -> str:
        """Fully qualified host name, falling back to the short name."""
        fqdn = socket.getfqdn()
        self.logger.debug("socket.getfqdn() returned: %r", fqdn)
        if fqdn and fqdn.strip() and fqdn not in ("localhost", "localhost.localdomain"):
            return fqdn.strip()

        hostname = socket.gethostname().strip()
        if not hostname:
            hostname = "unknown-host"
            self.logger.warning(
                "Could not determine hostname, using fallback: %s", hostname
            )
        return hostname

    async def get_default_route(self) -> Optional[AddressCandidate]:
        """Interface and source address used to reach the internet."""
        result = await self.runner(["ip", "route", "get", "8.8.8.8"], timeout=10)
        if not result.ok:
            self.logger.debug("ip route get failed: %s", result.output())
            return None

        dev = re.search(r"\bdev\s+(\S+)", result.stdout)
        src = re.search(r"\bsrc\s+(\S+)", result.stdout)
        if not dev or not src:
            return None
        return AddressCandidate(dev.group(1), src.group(1))

    def list_ipv4_addresses(self) -> List[AddressCandidate]:
        """All IPv4 addresses in interface enumeration order."""
        candidates = []
        for interface, addresses in psutil.net_if_addrs().items():
            for address in addresses:
                if address.family != socket.AF_INET:
                    continue
                if address.address == "127.0.0.1":
                    continue
                candidates.append(AddressCandidate(interface, address.address))
        return candidates

    async def _hostname_fallback(self) -> Optional[str]:
        result = await self.runner(["hostname", "-I"], timeout=10)
        if result.ok and result.stdout.split():
            return result.stdout.split()[0]
        return None

    async def detect_primary_ip(self) -> Optional[str]:
        """Detect the host's primary non-virtual IPv4 address."""
        self.logger.debug("Detecting primary system IP...")

        default_route = await self.get_default_route()
        if default_route:
            self.logger.debug(
                "Default route IP: %s (interface: %s)",
                default_route.address,
                default_route.interface,
            )

        candidates = self.list_ipv4_addresses()
        for candidate in candidates:
            self.logger.debug(
                "Candidate IP %s (interface %s) score %d",
                candidate.address,
                candidate.interface,
                score_candidate(candidate),
            )

        selected = select_primary_address(default_route, candidates)
        if selected is not None:
            candidate, score = selected
            self.logger.debug(
                "Selected IP: %s (interface: %s, score: %d)",
                candidate.address,
                candidate.interface,
                score,
            )
            return candidate.address

        self.logger.warning(
            _("Could not detect IP intelligently, falling back to hostname -I")
        )
        return await self._hostname_fallback()


async def tcp_port_open(host: str, port: int, timeout: float = 5.0) -> bool:
    """Whether a TCP connection to host:port succeeds within the timeout."""
    try:
        _reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=timeout
        )
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True
