"""
Configuration management for the Zabbix agent installer.

The effective configuration is resolved once per run from three layers:
command-line flags, environment variables and an optional YAML file (in that
order of precedence), on top of built-in defaults. The result is a frozen
InstallerConfig that every later stage receives by reference.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union
from urllib.parse import urlparse

import yaml

from src.i18n import DEFAULT_LANGUAGE, _
from src.zabbix_installer.core.exceptions import PreconditionError

SYSTEM_CONFIG_FILE = "/etc/zabbix-installer.yaml"
LOCAL_CONFIG_FILE = "./zabbix-installer.yaml"

DEFAULT_HOST_GROUP = "Linux servers"
DEFAULT_TEMPLATE_NAME = "Linux by Zabbix agent"
DEFAULT_SERVER_PORT = 10051
DEFAULT_AGENT_PORT = 10050

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off", "")


@dataclass(frozen=True)
class PasswordAuth:
    """Classic user.login credentials."""

    user: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class TokenAuth:
    """Static API token sent as a bearer header."""

    token: str = field(repr=False)


Auth = Union[PasswordAuth, TokenAuth]


@dataclass(frozen=True)
class InstallerConfig:  # pylint: disable=too-many-instance-attributes
    """Effective configuration for one installer run."""

    server_url: str
    auth: Auth
    host_group: str = DEFAULT_HOST_GROUP
    template_name: str = DEFAULT_TEMPLATE_NAME
    known_group_id: Optional[str] = None
    known_template_id: Optional[str] = None
    expected_version: Optional[str] = None
    server_port: int = DEFAULT_SERVER_PORT
    agent_port: int = DEFAULT_AGENT_PORT
    force_reinstall: bool = False
    update_existing: bool = False
    debug: bool = False
    dry_run: bool = False
    verify_ssl: bool = True
    language: str = DEFAULT_LANGUAGE

    @property
    def server_host(self) -> str:
        """Bare host name of the server, as written into the agent config."""
        return extract_server_host(self.server_url)


@dataclass(frozen=True)
class _Setting:
    env: str
    yaml_path: str
    default: Any = None
    kind: str = "str"


# Field name -> where to look for it. CLI keys use the field names.
SETTINGS: Dict[str, _Setting] = {
    "server_url": _Setting("ZABBIX_SERVER_URL", "server.url"),
    "api_user": _Setting("ZABBIX_API_USER", "auth.user"),
    "api_password": _Setting("ZABBIX_API_PASSWORD", "auth.password"),
    "api_token": _Setting("ZABBIX_API_TOKEN", "auth.token"),
    "host_group": _Setting("ZABBIX_HOST_GROUP", "host.group", DEFAULT_HOST_GROUP),
    "template_name": _Setting(
        "ZABBIX_TEMPLATE_NAME", "host.template", DEFAULT_TEMPLATE_NAME
    ),
    "known_group_id": _Setting("ZABBIX_KNOWN_GROUP_ID", "host.known_group_id"),
    "known_template_id": _Setting(
        "ZABBIX_KNOWN_TEMPLATE_ID", "host.known_template_id"
    ),
    "expected_version": _Setting("ZABBIX_EXPECTED_VERSION", "agent.expected_version"),
    "server_port": _Setting(
        "ZABBIX_SERVER_PORT", "server.port", DEFAULT_SERVER_PORT, "port"
    ),
    "agent_port": _Setting(
        "ZABBIX_AGENT_PORT", "agent.port", DEFAULT_AGENT_PORT, "port"
    ),
    "force_reinstall": _Setting(
        "FORCE_REINSTALL", "options.force_reinstall", False, "bool"
    ),
    "update_existing": _Setting(
        "UPDATE_EXISTING_HOST", "options.update_existing", False, "bool"
    ),
    "verify_ssl": _Setting("ZABBIX_VERIFY_SSL", "server.verify_ssl", True, "bool"),
    "debug": _Setting("DEBUG", "options.debug", False, "bool"),
    "dry_run": _Setting("DRY_RUN", "options.dry_run", False, "bool"),
    "language": _Setting(
        "ZABBIX_INSTALLER_LANGUAGE", "i18n.language", DEFAULT_LANGUAGE
    ),
}


class ConfigManager:
    """Loads the optional YAML configuration file."""

    def __init__(self, config_file: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self.config_file = self._determine_config_path(config_file)
        self.config_data: Dict[str, Any] = {}
        if self.config_file:
            self.load_config()

    @staticmethod
    def _determine_config_path(config_file: Optional[str]) -> Optional[str]:
        """
        Determine configuration file path.

        Priority order:
        1. Explicit path (flag or ZABBIX_INSTALLER_CONFIG); must exist
        2. /etc/zabbix-installer.yaml
        3. ./zabbix-installer.yaml
        4. No file at all
        """
        if config_file:
            if not os.path.exists(config_file):
                raise PreconditionError(
                    _("Configuration file '%s' not found") % config_file
                )
            return config_file
        for candidate in (SYSTEM_CONFIG_FILE, LOCAL_CONFIG_FILE):
            if os.path.exists(candidate):
                return candidate
        return None

    def load_config(self) -> None:
        """Load configuration from YAML file."""
        try:
            with open(self.config_file, "r", encoding="utf-8") as file:
                data = yaml.safe_load(file) or {}
        except yaml.YAMLError as error:
            raise PreconditionError(
                _("Invalid YAML in configuration file: %s") % error
            ) from error
        except OSError as error:
            raise PreconditionError(
                _("Failed to load configuration file: %s") % error
            ) from error

        if not isinstance(data, dict):
            raise PreconditionError(
                _("Configuration file '%s' must contain a mapping") % self.config_file
            )
        self.config_data = data
        self.logger.debug("Loaded configuration file %s", self.config_file)

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key_path: Dot-separated path to the configuration key (e.g., 'server.url')
            default: Default value if key is not found

        Returns:
            Configuration value or default
        """
        value: Any = self.config_data
        try:
            for key in key_path.split("."):
                value = value[key]
            return value
        except (KeyError, TypeError):
            return default


def parse_bool(value: Any, name: str) -> bool:
    """Parse flag-like values such as "true", "0" or an actual bool."""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise PreconditionError(_("Invalid boolean value for %s: %s") % (name, value))


def parse_port(value: Any, name: str) -> int:
    """Parse a TCP port number."""
    try:
        port = int(str(value).strip())
    except ValueError as error:
        raise PreconditionError(
            _("Invalid port for %s: %s") % (name, value)
        ) from error
    if not 1 <= port <= 65535:
        raise PreconditionError(_("Port out of range for %s: %s") % (name, port))
    return port


def extract_server_host(server_url: str) -> str:
    """Host part of a server URL; bare host names are accepted as-is."""
    url = server_url if "://" in server_url else f"//{server_url}"
    return urlparse(url).hostname or ""


def validate_server_url(server_url: str) -> str:
    """Reject URLs that no API endpoint could be built from."""
    server_url = server_url.strip().rstrip("/")
    if not server_url:
        raise PreconditionError(
            _("Zabbix server URL is not defined. Use --server-url or ZABBIX_SERVER_URL")
        )
    if "://" in server_url:
        scheme = server_url.split("://", 1)[0].lower()
        if scheme not in ("http", "https"):
            raise PreconditionError(
                _("Server URL must use http:// or https://: %s") % server_url
            )
    if not extract_server_host(server_url):
        raise PreconditionError(_("Malformed server URL: %s") % server_url)
    return server_url


def _build_auth(user: Optional[str], password: Optional[str], token: Optional[str]):
    has_pair = bool(user) or bool(password)
    if token and has_pair:
        raise PreconditionError(
            _("Use either --api-token or --api-user/--api-password, not both")
        )
    if token:
        return TokenAuth(token)
    if user and password:
        return PasswordAuth(user, password)
    if has_pair:
        raise PreconditionError(
            _("Both --api-user and --api-password are required for password login")
        )
    raise PreconditionError(
        _(
            "Zabbix API credentials are required: "
            "--api-token or --api-user/--api-password"
        )
    )


def resolve_config(
    cli_values: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    config_manager: Optional[ConfigManager] = None,
) -> InstallerConfig:
    """
    Merge flags, environment and YAML file into an InstallerConfig.

    A CLI value of None means "not given on the command line".
    """
    cli_values = cli_values or {}
    environ = os.environ if environ is None else environ

    raw: Dict[str, Any] = {}
    for name, setting in SETTINGS.items():
        value = cli_values.get(name)
        if value is None and environ.get(setting.env) not in (None, ""):
            value = environ[setting.env]
        if value is None and config_manager is not None:
            value = config_manager.get(setting.yaml_path)
        if value is None:
            value = setting.default

        if setting.kind == "bool":
            value = parse_bool(value, setting.env)
        elif setting.kind == "port":
            value = parse_port(value, setting.env)
        elif value is not None:
            value = str(value).strip() or None
        raw[name] = value

    auth = _build_auth(
        raw.pop("api_user"), raw.pop("api_password"), raw.pop("api_token")
    )
    server_url = validate_server_url(raw.pop("server_url") or "")

    return InstallerConfig(
        server_url=server_url,
        auth=auth,
        host_group=raw["host_group"] or DEFAULT_HOST_GROUP,
        template_name=raw["template_name"] or DEFAULT_TEMPLATE_NAME,
        known_group_id=raw["known_group_id"],
        known_template_id=raw["known_template_id"],
        expected_version=raw["expected_version"],
        server_port=raw["server_port"],
        agent_port=raw["agent_port"],
        force_reinstall=raw["force_reinstall"],
        update_existing=raw["update_existing"],
        debug=raw["debug"],
        dry_run=raw["dry_run"],
        verify_ssl=raw["verify_ssl"],
        language=raw["language"] or DEFAULT_LANGUAGE,
    )
