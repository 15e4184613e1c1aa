"""
Zabbix JSON-RPC API client.

The server may be reachable on more than one base path (the web frontend is
commonly installed under /zabbix), and a URL given without a scheme may be
served over https or plain http. Every call therefore walks an ordered list
of candidate endpoints, with bounded outer retries.
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional

import aiohttp

from src.i18n import _
from src.zabbix_installer.communication.jsonrpc_models import (
    JsonRpcRequest,
    JsonRpcResponse,
)
from src.zabbix_installer.communication.network_utils import tcp_port_open
from src.zabbix_installer.core.config import InstallerConfig, PasswordAuth, TokenAuth
from src.zabbix_installer.core.exceptions import (
    ApiAuthenticationError,
    ApiConnectionError,
    ApiError,
)
from src.zabbix_installer.core.version import get_installer_version

API_PATHS = ("api_jsonrpc.php", "zabbix/api_jsonrpc.php")

# Invalid params, parse error and "not authorised": retrying cannot help
AUTH_ERROR_CODES = frozenset({-32602, -32700, -32004})

MAX_ATTEMPTS = 3
RETRY_DELAY = 5.0
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=30, connect=15)

_SCHEME = re.compile(r"^https?://", re.IGNORECASE)


def build_candidate_urls(server_url: str) -> List[str]:
    """
    Ordered API endpoints for a configured server URL.

    With a scheme: the root path, then /zabbix. Without one: both paths over
    https first, then both over http.
    """
    base = server_url.rstrip("/")
    if _SCHEME.match(base):
        return [f"{base}/{path}" for path in API_PATHS]
    return [
        f"{scheme}://{base}/{path}"
        for scheme in ("https", "http")
        for path in API_PATHS
    ]


class ZabbixApiClient:
    """Talks JSON-RPC 2.0 to a Zabbix server using aiohttp."""

    def __init__(
        self,
        config: InstallerConfig,
        max_attempts: int = MAX_ATTEMPTS,
        retry_delay: float = RETRY_DELAY,
    ):
        self.logger = logging.getLogger(__name__)
        self.config = config
        self.candidate_urls = build_candidate_urls(config.server_url)
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.session_token: Optional[str] = None
        self.api_url: Optional[str] = None
        self._request_id = 0

    def _headers(self, authenticated: bool) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json-rpc",
            "User-Agent": f"Zabbix-Installer/{get_installer_version()}",
        }
        if authenticated and isinstance(self.config.auth, TokenAuth):
            headers["Authorization"] = f"Bearer {self.config.auth.token}"
        return headers

    def _build_request(
        self, method: str, params: Any, authenticated: bool
    ) -> JsonRpcRequest:
        self._request_id += 1
        auth = self.session_token if authenticated else None
        return JsonRpcRequest(
            method=method, params=params, request_id=self._request_id, auth=auth
        )

    async def _post(
        self, url: str, body: Dict[str, Any], headers: Dict[str, str]
    ) -> Any:
        """POST one request and decode the body; None when the body is empty."""
        async with aiohttp.ClientSession(timeout=REQUEST_TIMEOUT) as session:
            async with session.post(
                url, json=body, headers=headers, ssl=self.config.verify_ssl
            ) as response:
                return await response.json(content_type=None)

    async def call(
        self, method: str, params: Any = None, authenticated: bool = True
    ) -> Any:
        """
        Call an API method and return its result.

        Raises:
            ApiAuthenticationError: the server answered with an auth-class
                error code; no further endpoints or attempts are tried.
            ApiError: the last API error seen after every attempt failed.
            ApiConnectionError: no endpoint produced a usable response.
        """
        if params is None:
            params = {}
        if authenticated and isinstance(self.config.auth, PasswordAuth):
            if self.session_token is None:
                raise ApiAuthenticationError(_("Not logged in"), method=method)

        headers = self._headers(authenticated)
        last_error: Optional[ApiError] = None

        for attempt in range(1, self.max_attempts + 1):
            for url in self.candidate_urls:
                request = self._build_request(method, params, authenticated)
                self.logger.debug(
                    "Calling %s at %s (attempt %d/%d)",
                    method,
                    url,
                    attempt,
                    self.max_attempts,
                )
                try:
                    data = await self._post(url, request.to_dict(), headers)
                except (
                    aiohttp.ClientError,
                    asyncio.TimeoutError,
                    ValueError,
                ) as error:
                    self.logger.debug("No usable response from %s: %s", url, error)
                    continue
                if data is None:
                    self.logger.debug("Empty response from %s", url)
                    continue

                try:
                    response = JsonRpcResponse.from_dict(data)
                except ValueError as error:
                    self.logger.debug("Malformed response from %s: %s", url, error)
                    continue

                if response.is_error:
                    rpc_error = response.error
                    self.logger.debug(
                        "API error from %s: code=%s message=%s data=%s",
                        url,
                        rpc_error.code,
                        rpc_error.message,
                        rpc_error.data,
                    )
                    if rpc_error.code in AUTH_ERROR_CODES:
                        raise ApiAuthenticationError(
                            rpc_error.message,
                            code=rpc_error.code,
                            data=rpc_error.data,
                            method=method,
                        )
                    last_error = ApiError(
                        rpc_error.message,
                        code=rpc_error.code,
                        data=rpc_error.data,
                        method=method,
                    )
                    continue

                self.api_url = url
                return response.result

            if attempt < self.max_attempts:
                self.logger.debug("Retrying in %s seconds...", self.retry_delay)
                await asyncio.sleep(self.retry_delay)

        if last_error is not None:
            self.logger.error(_("Zabbix API error: %s"), last_error)
            raise last_error
        raise ApiConnectionError(
            _("Could not reach the Zabbix API after %d attempts") % self.max_attempts,
            method=method,
        )

    async def api_version(self) -> str:
        """Server API version; sent without credentials."""
        result = await self.call("apiinfo.version", {}, authenticated=False)
        return str(result)

    async def login(self) -> None:
        """
        Authenticate according to the configured mode.

        Token mode needs no round trip. Password mode calls user.login with
        the current "username" parameter and falls back once to the legacy
        "user" parameter for servers older than 5.4.
        """
        auth = self.config.auth
        if isinstance(auth, TokenAuth):
            self.logger.info(_("Using API token for authentication"))
            return

        try:
            result = await self.call(
                "user.login",
                {"username": auth.user, "password": auth.password},
                authenticated=False,
            )
        except ApiAuthenticationError as error:
            if "username" not in str(error):
                raise
            self.logger.debug("Server rejected 'username', retrying with 'user'")
            result = await self.call(
                "user.login",
                {"user": auth.user, "password": auth.password},
                authenticated=False,
            )

        if not isinstance(result, str) or not result:
            raise ApiAuthenticationError(
                _("user.login returned no session token"), method="user.login"
            )
        self.session_token = result
        self.logger.info(_("Logged in to the Zabbix API as %s"), auth.user)

    async def check_connection(self) -> str:
        """
        Check reachability and credentials.

        Returns:
            The server API version.
        """
        self.logger.info(_("Testing connection to the Zabbix API..."))
        version = await self.api_version()
        self.logger.info(_("Connection OK, server version: %s"), version)

        await self.login()
        await self.call("hostgroup.get", {"output": ["groupid"], "limit": 1})
        self.logger.info(_("API authentication successful"))
        return version

    async def probe_server_port(self) -> bool:
        """TCP probe of the trapper port; a closed port is only a warning."""
        host = self.config.server_host
        port = self.config.server_port
        if await tcp_port_open(host, port):
            self.logger.info("Zabbix server port %d is reachable", port)
            return True
        self.logger.warning(
            _("Zabbix server port %d is not reachable on %s"), port, host
        )
        self.logger.info("This can be normal when the server is behind a firewall")
        return False
