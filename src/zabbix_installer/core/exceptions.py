"""
Exception hierarchy for the Zabbix agent installer.

Every failure that should end the run with exit code 1 derives from
InstallerError. The CLI catches that base class only; anything else is a bug
and is allowed to surface with a traceback.
"""

from typing import Any, Optional


class InstallerError(Exception):
    """Base class for all installer failures."""


class PreconditionError(InstallerError):
    """Raised before any host mutation: not root, missing command, bad input."""


class UnsupportedDistributionError(PreconditionError):
    """Raised when the host distribution cannot be classified."""


class PackageError(InstallerError):
    """Raised when a package manager operation fails."""


class ConfigPatchError(InstallerError):
    """Raised when the patched agent configuration is rejected."""


class ServiceError(InstallerError):
    """Raised when the agent service cannot be resolved or started."""


class RegistrationError(InstallerError):
    """Raised when the host cannot be registered on the server."""


class VerificationError(InstallerError):
    """Raised when post-install checks find a broken agent."""


class ApiError(InstallerError):
    """A JSON-RPC error returned by the Zabbix API."""

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        data: Optional[Any] = None,
        method: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data
        self.method = method

    def __str__(self) -> str:
        text = self.message
        if self.data:
            text = f"{text}: {self.data}"
        if self.method:
            text = f"{self.method}: {text}"
        return text


class ApiAuthenticationError(ApiError):
    """Credential or request-shape errors; retrying cannot help."""


class ApiConnectionError(ApiError):
    """No candidate endpoint produced a usable response."""
