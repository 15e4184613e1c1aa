"""
Shared test doubles for command execution and package backends.
"""

from typing import Dict, List, Optional, Tuple

from src.zabbix_installer.core.async_utils import COMMAND_TIMED_OUT, AsyncProcessResult
from src.zabbix_installer.core.exceptions import PackageError


def ok(stdout: str = "", stderr: str = "") -> AsyncProcessResult:
    """Successful command result."""
    return AsyncProcessResult(returncode=0, stdout=stdout, stderr=stderr)


def failed(stderr: str = "error", returncode: int = 1) -> AsyncProcessResult:
    """Failed command result."""
    return AsyncProcessResult(returncode=returncode, stdout="", stderr=stderr)


def timed_out(cmd: str = "systemctl", seconds: int = 60) -> AsyncProcessResult:
    """Result of a command killed after its timeout."""
    return failed(f"{cmd}: timed out after {seconds} s", COMMAND_TIMED_OUT)


class ScriptedRunner:
    """
    Stand-in for run_command_async.

    Responses are matched by command prefix; the longest matching prefix wins
    and unmatched commands succeed with empty output. A list of results is
    consumed in order and its last entry repeats. Exception entries are raised.
    """

    def __init__(self, responses: Optional[Dict[Tuple[str, ...], object]] = None):
        self.responses = dict(responses or {})
        self.calls: List[List[str]] = []

    async def __call__(self, cmd, timeout=None, env=None):
        self.calls.append(list(cmd))
        best = None
        for prefix in self.responses:
            if tuple(cmd[: len(prefix)]) == prefix:
                if best is None or len(prefix) > len(best):
                    best = prefix
        if best is None:
            return ok()
        result = self.responses[best]
        if isinstance(result, list):
            result = result.pop(0) if len(result) > 1 else result[0]
        if isinstance(result, BaseException):
            raise result
        return result

    def called(self, *prefix: str) -> bool:
        return any(tuple(call[: len(prefix)]) == prefix for call in self.calls)

    def count(self, *prefix: str) -> int:
        return sum(1 for call in self.calls if tuple(call[: len(prefix)]) == prefix)


class FakePackageBackend:
    """In-memory package database with the PackageBackend interface."""

    required_commands = ()

    def __init__(self, installed: Optional[Dict[str, str]] = None):
        self.installed: Dict[str, str] = dict(installed or {})
        self.removed: List[str] = []
        self.repository_installed = False
        self.fail_install = False

    def missing_commands(self):
        return []

    async def prepare(self, dry_run=False):
        return None

    async def is_installed(self, package):
        return package in self.installed

    async def installed_version(self, package):
        return self.installed.get(package)

    def repository_url(self, distro):
        return "https://repo.example/zabbix-release.deb"

    async def install_repository(self, distro):
        self.repository_installed = True
        self.installed["zabbix-release"] = "7.0-2"

    async def install(self, packages):
        if self.fail_install:
            raise PackageError("install failed")
        for package in packages:
            self.installed[package] = "1:7.0.4-1"

    async def remove(self, packages, purge=False):
        for package in packages:
            self.installed.pop(package, None)
            self.removed.append(package)

    async def installed_subset(self, packages):
        return [package for package in packages if package in self.installed]
