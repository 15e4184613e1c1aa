"""
Pytest configuration and shared fixtures for Zabbix installer tests.
"""

import pytest

from src.zabbix_installer.core.config import InstallerConfig, PasswordAuth, TokenAuth
from src.zabbix_installer.core.models import DistroInfo, SystemInfo


@pytest.fixture
def token_config():
    """Configuration using a static API token."""
    return InstallerConfig(
        server_url="http://zabbix.local",
        auth=TokenAuth("secret-token"),
    )


@pytest.fixture
def password_config():
    """Configuration using user.login."""
    return InstallerConfig(
        server_url="https://zabbix.example.com",
        auth=PasswordAuth("Admin", "zabbix"),
    )


@pytest.fixture
def system_info():
    """A typical Ubuntu host."""
    return SystemInfo(
        distro=DistroInfo("ubuntu", "22.04"),
        architecture="x86_64",
        hostname="web01.example.com",
        primary_ip="192.168.1.50",
        kernel="Linux web01 5.15.0-91-generic #101-Ubuntu SMP x86_64",
    )

