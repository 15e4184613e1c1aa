"""
Tests for shared installer data types.
"""

import pytest

from src.zabbix_installer.core.models import (
    DistroFamily,
    DistroInfo,
    HostRegistration,
)


class TestDistroInfo:
    """Test distribution classification helpers."""

    def test_family(self):
        assert DistroInfo("rocky", "9.3").family == DistroFamily.RHEL
        assert DistroInfo("debian", "12").family == DistroFamily.DEBIAN

    def test_major_version(self):
        assert DistroInfo("almalinux", "8.9").major_version == "8"

    def test_str(self):
        assert str(DistroInfo("ubuntu", "22.04")) == "ubuntu 22.04"


class TestHostRegistration:
    """Test host.create and host.update parameter building."""

    def test_update_requires_host_id(self):
        registration = HostRegistration("web01", "10.0.0.5", 10050)
        with pytest.raises(ValueError):
            registration.to_update_params()

    def test_update_params_have_no_groups(self):
        registration = HostRegistration(
            "web01", "10.0.0.5", 10050, group_id="2", host_id="10500"
        )
        params = registration.to_update_params()
        assert params["hostid"] == "10500"
        assert "groups" not in params
        assert params["interfaces"][0]["port"] == "10050"

    def test_inventory_is_copied(self):
        registration = HostRegistration(
            "web01", "10.0.0.5", 10050, group_id="2", inventory={"os": "Linux"}
        )
        params = registration.to_create_params()
        params["inventory"]["os"] = "changed"
        assert registration.inventory == {"os": "Linux"}
