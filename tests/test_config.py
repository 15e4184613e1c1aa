"""
Tests for configuration resolution.
"""

import pytest

from src.zabbix_installer.core.config import (
    ConfigManager,
    InstallerConfig,
    PasswordAuth,
    TokenAuth,
    extract_server_host,
    parse_bool,
    parse_port,
    resolve_config,
    validate_server_url,
)
from src.zabbix_installer.core.exceptions import PreconditionError

BASE_ENV = {
    "ZABBIX_SERVER_URL": "zabbix.example.com",
    "ZABBIX_API_TOKEN": "env-token",
}


def write_yaml(tmp_path, content):
    path = tmp_path / "installer.yaml"
    path.write_text(content, encoding="utf-8")
    return str(path)


class TestParsers:
    """Test scalar value parsing."""

    @pytest.mark.parametrize("value", ["1", "true", "YES", " on ", True])
    def test_parse_bool_true(self, value):
        """Truthy spellings parse to True."""
        assert parse_bool(value, "FLAG") is True

    @pytest.mark.parametrize("value", ["0", "false", "No", "off", "", False])
    def test_parse_bool_false(self, value):
        """Falsy spellings parse to False."""
        assert parse_bool(value, "FLAG") is False

    def test_parse_bool_rejects_garbage(self):
        """Unknown values are a precondition error naming the setting."""
        with pytest.raises(PreconditionError, match="FLAG"):
            parse_bool("maybe", "FLAG")

    def test_parse_port(self):
        assert parse_port("10050", "PORT") == 10050
        assert parse_port(443, "PORT") == 443

    @pytest.mark.parametrize("value", ["abc", "0", "65536", "-1"])
    def test_parse_port_invalid(self, value):
        """Non-numeric and out-of-range ports are rejected."""
        with pytest.raises(PreconditionError):
            parse_port(value, "PORT")


class TestServerUrl:
    """Test server URL handling."""

    @pytest.mark.parametrize(
        "url,host",
        [
            ("https://zabbix.example.com", "zabbix.example.com"),
            ("http://10.0.0.5:8080/zabbix", "10.0.0.5"),
            ("zabbix.local", "zabbix.local"),
            ("zabbix.local:8080", "zabbix.local"),
        ],
    )
    def test_extract_server_host(self, url, host):
        """The host part is extracted with or without a scheme."""
        assert extract_server_host(url) == host

    def test_validate_strips_trailing_slash(self):
        assert validate_server_url(" https://zabbix.example.com/ ") == (
            "https://zabbix.example.com"
        )

    def test_validate_rejects_empty(self):
        with pytest.raises(PreconditionError, match="not defined"):
            validate_server_url("")

    def test_validate_rejects_other_scheme(self):
        with pytest.raises(PreconditionError, match="http"):
            validate_server_url("ftp://zabbix.example.com")

    def test_server_host_property(self):
        config = InstallerConfig(
            server_url="https://zabbix.example.com:8443/zabbix", auth=TokenAuth("t")
        )
        assert config.server_host == "zabbix.example.com"


class TestConfigManager:
    """Test YAML configuration file loading."""

    def test_explicit_missing_file(self, tmp_path):
        """An explicitly named file must exist."""
        with pytest.raises(PreconditionError, match="not found"):
            ConfigManager(str(tmp_path / "missing.yaml"))

    def test_dot_path_lookup(self, tmp_path):
        path = write_yaml(
            tmp_path, "server:\n  url: https://z.example.com\n  port: 10052\n"
        )
        manager = ConfigManager(path)
        assert manager.get("server.url") == "https://z.example.com"
        assert manager.get("server.port") == 10052
        assert manager.get("server.missing", "fallback") == "fallback"
        assert manager.get("server.url.deeper") is None

    def test_invalid_yaml(self, tmp_path):
        path = write_yaml(tmp_path, "server: [unclosed\n")
        with pytest.raises(PreconditionError, match="Invalid YAML"):
            ConfigManager(path)

    def test_non_mapping_yaml(self, tmp_path):
        path = write_yaml(tmp_path, "- just\n- a list\n")
        with pytest.raises(PreconditionError, match="mapping"):
            ConfigManager(path)

    def test_empty_file_is_empty_mapping(self, tmp_path):
        path = write_yaml(tmp_path, "")
        assert ConfigManager(path).config_data == {}


class TestResolveConfig:
    """Test precedence and validation of the merged configuration."""

    def test_defaults(self):
        """Unset options fall back to built-in defaults."""
        config = resolve_config({}, BASE_ENV)
        assert config.server_url == "zabbix.example.com"
        assert config.host_group == "Linux servers"
        assert config.template_name == "Linux by Zabbix agent"
        assert config.server_port == 10051
        assert config.agent_port == 10050
        assert config.force_reinstall is False
        assert config.update_existing is False
        assert config.dry_run is False
        assert config.verify_ssl is True
        assert config.language == "en"

    def test_cli_overrides_env(self):
        config = resolve_config(
            {"host_group": "Web servers", "agent_port": 20050},
            dict(BASE_ENV, ZABBIX_HOST_GROUP="DB servers", ZABBIX_AGENT_PORT="30050"),
        )
        assert config.host_group == "Web servers"
        assert config.agent_port == 20050

    def test_env_overrides_file(self, tmp_path):
        path = write_yaml(
            tmp_path,
            "host:\n  group: File group\n  template: File template\n"
            "options:\n  update_existing: true\n",
        )
        config = resolve_config(
            {},
            dict(BASE_ENV, ZABBIX_HOST_GROUP="Env group"),
            ConfigManager(path),
        )
        assert config.host_group == "Env group"
        assert config.template_name == "File template"
        assert config.update_existing is True

    def test_empty_env_value_is_unset(self, tmp_path):
        """An exported-but-empty variable does not mask the file value."""
        path = write_yaml(tmp_path, "host:\n  group: File group\n")
        config = resolve_config(
            {}, dict(BASE_ENV, ZABBIX_HOST_GROUP=""), ConfigManager(path)
        )
        assert config.host_group == "File group"

    def test_env_booleans(self):
        config = resolve_config(
            {},
            dict(
                BASE_ENV,
                FORCE_REINSTALL="true",
                UPDATE_EXISTING_HOST="1",
                DRY_RUN="yes",
                DEBUG="on",
                ZABBIX_VERIFY_SSL="false",
            ),
        )
        assert config.force_reinstall is True
        assert config.update_existing is True
        assert config.dry_run is True
        assert config.debug is True
        assert config.verify_ssl is False

    def test_token_auth(self):
        config = resolve_config({}, BASE_ENV)
        assert config.auth == TokenAuth("env-token")

    def test_password_auth(self):
        config = resolve_config(
            {"api_user": "Admin", "api_password": "zabbix"},
            {"ZABBIX_SERVER_URL": "https://z.example.com"},
        )
        assert config.auth == PasswordAuth("Admin", "zabbix")

    def test_password_not_in_repr(self):
        """Secrets never appear in the config repr that may be logged."""
        config = resolve_config(
            {"api_user": "Admin", "api_password": "s3cret"},
            {"ZABBIX_SERVER_URL": "https://z.example.com"},
        )
        assert "s3cret" not in repr(config)

    def test_token_and_password_conflict(self):
        with pytest.raises(PreconditionError, match="not both"):
            resolve_config({"api_user": "Admin", "api_password": "x"}, BASE_ENV)

    def test_incomplete_password_pair(self):
        with pytest.raises(PreconditionError, match="required"):
            resolve_config(
                {"api_user": "Admin"}, {"ZABBIX_SERVER_URL": "https://z.example.com"}
            )

    def test_missing_credentials(self):
        with pytest.raises(PreconditionError, match="credentials"):
            resolve_config({}, {"ZABBIX_SERVER_URL": "https://z.example.com"})

    def test_missing_server_url(self):
        with pytest.raises(PreconditionError, match="server URL"):
            resolve_config({}, {"ZABBIX_API_TOKEN": "t"})

    def test_invalid_port_from_env(self):
        with pytest.raises(PreconditionError, match="ZABBIX_AGENT_PORT"):
            resolve_config({}, dict(BASE_ENV, ZABBIX_AGENT_PORT="ten"))

    def test_locale_does_not_pick_language(self):
        """Only English messages ship, so the POSIX locale is not consulted."""
        config = resolve_config({}, dict(BASE_ENV, LANG="es_ES.UTF-8"))
        assert config.language == "en"

    def test_language_setting(self):
        config = resolve_config(
            {}, dict(BASE_ENV, LANG="es_ES.UTF-8", ZABBIX_INSTALLER_LANGUAGE="de")
        )
        assert config.language == "de"

    def test_known_ids_are_strings(self, tmp_path):
        path = write_yaml(
            tmp_path, "host:\n  known_group_id: 2\n  known_template_id: 10001\n"
        )
        config = resolve_config({}, BASE_ENV, ConfigManager(path))
        assert config.known_group_id == "2"
        assert config.known_template_id == "10001"
