"""
Tests for the installer entry point and pipeline orchestration.
"""

import dataclasses
from unittest.mock import AsyncMock, Mock, patch

import pytest
from click.testing import CliRunner

import main
from src.i18n import set_language
from src.zabbix_installer.core.exceptions import (
    ApiConnectionError,
    PreconditionError,
    RegistrationError,
    ServiceError,
    VerificationError,
)
from src.zabbix_installer.core.models import ZABBIX_AGENT, RegistrationOutcome
from tests.command_test_helpers import FakePackageBackend

CLEAN_ENV = {
    "ZABBIX_SERVER_URL": None,
    "ZABBIX_API_TOKEN": None,
    "ZABBIX_API_USER": None,
    "ZABBIX_API_PASSWORD": None,
    "ZABBIX_INSTALLER_CONFIG": None,
}


@pytest.fixture(autouse=True)
def reset_language():
    yield
    set_language(None)


@pytest.fixture
def api_client():
    client = Mock()
    client.check_connection = AsyncMock(return_value="7.0.4")
    client.probe_server_port = AsyncMock(return_value=True)
    return client


@pytest.fixture
def backend():
    return FakePackageBackend()


@pytest.fixture
def make_installer(api_client, backend, system_info):
    def factory(config):
        prober = Mock()
        prober.probe = AsyncMock(return_value=system_info)
        service_manager = Mock()
        service_manager.resolve_flavor = AsyncMock(return_value=ZABBIX_AGENT)
        service_manager.restart_agent = AsyncMock()
        return main.AgentInstaller(
            config,
            runner=AsyncMock(),
            prober=prober,
            backend_factory=lambda distro, runner: backend,
            api_client=api_client,
            service_manager=service_manager,
            backup_manager=Mock(),
        )

    return factory


@pytest.fixture
def as_root():
    with patch("main.is_running_as_root", return_value=True):
        with patch("main.shutil.which", return_value="/usr/bin/systemctl"):
            yield


class TestCli:
    """Test command-line handling."""

    def test_version(self):
        result = CliRunner().invoke(main.cli, ["-v"])
        assert result.exit_code == 0
        assert result.output.startswith("Zabbix Agent Installer v")

    def test_dry_run(self):
        """Flags reach the pipeline as an InstallerConfig."""
        run_installer = AsyncMock(return_value=0)
        with patch("main.setup_logging", return_value="/tmp/run.log"):
            with patch("main.run_installer", run_installer):
                result = CliRunner().invoke(
                    main.cli,
                    ["-s", "zabbix.local", "-t", "secret", "--dry-run"],
                    env=CLEAN_ENV,
                )
        assert result.exit_code == 0
        config, log_file = run_installer.call_args[0]
        assert config.dry_run
        assert config.server_url == "zabbix.local"
        assert log_file == "/tmp/run.log"

    def test_unset_flags_do_not_override_environment(self):
        run_installer = AsyncMock(return_value=0)
        env = dict(CLEAN_ENV, ZABBIX_SERVER_URL="http://env.local")
        env["ZABBIX_API_TOKEN"] = "env-token"
        with patch("main.setup_logging", return_value="/tmp/run.log"):
            with patch("main.run_installer", run_installer):
                result = CliRunner().invoke(main.cli, [], env=env)
        assert result.exit_code == 0
        config = run_installer.call_args[0][0]
        assert config.server_url == "http://env.local"
        assert config.verify_ssl
        assert not config.force_reinstall

    def test_missing_server_url(self):
        run_installer = AsyncMock(return_value=0)
        with patch("main.setup_logging", return_value="/tmp/run.log"):
            with patch("main.run_installer", run_installer):
                result = CliRunner().invoke(main.cli, ["-t", "secret"], env=CLEAN_ENV)
        assert result.exit_code == 1
        run_installer.assert_not_called()

    def test_failed_run_exit_code(self):
        with patch("main.setup_logging", return_value="/tmp/run.log"):
            with patch("main.run_installer", AsyncMock(return_value=1)):
                result = CliRunner().invoke(
                    main.cli, ["-s", "zabbix.local", "-t", "secret"], env=CLEAN_ENV
                )
        assert result.exit_code == 1


class TestRunInstaller:
    """Test exit code mapping."""

    @pytest.mark.asyncio
    async def test_success(self, token_config):
        with patch.object(main.AgentInstaller, "run", AsyncMock(return_value=None)):
            assert await main.run_installer(token_config, "/tmp/run.log") == 0

    @pytest.mark.asyncio
    async def test_installer_error(self, token_config):
        failing = AsyncMock(side_effect=PreconditionError("not root"))
        with patch.object(main.AgentInstaller, "run", failing):
            assert await main.run_installer(token_config, "/tmp/run.log") == 1

    @pytest.mark.asyncio
    async def test_hung_service_start_is_logged(self, token_config, caplog):
        """A start that timed out on every attempt ends as a logged failure."""
        failing = AsyncMock(
            side_effect=ServiceError("Service zabbix-agent failed to start")
        )
        with patch.object(main.AgentInstaller, "run", failing):
            assert await main.run_installer(token_config, "/tmp/run.log") == 1
        assert "Installation failed: Service zabbix-agent failed to start" in (
            caplog.text
        )


class TestValidatePreconditions:
    """Test privilege and command checks."""

    def test_requires_root(self, token_config, make_installer):
        with patch("main.is_running_as_root", return_value=False):
            with pytest.raises(PreconditionError, match="root"):
                make_installer(token_config).validate_preconditions()

    def test_missing_commands(self, token_config, make_installer, backend):
        backend.missing_commands = lambda: ["dpkg"]
        with patch("main.is_running_as_root", return_value=True):
            with patch("main.shutil.which", return_value=None):
                with pytest.raises(PreconditionError, match="systemctl, dpkg"):
                    make_installer(token_config).validate_preconditions(backend)


class TestAgentInstallerRun:
    """Test stage ordering of the pipeline."""

    @pytest.mark.asyncio
    async def test_dry_run_changes_nothing(
        self, token_config, make_installer, api_client, backend, as_root
    ):
        config = dataclasses.replace(token_config, dry_run=True)
        with patch("main.AgentInstallation") as installation:
            assert await make_installer(config).run() is None
        api_client.check_connection.assert_awaited_once()
        api_client.probe_server_port.assert_awaited_once()
        installation.assert_not_called()
        assert backend.installed == {}

    @pytest.mark.asyncio
    async def test_unreachable_api_stops_before_install(
        self, token_config, make_installer, api_client, as_root
    ):
        api_client.check_connection.side_effect = ApiConnectionError("refused")
        with patch("main.AgentInstallation") as installation:
            with pytest.raises(ApiConnectionError):
                await make_installer(token_config).run()
        installation.assert_not_called()

    @pytest.mark.asyncio
    async def test_full_run(self, token_config, make_installer, as_root):
        """Every stage runs and the registration outcome is returned."""
        installation = Mock()
        installation.return_value.ensure_installed = AsyncMock(
            return_value=ZABBIX_AGENT
        )
        patcher = Mock()
        patcher.return_value.patch = AsyncMock()
        firewall = Mock()
        firewall.return_value.configure = AsyncMock()
        registrar = Mock()
        registrar.return_value.register = AsyncMock(
            return_value=RegistrationOutcome.CREATED
        )
        verifier = Mock()
        verifier.return_value.verify = AsyncMock()

        installer = make_installer(token_config)
        with patch.multiple(
            "main",
            AgentInstallation=installation,
            ConfigPatcher=patcher,
            FirewallOperations=firewall,
            HostRegistrar=registrar,
            AgentVerifier=verifier,
        ):
            outcome = await installer.run()

        assert outcome == RegistrationOutcome.CREATED
        firewall.return_value.configure.assert_awaited_once_with(10050)
        installer.service_manager.restart_agent.assert_awaited_once_with(
            ZABBIX_AGENT, 10050
        )
        verifier.return_value.verify.assert_awaited_once_with(ZABBIX_AGENT, 10050)

    @pytest.mark.asyncio
    async def test_registration_failure_propagates(
        self, token_config, make_installer, as_root
    ):
        installation = Mock()
        installation.return_value.ensure_installed = AsyncMock(
            return_value=ZABBIX_AGENT
        )
        registrar = Mock()
        registrar.return_value.register = AsyncMock(
            side_effect=RegistrationError("Host creation failed")
        )
        verifier = Mock()
        verifier.return_value.verify = AsyncMock()

        with patch.multiple(
            "main",
            AgentInstallation=installation,
            ConfigPatcher=Mock(return_value=Mock(patch=AsyncMock())),
            FirewallOperations=Mock(return_value=Mock(configure=AsyncMock())),
            HostRegistrar=registrar,
            AgentVerifier=verifier,
        ):
            with pytest.raises(RegistrationError):
                await make_installer(token_config).run()
        verifier.return_value.verify.assert_not_called()

    @pytest.mark.asyncio
    async def test_created_host_left_behind_is_reported(
        self, token_config, make_installer, as_root, caplog
    ):
        """Rollback after host.create says the server record still exists."""
        registrar = Mock()
        registrar.return_value.register = AsyncMock(
            return_value=RegistrationOutcome.CREATED
        )
        verifier = Mock()
        verifier.return_value.verify = AsyncMock(
            side_effect=VerificationError("Port 10050 is not reachable")
        )

        with patch.multiple(
            "main",
            AgentInstallation=Mock(
                return_value=Mock(ensure_installed=AsyncMock(return_value=ZABBIX_AGENT))
            ),
            ConfigPatcher=Mock(return_value=Mock(patch=AsyncMock())),
            FirewallOperations=Mock(return_value=Mock(configure=AsyncMock())),
            HostRegistrar=registrar,
            AgentVerifier=verifier,
        ):
            with pytest.raises(VerificationError):
                await make_installer(token_config).run()

        assert "web01.example.com remains registered" in caplog.text

    @pytest.mark.asyncio
    async def test_skipped_host_is_not_reported(
        self, token_config, make_installer, as_root, caplog
    ):
        registrar = Mock()
        registrar.return_value.register = AsyncMock(
            return_value=RegistrationOutcome.SKIPPED
        )
        verifier = Mock()
        verifier.return_value.verify = AsyncMock(
            side_effect=VerificationError("Service zabbix-agent is not running")
        )

        with patch.multiple(
            "main",
            AgentInstallation=Mock(
                return_value=Mock(ensure_installed=AsyncMock(return_value=ZABBIX_AGENT))
            ),
            ConfigPatcher=Mock(return_value=Mock(patch=AsyncMock())),
            FirewallOperations=Mock(return_value=Mock(configure=AsyncMock())),
            HostRegistrar=registrar,
            AgentVerifier=verifier,
        ):
            with pytest.raises(VerificationError):
                await make_installer(token_config).run()

        assert "remains registered" not in caplog.text
