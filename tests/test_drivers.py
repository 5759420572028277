"""
Test drivers attached to Agent sessions.

The Agent is faked through httpx.MockTransport and the automation server by
patching RemoteConnection._request, so no browser is needed.
"""

from unittest.mock import patch

import pytest
from selenium.common.exceptions import WebDriverException
from selenium.webdriver import ChromeOptions

from tpagent.core.agent_client import AgentClient, Routes
from tpagent.core.exceptions import ObsoleteVersionError
from tpagent.core.models import TP_GUID
from tpagent.drivers.connection import MobileRemoteConnection, ReportingRemoteConnection
from tpagent.drivers.generic import GenericDriver
from tpagent.drivers.mobile import Android, MobileOptions
from tpagent.drivers.web import Chrome, Remote
from tpagent.utils.config import AgentConfig

from conftest import AGENT_URL, SERVER_ADDRESS


@pytest.fixture
def driver_kwargs(agent, client_cache, shutdown_manager, dev_socket):
    return dict(
        remote_address=AGENT_URL,
        token="dev-token",
        project_name="Shop",
        job_name="Smoke",
        shutdown_manager=shutdown_manager,
        cache=client_cache,
        transport=agent.transport,
        dev_socket=dev_socket,
        config=AgentConfig(),
    )


@pytest.fixture
def server():
    with patch.object(ReportingRemoteConnection, "_request", return_value={"value": None}) as request:
        yield request


def server_paths(server):
    return [(c[0][0], c[0][1]) for c in server.call_args_list]


class TestSessionReattachment:
    """Test that drivers adopt the Agent session instead of creating one."""

    def test_session_adopted(self, agent, driver_kwargs, server):
        driver = Chrome(**driver_kwargs)

        assert driver.session_id == "session-1"
        assert driver.caps["browserName"] == "chrome"
        assert TP_GUID in driver.caps
        assert isinstance(driver.command_executor, ReportingRemoteConnection)
        # No new-session request reached the automation server
        server.assert_not_called()
        assert len(agent.sent(Routes.DEVELOPMENT_SESSION)) == 1

    def test_session_request_names(self, agent, driver_kwargs, server):
        Chrome(**driver_kwargs)
        body = agent.bodies(Routes.DEVELOPMENT_SESSION)[0]
        assert (body["projectName"], body["jobName"]) == ("Shop", "Smoke")

    def test_caller_options_untouched(self, driver_kwargs, server):
        options = ChromeOptions()
        Remote(options=options, **driver_kwargs)
        assert TP_GUID not in options.to_capabilities()

    def test_remote_requires_options(self, driver_kwargs):
        with pytest.raises(TypeError):
            Remote(**driver_kwargs)

    def test_attach_failure_wrapped(self, driver_kwargs, server):
        driver = Chrome(**driver_kwargs)
        with patch.object(AgentClient, "get_client", side_effect=KeyError("session")):
            with pytest.raises(WebDriverException, match="Failed to attach"):
                driver.start_session({})

    def test_missing_server_address(self, agent, driver_kwargs, server):
        agent.server_address = None
        with pytest.raises(WebDriverException, match="automation server address"):
            Chrome(**driver_kwargs)


class TestCommandReporting:
    """Test that driver commands are sent to the server and reported."""

    def test_command_sent_and_reported(self, agent, driver_kwargs, server):
        driver = Chrome(**driver_kwargs)
        driver.get("https://example.com")
        driver.agent_client.close()

        assert server_paths(server) == [("POST", f"{SERVER_ADDRESS}/session/session-1/url")]
        command = agent.bodies(Routes.REPORT_COMMAND)[0]
        assert command["commandName"] == "get"
        assert command["commandParameters"] == {"url": "https://example.com"}
        assert command["passed"] is True

    def test_screenshot_for_report_not_reported(self, agent, driver_kwargs, server):
        driver = Chrome(**driver_kwargs)
        server.return_value = {"value": "iVBORw0KGgo="}

        assert driver.get_screenshot_for_report() == "iVBORw0KGgo="
        driver.agent_client.close()
        assert agent.sent(Routes.REPORT_COMMAND) == []

    def test_step_with_screenshot(self, agent, driver_kwargs, server):
        driver = Chrome(**driver_kwargs)
        server.return_value = {"value": "iVBORw0KGgo="}

        driver.report().step("Home page", screenshot=True)
        driver.agent_client.close()

        assert agent.bodies(Routes.REPORT_STEP)[0]["screenshot"] == "iVBORw0KGgo="

    def test_disable_reports(self, agent, driver_kwargs, server):
        driver = Chrome(disable_reports=True, **driver_kwargs)
        driver.get("https://example.com")
        assert driver.agent_client.reports_queue is None


class TestQuit:
    """Test quit, exit hooks and context management."""

    def test_quit_deregisters_and_closes_test(self, agent, driver_kwargs, server, shutdown_manager):
        driver = Chrome(**driver_kwargs)
        driver.get("https://example.com")
        assert shutdown_manager.has_driver(driver)

        driver.quit()
        driver.agent_client.close()

        assert not shutdown_manager.has_driver(driver)
        assert ("DELETE", f"{SERVER_ADDRESS}/session/session-1") in server_paths(server)
        assert [b["name"] for b in agent.bodies(Routes.REPORT_TEST)] == ["test_quit_deregisters_and_closes_test"]
        assert [b["commandName"] for b in agent.bodies(Routes.REPORT_COMMAND)] == ["get"]

    def test_shutdown_runs_driver_then_client(self, driver_kwargs, server, shutdown_manager):
        driver = Chrome(**driver_kwargs)
        shutdown_manager.shutdown_all()

        assert ("DELETE", f"{SERVER_ADDRESS}/session/session-1") in server_paths(server)
        assert driver.agent_client.closed

    def test_context_manager(self, driver_kwargs, server, shutdown_manager):
        with Chrome(**driver_kwargs) as driver:
            pass
        assert not shutdown_manager.has_driver(driver)


class TestMobileDriver:
    """Test Appium sessions."""

    def test_extended_commands(self, driver_kwargs, server):
        options = MobileOptions("Android")
        options.set_capability("udid", "emulator-5554")
        driver = Android(options=options, **driver_kwargs)
        server.return_value = {"value": ".MainActivity"}

        assert isinstance(driver.command_executor, MobileRemoteConnection)
        assert driver.current_activity == ".MainActivity"
        assert ("GET", f"{SERVER_ADDRESS}/session/session-1/appium/device/current_activity") in server_paths(server)

    def test_capabilities_prefixed(self):
        options = MobileOptions("Android")
        options.set_capability("udid", "emulator-5554")
        options.set_capability("tp:guid", "g")
        caps = options.to_capabilities()
        assert caps == {
            "platformName": "Android",
            "pageLoadStrategy": "normal",
            "appium:udid": "emulator-5554",
            "tp:guid": "g",
        }

    def test_quit_not_forwarded(self, agent, driver_kwargs, server):
        driver = Android(**driver_kwargs)
        driver.quit()
        assert all(method != "DELETE" for method, _ in server_paths(server))


class TestGenericDriver:
    """Test the reporting-only driver."""

    def test_steps_and_quit(self, agent, driver_kwargs):
        agent.version = "0.64.40"
        driver = GenericDriver(**driver_kwargs)
        driver.report().step("Created user")
        driver.quit()
        driver.agent_client.close()

        assert agent.bodies(Routes.DEVELOPMENT_SESSION)[0]["capabilities"]["platformName"] == "ANY"
        assert agent.bodies(Routes.REPORT_STEP)[0]["description"] == "Created user"
        assert [b["name"] for b in agent.bodies(Routes.REPORT_TEST)] == ["test_steps_and_quit"]

    def test_old_agent_rejected(self, agent, driver_kwargs):
        agent.version = "0.64.0"
        with pytest.raises(ObsoleteVersionError):
            GenericDriver(**driver_kwargs)
