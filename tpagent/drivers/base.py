"""
Reporting driver base.

A ReportingDriver is a Selenium WebDriver bound to a session the Agent has
already started. Instead of the regular new-session handshake, session id and
capabilities are taken from the Agent client, and commands are sent to the
server address the Agent returned through a reporting connection.

Usage:
    class Chrome(ReportingDriver, webdriver.Remote):
        default_options = ChromeOptions

    with Chrome(token="...", project_name="Shop", job_name="Smoke") as driver:
        driver.get("https://example.com")
        driver.report().step("Opened home page")
"""

import copy
import logging
import uuid
from typing import Any, Callable, Dict, Optional, Type

from selenium.common.exceptions import WebDriverException
from selenium.webdriver.common.options import BaseOptions
from selenium.webdriver.remote.command import Command as DriverCommand

from tpagent.addons.helper import AddonsHelper
from tpagent.core.agent_client import AgentClient
from tpagent.core.exceptions import SDKError
from tpagent.core.executor import ReportingCommandExecutor
from tpagent.core.models import TP_GUID, Command, Dialect, ReportSettings, ReportType
from tpagent.core.shutdown import ShutdownManager, get_shutdown_manager
from tpagent.drivers.connection import ReportingRemoteConnection
from tpagent.reporting.reporter import Reporter

logger = logging.getLogger(__name__)


def build_report_settings(
    project_name: Optional[str],
    job_name: Optional[str],
    report_type: ReportType = ReportType.CLOUD_AND_LOCAL,
    report_name: Optional[str] = None,
    report_path: Optional[str] = None,
) -> ReportSettings:
    return ReportSettings(project_name, job_name, report_type, report_name, report_path)


class ReportingDriver:
    """
    Mixin placed before a Selenium WebDriver class in the bases.

    Subclasses set `default_options` (options class used when none are given)
    and may override `connection_class`.
    """

    default_options: Optional[Callable[[], BaseOptions]] = None
    connection_class: Type[ReportingRemoteConnection] = ReportingRemoteConnection

    def __init__(
        self,
        options: Optional[BaseOptions] = None,
        remote_address: Optional[str] = None,
        token: Optional[str] = None,
        project_name: Optional[str] = None,
        job_name: Optional[str] = None,
        disable_reports: bool = False,
        report_type: ReportType = ReportType.CLOUD_AND_LOCAL,
        report_name: Optional[str] = None,
        report_path: Optional[str] = None,
        shutdown_manager: Optional[ShutdownManager] = None,
        **client_kwargs,
    ):
        """
        Start (or join) an Agent session and attach this driver to it.

        Args:
            options: Browser/device options (default: `default_options()`)
            remote_address: Agent URL (default: TP_AGENT_URL or http://localhost:8585)
            token: Development token (default: TP_DEV_TOKEN)
            project_name: Report project name (inferred when omitted)
            job_name: Report job name (inferred when omitted)
            disable_reports: Do not report anything for this driver
            report_type: Where reports are published
            report_name: Local report file name
            report_path: Local report directory
            shutdown_manager: Exit hook registry (default: process-wide)
            **client_kwargs: Passed to AgentClient.get_client (e.g. batch_reports, transport)
        """
        if options is None:
            if self.default_options is None:
                raise TypeError(f"{type(self).__name__} requires options")
            options = self.default_options()

        # The caller's options are left untouched; the tracking id goes on a copy
        options = copy.deepcopy(options)
        if TP_GUID not in options.to_capabilities():
            options.set_capability(TP_GUID, str(uuid.uuid4()))

        self._shutdown_manager = shutdown_manager or get_shutdown_manager()
        self._agent_params: Dict[str, Any] = dict(
            remote_address=remote_address,
            token=token,
            report_settings=build_report_settings(project_name, job_name, report_type, report_name, report_path),
            disable_reports=disable_reports,
            shutdown_manager=self._shutdown_manager,
            **client_kwargs,
        )
        self._agent_client = AgentClient.get_client(options.to_capabilities(), **self._agent_params)
        session = self._agent_client.session

        if session.dialect == Dialect.OSS:
            logger.warning("Legacy (OSS) protocol dialect is not supported by Selenium 4, using W3C instead")
        if not session.remote_address:
            raise WebDriverException("Agent did not provide an automation server address for this session")

        connection = self.connection_class(session.remote_address)
        self._reporting_executor = ReportingCommandExecutor(
            self._agent_client,
            connection.send,
            capabilities=session.capabilities,
            disable_reports=disable_reports,
        )
        connection.reporting_executor = self._reporting_executor

        super().__init__(command_executor=connection, options=options)

        self._shutdown_manager.add_driver(self, self.stop)

    def start_session(self, capabilities: dict, *args, **kwargs) -> None:
        """Adopt the session started by the Agent instead of creating one."""
        try:
            client = AgentClient.get_client(capabilities, **self._agent_params)
            self.session_id = client.session.session_id
            self.caps = dict(client.session.capabilities)
        except SDKError:
            raise
        except Exception as e:
            raise WebDriverException(f"Failed to attach driver to the Agent session: {e}") from e
        logger.debug(f"Driver attached to session [{self.session_id}]")

    @property
    def agent_client(self) -> AgentClient:
        return self._agent_client

    @property
    def reporting_executor(self) -> ReportingCommandExecutor:
        return self._reporting_executor

    def report(self) -> Reporter:
        """Manual reports and report switches for this driver."""
        return Reporter(self._reporting_executor, self.get_screenshot_for_report)

    def addons(self) -> AddonsHelper:
        return AddonsHelper(self._agent_client, self._reporting_executor)

    def get_screenshot_for_report(self) -> Optional[str]:
        """Base64 screenshot taken without reporting the screenshot command."""
        response = self._reporting_executor.execute(
            Command(self.session_id, DriverCommand.SCREENSHOT, {}),
            skip_reporting=True,
        )
        return response.value if response.is_passed else None

    def quit(self) -> None:
        self._shutdown_manager.remove_driver(self)
        self.stop()

    def stop(self) -> None:
        """Report stashed commands, then quit. Also used as the exit hook."""
        self._reporting_executor.clear_stash()
        super().quit()
