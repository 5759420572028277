"""
Generic driver.

Reports steps and tests (and runs generic addons) for automation that does
not drive a browser or a device. There is no automation server behind it.

Usage:
    with GenericDriver(token="...", project_name="Backend", job_name="API") as driver:
        driver.report().step("Created user", passed=True)
"""

import logging
import uuid
from typing import Optional

from selenium.webdriver.remote.command import Command as DriverCommand

from tpagent.addons.helper import AddonsHelper
from tpagent.core.agent_client import AgentClient
from tpagent.core.executor import ReportingCommandExecutor
from tpagent.core.models import PLATFORM_ANY, PLATFORM_NAME, STATE_SUCCESS, STATUS_SUCCESS, TP_GUID, Command, Response, ReportType
from tpagent.core.shutdown import ShutdownManager, get_shutdown_manager
from tpagent.drivers.base import build_report_settings
from tpagent.reporting.reporter import Reporter

logger = logging.getLogger(__name__)


class GenericDriver:
    """Reporting-only driver (platformName ANY)."""

    def __init__(
        self,
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
        self._shutdown_manager = shutdown_manager or get_shutdown_manager()
        capabilities = {PLATFORM_NAME: PLATFORM_ANY, TP_GUID: str(uuid.uuid4())}
        self._agent_client = AgentClient.get_client(
            capabilities,
            remote_address=remote_address,
            token=token,
            report_settings=build_report_settings(project_name, job_name, report_type, report_name, report_path),
            disable_reports=disable_reports,
            shutdown_manager=self._shutdown_manager,
            **client_kwargs,
        )
        self.session_id = self._agent_client.session.session_id
        self.caps = dict(self._agent_client.session.capabilities)
        self._reporting_executor = ReportingCommandExecutor(
            self._agent_client,
            self._execute_locally,
            capabilities=self.caps,
            disable_reports=disable_reports,
        )
        self._shutdown_manager.add_driver(self, self.stop)

    @staticmethod
    def _execute_locally(command: Command) -> Response:
        return Response(command.session_id, STATE_SUCCESS, STATUS_SUCCESS, None, {"value": None})

    @property
    def agent_client(self) -> AgentClient:
        return self._agent_client

    @property
    def reporting_executor(self) -> ReportingCommandExecutor:
        return self._reporting_executor

    def report(self) -> Reporter:
        return Reporter(self._reporting_executor)

    def addons(self) -> AddonsHelper:
        return AddonsHelper(self._agent_client, self._reporting_executor)

    def quit(self):
        self._shutdown_manager.remove_driver(self)
        self.stop()

    def stop(self):
        """Close out the current test. Also used as the exit hook."""
        self._reporting_executor.clear_stash()
        self._reporting_executor.execute(Command(self.session_id, DriverCommand.QUIT, {}))

    def __enter__(self) -> "GenericDriver":
        return self

    def __exit__(self, exc_type, exc, traceback):
        self.quit()
