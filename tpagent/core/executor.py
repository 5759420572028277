"""
Reporting command executor.

Every driver command passes through here: it is sent to the automation server
first, then reported to the Agent. Commands issued from inside a polling wait
(WebDriverWait) are stashed instead, and only the latest attempt of each
distinct command is reported once the wait resolves.

Usage:
    executor = ReportingCommandExecutor(agent_client, transport)
    response = executor.execute(Command(session_id, "get", {"url": url}))
"""

import logging
import threading
from collections import OrderedDict
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

from selenium.webdriver.remote.command import Command as DriverCommand

from tpagent.core.models import Command, Response, TestReport
from tpagent.core.redaction import redact_command
from tpagent.reporting.inferrers import StackFrame, capture_stack, infer_test_name, is_inside_wait

logger = logging.getLogger(__name__)

QUIT = DriverCommand.QUIT

# Sends a command to the automation server
Transport = Callable[[Command], Response]


class StashedCommands:
    """Commands observed inside a polling wait, keyed by their structural hash."""

    def __init__(self):
        self._lock = threading.Lock()
        self._items: "OrderedDict[str, Tuple[Command, Response]]" = OrderedDict()

    def __len__(self):
        with self._lock:
            return len(self._items)

    def stash(self, command: Command, response: Response):
        """Store a clone; a later attempt of the same command replaces the earlier one."""
        key = command.structural_key()
        with self._lock:
            self._items.pop(key, None)
            self._items[key] = (command.clone(), response.clone())

    def drain(self) -> List[Tuple[Command, Response]]:
        with self._lock:
            items = list(self._items.values())
            self._items.clear()
        return items


class ReportingCommandExecutor:
    """Executes driver commands and reports them (and inferred tests) to the Agent."""

    def __init__(
        self,
        agent_client,
        transport: Transport,
        capabilities: Optional[Mapping[str, Any]] = None,
        disable_reports: bool = False,
    ):
        """
        Args:
            agent_client: AgentClient (None for drivers that never report)
            transport: Callable sending a Command to the automation server
            capabilities: Session capabilities (used by redaction heuristics)
            disable_reports: Start with every report disabled
        """
        self.agent_client = agent_client
        self._transport = transport
        self.capabilities: Mapping[str, Any] = dict(capabilities or {})

        self.reports_disabled = disable_reports
        self.command_reports_disabled = False
        self.test_auto_reports_disabled = bool(agent_client and agent_client.disable_auto_reports)
        self.redaction_disabled = False

        self._stash = StashedCommands()
        self._test_lock = threading.Lock()
        self._current_test: Optional[str] = None

    @property
    def current_test(self) -> Optional[str]:
        with self._test_lock:
            return self._current_test

    @property
    def stashed(self) -> int:
        return len(self._stash)

    def execute(self, command: Command, skip_reporting: bool = False) -> Response:
        """
        Send `command` to the automation server and report it.

        Args:
            command: Command to execute
            skip_reporting: Execute only, without any report side effects

        Returns:
            Response of the automation server
        """
        response = self._transport(command)
        if skip_reporting:
            return response

        frames = capture_stack()
        self._report(command, response, frames)
        return response

    def _report(self, command: Command, response: Response, frames: Sequence[StackFrame]):
        if not self.test_auto_reports_disabled:
            self.report_test(frames, force=command.name == QUIT)

        # Quitting closes the current test and is never reported as a command
        if command.name == QUIT:
            return

        if is_inside_wait(frames):
            logger.debug(f"Stashing command [{command.name}] executed inside a wait")
            self._stash.stash(command, response)
            return

        self.clear_stash()
        if not self.report_command(command, response):
            logger.error(f"Failed to report command [{command.name}]")

    def clear_stash(self):
        """Report every stashed command, oldest first, then forget them."""
        for command, response in self._stash.drain():
            if not self.report_command(command, response):
                logger.error(f"Failed to report stashed command [{command.name}]")

    def report_command(self, command: Command, response: Response, screenshot: Optional[str] = None) -> bool:
        if self.reports_disabled or self.command_reports_disabled or self.agent_client is None:
            logger.debug(f"Command '{command.name}' {'passed' if response.is_passed else 'failed'}")
            return True

        reported = command if self.redaction_disabled else redact_command(self, command)
        return self.agent_client.report_command(reported, response.result(), response.is_passed, screenshot)

    def report_test(self, frames: Optional[Sequence[StackFrame]] = None, force: bool = False):
        """
        Close out the current test when the inferred test name changes.

        Args:
            frames: Captured stack (default: the caller's stack)
            force: Report the current test even if the name did not change
        """
        name = infer_test_name(frames if frames is not None else capture_stack())

        with self._test_lock:
            if self._current_test is None:
                self._current_test = name
            # A forced closure (quit) still closes the current test when nothing can be inferred
            if name is None and not (force and self._current_test):
                return
            if name == self._current_test and not force:
                return
            previous = self._current_test
            self._current_test = name

        if previous is None:
            return
        if self.reports_disabled or self.agent_client is None:
            logger.debug(f"Test '{previous}' finished")
            return

        self.agent_client.report_test(TestReport(previous, passed=True))

    def report_manual_test(self, report: TestReport) -> bool:
        if self.reports_disabled or self.agent_client is None:
            logger.debug(f"Test '{report.name}' {'passed' if report.passed else 'failed'}")
            return True
        if not self.test_auto_reports_disabled:
            logger.warning(
                "Automatic test reports are enabled. Disable them to avoid duplicates "
                "alongside manually reported tests."
            )
        return self.agent_client.report_test(report)
