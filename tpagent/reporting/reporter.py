"""
Manual reporting API exposed by drivers through `driver.report()`.

Usage:
    driver.report().step("Logged in", passed=True, screenshot=True)

    with driver.report().test("Checkout") as test:
        ...                       # an exception marks the test as failed

    driver.report().disable_command_reports(True)
"""

import logging
from types import TracebackType
from typing import Callable, Optional, Type

from tpagent.core.executor import ReportingCommandExecutor
from tpagent.core.models import StepReport, TestReport
from tpagent.reporting.inferrers import capture_stack

logger = logging.getLogger(__name__)

ScreenshotProvider = Callable[[], Optional[str]]


class Reporter:
    """Report switches and manual step/test reports for one driver."""

    def __init__(self, executor: ReportingCommandExecutor, screenshot_provider: Optional[ScreenshotProvider] = None):
        self._executor = executor
        self._screenshot_provider = screenshot_provider

    def disable_reports(self, disabled: bool):
        """Disable every report (commands, steps and tests) sent by this driver."""
        self._executor.reports_disabled = disabled

    def disable_command_reports(self, disabled: bool):
        if disabled:
            # Whatever was observed so far is still reported
            self._executor.clear_stash()
        self._executor.command_reports_disabled = disabled

    def disable_auto_test_reports(self, disabled: bool):
        self._executor.test_auto_reports_disabled = disabled

    def disable_redaction(self, disabled: bool):
        self._executor.redaction_disabled = disabled

    def _screenshot(self) -> Optional[str]:
        if self._screenshot_provider is None:
            logger.warning("This driver does not support screenshots")
            return None
        try:
            return self._screenshot_provider()
        except Exception as e:
            logger.error(f"Failed to take a screenshot for the report: {e}")
            return None

    def step(self, description: str, message: Optional[str] = None, passed: bool = True, screenshot: bool = False) -> bool:
        """
        Report a step.

        Args:
            description: Step description
            message: Optional details
            passed: Step outcome
            screenshot: Attach a screenshot of the current screen

        Returns:
            True when the report was accepted for delivery
        """
        if not self._executor.reports_disabled and not self._executor.test_auto_reports_disabled:
            self._executor.report_test(capture_stack())

        if self._executor.reports_disabled or self._executor.agent_client is None:
            logger.debug(f"Step '{description}' {'passed' if passed else 'failed'}")
            return True

        report = StepReport(
            description,
            message=message,
            passed=passed,
            screenshot=self._screenshot() if screenshot else None,
        )
        return self._executor.agent_client.report_step(report)

    def test(self, name: str, passed: bool = False, message: Optional[str] = None) -> "ClosableTestReport":
        """Start a manual test report, submitted on close()."""
        return ClosableTestReport(self._executor, name, passed, message)


class ClosableTestReport:
    """
    A test report that is submitted once, when closed.

    Used as a context manager the test passes unless the block raises.
    """

    def __init__(self, executor: ReportingCommandExecutor, name: str, passed: bool = False, message: Optional[str] = None):
        self._executor = executor
        self.name = name
        self.passed = passed
        self.message = message
        self._submitted = False

    @property
    def submitted(self) -> bool:
        return self._submitted

    def submit(self) -> bool:
        if self._submitted:
            return True
        self._submitted = True
        return self._executor.report_manual_test(TestReport(self.name, self.passed, self.message))

    def close(self) -> bool:
        return self.submit()

    def __enter__(self) -> "ClosableTestReport":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        traceback: Optional[TracebackType],
    ):
        if exc_type is None:
            self.passed = True
        else:
            self.passed = False
            if self.message is None:
                self.message = str(exc)
        self.submit()
