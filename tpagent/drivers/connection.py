"""
Remote connections that route every command through the reporting executor.

Selenium's WebDriver hands each command to `command_executor.execute()`.
These connections turn it into a Command, let the ReportingCommandExecutor
send it (via `send()`) and report it, and return the raw response dict to
Selenium unchanged.
"""

import logging
from typing import Any, Dict, Optional

from selenium.webdriver.remote.client_config import ClientConfig
from selenium.webdriver.remote.command import Command as DriverCommand
from selenium.webdriver.remote.remote_connection import RemoteConnection

from tpagent.core.executor import ReportingCommandExecutor
from tpagent.core.models import STATE_SUCCESS, STATUS_SUCCESS, Command, Response

logger = logging.getLogger(__name__)


class ReportingRemoteConnection(RemoteConnection):
    """W3C connection to the automation server provided by the Agent."""

    def __init__(self, remote_server_addr: str, keep_alive: bool = True):
        super().__init__(client_config=ClientConfig(remote_server_addr=remote_server_addr, keep_alive=keep_alive))
        self.reporting_executor: Optional[ReportingCommandExecutor] = None

    def execute(self, command: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        parameters = dict(params or {})
        session_id = parameters.pop("sessionId", None)
        request = Command(session_id, command, parameters)
        if self.reporting_executor is None:
            return self.send(request).raw
        return self.reporting_executor.execute(request).raw

    def send(self, command: Command) -> Response:
        """Send a command to the automation server without reporting it."""
        # RemoteConnection consumes path parameters from the dict it is given
        params = dict(command.parameters)
        if command.session_id:
            params["sessionId"] = command.session_id
        raw = super().execute(command.name, params)
        return Response.from_raw(command.session_id, raw)


class MobileRemoteConnection(ReportingRemoteConnection):
    """
    Connection to an Appium server.

    Knows the Appium specific endpoints on top of the W3C ones. Quitting is
    not forwarded: the device session belongs to the Agent.
    """

    extra_commands = {
        "getCurrentActivity": ("GET", "/session/$sessionId/appium/device/current_activity"),
        "getCurrentPackage": ("GET", "/session/$sessionId/appium/device/current_package"),
        "hideKeyboard": ("POST", "/session/$sessionId/appium/device/hide_keyboard"),
        "isKeyboardShown": ("GET", "/session/$sessionId/appium/device/is_keyboard_shown"),
        "pressKeyCode": ("POST", "/session/$sessionId/appium/device/press_keycode"),
        "longPressKeyCode": ("POST", "/session/$sessionId/appium/device/long_press_keycode"),
        "activateApp": ("POST", "/session/$sessionId/appium/device/activate_app"),
        "terminateApp": ("POST", "/session/$sessionId/appium/device/terminate_app"),
        "queryAppState": ("POST", "/session/$sessionId/appium/device/app_state"),
        "getDeviceTime": ("GET", "/session/$sessionId/appium/device/system_time"),
        "getClipboard": ("POST", "/session/$sessionId/appium/device/get_clipboard"),
        "setClipboard": ("POST", "/session/$sessionId/appium/device/set_clipboard"),
    }

    def send(self, command: Command) -> Response:
        if command.name == DriverCommand.QUIT:
            logger.debug("Skipping quit, the device session is owned by the Agent")
            return Response(command.session_id, STATE_SUCCESS, STATUS_SUCCESS, None, {"value": None})
        return super().send(command)
