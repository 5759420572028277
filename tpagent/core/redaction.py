"""
Redaction of secrets typed into password fields.

Only the reported copy of a command is masked. The command sent to the
automation server is never touched.
"""

import logging
from typing import TYPE_CHECKING, Any, Mapping, Optional

from selenium.webdriver.remote.command import Command as DriverCommand

from tpagent.core.models import BROWSER_NAME, PLATFORM_NAME, Command

if TYPE_CHECKING:
    from tpagent.core.executor import ReportingCommandExecutor

logger = logging.getLogger(__name__)

REDACTED_VALUE = "***"
SECURE_TEXT_FIELD = "XCUIElementTypeSecureTextField"

SEND_KEYS_TO_ELEMENT = DriverCommand.SEND_KEYS_TO_ELEMENT
SEND_KEYS_TO_ACTIVE_ELEMENT = "sendKeysToActiveElement"
REDACTABLE_COMMANDS = (SEND_KEYS_TO_ELEMENT, SEND_KEYS_TO_ACTIVE_ELEMENT)

# W3C element reference key, legacy protocol uses "ELEMENT"
ELEMENT_KEYS = ("element-6066-11e4-a52e-4f735466cecf", "ELEMENT")


def is_android_native(capabilities: Mapping[str, Any]) -> bool:
    platform = str(capabilities.get(PLATFORM_NAME) or "").lower()
    return platform == "android" and not capabilities.get(BROWSER_NAME)


def _element_id(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        for key in ELEMENT_KEYS:
            if value.get(key):
                return value[key]
    return None


def _target_element(executor: "ReportingCommandExecutor", command: Command) -> Optional[str]:
    if command.name == SEND_KEYS_TO_ELEMENT:
        return command.parameters.get("id")
    response = executor.execute(
        Command(command.session_id, DriverCommand.W3C_GET_ACTIVE_ELEMENT, {}),
        skip_reporting=True,
    )
    return _element_id(response.value) if response.is_passed else None


def _get_attribute(executor: "ReportingCommandExecutor", command: Command, element_id: str, name: str) -> Any:
    response = executor.execute(
        Command(command.session_id, DriverCommand.GET_ELEMENT_ATTRIBUTE, {"id": element_id, "name": name}),
        skip_reporting=True,
    )
    return response.value if response.is_passed else None


def is_secure_element(executor: "ReportingCommandExecutor", command: Command, element_id: str) -> bool:
    """Ask the automation server whether the element is a password field."""
    if is_android_native(executor.capabilities):
        return str(_get_attribute(executor, command, element_id, "password")).lower() == "true"
    element_type = _get_attribute(executor, command, element_id, "type")
    return element_type in ("password", SECURE_TEXT_FIELD)


def redact_command(executor: "ReportingCommandExecutor", command: Command) -> Command:
    """
    Return the command to report for `command`.

    Send-keys commands targeting password fields come back as a clone with the
    typed text masked; anything else is returned unchanged. Lookup failures are
    treated as "not a secret".
    """
    if command.name not in REDACTABLE_COMMANDS:
        return command

    try:
        element_id = _target_element(executor, command)
        if not element_id or not is_secure_element(executor, command, element_id):
            return command
    except Exception as e:
        logger.debug(f"Failed to check whether [{command.name}] targets a secure element: {e}")
        return command

    return command.clone(text=REDACTED_VALUE, value=REDACTED_VALUE)
