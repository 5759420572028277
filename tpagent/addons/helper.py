"""
Addon execution.

Usage:
    action = driver.addons().execute(TypeRandomText(length=12), by=(By.ID, "name"))
    print(action.text)
"""

import logging
import types
import typing
from typing import Any, Dict, Optional

from selenium.common.exceptions import InvalidArgumentException

from tpagent.addons.proxy import ActionExecutionResponse, ActionProxy, Locator
from tpagent.core.exceptions import AddonExecutionError

logger = logging.getLogger(__name__)


# `int | None` annotations (Python 3.10+)
_UNION_TYPES = (typing.Union, getattr(types, "UnionType", typing.Union))


def _unwrap_optional(annotation: Any) -> Any:
    if typing.get_origin(annotation) in _UNION_TYPES:
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


def convert_value(value: Any, annotation: Any) -> Any:
    """
    Convert an addon output value (sent as a string) to the declared field type.

    Raises:
        InvalidArgumentException: The value is not a valid number for a numeric field
    """
    target = _unwrap_optional(annotation)
    if value is None or target is Any or not isinstance(value, str):
        return value
    if target is bool:
        return value.strip().lower() == "true"
    if target in (int, float):
        try:
            return target(value.strip())
        except ValueError as e:
            raise InvalidArgumentException(f"Failed to convert [{value}] to {target.__name__}") from e
    return value


class AddonsHelper:
    """Runs addon actions through the Agent session."""

    def __init__(self, agent_client, executor=None):
        self._agent_client = agent_client
        self._executor = executor

    def execute(self, action: ActionProxy, by: Optional[Locator] = None, timeout: float = -1) -> ActionProxy:
        """
        Execute an addon action and copy its output fields back onto it.

        Args:
            action: Action to run (updated in place)
            by: Optional element locator the action operates on
            timeout: Seconds to wait for the action (<= 0 uses the Agent default)

        Returns:
            The same action instance

        Raises:
            AddonExecutionError: The action did not pass
            InvalidArgumentException: An output value does not fit its field type
        """
        descriptor = action.descriptor(by)
        if self._executor is not None:
            # Commands stashed so far precede the action in the report
            self._executor.clear_stash()

        response = ActionExecutionResponse.from_dict(
            self._agent_client.execute_proxy(descriptor.to_dict(), timeout)
        )
        if not response.passed:
            raise AddonExecutionError(
                f"Failed to execute action proxy: {response.message}",
                result_type=response.result_type,
            )

        self._apply_outputs(action, response)
        return action

    run = execute

    @staticmethod
    def _apply_outputs(action: ActionProxy, response: ActionExecutionResponse):
        hints: Dict[str, Any] = typing.get_type_hints(type(action))
        outputs = set(action.output_names())
        for result in response.fields:
            if not result.output:
                continue
            if result.name not in outputs:
                logger.debug(f"Ignoring unknown output field [{result.name}] of {type(action).__name__}")
                continue
            setattr(action, result.name, convert_value(result.value, hints.get(result.name, Any)))
