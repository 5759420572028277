"""
Addon action schema.

An addon action is declared as a dataclass subclass of ActionProxy. Each
field is tagged as input (sent to the Agent) or output (filled in from the
execution response).

Usage:
    @dataclass
    class TypeRandomText(ActionProxy):
        addon_guid: ClassVar[str] = "AbCdEf123"
        class_name: ClassVar[str] = "io.addons.TypeRandomText"

        length: int = input_field(default=8)
        text: str = output_field(default="")
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple

# Selenium style locator, e.g. (By.ID, "username")
Locator = Tuple[str, str]

DIRECTION = "direction"


class FieldDirection(Enum):
    INPUT = "input"
    OUTPUT = "output"


def input_field(default: Any = None, **kwargs) -> Any:
    """Declare a parameter sent to the addon."""
    return field(default=default, metadata={DIRECTION: FieldDirection.INPUT}, **kwargs)


def output_field(default: Any = None, **kwargs) -> Any:
    """Declare a value returned by the addon."""
    return field(default=default, metadata={DIRECTION: FieldDirection.OUTPUT}, **kwargs)


@dataclass
class ProxyDescriptor:
    """What the Agent needs to run an addon action."""
    guid: str
    class_name: str
    by: Optional[Locator] = None
    parameters: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {
            "guid": self.guid,
            "className": self.class_name,
            "parameters": self.parameters,
        }
        if self.by is not None:
            strategy, value = self.by
            data["by"] = {"using": strategy, "value": value}
        return data


@dataclass
class ActionProxy:
    """Base class of addon actions. Subclasses set addon_guid and class_name."""

    addon_guid: ClassVar[str] = ""
    class_name: ClassVar[str] = ""

    @classmethod
    def input_names(cls) -> List[str]:
        return [f.name for f in fields(cls) if f.metadata.get(DIRECTION) == FieldDirection.INPUT]

    @classmethod
    def output_names(cls) -> List[str]:
        return [f.name for f in fields(cls) if f.metadata.get(DIRECTION) == FieldDirection.OUTPUT]

    def descriptor(self, by: Optional[Locator] = None) -> ProxyDescriptor:
        if not self.addon_guid or not self.class_name:
            raise ValueError(f"{type(self).__name__} must define addon_guid and class_name")
        parameters = {name: getattr(self, name) for name in self.input_names()}
        return ProxyDescriptor(self.addon_guid, self.class_name, by, parameters)


@dataclass
class ResultField:
    name: str
    value: Any = None
    output: bool = False


@dataclass
class ActionExecutionResponse:
    """Agent response to an addon execution."""
    result_type: str
    message: Optional[str] = None
    fields: List[ResultField] = field(default_factory=list)

    PASSED: ClassVar[str] = "Passed"

    @property
    def passed(self) -> bool:
        return self.result_type == self.PASSED

    @classmethod
    def from_dict(cls, data: dict) -> "ActionExecutionResponse":
        return cls(
            result_type=data.get("resultType") or "Failed",
            message=data.get("message"),
            fields=[
                ResultField(item.get("name"), item.get("value"), bool(item.get("output")))
                for item in data.get("fields") or []
                if isinstance(item, dict) and item.get("name")
            ],
        )
