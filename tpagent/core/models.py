"""Data models shared by the Agent client, the command executor and the reports queue"""

import copy
import hashlib
import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

# Synthetic capability used to tell cached Agent clients apart
TP_GUID = "tp:guid"
PLATFORM_NAME = "platformName"
BROWSER_NAME = "browserName"
PLATFORM_ANY = "ANY"

STATE_SUCCESS = "success"
STATUS_SUCCESS = 0


class Dialect(Enum):
    """Wire protocol negotiated for a session."""
    OSS = "OSS"
    W3C = "W3C"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Dialect"]:
        if not value:
            return None
        return cls(value.upper())


class ReportType(Enum):
    """Where the Agent should publish execution reports."""
    CLOUD_AND_LOCAL = "CLOUD_AND_LOCAL"
    LOCAL = "LOCAL"
    CLOUD = "CLOUD"


@dataclass(frozen=True)
class ReportSettings:
    """Project/job naming attached to a session request."""
    project_name: Optional[str] = None
    job_name: Optional[str] = None
    report_type: ReportType = ReportType.CLOUD_AND_LOCAL
    report_name: Optional[str] = None
    report_path: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.project_name) and bool(self.job_name)

    def merged_with(self, inferred: "ReportSettings") -> "ReportSettings":
        """Fill empty names from `inferred`; explicit non-empty names always win."""
        return ReportSettings(
            project_name=self.project_name or inferred.project_name,
            job_name=self.job_name or inferred.job_name,
            report_type=self.report_type,
            report_name=self.report_name,
            report_path=self.report_path,
        )


@dataclass(frozen=True)
class AgentSession:
    """Session descriptor returned by the Agent. Never mutated after creation."""
    remote_address: Optional[str]
    session_id: str
    dialect: Optional[Dialect]
    capabilities: Mapping[str, Any]

    def __post_init__(self):
        object.__setattr__(self, "capabilities", MappingProxyType(dict(self.capabilities)))

    @property
    def guid(self) -> Optional[str]:
        return self.capabilities.get(TP_GUID)


@dataclass
class Command:
    """A single protocol command as issued by a driver."""
    session_id: Optional[str]
    name: str
    parameters: Dict[str, Any] = field(default_factory=dict)

    def clone(self, **overrides) -> "Command":
        """Deep copy, optionally replacing some parameters."""
        parameters = copy.deepcopy(self.parameters)
        parameters.update(overrides)
        return Command(self.session_id, self.name, parameters)

    def structural_key(self) -> str:
        """Stable hash of session, name and parameters (used to key stashed commands)."""
        payload = json.dumps(
            [self.session_id, self.name, self.parameters],
            sort_keys=True,
            default=str,
        )
        return hashlib.sha1(payload.encode("utf-8")).hexdigest()


@dataclass
class Response:
    """Normalized outcome of a command."""
    session_id: Optional[str]
    state: str
    status: Optional[int] = None
    value: Any = None
    raw: Optional[Dict[str, Any]] = field(default=None, compare=False, repr=False)

    @property
    def is_passed(self) -> bool:
        return self.state == STATE_SUCCESS or self.status == STATUS_SUCCESS

    @classmethod
    def from_raw(cls, session_id: Optional[str], raw: Optional[Dict[str, Any]]) -> "Response":
        """
        Build a Response from a RemoteConnection result dict.

        RemoteConnection returns failures as {"status": <code>, "value": ...}, where the
        value may hold a W3C error {"error": ..., "message": ...}. Success bodies
        carry no status, so their values are never read as errors.
        """
        if not raw:
            return cls(session_id, STATE_SUCCESS, STATUS_SUCCESS, None, raw)
        status = raw.get("status")
        value = raw.get("value")
        if isinstance(value, str) and status not in (None, STATUS_SUCCESS):
            # Error bodies are passed through as text, e.g. '{"value": {"error": ...}}'
            try:
                body = json.loads(value)
            except ValueError:
                body = None
            if isinstance(body, dict) and isinstance(body.get("value"), dict):
                value = body["value"]
        if status in (None, STATUS_SUCCESS):
            return cls(session_id, STATE_SUCCESS, STATUS_SUCCESS, value, raw)
        if isinstance(value, dict) and "error" in value:
            return cls(session_id, str(value["error"]), status, value, raw)
        return cls(session_id, "error", status, value, raw)

    def clone(self) -> "Response":
        return Response(self.session_id, self.state, self.status, copy.deepcopy(self.value), self.raw)

    def result(self) -> Any:
        """Value to report: error messages for failures, the plain value otherwise."""
        if isinstance(self.value, BaseException):
            return str(self.value)
        if not self.is_passed and isinstance(self.value, dict) and "message" in self.value:
            return self.value["message"]
        return self.value


@dataclass(frozen=True)
class Report:
    """Base report. `type` is the wire discriminant used by batch submission."""

    @property
    def type(self) -> str:
        raise NotImplementedError

    def to_dict(self) -> dict:
        raise NotImplementedError


@dataclass(frozen=True)
class DriverCommandReport(Report):
    command_name: str
    command_parameters: Mapping[str, Any]
    result: Any
    passed: bool
    screenshot: Optional[str] = None

    @property
    def type(self) -> str:
        return "Command"

    def to_dict(self) -> dict:
        data = {
            "commandName": self.command_name,
            "commandParameters": dict(self.command_parameters),
            "result": self.result,
            "passed": self.passed,
            "type": self.type,
        }
        if self.screenshot is not None:
            data["screenshot"] = self.screenshot
        return data

    def __str__(self):
        return self.command_name


@dataclass(frozen=True)
class StepReport(Report):
    description: str
    message: Optional[str] = None
    passed: bool = True
    screenshot: Optional[str] = None
    guid: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def type(self) -> str:
        return "Step"

    def to_dict(self) -> dict:
        data = {
            "guid": self.guid,
            "description": self.description,
            "message": self.message,
            "passed": self.passed,
            "type": self.type,
        }
        if self.screenshot is not None:
            data["screenshot"] = self.screenshot
        return data

    def __str__(self):
        return self.description


@dataclass(frozen=True)
class TestReport(Report):
    name: str
    passed: bool = True
    message: Optional[str] = None

    # Keep pytest from collecting this class
    __test__ = False

    @property
    def type(self) -> str:
        return "Test"

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "passed": self.passed,
            "message": self.message,
            "type": self.type,
        }

    def __str__(self):
        return self.name
