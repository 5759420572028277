"""TPAgent SDK - Selenium drivers that run through a local Agent and report every step"""

__version__ = "0.1.0"

# Drivers
from .drivers.web import Chrome, Edge, Firefox, Remote, Safari
from .drivers.mobile import IOS, Android, MobileOptions
from .drivers.generic import GenericDriver

# Session and reporting
from .core.agent_client import AgentClient
from .core.models import ReportSettings, ReportType, StepReport, TestReport
from .reporting.reporter import ClosableTestReport, Reporter
from .addons.proxy import ActionProxy, input_field, output_field
from .core.exceptions import (
    AddonExecutionError,
    AgentConnectError,
    FailedReportError,
    InvalidTokenError,
    ObsoleteVersionError,
    SDKError,
)

__all__ = [
    "__version__",
    # Drivers
    "Chrome",
    "Edge",
    "Firefox",
    "Remote",
    "Safari",
    "Android",
    "IOS",
    "MobileOptions",
    "GenericDriver",
    # Session and reporting
    "AgentClient",
    "ReportSettings",
    "ReportType",
    "StepReport",
    "TestReport",
    "Reporter",
    "ClosableTestReport",
    # Addons
    "ActionProxy",
    "input_field",
    "output_field",
    # Errors
    "SDKError",
    "InvalidTokenError",
    "AgentConnectError",
    "ObsoleteVersionError",
    "FailedReportError",
    "AddonExecutionError",
]
