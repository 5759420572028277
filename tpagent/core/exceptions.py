"""Error taxonomy for Agent communication and addon execution."""


class SDKError(Exception):
    """Base class for errors raised by the SDK."""


class InvalidTokenError(SDKError):
    """
    Raised when no development token was provided or the Agent rejected it (401).

    Fatal to session creation, never retried.
    """

    def __init__(self, message: str = "The development token is invalid or missing."):
        super().__init__(message)


class AgentConnectError(SDKError):
    """
    Raised on transport failures or unexpected statuses while talking to the Agent.

    Fatal to session creation.
    """

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class ObsoleteVersionError(SDKError):
    """Raised when the Agent (or this SDK) is too old for the requested feature."""

    def __init__(self, message: str = None, agent_version: str = None):
        super().__init__(message or "The SDK or Agent version is obsolete, please upgrade.")
        self.agent_version = agent_version


class MissingBrowserError(SDKError):
    """Agent reported that the requested browser is not installed."""


class DeviceNotConnectedError(SDKError):
    """Agent reported that the requested mobile device is not connected."""


class FailedReportError(SDKError):
    """
    Raised when a report (or a batch of reports) could not be delivered
    after all attempts were exhausted.
    """

    def __init__(self, message: str, attempts: int = 0, count: int = 1):
        super().__init__(message)
        self.attempts = attempts
        self.count = count


class AddonExecutionError(SDKError):
    """Raised when an addon action failed on the Agent or its result was unusable."""

    def __init__(self, message: str, result_type: str = None):
        super().__init__(message)
        self.result_type = result_type
