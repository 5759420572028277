"""
Agent client.

Owns the HTTP conversation with the local Agent: starting a development
session, submitting reports through the reports queue and executing addon
actions. One client is cached per process; drivers created for the same
capabilities (same tracking id) share it.

Usage:
    client = AgentClient.get_client({"browserName": "chrome"}, token="...")
    client.session.remote_address     # where the driver should send commands
    client.report_step(StepReport("Opened login page"))
    client.close()
"""

import json
import logging
import re
import threading
import uuid
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx

from tpagent.core.dev_socket import DevSocket, get_dev_socket
from tpagent.core.exceptions import (
    AgentConnectError,
    DeviceNotConnectedError,
    InvalidTokenError,
    MissingBrowserError,
    ObsoleteVersionError,
)
from tpagent.core.models import (
    BROWSER_NAME,
    PLATFORM_ANY,
    PLATFORM_NAME,
    TP_GUID,
    AgentSession,
    Command,
    Dialect,
    DriverCommandReport,
    ReportSettings,
    StepReport,
    TestReport,
)
from tpagent.core.reports_queue import BatchReportsQueue, ReportsQueue
from tpagent.core.shutdown import ShutdownManager, get_shutdown_manager
from tpagent.reporting.inferrers import infer_report_settings
from tpagent.utils.config import AgentConfig, sdk_version
from tpagent.utils.logger import log

logger = logging.getLogger(__name__)

# Seconds to wait for the reports queue to drain on close
REPORTS_QUEUE_TIMEOUT = 10
CONNECTION_TIMEOUT = 5.0
# Starting a browser or device on the Agent can take a while
NEW_SESSION_TIMEOUT = 120.0
ADDON_EXECUTION_TIMEOUT = 60.0

MIN_SESSION_REUSE_CAPABLE_VERSION = "0.64.32"
MIN_GENERIC_DRIVER_SUPPORTED_VERSION = "0.64.40"

LANGUAGE = "Python"


class Routes:
    STATUS = "/api/status"
    DEVELOPMENT_SESSION = "/api/development/session"
    REPORT_COMMAND = "/api/development/report/command"
    REPORT_STEP = "/api/development/report/step"
    REPORT_TEST = "/api/development/report/test"
    REPORT_BATCH = "/api/development/report/batch"
    EXECUTE_ACTION_PROXY = "/api/addons/executions"


def parse_version(version: str) -> Tuple[int, ...]:
    """'0.64.40-beta' -> (0, 64, 40). Raises ValueError when no number is found."""
    parts = re.findall(r"\d+", version.split("-", 1)[0])
    if not parts:
        raise ValueError(f"Invalid version string: {version!r}")
    return tuple(int(p) for p in parts)


def is_version_at_least(version: Optional[str], minimum: str) -> bool:
    if not version:
        return False
    try:
        current, required = parse_version(version), parse_version(minimum)
    except ValueError as e:
        logger.error(str(e))
        return False
    width = max(len(current), len(required))
    return current + (0,) * (width - len(current)) >= required + (0,) * (width - len(required))


def ensure_tracking_id(capabilities: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of `capabilities` that carries the session tracking id."""
    if TP_GUID in capabilities:
        return dict(capabilities)
    return {**capabilities, TP_GUID: str(uuid.uuid4())}


def resolve_remote_address(remote_address: Optional[str], config: AgentConfig) -> str:
    address = remote_address or config.agent_url
    url = httpx.URL(address)
    if url.scheme not in ("http", "https") or not url.host:
        raise ValueError(f"Malformed Agent address: {address!r}")
    return str(url).rstrip("/")


def resolve_token(token: Optional[str], config: AgentConfig) -> str:
    resolved = token or config.token
    if not resolved:
        raise InvalidTokenError("No token has been provided.")
    return resolved


def _message_from(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and body.get("message") is not None:
        return str(body["message"])
    return None


class AgentClient:
    """
    HTTP client bound to one Agent development session.

    Construct through `get_client()`, which caches one instance per process
    keyed by the tracking id capability.
    """

    def __init__(
        self,
        remote_address: str,
        token: str,
        capabilities: Mapping[str, Any],
        report_settings: Optional[ReportSettings] = None,
        disable_reports: bool = False,
        batch_reports: bool = False,
        transport: Optional[httpx.BaseTransport] = None,
        dev_socket: Optional[DevSocket] = None,
        shutdown_manager: Optional[ShutdownManager] = None,
        config: Optional[AgentConfig] = None,
    ):
        """
        Start a new development session on the Agent.

        Args:
            remote_address: Agent base URL
            token: Development token
            capabilities: Requested capabilities, must carry the tracking id
            report_settings: Explicit project/job names (missing names are inferred)
            disable_reports: Do not start a reports queue nor infer names
            batch_reports: Deliver reports in batches instead of one by one
            transport: Optional httpx transport (tests use httpx.MockTransport)
            dev_socket: Development socket owner (default: process-wide)
            shutdown_manager: Exit hook registry (default: process-wide)
            config: Resolved configuration (default: from environment)
        """
        self._config = config or AgentConfig.from_env()
        self.remote_address = remote_address
        self._token = token
        self._transport = transport
        self._dev_socket = dev_socket or get_dev_socket()
        self._shutdown_manager = shutdown_manager or get_shutdown_manager()
        self._http = httpx.Client(
            base_url=remote_address,
            headers={
                "Authorization": token,
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(CONNECTION_TIMEOUT),
            transport=transport,
        )
        self._lock = threading.Lock()
        self._closed = False
        self._reports_queue: Optional[ReportsQueue] = None
        self.session: Optional[AgentSession] = None
        self.agent_version: Optional[str] = None
        self.report_settings: Optional[ReportSettings] = None
        self.local_report: Optional[str] = None

        settings = None if disable_reports else self._infer_report_settings(report_settings)
        try:
            self._start_session(capabilities, settings)
        except MissingBrowserError as e:
            self._http.close()
            raise AgentConnectError(
                f"Requested browser {capabilities.get(BROWSER_NAME)} is not installed"
            ) from e
        except DeviceNotConnectedError as e:
            self._http.close()
            raise AgentConnectError(
                f"Requested device {capabilities.get('udid') or capabilities.get('appium:udid')} is not connected"
            ) from e
        except Exception:
            self._http.close()
            raise

        if not disable_reports:
            if batch_reports:
                self._reports_queue = BatchReportsQueue(
                    self._http,
                    self.session.session_id,
                    Routes.REPORT_BATCH,
                    max_batch_size=self._config.max_batch_size,
                )
            else:
                self._reports_queue = ReportsQueue(self._http, self.session.session_id)
            self._reports_queue.start()

        # Runs after every driver hook on process exit
        self._shutdown_manager.set_agent_client(lambda: self.close(close_socket=True))

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    @classmethod
    def get_client(
        cls,
        capabilities: Mapping[str, Any],
        remote_address: Optional[str] = None,
        token: Optional[str] = None,
        report_settings: Optional[ReportSettings] = None,
        disable_reports: bool = False,
        cache: Optional["AgentClientCache"] = None,
        **kwargs,
    ) -> "AgentClient":
        """
        Get the cached client for these capabilities, or start a new session.

        Raises:
            InvalidTokenError: No token, or the Agent rejected it
            ObsoleteVersionError: Agent or SDK version is not supported
            AgentConnectError: Transport failure or unexpected Agent status
        """
        return (cache or _default_cache).get_or_create(
            capabilities,
            remote_address=remote_address,
            token=token,
            report_settings=report_settings,
            disable_reports=disable_reports,
            **kwargs,
        )

    @classmethod
    def get_instance(cls, cache: Optional["AgentClientCache"] = None) -> Optional["AgentClient"]:
        return (cache or _default_cache).instance

    @classmethod
    def cleanup(cls, cache: Optional["AgentClientCache"] = None):
        """Close and forget the cached client."""
        (cache or _default_cache).clear()

    @staticmethod
    def get_version(remote_address: Optional[str] = None, transport: Optional[httpx.BaseTransport] = None) -> str:
        """Agent version as reported by its status endpoint."""
        address = resolve_remote_address(remote_address, AgentConfig.from_env())
        try:
            with httpx.Client(base_url=address, timeout=CONNECTION_TIMEOUT, transport=transport) as client:
                response = client.get(Routes.STATUS, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            logger.error(f"Failed to get Agent status: {e}")
            raise AgentConnectError("Failed to get Agent status") from e
        if response.status_code != 200:
            logger.error(f"Agent responded with an unexpected status {response.status_code} to status request")
        try:
            return response.json()["tag"]
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Failed to parse Agent response: {e}")
            raise AgentConnectError("Failed to parse Agent response") from e

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    @property
    def tracking_id(self) -> Optional[str]:
        return self.session.guid if self.session else None

    @property
    def reports_queue(self) -> Optional[ReportsQueue]:
        return self._reports_queue

    @property
    def disable_auto_reports(self) -> bool:
        return self._config.disable_auto_reports

    def can_reuse_session(self) -> bool:
        supported = is_version_at_least(self.agent_version, MIN_SESSION_REUSE_CAPABLE_VERSION)
        logger.debug(f"Agent [{self.agent_version}] {'supports' if supported else 'does not support'} session re-use")
        return supported

    def _infer_report_settings(self, report_settings: Optional[ReportSettings]) -> ReportSettings:
        if report_settings is not None and report_settings.is_complete:
            logger.debug("Project and Job names were explicitly set, skipping inferring.")
            return report_settings

        logger.debug("Report settings were not provided or incomplete, trying to infer...")
        inferred = infer_report_settings()
        logger.info(f"Inferred [{inferred.project_name}] and [{inferred.job_name}] for Project and Job names accordingly.")

        result = report_settings.merged_with(inferred) if report_settings is not None else inferred
        logger.info(f"Using [{result.project_name}] and [{result.job_name}] for Project and Job names accordingly.")
        return result

    def _session_request(self, capabilities: Mapping[str, Any], settings: Optional[ReportSettings]) -> dict:
        request = {
            "capabilities": dict(capabilities),
            "sdkVersion": sdk_version(),
            "language": LANGUAGE,
        }
        if settings is not None:
            request["projectName"] = settings.project_name
            request["jobName"] = settings.job_name
            request["reportType"] = settings.report_type.value
            if settings.report_name:
                request["reportName"] = settings.report_name
            if settings.report_path:
                request["reportPath"] = settings.report_path
        return request

    def _check_agent_version(self, capabilities: Mapping[str, Any]):
        if capabilities.get(PLATFORM_NAME) != PLATFORM_ANY:
            return
        version = self.get_version(self.remote_address, transport=self._transport)
        if not is_version_at_least(version, MIN_GENERIC_DRIVER_SUPPORTED_VERSION):
            raise ObsoleteVersionError(
                f"Target Agent version [{version}] doesn't support Generic driver. "
                f"Upgrade the Agent to the latest version and try again.",
                agent_version=version,
            )

    def _start_session(self, capabilities: Mapping[str, Any], settings: Optional[ReportSettings]):
        logger.info("Initializing new session...")
        logger.debug(f"Initializing new session with capabilities: {dict(capabilities)}")
        guid = capabilities[TP_GUID]

        self._check_agent_version(capabilities)

        request = self._session_request(capabilities, settings)
        self.report_settings = settings
        try:
            response = self._http.post(
                Routes.DEVELOPMENT_SESSION,
                content=json.dumps(request, default=str),
                timeout=httpx.Timeout(NEW_SESSION_TIMEOUT, connect=CONNECTION_TIMEOUT),
            )
        except httpx.HTTPError as e:
            raise self._translate_connect_failure(e) from e

        if not response.is_success:
            self._handle_session_start_failure(response, capabilities)

        logger.debug(f"Session initialization response: {response.text}")
        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Failed to parse Agent response: {e}")
            raise AgentConnectError("Failed to parse Agent response") from e

        # The driver may drop unknown capabilities, so the tracking id is restored here
        session_capabilities = dict(data.get("capabilities") or {})
        session_capabilities[TP_GUID] = guid

        try:
            dialect = Dialect.parse(data.get("dialect"))
        except ValueError as e:
            raise AgentConnectError(f"Agent returned an unknown dialect: [{data.get('dialect')}]") from e

        # The generic driver has no automation server behind it
        server_address = None if capabilities.get(PLATFORM_NAME) == PLATFORM_ANY else data.get("serverAddress")

        self.agent_version = data.get("version")
        self.local_report = data.get("localReport")
        self.session = AgentSession(
            remote_address=server_address,
            session_id=data.get("sessionId") or str(uuid.uuid4()),
            dialect=dialect,
            capabilities=session_capabilities,
        )
        logger.info(f"Session [{self.session.session_id}] initialized")

        for warning in data.get("warnings") or []:
            logger.warning(warning)

        port = data.get("devSocketPort")
        if port:
            self._dev_socket.open(httpx.URL(self.remote_address).host, int(port))

    def _translate_connect_failure(self, error: httpx.HTTPError) -> AgentConnectError:
        if isinstance(error, httpx.TimeoutException):
            return AgentConnectError(
                "Could not complete the request to start a new session. "
                "Another program such as an antivirus/firewall seems to be interfering with the connection."
            )
        if isinstance(error, httpx.ConnectError):
            return AgentConnectError("Could not connect to agent. Please make sure it is running and try again")
        return AgentConnectError(f"Failed communicating with the Agent at {self.remote_address}")

    def _handle_session_start_failure(self, response: httpx.Response, capabilities: Mapping[str, Any]):
        message = _message_from(response)
        status = response.status_code

        if status == 401:
            logger.error("Failed to initialize a session with the Agent - token is invalid")
            raise InvalidTokenError()
        if status == 406:
            logger.error("Failed to initialize a session with the Agent - obsolete SDK version")
            raise ObsoleteVersionError(message)
        if status == 404:
            if message is not None and not capabilities.get(BROWSER_NAME):
                logger.error("Failed to initialize a session with the Agent - Requested device is not connected")
                raise DeviceNotConnectedError(message)
            logger.error("Failed to initialize a session with the Agent - requested browser is not installed")
            raise MissingBrowserError(message)

        logger.error("Failed to initialize a session with the Agent")
        raise AgentConnectError(f"Agent responded with status {status}: [{message}]", status_code=status)

    def update_job_name(self, job_name: str):
        """Rename the job of the running session. Failures are only logged."""
        logger.debug(f"Sending request to update job name to: {job_name}")
        try:
            response = self._http.put(Routes.DEVELOPMENT_SESSION, json={"jobName": job_name})
        except httpx.HTTPError as e:
            logger.error(f"Failed to execute request to update job name: [{job_name}]: {e}")
            return
        if response.status_code != 200:
            logger.error(f"Failed to update job name to {job_name}")

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def _submit(self, route: str, report) -> bool:
        if self._reports_queue is None or self._closed:
            logger.debug(f"Reports are disabled, skipping report: [{report}]")
            return False
        self._reports_queue.submit(route, report)
        return True

    def report_command(self, command: Command, result: Any, passed: bool, screenshot: Optional[str] = None) -> bool:
        report = DriverCommandReport(command.name, command.parameters, result, passed, screenshot)
        return self._submit(Routes.REPORT_COMMAND, report)

    def report_step(self, report: StepReport) -> bool:
        return self._submit(Routes.REPORT_STEP, report)

    def report_test(self, report: TestReport) -> bool:
        return self._submit(Routes.REPORT_TEST, report)

    # ------------------------------------------------------------------
    # Addons
    # ------------------------------------------------------------------

    def execute_proxy(self, descriptor: dict, timeout: Optional[float] = None) -> dict:
        """
        Run an addon action on the Agent.

        Args:
            descriptor: Serialized proxy descriptor
            timeout: Read timeout in seconds (default: 60)

        Returns:
            Parsed execution response
        """
        logger.debug(f"Sending action proxy request: {descriptor}")
        read_timeout = timeout if timeout and timeout > 0 else ADDON_EXECUTION_TIMEOUT
        try:
            response = self._http.post(
                Routes.EXECUTE_ACTION_PROXY,
                content=json.dumps(descriptor, default=str),
                timeout=httpx.Timeout(read_timeout, connect=CONNECTION_TIMEOUT),
            )
        except httpx.HTTPError as e:
            logger.error(f"Failed to execute action proxy: [{descriptor.get('className')}]: {e}")
            raise AgentConnectError(f"Failed to execute action proxy: [{descriptor.get('className')}]") from e

        if response.status_code != 200:
            logger.error(
                f"Agent responded with an unexpected status {response.status_code} "
                f"to action proxy execution: [{descriptor.get('className')}]"
            )
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Failed reading action proxy execution response: {e}")
            raise AgentConnectError("Failed reading action proxy execution response") from e

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self, close_socket: bool = True):
        """
        Drain the reports queue (bounded by REPORTS_QUEUE_TIMEOUT) and end the session.

        Idempotent; safe to call from an exit hook.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True

        session_id = self.session.session_id if self.session else None
        logger.debug(f"Closing AgentClient for driver session [{session_id}]")

        queue = self._reports_queue
        if queue is not None:
            queue.stop()
            if not queue.join(REPORTS_QUEUE_TIMEOUT):
                logger.error("Reports queue didn't finish uploading reports in a timely manner and was terminated.")
                logger.warning("Terminating reports queue forcibly...")
                queue.cancel()

        if close_socket:
            logger.debug("Agent client is closing development socket...")
            self._dev_socket.close()

        self._http.close()
        logger.info(f"Session [{session_id}] closed")
        if self.local_report:
            log("Agent", f"Execution Report: {self.local_report}", force=True)

    def _stop(self, close_socket: bool):
        """Close as part of being replaced by a newer client."""
        self._shutdown_manager.remove_agent_client()
        logger.debug("Removed shutdown hook to avoid unnecessary close() calls")
        self.close(close_socket=close_socket)


class AgentClientCache:
    """
    At most one live AgentClient, keyed by the tracking id capability.

    Get-or-create is serialized so racing drivers for the same capabilities
    share a single Agent session.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._instance: Optional[AgentClient] = None

    @property
    def instance(self) -> Optional[AgentClient]:
        return self._instance

    def get_or_create(
        self,
        capabilities: Mapping[str, Any],
        remote_address: Optional[str] = None,
        token: Optional[str] = None,
        report_settings: Optional[ReportSettings] = None,
        disable_reports: bool = False,
        config: Optional[AgentConfig] = None,
        **kwargs,
    ) -> AgentClient:
        config = config or AgentConfig.from_env()
        address = resolve_remote_address(remote_address, config)
        resolved_token = resolve_token(token, config)
        capabilities = ensure_tracking_id(capabilities)

        with self._lock:
            current = self._instance
            if current is not None and not current.closed and current.tracking_id == capabilities[TP_GUID]:
                return current

            if current is not None:
                requested = report_settings
                if current.report_settings is not None and not disable_reports:
                    if requested is None or not requested.is_complete:
                        inferred = infer_report_settings()
                        requested = requested.merged_with(inferred) if requested else inferred
                same_settings = (
                    current.report_settings is not None
                    and requested is not None
                    and current.report_settings.project_name == requested.project_name
                    and current.report_settings.job_name == requested.job_name
                )
                # Keep the development socket open only when the Agent can reuse the session
                current._stop(close_socket=not (same_settings and current.can_reuse_session()))

            self._instance = AgentClient(
                address,
                resolved_token,
                capabilities,
                report_settings=report_settings,
                disable_reports=disable_reports,
                config=config,
                **kwargs,
            )
            return self._instance

    def clear(self):
        with self._lock:
            current, self._instance = self._instance, None
        if current is not None:
            current._stop(close_socket=True)


_default_cache = AgentClientCache()
