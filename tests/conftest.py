"""Shared fixtures: an in-process fake Agent served through httpx.MockTransport."""

import json
import threading
import time
from typing import List, Optional
from unittest.mock import MagicMock

import httpx
import pytest

from tpagent.core.agent_client import AgentClient, AgentClientCache, Routes
from tpagent.core.models import ReportSettings
from tpagent.core.shutdown import ShutdownManager
from tpagent.utils.config import AgentConfig

AGENT_URL = "http://localhost:8585"
SERVER_ADDRESS = "http://127.0.0.1:4444/wd/hub"


class FakeAgent:
    """Records every request and answers like the Agent would."""

    def __init__(self):
        self.version = "1.2.0"
        self.session_status = 200
        self.session_message: Optional[str] = None
        self.session_delay = 0.0
        self.report_status = 200
        self.dialect = "W3C"
        self.server_address: Optional[str] = SERVER_ADDRESS
        self.dev_socket_port: Optional[int] = None
        self.warnings: List[str] = []
        self.local_report: Optional[str] = None
        self.drop_session_id = False
        self.addon_response = {"resultType": "Passed", "message": None, "fields": []}
        self.error: Optional[Exception] = None
        self.requests: List[httpx.Request] = []
        self._sessions = 0
        self._lock = threading.Lock()

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
        if self.error is not None:
            raise self.error

        path = request.url.path
        if path == Routes.STATUS:
            return httpx.Response(200, json={"tag": self.version})
        if path == Routes.DEVELOPMENT_SESSION and request.method == "POST":
            return self._start_session(request)
        if path == Routes.DEVELOPMENT_SESSION and request.method == "PUT":
            return httpx.Response(200, json={})
        if path == Routes.EXECUTE_ACTION_PROXY:
            return httpx.Response(200, json=self.addon_response)
        if path.startswith("/api/development/report/"):
            return httpx.Response(self.report_status, json={})
        return httpx.Response(404, json={"message": f"Unknown route {path}"})

    def _start_session(self, request: httpx.Request) -> httpx.Response:
        if self.session_delay:
            time.sleep(self.session_delay)
        if self.session_status != 200:
            body = {"message": self.session_message} if self.session_message else {}
            return httpx.Response(self.session_status, json=body)

        with self._lock:
            self._sessions += 1
            number = self._sessions
        body = json.loads(request.content)
        response = {
            "sessionId": None if self.drop_session_id else f"session-{number}",
            "serverAddress": self.server_address,
            "dialect": self.dialect,
            # The automation server drops capabilities it does not know
            "capabilities": {k: v for k, v in body["capabilities"].items() if k != "tp:guid"},
            "version": self.version,
            "warnings": self.warnings,
        }
        if self.dev_socket_port:
            response["devSocketPort"] = self.dev_socket_port
        if self.local_report:
            response["localReport"] = self.local_report
        return httpx.Response(200, json=response)

    def sent(self, path: str, method: str = "POST") -> List[httpx.Request]:
        with self._lock:
            return [r for r in self.requests if r.url.path == path and r.method == method]

    def bodies(self, path: str) -> list:
        return [json.loads(r.content) for r in self.sent(path)]


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in ("TP_AGENT_URL", "TP_DEV_TOKEN", "TP_DISABLE_AUTO_REPORTS", "TP_MAX_REPORTS_BATCH_SIZE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def agent():
    return FakeAgent()


@pytest.fixture
def client_cache():
    cache = AgentClientCache()
    yield cache
    cache.clear()


@pytest.fixture
def shutdown_manager():
    return ShutdownManager()


@pytest.fixture
def dev_socket():
    return MagicMock()


@pytest.fixture
def client_factory(agent, client_cache, shutdown_manager, dev_socket):
    """Create clients bound to the fake Agent and an isolated cache."""

    def factory(capabilities=None, **kwargs):
        kwargs.setdefault("remote_address", AGENT_URL)
        kwargs.setdefault("token", "dev-token")
        kwargs.setdefault("report_settings", ReportSettings("Project", "Job"))
        kwargs.setdefault("config", AgentConfig())
        kwargs.setdefault("transport", agent.transport)
        kwargs.setdefault("dev_socket", dev_socket)
        kwargs.setdefault("shutdown_manager", shutdown_manager)
        return AgentClient.get_client(
            capabilities if capabilities is not None else {"browserName": "chrome"},
            cache=client_cache,
            **kwargs,
        )

    return factory
