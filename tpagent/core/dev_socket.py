"""
Development socket.

A plain TCP connection to the port returned by the Agent when a session
starts. Nothing is ever written to it: the Agent treats the connection as
proof that the SDK process is alive and ends the session once it closes.
"""

import logging
import socket
import threading
from typing import Optional

from tpagent.core.exceptions import AgentConnectError

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 5.0


class DevSocket:
    """Owner of the single liveness connection to the Agent."""

    def __init__(self):
        self._socket: Optional[socket.socket] = None
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._socket is not None

    def open(self, host: str, port: int):
        """Connect unless already connected."""
        with self._lock:
            if self._socket is not None:
                logger.debug("Development socket is already connected.")
                return
            logger.debug(f"Connecting to Agent socket: {host}:{port}")
            try:
                self._socket = socket.create_connection((host, port), timeout=CONNECT_TIMEOUT)
            except OSError as e:
                logger.error(f"Failed connecting to Agent socket at {host}:{port}: {e}")
                raise AgentConnectError(f"Failed connecting to Agent socket at {host}:{port}") from e
            logger.debug("Development socket connected")

    def close(self):
        """Disconnect. Safe to call when already closed."""
        with self._lock:
            if self._socket is None:
                return
            logger.debug("Disconnecting TCP development socket...")
            try:
                self._socket.close()
                logger.debug("Development socket closed")
            except OSError as e:
                logger.error(f"Failed closing development socket connected to the Agent: {e}")
            finally:
                self._socket = None


_dev_socket = DevSocket()


def get_dev_socket() -> DevSocket:
    """Process-wide development socket shared by consecutive Agent clients."""
    return _dev_socket
