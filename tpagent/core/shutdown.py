"""
Process shutdown ordering.

Drivers must flush stashed commands (and close out the current test) before
the Agent client stops its reports queue and closes the development socket.
The manager runs every still-registered driver hook first, then the Agent
client hook.

Usage:
    manager = get_shutdown_manager()      # registered with atexit once
    manager.add_driver(driver, driver.stop)
    ...
    manager.remove_driver(driver)         # on a regular quit()
"""

import atexit
import logging
import threading
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

ShutdownHook = Callable[[], None]


class ShutdownManager:
    """Registry of cleanup callbacks with drivers-before-client ordering."""

    def __init__(self):
        self._lock = threading.Lock()
        # Keyed by identity; the entry keeps the driver alive so its id cannot be reused
        self._driver_hooks: Dict[int, Tuple[object, ShutdownHook]] = {}
        self._agent_client_hook: Optional[ShutdownHook] = None

    def add_driver(self, driver: object, hook: ShutdownHook):
        with self._lock:
            self._driver_hooks[id(driver)] = (driver, hook)

    def remove_driver(self, driver: object):
        with self._lock:
            self._driver_hooks.pop(id(driver), None)

    def has_driver(self, driver: object) -> bool:
        with self._lock:
            return id(driver) in self._driver_hooks

    def set_agent_client(self, hook: ShutdownHook):
        with self._lock:
            self._agent_client_hook = hook

    def remove_agent_client(self):
        with self._lock:
            self._agent_client_hook = None

    def shutdown_all(self):
        """Run driver hooks, then the Agent client hook. Each hook runs at most once."""
        with self._lock:
            driver_hooks = [hook for _, hook in self._driver_hooks.values()]
            self._driver_hooks.clear()
            agent_client_hook = self._agent_client_hook
            self._agent_client_hook = None

        for hook in driver_hooks:
            try:
                logger.info("Closing driver gracefully...")
                hook()
            except Exception as e:
                logger.error(f"Failed running driver shutdown hook: {e}")

        if agent_client_hook is not None:
            try:
                agent_client_hook()
            except Exception as e:
                logger.error(f"Failed running Agent client shutdown hook: {e}")


_manager: Optional[ShutdownManager] = None
_manager_lock = threading.Lock()


def get_shutdown_manager() -> ShutdownManager:
    """Process-wide manager, registered as an exit hook on first use."""
    global _manager
    with _manager_lock:
        if _manager is None:
            _manager = ShutdownManager()
            atexit.register(_manager.shutdown_all)
        return _manager
