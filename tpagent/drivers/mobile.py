"""
Mobile drivers (Appium sessions provided by the Agent).

Usage:
    options = MobileOptions("Android")
    options.set_capability("udid", "emulator-5554")
    options.set_capability("appPackage", "io.example.app")
    driver = Android(options=options, token="...")
    driver.current_activity
"""

from typing import Optional

from selenium.webdriver import Remote as RemoteWebDriver
from selenium.webdriver.common.options import ArgOptions

from tpagent.drivers.base import ReportingDriver
from tpagent.drivers.connection import MobileRemoteConnection

APPIUM_PREFIX = "appium:"

# Capabilities defined by W3C, sent without the vendor prefix
W3C_CAPABILITIES = frozenset({
    "browserName",
    "browserVersion",
    "platformName",
    "pageLoadStrategy",
    "proxy",
    "setWindowRect",
    "timeouts",
    "unhandledPromptBehavior",
    "acceptInsecureCerts",
    "strictFileInteractability",
    "webSocketUrl",
})


class MobileOptions(ArgOptions):
    """Options for Appium sessions. Non W3C capabilities get the 'appium:' prefix."""

    def __init__(self, platform_name: Optional[str] = None):
        super().__init__()
        if platform_name:
            self.set_capability("platformName", platform_name)

    def set_capability(self, name: str, value: object) -> None:
        if name not in W3C_CAPABILITIES and ":" not in name:
            name = f"{APPIUM_PREFIX}{name}"
        super().set_capability(name, value)

    def to_capabilities(self):
        return dict(self._caps)


class MobileDriver(ReportingDriver, RemoteWebDriver):
    """Appium session with the extended mobile command set."""

    connection_class = MobileRemoteConnection
    platform_name = ""

    @classmethod
    def default_options(cls) -> MobileOptions:
        return MobileOptions(cls.platform_name)

    def hide_keyboard(self):
        self.execute("hideKeyboard", {})

    def is_keyboard_shown(self) -> bool:
        return bool(self.execute("isKeyboardShown")["value"])

    def activate_app(self, app_id: str):
        self.execute("activateApp", {"appId": app_id, "bundleId": app_id})

    def terminate_app(self, app_id: str) -> bool:
        return bool(self.execute("terminateApp", {"appId": app_id, "bundleId": app_id})["value"])

    def query_app_state(self, app_id: str) -> int:
        return self.execute("queryAppState", {"appId": app_id, "bundleId": app_id})["value"]

    @property
    def device_time(self) -> str:
        return self.execute("getDeviceTime")["value"]


class Android(MobileDriver):
    platform_name = "Android"

    @property
    def current_activity(self) -> str:
        return self.execute("getCurrentActivity")["value"]

    @property
    def current_package(self) -> str:
        return self.execute("getCurrentPackage")["value"]

    def press_keycode(self, keycode: int, metastate: Optional[int] = None):
        params = {"keycode": keycode}
        if metastate is not None:
            params["metastate"] = metastate
        self.execute("pressKeyCode", params)


class IOS(MobileDriver):
    platform_name = "iOS"
