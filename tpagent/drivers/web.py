"""
Browser drivers.

Every browser runs on the Agent side, so each driver is a remote WebDriver
that only differs by its default options.

Usage:
    driver = Chrome(token="...")
    driver = Firefox(options=my_firefox_options, project_name="Shop", job_name="Checkout")
"""

from selenium.webdriver import ChromeOptions, EdgeOptions, FirefoxOptions, Remote as RemoteWebDriver, SafariOptions

from tpagent.drivers.base import ReportingDriver


class Remote(ReportingDriver, RemoteWebDriver):
    """Any browser, described entirely by the given options."""


class Chrome(ReportingDriver, RemoteWebDriver):
    default_options = ChromeOptions


class Firefox(ReportingDriver, RemoteWebDriver):
    default_options = FirefoxOptions


class Edge(ReportingDriver, RemoteWebDriver):
    default_options = EdgeOptions


class Safari(ReportingDriver, RemoteWebDriver):
    default_options = SafariOptions
