from __future__ import annotations

from selenium import webdriver
from selenium.webdriver import ChromeOptions, FirefoxOptions

from replayer.config.schema import EnvironmentConfig
from replayer.core.dom_monitor import DomMonitor
from replayer.dom.selenium_dom import SeleniumDom


class BrowserSession:
    """Starts a Selenium Manager driven browser and wraps it as a replay DOM."""

    def __init__(self, environment: EnvironmentConfig) -> None:
        self.environment = environment
        self.driver = None

    def start(self, browser_name: str | None = None):
        normalized = (browser_name or self.environment.browser).lower()
        if normalized == "chrome":
            options = ChromeOptions()
            if self.environment.headless:
                options.add_argument("--headless=new")
            options.add_argument("--window-size=1440,1200")
            driver = webdriver.Chrome(options=options)
        elif normalized == "firefox":
            options = FirefoxOptions()
            if self.environment.headless:
                options.add_argument("-headless")
            driver = webdriver.Firefox(options=options)
        else:
            raise ValueError(f"Unsupported browser: {normalized}")
        driver.set_page_load_timeout(self.environment.default_timeout_seconds)
        # Every wait is an explicit poll loop; implicit waits would stretch each tick.
        driver.implicitly_wait(0)
        self.driver = driver
        return driver

    def open(self, url: str) -> SeleniumDom:
        if self.driver is None:
            self.start()
        self.driver.get(url)
        monitor = DomMonitor()
        monitor.install(self.driver)
        return SeleniumDom(self.driver, monitor)

    def stop(self) -> None:
        if self.driver is not None:
            self.driver.quit()
            self.driver = None
