from __future__ import annotations

from contextlib import contextmanager
from typing import Hashable, Iterator

from selenium.common.exceptions import (
    InvalidSelectorException,
    JavascriptException,
    NoSuchElementException,
    NoSuchShadowRootException,
    StaleElementReferenceException,
    WebDriverException,
)
from selenium.webdriver.common.by import By
from selenium.webdriver.remote.shadowroot import ShadowRoot
from selenium.webdriver.remote.webelement import WebElement

from replayer.core.dom_monitor import DomMonitor
from replayer.core.exceptions import DomAccessError, InvalidStrategy, StaleElement
from replayer.core.metadata import DETACHED, ElementState
from replayer.utils.scoring import normalize_text

ELEMENT_STATE_SCRIPT = r"""
const node = arguments[0];
if (!node.isConnected) return null;
const style = window.getComputedStyle(node);
const rect = node.getBoundingClientRect();
const root = node.getRootNode();
return {
  visible: style.display !== "none"
    && style.visibility !== "hidden"
    && parseFloat(style.opacity || "1") > 0
    && (rect.width > 0 || rect.height > 0),
  enabled: !node.matches(":disabled") && node.getAttribute("aria-disabled") !== "true",
  checked: node.checked === true
    || (node.tagName === "OPTION" && node.selected)
    || node.getAttribute("aria-checked") === "true",
  focused: (root.activeElement || document.activeElement) === node,
  value: node.value === undefined || node.value === null ? "" : String(node.value),
  text: node.innerText || node.textContent || "",
  attributes: Array.from(node.attributes).reduce((acc, attr) => {
    acc[attr.name] = attr.value;
    return acc;
  }, {}),
};
"""

ATTRIBUTES_SCRIPT = """
return Array.from(arguments[0].attributes).reduce((acc, attr) => {
  acc[attr.name] = attr.value;
  return acc;
}, {});
"""

XPATH_SCRIPT = r"""
const [root, expression] = arguments;
const result = document.evaluate(expression, root, null, XPathResult.ORDERED_NODE_SNAPSHOT_TYPE, null);
const found = [];
for (let index = 0; index < result.snapshotLength; index += 1) {
  const node = result.snapshotItem(index);
  if (node instanceof Element && node !== root && root.contains(node)) found.push(node);
}
return found;
"""

DIRECT_TEXT_SCRIPT = """
return Array.from(arguments[0].childNodes)
  .filter((node) => node.nodeType === Node.TEXT_NODE)
  .map((node) => node.textContent)
  .join("");
"""

DOCUMENT_ORDER_SCRIPT = """
const node = arguments[0];
return Array.prototype.indexOf.call(node.getRootNode().querySelectorAll("*"), node);
"""

SHADOW_HOST_SCRIPT = """
const root = arguments[0].getRootNode();
return root instanceof ShadowRoot ? root.host : null;
"""

FINGERPRINT_SCRIPT = """
const root = arguments[0];
return [root.querySelectorAll("*").length, (root.innerHTML || "").length];
"""


class SeleniumDom:
    """DomAccessor over a live WebDriver session.

    Frames are entered by switching the driver, so every ``document_root`` call
    returns to the top-level document first. Elements inside frames are only
    usable until the next scope resolution.
    """

    def __init__(self, driver, monitor: DomMonitor | None = None) -> None:
        self.driver = driver
        self.monitor = monitor or DomMonitor()

    @contextmanager
    def _driver_errors(self) -> Iterator[None]:
        try:
            yield
        except (InvalidSelectorException, JavascriptException) as exc:
            raise InvalidStrategy(exc.msg or str(exc)) from exc
        except StaleElementReferenceException as exc:
            raise StaleElement(exc.msg or "element is no longer attached") from exc
        except WebDriverException as exc:
            raise DomAccessError(exc.msg or str(exc)) from exc

    def _script(self, script: str, *args):
        with self._driver_errors():
            return self.driver.execute_script(script, *args)

    def document_root(self) -> WebElement | None:
        with self._driver_errors():
            self.driver.switch_to.default_content()
            try:
                return self.driver.find_element(By.TAG_NAME, "body")
            except NoSuchElementException:
                return None

    def query_css(self, root, selector: str) -> list[WebElement]:
        with self._driver_errors():
            return root.find_elements(By.CSS_SELECTOR, selector)

    def query_xpath(self, root, expression: str) -> list[WebElement]:
        if isinstance(root, ShadowRoot):
            raise InvalidStrategy("xpath cannot be evaluated inside a shadow root")
        return self._script(XPATH_SCRIPT, root, expression) or []

    def tag_name(self, handle: WebElement) -> str:
        with self._driver_errors():
            return handle.tag_name.lower()

    def attributes(self, handle: WebElement) -> dict[str, str]:
        return self._script(ATTRIBUTES_SCRIPT, handle) or {}

    def text_content(self, handle: WebElement) -> str:
        with self._driver_errors():
            return handle.get_property("textContent") or ""

    def direct_text(self, handle: WebElement) -> str:
        return self._script(DIRECT_TEXT_SCRIPT, handle) or ""

    def parent(self, handle: WebElement) -> WebElement | None:
        return self._script("return arguments[0].parentElement;", handle)

    def children(self, handle: WebElement) -> list[WebElement]:
        return self._script("return Array.from(arguments[0].children);", handle) or []

    def contains(self, ancestor, handle: WebElement) -> bool:
        return bool(self._script("return arguments[0].contains(arguments[1]);", ancestor, handle))

    def element_key(self, handle: WebElement) -> Hashable:
        return handle.id

    def document_order(self, handle: WebElement) -> int:
        return int(self._script(DOCUMENT_ORDER_SCRIPT, handle))

    def element_state(self, handle: WebElement) -> ElementState:
        try:
            raw = self._script(ELEMENT_STATE_SCRIPT, handle)
        except StaleElement:
            return DETACHED
        if raw is None:
            return DETACHED
        return ElementState(
            attached=True,
            visible=bool(raw["visible"]),
            enabled=bool(raw["enabled"]),
            checked=bool(raw["checked"]),
            focused=bool(raw["focused"]),
            value=raw["value"],
            text=normalize_text(raw["text"]),
            attributes=raw["attributes"],
        )

    def is_attached(self, handle: WebElement) -> bool:
        try:
            return bool(self._script("return arguments[0].isConnected;", handle))
        except StaleElement:
            return False

    def frame_root(self, frame: WebElement) -> WebElement | None:
        with self._driver_errors():
            self.driver.switch_to.frame(frame)
            try:
                return self.driver.find_element(By.TAG_NAME, "body")
            except NoSuchElementException:
                return None

    def shadow_root(self, host: WebElement) -> ShadowRoot | None:
        with self._driver_errors():
            try:
                return host.shadow_root
            except NoSuchShadowRootException:
                return None

    def host_of(self, handle: WebElement) -> tuple[str, WebElement] | None:
        host = self._script(SHADOW_HOST_SCRIPT, handle)
        return ("shadow", host) if host is not None else None

    def current_url(self) -> str:
        with self._driver_errors():
            return self.driver.current_url

    def title(self) -> str:
        with self._driver_errors():
            return self.driver.title

    def fingerprint(self, root) -> tuple[int, int]:
        count, length = self._script(FINGERPRINT_SCRIPT, root)
        return (int(count), int(length))

    def pending_requests(self) -> int:
        with self._driver_errors():
            return self.monitor.pending_requests(self.driver)

    def scroll_into_view(self, handle: WebElement) -> None:
        self._script("arguments[0].scrollIntoView({block: 'center', inline: 'center'});", handle)

    def page_source(self) -> str:
        with self._driver_errors():
            return self.driver.page_source

    def screenshot(self) -> bytes:
        with self._driver_errors():
            return self.driver.get_screenshot_as_png()
