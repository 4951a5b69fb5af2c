from __future__ import annotations

from typing import Any, Protocol

from selenium.common.exceptions import NoSuchElementException, WebDriverException
from selenium.webdriver.support.ui import Select

from replayer.core.exceptions import ActionFailed
from replayer.core.steps import RecordedStep, StepType


class ActionPerformer(Protocol):
    def perform(self, step: RecordedStep, handle: Any | None) -> None: ...


class SeleniumActionPerformer:
    """Replays recorded clicks, typing, selections and navigations through WebElement APIs."""

    def __init__(self, driver, clear_before_typing: bool = True) -> None:
        self.driver = driver
        self.clear_before_typing = clear_before_typing

    def perform(self, step: RecordedStep, handle: Any | None) -> None:
        if step.type is StepType.NAVIGATION:
            self._navigate(step.payload.url)
            return
        if handle is None:
            raise ActionFailed(f"{step.type.value} step has no target element")
        try:
            if step.type is StepType.CLICK:
                handle.click()
            elif step.type is StepType.INPUT:
                if self.clear_before_typing:
                    handle.clear()
                handle.send_keys(step.payload.value or "")
            else:
                self._select(handle, step.payload.value or "")
        except WebDriverException as exc:
            # Intercepted clicks, stale handles, read-only fields and non-<select> targets all land here.
            raise ActionFailed(f"{step.type.value} failed: {exc.msg or type(exc).__name__}") from exc

    def _navigate(self, url: str) -> None:
        if not url:
            raise ActionFailed("navigation step has no url")
        try:
            self.driver.get(url)
        except WebDriverException as exc:
            raise ActionFailed(f"navigation to {url} failed: {exc.msg}") from exc

    @staticmethod
    def _select(handle, value: str) -> None:
        dropdown = Select(handle)
        try:
            dropdown.select_by_visible_text(value)
        except NoSuchElementException:
            try:
                dropdown.select_by_value(value)
            except NoSuchElementException as exc:
                raise ActionFailed(f"option {value!r} not available") from exc
