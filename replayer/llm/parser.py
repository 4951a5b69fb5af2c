from __future__ import annotations

from replayer.core.exceptions import AdvisorResponseError
from replayer.core.locators import LocatorFeatures, LocatorKind, LocatorStrategy


def infer_selector_type(selector: str) -> str:
    stripped = selector.strip()
    if stripped.startswith("/") or stripped.startswith("("):
        return "xpath"
    return "css"


def parse_locator_response(response: str) -> LocatorStrategy:
    """Validates a one-line advisor answer and wraps it as an extra strategy."""

    selector = response.strip()
    if not selector:
        raise AdvisorResponseError("advisor returned an empty selector")
    if "\n" in selector or "\r" in selector:
        raise AdvisorResponseError("advisor returned a multiline selector")
    if "```" in selector:
        raise AdvisorResponseError("advisor returned markdown instead of a selector")
    kind = LocatorKind.XPATH if infer_selector_type(selector) == "xpath" else LocatorKind.CSS
    return LocatorStrategy(kind=kind, value=selector, features=LocatorFeatures())
