from __future__ import annotations

import re
from enum import Enum
from typing import Literal

from pydantic import Base64Bytes, BaseModel, Field

from replayer.core.conditions import (
    ElementCondition,
    ElementConditionType,
    StateCondition,
    StateConditionType,
    SuccessCondition,
)
from replayer.core.locators import LocatorBundle, LocatorFeatures, LocatorKind, LocatorStrategy
from replayer.core.scope import Scope
from replayer.llm.parser import infer_selector_type
from replayer.utils.scoring import has_generated_tokens

_STABLE_SELECTOR = re.compile(r"#|\[(?:data-|aria-|name=|id=|role=)|@id=|@data-")


class StepType(str, Enum):
    CLICK = "click"
    INPUT = "input"
    SELECT = "select"
    NAVIGATION = "navigation"


class RecordedElementState(BaseModel):
    visible: bool = True
    enabled: bool = True
    readonly: bool | None = None
    checked: bool | None = None


class StepWaitCondition(BaseModel):
    type: Literal["element", "text", "url", "time"]
    selector: str | None = None
    text: str | None = None
    url: str | None = None
    timeout_ms: int = Field(default=5000, ge=0)

    def to_condition(self) -> SuccessCondition | None:
        if self.type == "element" and self.selector:
            return ElementCondition(
                type=ElementConditionType.VISIBLE, target=self.selector, timeout_ms=self.timeout_ms
            )
        if self.type == "text" and self.text:
            return StateCondition(
                type=StateConditionType.TEXT_APPEARED, value=self.text, timeout_ms=self.timeout_ms
            )
        if self.type == "url" and self.url:
            return StateCondition(
                type=StateConditionType.URL_CONTAINS, value=self.url, timeout_ms=self.timeout_ms
            )
        return None


class StepPayload(BaseModel):
    selector: str = ""
    fallback_selectors: list[str] = Field(default_factory=list)
    xpath: str = ""
    locator_bundle: LocatorBundle | None = None
    scope: Scope | None = None
    suggested_condition: SuccessCondition | None = None
    timestamp: float = 0
    url: str = ""
    element_state: RecordedElementState | None = None
    value: str | None = None
    label: str | None = None
    wait_conditions: list[StepWaitCondition] = Field(default_factory=list)
    visual_snapshot: Base64Bytes | None = None


class RecordedStep(BaseModel):
    type: StepType
    payload: StepPayload = Field(default_factory=StepPayload)

    def key(self, index: int) -> str:
        stamp = int(self.payload.timestamp) if self.payload.timestamp else index
        return f"{self.type.value}-{stamp}"


def _legacy_strategy(selector: str) -> LocatorStrategy:
    kind = LocatorKind.XPATH if infer_selector_type(selector) == "xpath" else LocatorKind.CSS
    features = LocatorFeatures(
        has_stable_attributes=bool(_STABLE_SELECTOR.search(selector)),
        has_dynamic_parts=has_generated_tokens(re.sub(r"[#.\[\]=\"'@()/>:*]", " ", selector)),
    )
    return LocatorStrategy(kind=kind, value=selector.strip(), features=features)


def bundle_for_step(step: RecordedStep) -> LocatorBundle | None:
    """Returns the bundle to resolve for a step, or None for steps without a target.

    Steps recorded before bundles existed only carry plain selectors; those degrade
    to a bundle that matches the same selectors in the same order.
    """

    if step.type is StepType.NAVIGATION:
        return None
    payload = step.payload
    if payload.locator_bundle is not None:
        bundle = payload.locator_bundle
        return bundle.with_scope(payload.scope) if payload.scope is not None else bundle
    selectors = [payload.selector, *payload.fallback_selectors, payload.xpath]
    strategies: list[LocatorStrategy] = []
    seen: set[str] = set()
    for selector in selectors:
        if selector and selector.strip() and selector.strip() not in seen:
            seen.add(selector.strip())
            strategies.append(_legacy_strategy(selector))
    if not strategies:
        return None
    return LocatorBundle(strategies=tuple(strategies), scope=payload.scope)
