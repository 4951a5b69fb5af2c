from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from replayer.core.scope import ModalScope, Scope

DEFAULT_LEAF_TIMEOUT_MS = 5000


class ElementConditionType(str, Enum):
    VISIBLE = "visible"
    GONE = "gone"
    ENABLED = "enabled"
    DISABLED = "disabled"
    CHECKED = "checked"
    UNCHECKED = "unchecked"
    FOCUSED = "focused"
    HAS_TEXT = "has_text"
    HAS_VALUE = "has_value"
    HAS_ATTRIBUTE = "has_attribute"


class StateConditionType(str, Enum):
    URL_CHANGED = "url_changed"
    URL_CONTAINS = "url_contains"
    URL_MATCHES = "url_matches"
    TEXT_APPEARED = "text_appeared"
    TEXT_GONE = "text_gone"
    TITLE_CONTAINS = "title_contains"
    TITLE_MATCHES = "title_matches"
    DOM_STABLE = "dom_stable"
    NETWORK_IDLE = "network_idle"
    NO_LOADERS = "no_loaders"


_NEEDS_EXPECTED_VALUE = {ElementConditionType.HAS_TEXT, ElementConditionType.HAS_VALUE}
_NEEDS_STATE_VALUE = {
    StateConditionType.URL_CONTAINS,
    StateConditionType.URL_MATCHES,
    StateConditionType.TEXT_APPEARED,
    StateConditionType.TEXT_GONE,
    StateConditionType.TITLE_CONTAINS,
    StateConditionType.TITLE_MATCHES,
}


class _ConditionModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ElementCondition(_ConditionModel):
    op: Literal["element"] = "element"
    type: ElementConditionType
    target: str
    timeout_ms: int = Field(default=DEFAULT_LEAF_TIMEOUT_MS, ge=0)
    expected_value: str | None = None
    attribute_name: str | None = None
    scope: Scope | None = None

    @model_validator(mode="after")
    def validate_arguments(self) -> ElementCondition:
        if not self.target.strip():
            raise ValueError("element condition needs a target selector or text")
        if self.type in _NEEDS_EXPECTED_VALUE and self.expected_value is None:
            raise ValueError(f"{self.type.value} needs expected_value")
        if self.type is ElementConditionType.HAS_ATTRIBUTE and not self.attribute_name:
            raise ValueError("has_attribute needs attribute_name")
        return self


class StateCondition(_ConditionModel):
    op: Literal["state"] = "state"
    type: StateConditionType
    value: str | None = None
    timeout_ms: int = Field(default=DEFAULT_LEAF_TIMEOUT_MS, ge=0)
    scope: Scope | None = None

    @model_validator(mode="after")
    def validate_arguments(self) -> StateCondition:
        if self.type in _NEEDS_STATE_VALUE and not self.value:
            raise ValueError(f"{self.type.value} needs a value")
        return self


class AllCondition(_ConditionModel):
    op: Literal["all"] = "all"
    children: tuple[SuccessCondition, ...]


class AnyCondition(_ConditionModel):
    op: Literal["any"] = "any"
    children: tuple[SuccessCondition, ...]


class NotCondition(_ConditionModel):
    op: Literal["not"] = "not"
    child: SuccessCondition


SuccessCondition = Annotated[
    Union[AllCondition, AnyCondition, NotCondition, ElementCondition, StateCondition],
    Field(discriminator="op"),
]

AllCondition.model_rebuild()
AnyCondition.model_rebuild()
NotCondition.model_rebuild()


def all_of(*children: SuccessCondition) -> AllCondition:
    return AllCondition(children=children)


def any_of(*children: SuccessCondition) -> AnyCondition:
    return AnyCondition(children=children)


def not_(child: SuccessCondition) -> NotCondition:
    return NotCondition(child=child)


def element(
    condition_type: ElementConditionType | str,
    target: str,
    timeout_ms: int = DEFAULT_LEAF_TIMEOUT_MS,
    **options,
) -> ElementCondition:
    return ElementCondition(type=condition_type, target=target, timeout_ms=timeout_ms, **options)


def state(
    condition_type: StateConditionType | str,
    value: str | None = None,
    timeout_ms: int = DEFAULT_LEAF_TIMEOUT_MS,
    **options,
) -> StateCondition:
    return StateCondition(type=condition_type, value=value, timeout_ms=timeout_ms, **options)


def form_submitted(success_text: str | None = None, timeout_ms: int = 10000) -> SuccessCondition:
    navigated = state(StateConditionType.URL_CHANGED, timeout_ms=timeout_ms)
    if success_text is None:
        return navigated
    return any_of(navigated, state(StateConditionType.TEXT_APPEARED, success_text, timeout_ms))


def modal_opened(selector: str = "[role='dialog']", timeout_ms: int = 5000) -> ElementCondition:
    return element(ElementConditionType.VISIBLE, selector, timeout_ms)


def modal_closed(selector: str = "[role='dialog']", timeout_ms: int = 5000) -> ElementCondition:
    return element(ElementConditionType.GONE, selector, timeout_ms)


def loading_complete(timeout_ms: int = 10000) -> AllCondition:
    return all_of(
        state(StateConditionType.NO_LOADERS, timeout_ms=timeout_ms),
        state(StateConditionType.DOM_STABLE, timeout_ms=timeout_ms),
    )


def modal_text_appeared(text: str, timeout_ms: int = 5000) -> StateCondition:
    return state(StateConditionType.TEXT_APPEARED, text, timeout_ms, scope=ModalScope())


def describe_condition(condition: SuccessCondition) -> str:
    if isinstance(condition, AllCondition):
        return "all(" + ", ".join(describe_condition(child) for child in condition.children) + ")"
    if isinstance(condition, AnyCondition):
        return "any(" + ", ".join(describe_condition(child) for child in condition.children) + ")"
    if isinstance(condition, NotCondition):
        return f"not({describe_condition(condition.child)})"
    if isinstance(condition, ElementCondition):
        return f"{condition.type.value}({condition.target!r})"
    suffix = f"({condition.value!r})" if condition.value else ""
    return f"{condition.type.value}{suffix}"
