from __future__ import annotations

from enum import Enum
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field, field_validator

from replayer.core.scope import Scope


class LocatorKind(str, Enum):
    CSS = "css"
    TEXT = "text"
    ARIA = "aria"
    ROLE = "role"
    TEST_ID = "test_id"
    XPATH = "xpath"
    POSITION = "position"


KIND_PRIORITY: dict[LocatorKind, int] = {
    LocatorKind.TEST_ID: 0,
    LocatorKind.ARIA: 1,
    LocatorKind.ROLE: 2,
    LocatorKind.CSS: 3,
    LocatorKind.XPATH: 4,
    LocatorKind.TEXT: 5,
    LocatorKind.POSITION: 6,
}


class LocatorFeatures(BaseModel):
    model_config = ConfigDict(frozen=True)

    has_stable_attributes: bool = False
    has_dynamic_parts: bool = False
    unique_match_at_record_time: bool = False
    match_count_at_record_time: int = 0


class LocatorStrategy(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: LocatorKind
    value: str
    features: LocatorFeatures = Field(default_factory=LocatorFeatures)

    @field_validator("value")
    @classmethod
    def validate_value(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("locator value must not be empty")
        return value

    @property
    def identity(self) -> tuple[LocatorKind, str]:
        return (self.kind, self.value)

    def describe(self) -> str:
        return f"{self.kind.value}={self.value!r}"


class LocatorBundle(BaseModel):
    """Every way of finding one recorded element, best strategy first."""

    model_config = ConfigDict(frozen=True)

    strategies: tuple[LocatorStrategy, ...] = ()
    scope: Scope | None = None
    disambiguators: tuple[str, ...] = ()
    tag_name: str | None = None
    role: str | None = None

    def best_strategy(self) -> LocatorStrategy | None:
        return self.strategies[0] if self.strategies else None

    def kinds(self) -> set[LocatorKind]:
        return {strategy.kind for strategy in self.strategies}

    def without_kinds(self, kinds: Iterable[LocatorKind]) -> LocatorBundle:
        dropped = set(kinds)
        kept = tuple(item for item in self.strategies if item.kind not in dropped)
        return self.model_copy(update={"strategies": kept})

    def with_scope(self, scope: Scope | None) -> LocatorBundle:
        return self.model_copy(update={"scope": scope})


def rank_strategies(strategies: Iterable[LocatorStrategy]) -> list[LocatorStrategy]:
    return sorted(
        strategies,
        key=lambda item: (
            not item.features.has_stable_attributes,
            not item.features.unique_match_at_record_time,
            KIND_PRIORITY[item.kind],
        ),
    )


def enrich_bundle(bundle: LocatorBundle, extra: Iterable[LocatorStrategy]) -> LocatorBundle:
    """Returns a new bundle with unseen strategies appended after the recorded ones."""

    seen = {strategy.identity for strategy in bundle.strategies}
    appended = list(bundle.strategies)
    for strategy in extra:
        if strategy.identity not in seen:
            seen.add(strategy.identity)
            appended.append(strategy)
    return bundle.model_copy(update={"strategies": tuple(appended)})
