from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from replayer.core.locators import LocatorBundle, LocatorKind, LocatorStrategy


class ResolveOutcome(str, Enum):
    FOUND = "found"
    AMBIGUOUS = "ambiguous"
    NOT_FOUND = "not_found"


class FailureKind(str, Enum):
    SCOPE_NOT_FOUND = "scope_not_found"
    NO_CANDIDATES = "no_candidates"
    AMBIGUOUS = "ambiguous"
    CONDITION_FAILED = "condition_failed"
    TIMEOUT = "timeout"
    INVALID_STRATEGY = "invalid_strategy"
    ACTION_FAILED = "action_failed"
    UNEXPECTED = "unexpected"


@dataclass(slots=True, frozen=True)
class ElementState:
    attached: bool
    visible: bool
    enabled: bool = True
    checked: bool = False
    focused: bool = False
    value: str = ""
    text: str = ""
    attributes: dict[str, str] = field(default_factory=dict)


DETACHED = ElementState(attached=False, visible=False, enabled=False)


@dataclass(slots=True)
class Candidate:
    handle: Any
    key: Any
    document_order: int
    matched_strategies: list[LocatorStrategy] = field(default_factory=list)
    specificity_score: float = 0.0
    dynamic_matches: int = 0
    distance_from_hint: float | None = None
    profile_mismatches: int = 0

    @property
    def matched_kinds(self) -> tuple[LocatorKind, ...]:
        return tuple(strategy.kind for strategy in self.matched_strategies)

    def rank_key(self) -> tuple[float, int, float, int]:
        distance = self.distance_from_hint if self.distance_from_hint is not None else 0.0
        return (-self.specificity_score, self.dynamic_matches, distance, self.profile_mismatches)


@dataclass(slots=True)
class ResolveMetrics:
    strategies_tried: int = 0
    elapsed_ms: float = 0.0
    polls: int = 0
    skipped_strategies: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ResolveResult:
    outcome: ResolveOutcome
    candidate: Candidate | None = None
    candidates: list[Candidate] = field(default_factory=list)
    failure: FailureKind | None = None
    reason: str | None = None
    metrics: ResolveMetrics = field(default_factory=ResolveMetrics)

    @property
    def found(self) -> bool:
        return self.outcome is ResolveOutcome.FOUND


@dataclass(slots=True, frozen=True)
class WaitResult:
    success: bool


@dataclass(slots=True, frozen=True)
class VerificationResult:
    passed: bool
    condition: Any
    failure_reason: str | None = None
    elapsed_ms: float = 0.0
    details: tuple[VerificationResult, ...] = ()
    cancelled: bool = False


@dataclass(slots=True)
class RecoveryAttempt:
    action: str
    succeeded: bool
    message: str = ""


@dataclass(slots=True)
class CorrectionRequest:
    step_key: str
    url: str
    bundle: LocatorBundle
    outcome: ResolveOutcome
    failure: FailureKind | None
    reasons: list[str]
    candidates: list[dict[str, Any]]
    timestamp: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "step_key": self.step_key,
            "url": self.url,
            "bundle": self.bundle.model_dump(mode="json"),
            "outcome": self.outcome.value,
            "failure": self.failure.value if self.failure else None,
            "reasons": self.reasons,
            "candidates": self.candidates,
            "timestamp": self.timestamp,
        }


@dataclass(slots=True)
class RecoveryResult:
    recovered: bool
    attempts: list[RecoveryAttempt] = field(default_factory=list)
    resolve: ResolveResult | None = None
    verification: VerificationResult | None = None
    proposed_strategies: list[LocatorStrategy] = field(default_factory=list)
    correction: CorrectionRequest | None = None


@dataclass(slots=True)
class StepResult:
    index: int
    step_type: str
    passed: bool
    resolve: ResolveResult | None = None
    verification: VerificationResult | None = None
    recovery: RecoveryResult | None = None
    failure: FailureKind | None = None
    reason: str | None = None
    elapsed_ms: float = 0.0
    used_correction: bool = False

    @property
    def status(self) -> str:
        return "passed" if self.passed else "failed"
