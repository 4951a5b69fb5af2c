from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from replayer.core.finder import CandidateFinder
from replayer.core.locators import LocatorBundle, LocatorKind, LocatorStrategy
from replayer.core.metadata import (
    Candidate,
    ElementState,
    FailureKind,
    ResolveMetrics,
    ResolveOutcome,
    ResolveResult,
)
from replayer.core.scope import describe_scope, resolve_scope_root
from replayer.core.waits import StateWaitEngine
from replayer.dom.accessor import ancestors, same_tag_index
from replayer.utils.scoring import normalize_text
from replayer.utils.wait import POLL_INTERVAL_MS, Clock, Deadline, MonotonicClock, poll_until

if TYPE_CHECKING:
    from replayer.dom.accessor import DomAccessor, Handle

log = logging.getLogger(__name__)

DEFAULT_RESOLVE_TIMEOUT_MS = 5000

STRATEGY_WEIGHTS: dict[LocatorKind, float] = {
    LocatorKind.TEST_ID: 100,
    LocatorKind.ARIA: 60,
    LocatorKind.ROLE: 60,
    LocatorKind.CSS: 40,
    LocatorKind.XPATH: 25,
    LocatorKind.TEXT: 10,
    LocatorKind.POSITION: 5,
}
UNSTABLE_CSS_WEIGHT = 20


def strategy_weight(strategy: LocatorStrategy) -> float:
    if strategy.kind is LocatorKind.CSS and not strategy.features.has_stable_attributes:
        return UNSTABLE_CSS_WEIGHT
    return STRATEGY_WEIGHTS[strategy.kind]


class Resolver:
    """Turns a bundle into exactly one element, an ambiguous tie, or nothing."""

    def __init__(
        self,
        dom: DomAccessor,
        clock: Clock | None = None,
        finder: CandidateFinder | None = None,
        poll_interval_ms: float = POLL_INTERVAL_MS,
        waits: StateWaitEngine | None = None,
    ) -> None:
        self.dom = dom
        self.clock = clock or MonotonicClock()
        self.finder = finder or CandidateFinder(dom)
        self.poll_interval_ms = poll_interval_ms
        self.waits = waits or StateWaitEngine(dom, self.clock, poll_interval_ms)

    def resolve(
        self,
        bundle: LocatorBundle,
        scope_root: Handle | None = None,
        timeout_ms: float = DEFAULT_RESOLVE_TIMEOUT_MS,
        deadline: Deadline | None = None,
    ) -> ResolveResult:
        started = self.clock.now_ms()
        metrics = ResolveMetrics(strategies_tried=len(bundle.strategies))
        try:
            result = self._resolve(bundle, scope_root, timeout_ms, deadline, metrics)
        except Exception as exc:  # noqa: BLE001 - resolution failures are reported, not raised.
            log.exception("unexpected failure while resolving %s", _describe_bundle(bundle))
            result = ResolveResult(
                outcome=ResolveOutcome.NOT_FOUND,
                failure=FailureKind.UNEXPECTED,
                reason=str(exc) or type(exc).__name__,
            )
        metrics.elapsed_ms = self.clock.now_ms() - started
        result.metrics = metrics
        return result

    def _resolve(
        self,
        bundle: LocatorBundle,
        scope_root: Handle | None,
        timeout_ms: float,
        deadline: Deadline | None,
        metrics: ResolveMetrics,
    ) -> ResolveResult:
        started = self.clock.now_ms()
        fixed_root = scope_root is not None
        root = scope_root if fixed_root else resolve_scope_root(self.dom, bundle.scope)
        if root is None:
            reason = f"scope not found: {describe_scope(bundle.scope)}"
            log.info("%s for %s", reason, _describe_bundle(bundle))
            return ResolveResult(
                outcome=ResolveOutcome.NOT_FOUND,
                failure=FailureKind.SCOPE_NOT_FOUND,
                reason=reason,
            )
        if not bundle.strategies:
            return ResolveResult(
                outcome=ResolveOutcome.NOT_FOUND,
                failure=FailureKind.INVALID_STRATEGY,
                reason="bundle has no strategies",
            )

        first_tick = True

        def attempt() -> list[Candidate]:
            nonlocal first_tick
            metrics.polls += 1
            tick_root = root
            if not first_tick and not fixed_root:
                tick_root = resolve_scope_root(self.dom, bundle.scope)
            first_tick = False
            found, skipped = self.finder.find_with_report(bundle, tick_root)
            for description in skipped:
                if description not in metrics.skipped_strategies:
                    metrics.skipped_strategies.append(description)
            return found

        candidates = poll_until(attempt, timeout_ms, self.clock, self.poll_interval_ms, deadline)
        if not candidates:
            if deadline is not None and deadline.expired():
                return ResolveResult(
                    outcome=ResolveOutcome.NOT_FOUND,
                    failure=FailureKind.TIMEOUT,
                    reason="deadline exceeded before any candidate appeared",
                )
            return ResolveResult(
                outcome=ResolveOutcome.NOT_FOUND,
                failure=FailureKind.NO_CANDIDATES,
                reason=f"no element matched {_describe_bundle(bundle)} within {timeout_ms:g}ms",
            )
        result = self.rank(bundle, candidates)
        if not result.found:
            return result
        remaining = max(0.0, timeout_ms - (self.clock.now_ms() - started))
        return self._await_actionable(bundle, result, remaining, deadline)

    def _await_actionable(
        self,
        bundle: LocatorBundle,
        result: ResolveResult,
        timeout_ms: float,
        deadline: Deadline | None,
    ) -> ResolveResult:
        ready = self.waits.wait_for_handle(result.candidate.handle, _is_actionable, timeout_ms, deadline)
        if ready.success:
            return result
        reason = f"{_describe_bundle(bundle)} matched an element that did not become actionable within {timeout_ms:g}ms"
        log.info(reason)
        return ResolveResult(
            outcome=ResolveOutcome.NOT_FOUND,
            candidates=result.candidates,
            failure=FailureKind.TIMEOUT,
            reason=reason,
        )

    def rank(self, bundle: LocatorBundle, candidates: list[Candidate]) -> ResolveResult:
        for candidate in candidates:
            self._score(bundle, candidate)
        ranked = sorted(candidates, key=lambda item: (item.rank_key(), item.document_order))
        best = ranked[0]
        if len(ranked) == 1 or best.rank_key() < ranked[1].rank_key():
            return ResolveResult(outcome=ResolveOutcome.FOUND, candidate=best, candidates=ranked)
        tied = [item for item in ranked if item.rank_key() == best.rank_key()]
        tied.sort(key=lambda item: item.document_order)
        return ResolveResult(
            outcome=ResolveOutcome.AMBIGUOUS,
            candidates=tied,
            failure=FailureKind.AMBIGUOUS,
            reason=f"{len(tied)} elements tied for {_describe_bundle(bundle)}",
        )

    def _score(self, bundle: LocatorBundle, candidate: Candidate) -> None:
        candidate.specificity_score = sum(strategy_weight(item) for item in candidate.matched_strategies)
        candidate.dynamic_matches = sum(
            1 for item in candidate.matched_strategies if item.features.has_dynamic_parts
        )
        if bundle.disambiguators:
            candidate.distance_from_hint = self.hint_distance(candidate.handle, bundle.disambiguators)
        candidate.profile_mismatches = self._profile_mismatches(bundle, candidate.handle)

    def _profile_mismatches(self, bundle: LocatorBundle, handle: Handle) -> int:
        mismatches = 0
        if bundle.tag_name and self.dom.tag_name(handle) != bundle.tag_name.lower():
            mismatches += 1
        if bundle.role and self.dom.attributes(handle).get("role") != bundle.role:
            mismatches += 1
        return mismatches

    def hint_distance(self, handle: Handle, hints: tuple[str, ...]) -> float:
        """Counts how far an element is from the recorded positional hints; 0 is a perfect fit."""

        distance = 0.0
        for hint in hints:
            name, _, value = hint.partition(":")
            if name not in ("index", "near", "landmark") or not value:
                name, value = "near", hint
            if name == "index":
                try:
                    wanted = int(value)
                except ValueError:
                    continue
                position, _ = same_tag_index(self.dom, handle)
                distance += abs(position - wanted)
            elif name == "landmark":
                landmarks = {self.dom.tag_name(item) for item in ancestors(self.dom, handle)}
                distance += 0 if value in landmarks else 1
            else:
                distance += 0 if self._is_near(handle, value) else 1
        return distance

    def _is_near(self, handle: Handle, text: str) -> bool:
        wanted = normalize_text(text).casefold()
        own = normalize_text(self.dom.text_content(handle)).casefold()
        parent = self.dom.parent(handle)
        if parent is None:
            return False
        context = normalize_text(self.dom.text_content(parent)).casefold()
        if own:
            context = context.replace(own, " ", 1)
        return wanted in context


def _is_actionable(state: ElementState) -> bool:
    return state.attached and state.visible and state.enabled


def _describe_bundle(bundle: LocatorBundle) -> str:
    best = bundle.best_strategy()
    return best.describe() if best else "<empty bundle>"

