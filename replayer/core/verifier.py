from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, assert_never

from replayer.core.conditions import (
    AllCondition,
    AnyCondition,
    ElementCondition,
    ElementConditionType,
    NotCondition,
    StateCondition,
    StateConditionType,
    SuccessCondition,
    describe_condition,
)
from replayer.core.metadata import ElementState, VerificationResult, WaitResult
from replayer.core.scope import Scope
from replayer.core.waits import DEFAULT_DOM_QUIET_MS, DEFAULT_NETWORK_IDLE_MS, StateWaitEngine
from replayer.utils.scoring import normalize_text
from replayer.utils.wait import Clock, Deadline, MonotonicClock

if TYPE_CHECKING:
    from replayer.dom.accessor import DomAccessor

log = logging.getLogger(__name__)

StatePredicate = Callable[[ElementState | None], bool]


def _element_predicate(condition: ElementCondition) -> StatePredicate:
    kind = condition.type
    expected = condition.expected_value
    if kind is ElementConditionType.VISIBLE:
        return lambda state: state is not None and state.visible
    if kind is ElementConditionType.GONE:
        return lambda state: state is None or not state.visible
    if kind is ElementConditionType.ENABLED:
        return lambda state: state is not None and state.enabled
    if kind is ElementConditionType.DISABLED:
        return lambda state: state is not None and not state.enabled
    if kind is ElementConditionType.CHECKED:
        return lambda state: state is not None and state.checked
    if kind is ElementConditionType.UNCHECKED:
        return lambda state: state is not None and not state.checked
    if kind is ElementConditionType.FOCUSED:
        return lambda state: state is not None and state.focused
    if kind is ElementConditionType.HAS_TEXT:
        wanted = normalize_text(expected).casefold()
        return lambda state: state is not None and wanted in state.text.casefold()
    if kind is ElementConditionType.HAS_VALUE:
        return lambda state: state is not None and state.value == expected
    if kind is ElementConditionType.HAS_ATTRIBUTE:
        name = condition.attribute_name or ""
        if expected is None:
            return lambda state: state is not None and name in state.attributes
        return lambda state: state is not None and state.attributes.get(name) == expected
    assert_never(kind)


def _element_failure(condition: ElementCondition) -> str:
    target = condition.target
    timeout = condition.timeout_ms
    kind = condition.type
    if kind is ElementConditionType.GONE:
        return f'element "{target}" still visible after {timeout}ms'
    if kind is ElementConditionType.HAS_TEXT:
        return f'element "{target}" does not contain "{condition.expected_value}" after {timeout}ms'
    if kind is ElementConditionType.HAS_VALUE:
        return f'element "{target}" value is not "{condition.expected_value}" after {timeout}ms'
    if kind is ElementConditionType.HAS_ATTRIBUTE:
        return f'element "{target}" lacks attribute "{condition.attribute_name}" after {timeout}ms'
    return f'element "{target}" not {kind.value} after {timeout}ms'


class SuccessVerifier:
    """Evaluates a success-condition tree against the page, one leaf at a time."""

    def __init__(
        self,
        dom: DomAccessor,
        waits: StateWaitEngine | None = None,
        clock: Clock | None = None,
        dom_quiet_ms: float = DEFAULT_DOM_QUIET_MS,
        network_idle_ms: float = DEFAULT_NETWORK_IDLE_MS,
    ) -> None:
        self.dom = dom
        self.clock = clock or (waits.clock if waits is not None else MonotonicClock())
        self.waits = waits or StateWaitEngine(dom, self.clock)
        self.dom_quiet_ms = dom_quiet_ms
        self.network_idle_ms = network_idle_ms
        self.pre_action_url: str | None = None

    def capture_pre_action_state(self) -> None:
        self.pre_action_url = self.dom.current_url()

    def verify(
        self,
        condition: SuccessCondition,
        scope: Scope | None = None,
        deadline: Deadline | None = None,
    ) -> VerificationResult:
        started = self.clock.now_ms()
        try:
            return self._evaluate(condition, scope, deadline, started)
        except Exception as exc:  # noqa: BLE001 - verification failures are reported, not raised.
            log.exception("unexpected failure while verifying %s", describe_condition(condition))
            return VerificationResult(
                passed=False,
                condition=condition,
                failure_reason=str(exc) or type(exc).__name__,
                elapsed_ms=self.clock.now_ms() - started,
            )

    def _evaluate(
        self,
        condition: SuccessCondition,
        scope: Scope | None,
        deadline: Deadline | None,
        started: float,
    ) -> VerificationResult:
        if isinstance(condition, AllCondition):
            return self._verify_all(condition, scope, deadline, started)
        if isinstance(condition, AnyCondition):
            return self._verify_any(condition, scope, deadline, started)
        if isinstance(condition, NotCondition):
            return self._verify_not(condition, scope, deadline, started)
        if isinstance(condition, ElementCondition):
            return self._verify_element(condition, scope, deadline, started)
        if isinstance(condition, StateCondition):
            return self._verify_state(condition, scope, deadline, started)
        assert_never(condition)

    def _result(self, condition, started: float, passed: bool, reason: str | None = None, details=()):
        return VerificationResult(
            passed=passed,
            condition=condition,
            failure_reason=None if passed else reason,
            elapsed_ms=self.clock.now_ms() - started,
            details=tuple(details),
        )

    def _cancelled(self, condition, started: float, details=()) -> VerificationResult:
        return VerificationResult(
            passed=False,
            condition=condition,
            failure_reason="deadline exceeded",
            elapsed_ms=self.clock.now_ms() - started,
            details=tuple(details),
            cancelled=True,
        )

    def _leaf(self, condition, started: float, success: bool, reason: str, deadline) -> VerificationResult:
        if not success and deadline is not None and deadline.expired():
            return self._cancelled(condition, started)
        return self._result(condition, started, success, reason)

    def _verify_all(self, condition: AllCondition, scope, deadline, started: float) -> VerificationResult:
        details: list[VerificationResult] = []
        total = len(condition.children)
        for index, child in enumerate(condition.children, start=1):
            if deadline is not None and deadline.expired():
                return self._cancelled(condition, started, details)
            result = self.verify(child, scope, deadline)
            details.append(result)
            if result.cancelled:
                return self._cancelled(condition, started, details)
            if not result.passed:
                reason = f"condition {index} of {total} failed: {result.failure_reason}"
                return self._result(condition, started, False, reason, details)
        return self._result(condition, started, True, details=details)

    def _verify_any(self, condition: AnyCondition, scope, deadline, started: float) -> VerificationResult:
        details: list[VerificationResult] = []
        for child in condition.children:
            if deadline is not None and deadline.expired():
                return self._cancelled(condition, started, details)
            result = self.verify(child, scope, deadline)
            details.append(result)
            if result.passed:
                return self._result(condition, started, True, details=details)
            if result.cancelled:
                return self._cancelled(condition, started, details)
        reasons = "; ".join(item.failure_reason or "failed" for item in details)
        return self._result(condition, started, False, f"no alternative passed: {reasons}", details)

    def _verify_not(self, condition: NotCondition, scope, deadline, started: float) -> VerificationResult:
        # An aborted child says nothing about the page, so it is never inverted.
        if deadline is not None and deadline.expired():
            return self._cancelled(condition, started)
        inner = self.verify(condition.child, scope, deadline)
        if inner.cancelled:
            return self._cancelled(condition, started, [inner])
        reason = f"condition passed when it should not have: {describe_condition(condition.child)}"
        return self._result(condition, started, not inner.passed, reason, [inner])

    def _verify_element(self, condition: ElementCondition, scope, deadline, started: float) -> VerificationResult:
        outcome = self.waits.wait_for_element(
            condition.target,
            _element_predicate(condition),
            timeout_ms=condition.timeout_ms,
            scope=condition.scope or scope,
            deadline=deadline,
        )
        return self._leaf(condition, started, outcome.success, _element_failure(condition), deadline)

    def _verify_state(self, condition: StateCondition, scope, deadline, started: float) -> VerificationResult:
        outcome = self._wait_for_state(condition, condition.scope or scope, deadline)
        return self._leaf(condition, started, outcome.success, self._state_failure(condition), deadline)

    def _wait_for_state(self, condition: StateCondition, scope, deadline) -> WaitResult:
        waits = self.waits
        kind = condition.type
        value = condition.value or ""
        timeout = condition.timeout_ms
        if kind is StateConditionType.URL_CHANGED:
            from_url = condition.value or self.pre_action_url or self.dom.current_url()
            return waits.wait_for_url_change(from_url, timeout, deadline)
        if kind is StateConditionType.URL_CONTAINS:
            return waits.wait_for_url_contains(value, timeout, deadline)
        if kind is StateConditionType.URL_MATCHES:
            return waits.wait_for_url_matches(value, timeout, deadline)
        if kind is StateConditionType.TEXT_APPEARED:
            return waits.wait_for_text(value, scope, timeout, deadline)
        if kind is StateConditionType.TEXT_GONE:
            return waits.wait_for_text_gone(value, scope, timeout, deadline)
        if kind is StateConditionType.TITLE_CONTAINS:
            return waits.wait_for_title_contains(value, timeout, deadline)
        if kind is StateConditionType.TITLE_MATCHES:
            return waits.wait_for_title_matches(value, timeout, deadline)
        if kind is StateConditionType.DOM_STABLE:
            quiet = float(value) if value else self.dom_quiet_ms
            return waits.wait_for_dom_stable(quiet, timeout, scope, deadline)
        if kind is StateConditionType.NETWORK_IDLE:
            idle = float(value) if value else self.network_idle_ms
            return waits.wait_for_network_idle(idle, timeout, deadline)
        if kind is StateConditionType.NO_LOADERS:
            return waits.wait_for_loaders_gone(timeout, deadline)
        assert_never(kind)

    def _state_failure(self, condition: StateCondition) -> str:
        timeout = condition.timeout_ms
        kind = condition.type
        if kind is StateConditionType.URL_CHANGED:
            return f"url did not change from {self.pre_action_url or 'the current page'} within {timeout}ms"
        if kind in (StateConditionType.TEXT_APPEARED, StateConditionType.TEXT_GONE):
            verb = "did not appear" if kind is StateConditionType.TEXT_APPEARED else "is still present"
            return f'text "{condition.value}" {verb} within {timeout}ms'
        if condition.value:
            return f'{kind.value} "{condition.value}" not satisfied within {timeout}ms'
        return f"{kind.value} not satisfied within {timeout}ms"
