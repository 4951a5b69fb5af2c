from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable

from replayer.config.schema import RecoverySettings, ReplaySuiteConfig, TimingConfig
from replayer.core.exceptions import ActionFailed, ReplayError
from replayer.core.extractor import FeatureExtractor
from replayer.core.finder import CandidateFinder
from replayer.core.locators import LocatorBundle
from replayer.core.metadata import (
    FailureKind,
    RecoveryAttempt,
    RecoveryResult,
    ResolveResult,
    StepResult,
)
from replayer.core.recovery import RecoveryEngine
from replayer.core.resolver import Resolver
from replayer.core.steps import RecordedStep, StepType, bundle_for_step
from replayer.core.verifier import SuccessVerifier
from replayer.core.waits import StateWaitEngine
from replayer.utils.wait import Clock, Deadline, MonotonicClock

if TYPE_CHECKING:
    from replayer.core.actions import ActionPerformer
    from replayer.dom.accessor import DomAccessor, Handle
    from replayer.logging.artifacts import ArtifactManager
    from replayer.logging.audit import CorrectionStore, ReplayAuditLogger

log = logging.getLogger(__name__)


class StepReplayer:
    """Runs recorded steps one at a time: resolve, act, verify, recover."""

    def __init__(
        self,
        dom: DomAccessor,
        performer: ActionPerformer,
        *,
        clock: Clock | None = None,
        timing: TimingConfig | None = None,
        recovery: RecoverySettings | None = None,
        corrections: CorrectionStore | None = None,
        audit_logger: ReplayAuditLogger | None = None,
        artifact_manager: ArtifactManager | None = None,
    ) -> None:
        self.dom = dom
        self.performer = performer
        self.clock = clock or MonotonicClock()
        self.timing = timing or TimingConfig()
        self.corrections = corrections
        self.audit_logger = audit_logger
        self.artifact_manager = artifact_manager

        interval = self.timing.poll_interval_ms
        self.waits = StateWaitEngine(dom, self.clock, interval)
        self.resolver = Resolver(dom, self.clock, CandidateFinder(dom), interval, self.waits)
        self.verifier = SuccessVerifier(
            dom,
            self.waits,
            self.clock,
            dom_quiet_ms=self.timing.dom_quiet_ms,
            network_idle_ms=self.timing.network_idle_ms,
        )
        self.recovery = RecoveryEngine(
            dom,
            self.resolver,
            self.verifier,
            self.waits,
            FeatureExtractor(dom),
            channel=corrections,
            settings=recovery or RecoverySettings(),
        )

    @classmethod
    def from_config(
        cls,
        config: ReplaySuiteConfig,
        dom: DomAccessor,
        performer: ActionPerformer,
        clock: Clock | None = None,
    ) -> StepReplayer:
        from replayer.logging.artifacts import ArtifactManager
        from replayer.logging.audit import CorrectionStore, ReplayAuditLogger

        return cls(
            dom,
            performer,
            clock=clock,
            timing=config.timing,
            recovery=config.recovery,
            corrections=CorrectionStore(config.artifacts_root),
            audit_logger=ReplayAuditLogger(config.artifacts_root),
            artifact_manager=ArtifactManager(config.artifacts_root),
        )

    def replay(
        self,
        steps: Iterable[RecordedStep],
        continue_on_failure: bool = False,
        deadline: Deadline | None = None,
    ) -> list[StepResult]:
        results: list[StepResult] = []
        for index, step in enumerate(steps):
            if deadline is not None and deadline.expired():
                results.append(
                    StepResult(
                        index=index,
                        step_type=step.type.value,
                        passed=False,
                        failure=FailureKind.TIMEOUT,
                        reason="replay deadline exceeded",
                    )
                )
                break
            result = self.replay_step(step, index, deadline)
            results.append(result)
            if not result.passed and not continue_on_failure:
                break
        return results

    def replay_step(self, step: RecordedStep, index: int = 0, deadline: Deadline | None = None) -> StepResult:
        started = self.clock.now_ms()
        step_key = step.key(index)
        if deadline is None and self.timing.step_budget_ms:
            deadline = Deadline(self.clock, self.timing.step_budget_ms)
        try:
            result = self._run(step, index, step_key, deadline)
        except Exception as exc:  # noqa: BLE001 - one broken step must not abort the replay.
            log.exception("unexpected failure while replaying %s", step_key)
            result = StepResult(
                index=index,
                step_type=step.type.value,
                passed=False,
                failure=FailureKind.UNEXPECTED,
                reason=str(exc) or type(exc).__name__,
            )
        result.elapsed_ms = self.clock.now_ms() - started
        self._report(step, step_key, result)
        return result

    def _run(self, step: RecordedStep, index: int, step_key: str, deadline: Deadline | None) -> StepResult:
        outcome = StepResult(index=index, step_type=step.type.value, passed=False)

        for wait in step.payload.wait_conditions:
            if wait.type == "time":
                pause = wait.timeout_ms if deadline is None else deadline.clamp(wait.timeout_ms)
                self.clock.sleep_ms(pause)
                continue
            condition = wait.to_condition()
            if condition is None:
                continue
            pre = self.verifier.verify(condition, deadline=deadline)
            if not pre.passed:
                outcome.verification = pre
                outcome.failure = FailureKind.CONDITION_FAILED
                outcome.reason = f"pre-step wait failed: {pre.failure_reason}"
                return outcome

        handle = None
        bundle = bundle_for_step(step)
        if step.type is not StepType.NAVIGATION:
            if bundle is None:
                outcome.failure = FailureKind.INVALID_STRATEGY
                outcome.reason = "step has no locator"
                return outcome
            handle = self._locate(step_key, bundle, outcome, deadline)
            if handle is None:
                return outcome

        self.verifier.capture_pre_action_state()
        if not self._act(step, handle, outcome):
            return outcome

        condition = step.payload.suggested_condition
        if condition is None:
            outcome.passed = True
            return outcome
        verification = self.verifier.verify(condition, deadline=deadline)
        outcome.verification = verification
        if verification.passed:
            outcome.passed = True
            return outcome

        recovered = self.recovery.recover_verification(
            condition,
            verification,
            None,
            deadline,
            page_ready_timeout_ms=self.timing.page_ready_timeout_ms,
        )
        outcome.recovery = self._merge_recovery(outcome.recovery, recovered)
        outcome.verification = recovered.verification or verification
        outcome.passed = recovered.recovered
        if not outcome.passed:
            outcome.failure = FailureKind.CONDITION_FAILED
            outcome.reason = outcome.verification.failure_reason
        return outcome

    def _locate(
        self,
        step_key: str,
        bundle: LocatorBundle,
        outcome: StepResult,
        deadline: Deadline | None,
    ) -> Handle | None:
        timeout = self.timing.resolve_timeout_ms
        corrected = self.corrections.correction_for(step_key) if self.corrections else None
        if corrected is not None:
            result = self.resolver.resolve(corrected, timeout_ms=timeout, deadline=deadline)
            if result.found:
                outcome.resolve = result
                outcome.used_correction = True
                return result.candidate.handle
            log.info("stored correction for %s did not resolve: %s", step_key, result.reason)

        result = self.resolver.resolve(bundle, timeout_ms=timeout, deadline=deadline)
        outcome.resolve = result
        if result.found:
            return result.candidate.handle

        recovered = self.recovery.recover_resolution(bundle, result, step_key, deadline)
        outcome.recovery = recovered
        if recovered.recovered:
            outcome.resolve = recovered.resolve
            return recovered.resolve.candidate.handle
        final: ResolveResult = recovered.resolve or result
        outcome.failure = final.failure or FailureKind.NO_CANDIDATES
        outcome.reason = final.reason
        return None

    def _act(self, step: RecordedStep, handle: Handle | None, outcome: StepResult) -> bool:
        try:
            self.performer.perform(step, handle)
            return True
        except ActionFailed as exc:
            first_error = exc
        settings = self.recovery.settings
        if handle is None or not (settings.enabled and settings.retry_action_after_scroll):
            outcome.failure = FailureKind.ACTION_FAILED
            outcome.reason = str(first_error)
            return False
        attempt = RecoveryAttempt(action="scroll_and_retry", succeeded=False, message=str(first_error))
        outcome.recovery = self._merge_recovery(outcome.recovery, RecoveryResult(False, [attempt]))
        try:
            self.dom.scroll_into_view(handle)
            self.performer.perform(step, handle)
        except ReplayError as exc:
            outcome.failure = FailureKind.ACTION_FAILED
            outcome.reason = str(exc)
            return False
        attempt.succeeded = True
        outcome.recovery.recovered = True
        return True

    @staticmethod
    def _merge_recovery(previous: RecoveryResult | None, current: RecoveryResult) -> RecoveryResult:
        if previous is None:
            return current
        previous.attempts.extend(current.attempts)
        previous.recovered = current.recovered
        previous.verification = current.verification or previous.verification
        return previous

    def _report(self, step: RecordedStep, step_key: str, result: StepResult) -> None:
        paths: dict[str, str] = {}
        if not result.passed and self.artifact_manager is not None:
            try:
                paths = self.artifact_manager.capture_failure(step_key, self.dom, step.payload.visual_snapshot)
            except Exception as exc:  # noqa: BLE001 - a failed capture must not hide the step failure.
                log.warning("could not capture failure artifacts for %s: %s", step_key, exc)
        if self.audit_logger is not None:
            self.audit_logger.write(step_key, result, paths)
