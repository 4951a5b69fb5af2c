from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from replayer.config.schema import RecoverySettings
from replayer.core.conditions import SuccessCondition
from replayer.core.exceptions import ReplayError
from replayer.core.extractor import FeatureExtractor
from replayer.core.locators import LocatorBundle, LocatorKind, LocatorStrategy
from replayer.core.metadata import (
    Candidate,
    CorrectionRequest,
    FailureKind,
    RecoveryAttempt,
    RecoveryResult,
    ResolveOutcome,
    ResolveResult,
    VerificationResult,
)
from replayer.core.resolver import Resolver
from replayer.core.scope import Scope, describe_scope, widen_scope
from replayer.core.verifier import SuccessVerifier
from replayer.core.waits import StateWaitEngine
from replayer.utils.scoring import normalize_text
from replayer.utils.wait import Deadline

if TYPE_CHECKING:
    from replayer.dom.accessor import DomAccessor
    from replayer.logging.audit import CorrectionChannel

log = logging.getLogger(__name__)

FRAGILE_KINDS = (LocatorKind.TEXT, LocatorKind.POSITION)
MAX_REPORTED_CANDIDATES = 5


class RecoveryEngine:
    """Bounded, ordered recovery for failed resolutions and verifications.

    Recovery never edits a recorded bundle. It tries derived bundles, reports what
    it found, and hands anything it cannot settle to the correction channel.
    """

    def __init__(
        self,
        dom: DomAccessor,
        resolver: Resolver,
        verifier: SuccessVerifier,
        waits: StateWaitEngine,
        extractor: FeatureExtractor | None = None,
        channel: CorrectionChannel | None = None,
        settings: RecoverySettings | None = None,
    ) -> None:
        self.dom = dom
        self.resolver = resolver
        self.verifier = verifier
        self.waits = waits
        self.extractor = extractor or FeatureExtractor(dom)
        self.channel = channel
        self.settings = settings or RecoverySettings()

    def recover_resolution(
        self,
        bundle: LocatorBundle,
        failed: ResolveResult,
        step_key: str = "",
        deadline: Deadline | None = None,
    ) -> RecoveryResult:
        attempts: list[RecoveryAttempt] = []
        current_bundle, current = bundle, failed
        timeout = self.settings.attempt_timeout_ms

        if self.settings.enabled and self.settings.widen_scope and failed.failure is FailureKind.NO_CANDIDATES:
            wider = widen_scope(bundle.scope)
            if wider is not None:
                widened = bundle.with_scope(wider)
                result = self.resolver.resolve(widened, timeout_ms=timeout, deadline=deadline)
                attempts.append(
                    RecoveryAttempt(
                        action="widen_scope",
                        succeeded=result.found,
                        message=f"{describe_scope(bundle.scope)} -> {describe_scope(wider)}: {result.outcome.value}",
                    )
                )
                if result.found:
                    return self._recovered(bundle, result, attempts)
                if result.outcome is ResolveOutcome.AMBIGUOUS:
                    current_bundle, current = widened, result

        if (
            self.settings.enabled
            and self.settings.relax_strategies
            and current.outcome is ResolveOutcome.AMBIGUOUS
            and self._tied_through_fragile(current.candidates)
        ):
            relaxed = current_bundle.without_kinds(FRAGILE_KINDS)
            if relaxed.strategies:
                result = self.resolver.resolve(relaxed, timeout_ms=timeout, deadline=deadline)
                attempts.append(
                    RecoveryAttempt(
                        action="relax_strategies",
                        succeeded=result.found,
                        message=f"dropped text/position strategies: {result.outcome.value}",
                    )
                )
                if result.found:
                    return self._recovered(bundle, result, attempts)
                current = result if result.candidates else current

        correction = self._request_correction(step_key, bundle, current, attempts)
        return RecoveryResult(recovered=False, attempts=attempts, resolve=current, correction=correction)

    def recover_verification(
        self,
        condition: SuccessCondition,
        failed: VerificationResult,
        scope: Scope | None = None,
        deadline: Deadline | None = None,
        page_ready_timeout_ms: float = 5000,
    ) -> RecoveryResult:
        attempts: list[RecoveryAttempt] = []
        if not (self.settings.enabled and self.settings.reverify_after_page_ready):
            return RecoveryResult(recovered=False, verification=failed)
        ready = self.waits.wait_for_page_ready(
            page_ready_timeout_ms,
            quiet_ms=self.verifier.dom_quiet_ms,
            idle_ms=self.verifier.network_idle_ms,
            deadline=deadline,
        )
        attempts.append(
            RecoveryAttempt(
                action="wait_for_page_ready",
                succeeded=ready.success,
                message="page settled" if ready.success else "page did not settle",
            )
        )
        result = self.verifier.verify(condition, scope, deadline)
        attempts.append(
            RecoveryAttempt(action="reverify", succeeded=result.passed, message=result.failure_reason or "passed")
        )
        return RecoveryResult(recovered=result.passed, attempts=attempts, verification=result)

    def _recovered(
        self, bundle: LocatorBundle, result: ResolveResult, attempts: list[RecoveryAttempt]
    ) -> RecoveryResult:
        proposals: list[LocatorStrategy] = []
        try:
            proposals = self.extractor.propose(result.candidate.handle, bundle)[:1]
        except ReplayError as exc:
            log.info("could not propose a strategy for the recovered element: %s", exc)
        return RecoveryResult(recovered=True, attempts=attempts, resolve=result, proposed_strategies=proposals)

    @staticmethod
    def _tied_through_fragile(candidates: list[Candidate]) -> bool:
        return any(kind in FRAGILE_KINDS for item in candidates for kind in item.matched_kinds)

    def _request_correction(
        self,
        step_key: str,
        bundle: LocatorBundle,
        result: ResolveResult,
        attempts: list[RecoveryAttempt],
    ) -> CorrectionRequest | None:
        if not self.settings.emit_corrections:
            return None
        if result.failure is FailureKind.SCOPE_NOT_FOUND and not attempts:
            reasons = [result.reason or "scope not found"]
        else:
            reasons = [result.reason or result.outcome.value, *(item.message for item in attempts)]
        correction = CorrectionRequest(
            step_key=step_key,
            url=self._current_url(),
            bundle=bundle,
            outcome=result.outcome,
            failure=result.failure,
            reasons=reasons,
            candidates=[self._candidate_payload(item) for item in result.candidates[:MAX_REPORTED_CANDIDATES]],
            timestamp=datetime.now(UTC).isoformat(),
        )
        if self.channel is not None:
            self.channel.submit(correction)
        return correction

    def _current_url(self) -> str:
        try:
            return self.dom.current_url()
        except ReplayError:
            return ""

    def _candidate_payload(self, candidate: Candidate) -> dict[str, Any]:
        try:
            tag = self.dom.tag_name(candidate.handle)
            text = normalize_text(self.dom.text_content(candidate.handle), limit=80)
            attributes = self.dom.attributes(candidate.handle)
        except ReplayError:
            tag, text, attributes = "", "", {}
        return {
            "tag": tag,
            "text": text,
            "attributes": attributes,
            "score": candidate.specificity_score,
            "dynamic_matches": candidate.dynamic_matches,
            "distance_from_hint": candidate.distance_from_hint,
            "matched_strategies": [kind.value for kind in candidate.matched_kinds],
            "document_order": candidate.document_order,
        }
