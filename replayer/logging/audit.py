from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from replayer.core.locators import LocatorBundle, enrich_bundle
from replayer.core.metadata import CorrectionRequest, ResolveResult, StepResult

if TYPE_CHECKING:
    from replayer.llm.client import LocatorAdvisor

log = logging.getLogger(__name__)


class CorrectionChannel(Protocol):
    def submit(self, correction: CorrectionRequest) -> None: ...


def _resolve_payload(result: ResolveResult | None) -> dict[str, Any] | None:
    if result is None:
        return None
    return {
        "outcome": result.outcome.value,
        "failure": result.failure.value if result.failure else None,
        "reason": result.reason,
        "candidates": len(result.candidates),
        "matched": [kind.value for kind in result.candidate.matched_kinds] if result.candidate else [],
        "strategies_tried": result.metrics.strategies_tried,
        "skipped_strategies": result.metrics.skipped_strategies,
        "polls": result.metrics.polls,
        "elapsed_ms": round(result.metrics.elapsed_ms, 1),
    }


class ReplayAuditLogger:
    """Appends one JSON line per replayed step."""

    def __init__(self, root: str | Path = "artifacts") -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.events_path = self.root / "replay_events.jsonl"

    def write(self, step_key: str, result: StepResult, artifact_paths: dict[str, str] | None = None) -> None:
        recovery = result.recovery
        payload = {
            "step_key": step_key,
            "index": result.index,
            "step_type": result.step_type,
            "status": result.status,
            "failure": result.failure.value if result.failure else None,
            "reason": result.reason,
            "elapsed_ms": round(result.elapsed_ms, 1),
            "used_correction": result.used_correction,
            "resolve": _resolve_payload(result.resolve),
            "verification": (
                {
                    "passed": result.verification.passed,
                    "failure_reason": result.verification.failure_reason,
                    "cancelled": result.verification.cancelled,
                }
                if result.verification
                else None
            ),
            "recovery": (
                {
                    "recovered": recovery.recovered,
                    "attempts": [
                        {"action": item.action, "succeeded": item.succeeded, "message": item.message}
                        for item in recovery.attempts
                    ],
                    "proposed": [item.model_dump(mode="json") for item in recovery.proposed_strategies],
                    "correction_requested": recovery.correction is not None,
                }
                if recovery
                else None
            ),
            "artifact_paths": artifact_paths or {},
        }
        with self.events_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload) + "\n")

    def read_events(self) -> list[dict[str, Any]]:
        if not self.events_path.exists():
            return []
        with self.events_path.open("r", encoding="utf-8") as handle:
            return [json.loads(line) for line in handle if line.strip()]


class CorrectionStore:
    """File-backed correction channel.

    Requests are appended to ``corrections_requested.jsonl``; bundles fixed by a
    human or an advisor live in ``corrected_bundles.json`` keyed by step and are
    handed back to the replayer as ordinary bundles.
    """

    def __init__(self, root: str | Path = "artifacts") -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.requests_path = self.root / "corrections_requested.jsonl"
        self.bundles_path = self.root / "corrected_bundles.json"

    def submit(self, correction: CorrectionRequest) -> None:
        with self.requests_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(correction.to_payload()) + "\n")
        log.info("correction requested for step %s: %s", correction.step_key, "; ".join(correction.reasons))

    def pending(self) -> list[dict[str, Any]]:
        if not self.requests_path.exists():
            return []
        with self.requests_path.open("r", encoding="utf-8") as handle:
            requests = [json.loads(line) for line in handle if line.strip()]
        corrected = self._read_bundles()
        return [item for item in requests if item["step_key"] not in corrected]

    def record(self, step_key: str, bundle: LocatorBundle) -> None:
        bundles = self._read_bundles()
        bundles[step_key] = bundle.model_dump(mode="json")
        self.bundles_path.write_text(json.dumps(bundles, indent=2, sort_keys=True), encoding="utf-8")

    def correction_for(self, step_key: str) -> LocatorBundle | None:
        raw = self._read_bundles().get(step_key)
        return LocatorBundle.model_validate(raw) if raw is not None else None

    def apply_advice(self, advisor: LocatorAdvisor, correction: CorrectionRequest) -> LocatorBundle:
        """Asks the advisor for one more strategy and stores the enriched bundle."""

        strategy = advisor.suggest_strategy(correction)
        enriched = enrich_bundle(correction.bundle, [strategy])
        self.record(correction.step_key, enriched)
        return enriched

    def _read_bundles(self) -> dict[str, Any]:
        if not self.bundles_path.exists():
            return {}
        return json.loads(self.bundles_path.read_text(encoding="utf-8"))
