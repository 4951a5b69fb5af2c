from __future__ import annotations

import json

from replayer.config.schema import RecoverySettings
from replayer.core.conditions import StateConditionType, state
from replayer.core.extractor import FeatureExtractor
from replayer.core.locators import LocatorKind
from replayer.core.metadata import FailureKind, ResolveOutcome
from replayer.core.recovery import RecoveryEngine
from replayer.core.resolver import Resolver
from replayer.core.scope import ContainerScope, PageScope
from replayer.core.verifier import SuccessVerifier
from replayer.core.waits import StateWaitEngine
from replayer.dom.snapshot import SnapshotDom
from replayer.logging.audit import CorrectionStore
from tests.helpers import bundle, page, strategy


def _engine(dom, clock, channel=None, **settings) -> RecoveryEngine:
    waits = StateWaitEngine(dom, clock)
    resolver = Resolver(dom, clock)
    verifier = SuccessVerifier(dom, waits, clock)
    return RecoveryEngine(
        dom,
        resolver,
        verifier,
        waits,
        FeatureExtractor(dom),
        channel=channel,
        settings=RecoverySettings(**settings),
    )


def test_widening_finds_an_element_that_left_its_container(clock):
    dom = SnapshotDom(page('<aside id="sidebar"><a href="/help">Help</a></aside><header><button>Log out</button></header>'))
    engine = _engine(dom, clock)
    recorded = bundle(strategy(LocatorKind.TEXT, "Log out"), scope=ContainerScope(selector="#sidebar"))
    failed = engine.resolver.resolve(recorded, timeout_ms=0)

    recovered = engine.recover_resolution(recorded, failed, "click-1")

    assert failed.failure is FailureKind.NO_CANDIDATES
    assert recovered.recovered is True
    assert recovered.attempts[0].action == "widen_scope"
    assert recovered.attempts[0].message.startswith("container(#sidebar) -> page")
    assert recovered.resolve.candidate.handle is dom.find("header button")
    assert len(recovered.proposed_strategies) == 1
    assert recovered.correction is None


def test_relaxing_drops_position_and_text_from_a_tie(clock):
    dom = SnapshotDom(page('<div id="actions"><button>Save</button><button class="secondary">Discard</button></div>'))
    engine = _engine(dom, clock)
    recorded = bundle(
        strategy(LocatorKind.XPATH, "//div[@id='actions']/button[1]"),
        strategy(LocatorKind.CSS, "button.secondary"),
        strategy(LocatorKind.POSITION, "#actions > button:nth-of-type(2)"),
    )
    failed = engine.resolver.resolve(recorded, timeout_ms=0)

    recovered = engine.recover_resolution(recorded, failed, "click-2")

    assert failed.outcome is ResolveOutcome.AMBIGUOUS
    assert [item.action for item in recovered.attempts] == ["relax_strategies"]
    assert recovered.recovered is True
    assert recovered.resolve.candidate.handle is dom.query_css(dom.document_root(), "button")[0]


def test_unsettled_ambiguity_becomes_a_correction_request(clock, tmp_path):
    dom = SnapshotDom(
        page('<div role="listbox"><div role="option">Apple</div><div role="option">Apple</div></div>'),
        url="http://shop.local/fruit",
    )
    store = CorrectionStore(tmp_path)
    engine = _engine(dom, clock, channel=store)
    recorded = bundle(strategy(LocatorKind.TEXT, "Apple"), scope=PageScope())
    failed = engine.resolver.resolve(recorded, timeout_ms=0)

    recovered = engine.recover_resolution(recorded, failed, "select-7")

    assert recovered.recovered is False
    assert recovered.attempts == []
    assert recovered.correction.outcome is ResolveOutcome.AMBIGUOUS
    pending = store.pending()
    assert len(pending) == 1
    assert pending[0]["step_key"] == "select-7"
    assert pending[0]["url"] == "http://shop.local/fruit"
    assert [item["text"] for item in pending[0]["candidates"]] == ["Apple", "Apple"]
    assert pending[0]["candidates"][0]["matched_strategies"] == ["text"]


def test_recovery_never_edits_the_recorded_bundle(clock, tmp_path):
    dom = SnapshotDom(page('<aside id="sidebar"></aside><button>Log out</button>'))
    engine = _engine(dom, clock, channel=CorrectionStore(tmp_path))
    recorded = bundle(strategy(LocatorKind.TEXT, "Log out"), scope=ContainerScope(selector="#sidebar"))
    snapshot = recorded.model_dump()

    engine.recover_resolution(recorded, engine.resolver.resolve(recorded, timeout_ms=0), "click-3")

    assert recorded.model_dump() == snapshot


def test_disabled_recovery_only_reports(clock, tmp_path):
    dom = SnapshotDom(page('<aside id="sidebar"></aside><button>Log out</button>'))
    engine = _engine(dom, clock, channel=CorrectionStore(tmp_path), enabled=False, emit_corrections=False)
    recorded = bundle(strategy(LocatorKind.TEXT, "Log out"), scope=ContainerScope(selector="#sidebar"))

    recovered = engine.recover_resolution(recorded, engine.resolver.resolve(recorded, timeout_ms=0), "click-4")

    assert recovered.recovered is False
    assert recovered.attempts == []
    assert recovered.correction is None
    assert not (tmp_path / "corrections_requested.jsonl").exists()


def test_verification_is_retried_once_the_page_settles(clock):
    dom = SnapshotDom(page("<p id='status'>Saving</p>"))
    clock.schedule(100, lambda: dom.set_text(dom.find("#status"), "Saved"))
    engine = _engine(dom, clock)
    condition = state(StateConditionType.TEXT_APPEARED, "Saved", 0)
    failed = engine.verifier.verify(condition)

    recovered = engine.recover_verification(condition, failed, page_ready_timeout_ms=3000)

    assert failed.passed is False
    assert recovered.recovered is True
    assert [item.action for item in recovered.attempts] == ["wait_for_page_ready", "reverify"]
    assert recovered.verification.passed is True


def test_correction_payload_is_json_serialisable(clock, tmp_path):
    dom = SnapshotDom(page("<div></div>"))
    store = CorrectionStore(tmp_path)
    engine = _engine(dom, clock, channel=store)
    recorded = bundle(strategy(LocatorKind.CSS, "#gone"))

    engine.recover_resolution(recorded, engine.resolver.resolve(recorded, timeout_ms=0), "click-5")

    line = (tmp_path / "corrections_requested.jsonl").read_text(encoding="utf-8").strip()
    payload = json.loads(line)
    assert payload["failure"] == "no_candidates"
    assert payload["bundle"]["strategies"][0]["value"] == "#gone"
