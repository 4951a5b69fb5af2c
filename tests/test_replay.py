from __future__ import annotations

import base64
from pathlib import Path

import pytest
from selenium.common.exceptions import InvalidElementStateException

from replayer.config.schema import RecoverySettings, TimingConfig
from replayer.core.actions import SeleniumActionPerformer
from replayer.core.conditions import modal_opened, state
from replayer.core.exceptions import ActionFailed, StaleElement
from replayer.core.locators import LocatorKind
from replayer.core.metadata import FailureKind
from replayer.core.replay import StepReplayer
from replayer.utils.wait import Deadline
from replayer.core.steps import RecordedStep, StepType, bundle_for_step
from replayer.dom.snapshot import SnapshotDom
from replayer.logging.artifacts import ArtifactManager
from replayer.logging.audit import CorrectionStore, ReplayAuditLogger
from tests.helpers import CHECKOUT_FORM, RecordingPerformer, bundle, page, strategy


def _step(step_type: str, **payload) -> RecordedStep:
    return RecordedStep.model_validate({"type": step_type, "payload": payload})


def _replayer(dom, performer, clock, root=None, **recovery) -> StepReplayer:
    options = {}
    if root is not None:
        options = {
            "corrections": CorrectionStore(root),
            "audit_logger": ReplayAuditLogger(root),
            "artifact_manager": ArtifactManager(root),
        }
    return StepReplayer(
        dom,
        performer,
        clock=clock,
        timing=TimingConfig(resolve_timeout_ms=500),
        recovery=RecoverySettings(**recovery),
        **options,
    )


def test_click_step_resolves_acts_and_verifies(clock):
    dom = SnapshotDom(page(CHECKOUT_FORM), url="http://shop.local/checkout")
    performer = RecordingPerformer(dom, on_perform=lambda step, handle: dom.remove_attribute(dom.find("#confirm"), "hidden"))
    step = _step(
        "click",
        locator_bundle=bundle(strategy(LocatorKind.TEST_ID, "place-order", stable=True)).model_dump(),
        suggested_condition=modal_opened(timeout_ms=1000).model_dump(),
        timestamp=1718000002000,
    )

    result = _replayer(dom, performer, clock).replay_step(step, 0)

    assert result.passed is True
    assert result.status == "passed"
    assert performer.performed == [(StepType.CLICK, dom.find("[data-testid='place-order']"))]
    assert result.verification.passed is True


def test_legacy_selectors_become_a_bundle():
    step = _step("input", selector="#email", fallback_selectors=["input[name='email']", "#email"], xpath="//input[@type='email']")

    recorded = bundle_for_step(step)

    assert [item.kind for item in recorded.strategies] == [LocatorKind.CSS, LocatorKind.CSS, LocatorKind.XPATH]
    assert recorded.strategies[0].features.has_stable_attributes is True
    assert bundle_for_step(_step("navigation", url="http://shop.local/")) is None
    assert bundle_for_step(_step("click")) is None


def test_legacy_input_step_types_into_the_recorded_field(clock):
    dom = SnapshotDom(page(CHECKOUT_FORM))
    performer = RecordingPerformer(dom)
    step = _step("input", selector="#email-renamed", fallback_selectors=["input[name='email']"], value="a@b.co")

    result = _replayer(dom, performer, clock).replay_step(step, 1)

    assert result.passed is True
    assert performer.performed[0][1] is dom.find("#email")


def test_navigation_step_verifies_the_new_url(clock):
    dom = SnapshotDom(page("<div></div>"), url="http://shop.local/")
    performer = RecordingPerformer(dom)
    step = _step(
        "navigation",
        url="http://shop.local/orders",
        suggested_condition={"op": "state", "type": "url_contains", "value": "/orders", "timeout_ms": 1000},
    )

    result = _replayer(dom, performer, clock).replay_step(step)

    assert result.passed is True
    assert performer.performed == [(StepType.NAVIGATION, None)]


def test_pre_step_waits_run_before_resolution(clock):
    dom = SnapshotDom(page("<div id='app'></div>"))
    clock.schedule(400, lambda: dom.append_html(dom.find("#app"), "<button id='go'>Go</button>"))
    performer = RecordingPerformer(dom)
    step = _step(
        "click",
        selector="#go",
        wait_conditions=[{"type": "time", "timeout_ms": 250}, {"type": "element", "selector": "#go", "timeout_ms": 1000}],
    )

    result = _replayer(dom, performer, clock).replay_step(step)

    assert result.passed is True
    assert clock.sleeps[0] == 250
    assert clock.now >= 400


def test_failed_pre_step_wait_stops_the_step(clock):
    dom = SnapshotDom(page("<button id='go'>Go</button>"))
    performer = RecordingPerformer(dom)
    step = _step("click", selector="#go", wait_conditions=[{"type": "text", "text": "Ready", "timeout_ms": 200}])

    result = _replayer(dom, performer, clock).replay_step(step)

    assert result.passed is False
    assert result.failure is FailureKind.CONDITION_FAILED
    assert result.reason.startswith("pre-step wait failed")
    assert performer.performed == []


def test_intercepted_click_is_retried_after_scrolling(clock):
    dom = SnapshotDom(page("<button id='go'>Go</button>"))
    performer = RecordingPerformer(dom, failures=1)

    result = _replayer(dom, performer, clock).replay_step(_step("click", selector="#go"))

    assert result.passed is True
    assert dom.scrolled == [dom.find("#go")]
    assert result.recovery.attempts[0].action == "scroll_and_retry"
    assert result.recovery.attempts[0].succeeded is True


def test_action_failure_without_retry(clock):
    dom = SnapshotDom(page("<button id='go'>Go</button>"))
    performer = RecordingPerformer(dom, failures=1)

    result = _replayer(dom, performer, clock, retry_action_after_scroll=False).replay_step(_step("click", selector="#go"))

    assert result.failure is FailureKind.ACTION_FAILED
    assert "click intercepted" in result.reason


def test_unresolved_step_is_reported_with_artifacts(clock, artifacts_root):
    dom = SnapshotDom(page("<button id='go'>Go</button>"), url="http://shop.local/")
    performer = RecordingPerformer(dom)
    snapshot = base64.b64encode(b"\x89PNG recorded").decode("ascii")
    step = _step("click", selector="#missing", timestamp=1718000005000, visual_snapshot=snapshot)

    result = _replayer(dom, performer, clock, root=artifacts_root).replay_step(step, 3)

    assert result.passed is False
    assert result.failure is FailureKind.NO_CANDIDATES
    assert result.recovery.correction.step_key == "click-1718000005000"
    events = ReplayAuditLogger(artifacts_root).read_events()
    assert events[-1]["status"] == "failed"
    assert events[-1]["resolve"]["outcome"] == "not_found"
    paths = events[-1]["artifact_paths"]
    assert Path(paths["dom_snapshot"]).read_text(encoding="utf-8").count("id=\"go\"") == 1
    assert Path(paths["visual_snapshot"]).read_bytes() == b"\x89PNG recorded"


def test_stored_corrections_are_used_first(clock, artifacts_root):
    dom = SnapshotDom(page("<button id='save-v2'>Save</button>"))
    performer = RecordingPerformer(dom)
    step = _step("click", selector="#save", timestamp=1718000006000)
    CorrectionStore(artifacts_root).record(
        step.key(0), bundle(strategy(LocatorKind.CSS, "#save-v2", stable=True))
    )

    result = _replayer(dom, performer, clock, root=artifacts_root).replay_step(step, 0)

    assert result.passed is True
    assert result.used_correction is True
    assert ReplayAuditLogger(artifacts_root).read_events()[-1]["used_correction"] is True


def test_failed_verification_is_retried_after_the_page_settles(clock):
    dom = SnapshotDom(page("<button id='save'>Save</button><p id='status'></p>"))
    performer = RecordingPerformer(
        dom, on_perform=lambda step, handle: clock.schedule(clock.now + 700, lambda: dom.set_text(dom.find("#status"), "Saved"))
    )
    step = _step(
        "click",
        selector="#save",
        suggested_condition=state("text_appeared", "Saved", 200).model_dump(),
    )

    result = _replayer(dom, performer, clock).replay_step(step)

    assert result.passed is True
    assert [item.action for item in result.recovery.attempts] == ["wait_for_page_ready", "reverify"]


def test_replay_stops_at_the_first_failure_unless_told_otherwise(clock):
    dom = SnapshotDom(page("<button id='a'>A</button><button id='c'>C</button>"))
    steps = [_step("click", selector=selector) for selector in ("#a", "#b", "#c")]

    stopped = _replayer(dom, RecordingPerformer(dom), clock, emit_corrections=False).replay(steps)
    continued = _replayer(dom, RecordingPerformer(dom), clock, emit_corrections=False).replay(
        steps, continue_on_failure=True
    )

    assert [item.passed for item in stopped] == [True, False]
    assert [item.passed for item in continued] == [True, False, True]


def test_from_config_wires_the_suite_settings(clock, suite_config):
    dom = SnapshotDom(page("<div></div>"))
    replayer = StepReplayer.from_config(suite_config, dom, RecordingPerformer(dom), clock=clock)

    assert replayer.timing == suite_config.timing
    assert replayer.recovery.settings == suite_config.recovery
    assert replayer.audit_logger.events_path.parent == Path(suite_config.artifacts_root)


class _FakeElement:
    def __init__(self, tag_name: str, read_only: bool = False) -> None:
        self.tag_name = tag_name
        self.read_only = read_only
        self.typed: list[str] = []

    def clear(self) -> None:
        if self.read_only:
            raise InvalidElementStateException("invalid element state: element is read-only")

    def send_keys(self, text: str) -> None:
        self.typed.append(text)


@pytest.mark.parametrize(
    ("step", "target", "message"),
    [
        (_step("select", value="de"), _FakeElement("div"), "Select only works on <select> elements"),
        (_step("input", value="a@b.co"), _FakeElement("input", read_only=True), "read-only"),
    ],
)
def test_selenium_errors_become_action_failures(step, target, message):
    performer = SeleniumActionPerformer(driver=None)

    with pytest.raises(ActionFailed, match=message):
        performer.perform(step, target)


def test_select_on_a_div_fails_the_step_without_raising(clock):
    dom = SnapshotDom(page("<div id='country'>Germany</div>"))

    class DelegatingPerformer(RecordingPerformer):
        def perform(self, step, handle):
            SeleniumActionPerformer(driver=None).perform(step, _FakeElement(dom.tag_name(handle)))

    replayer = _replayer(dom, DelegatingPerformer(dom), clock, retry_action_after_scroll=False)
    result = replayer.replay_step(_step("select", selector="#country", value="de"))

    assert result.passed is False
    assert result.failure is FailureKind.ACTION_FAILED
    assert "<select>" in result.reason


def test_unexpected_performer_errors_fail_only_their_step(clock, artifacts_root):
    dom = SnapshotDom(page("<button id='a'>A</button><button id='b'>B</button>"))

    class CrashingPerformer(RecordingPerformer):
        def perform(self, step, handle):
            if handle is dom.find("#a"):
                raise RuntimeError("driver connection reset")
            super().perform(step, handle)

    performer = CrashingPerformer(dom)
    results = _replayer(dom, performer, clock, root=artifacts_root).replay(
        [_step("click", selector="#a"), _step("click", selector="#b")], continue_on_failure=True
    )

    assert [item.passed for item in results] == [False, True]
    assert results[0].failure is FailureKind.UNEXPECTED
    assert results[0].reason == "driver connection reset"
    assert performer.performed == [(StepType.CLICK, dom.find("#b"))]
    assert ReplayAuditLogger(artifacts_root).read_events()[0]["failure"] == "unexpected"


def test_stale_element_during_scroll_retry_is_an_action_failure(clock):
    class DetachingDom(SnapshotDom):
        def scroll_into_view(self, handle):
            raise StaleElement("element is no longer attached")

    dom = DetachingDom(page("<button id='go'>Go</button>"))

    result = _replayer(dom, RecordingPerformer(dom, failures=1), clock).replay_step(_step("click", selector="#go"))

    assert result.passed is False
    assert result.failure is FailureKind.ACTION_FAILED
    assert result.reason == "element is no longer attached"
    assert result.recovery.attempts[0].succeeded is False


def test_time_waits_never_sleep_past_the_step_deadline(clock):
    dom = SnapshotDom(page("<button id='go'>Go</button>"))
    step = _step("click", selector="#go", wait_conditions=[{"type": "time", "timeout_ms": 5000}])

    result = _replayer(dom, RecordingPerformer(dom), clock).replay_step(step, deadline=Deadline(clock, 800))

    assert clock.sleeps[0] == 800
    assert result.passed is False
    assert result.failure is FailureKind.TIMEOUT
