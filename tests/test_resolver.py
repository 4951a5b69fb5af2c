from __future__ import annotations

from replayer.core.finder import CandidateFinder
from replayer.core.locators import LocatorKind
from replayer.core.metadata import FailureKind, ResolveOutcome
from replayer.core.resolver import Resolver
from replayer.core.scope import ModalScope, TableRowScope
from replayer.dom.snapshot import SnapshotDom
from replayer.utils.wait import Deadline
from tests.helpers import USERS_TABLE, bundle, page, strategy


def test_test_id_wins_after_text_changes(clock):
    dom = SnapshotDom(page('<button data-testid="submit">Go</button><button id="cancel">Cancel</button>'))
    resolver = Resolver(dom, clock)
    recorded = bundle(strategy(LocatorKind.TEST_ID, "submit", stable=True), strategy(LocatorKind.TEXT, "Go"))

    first = resolver.resolve(recorded)
    assert first.outcome is ResolveOutcome.FOUND
    assert first.candidate.matched_kinds == (LocatorKind.TEST_ID, LocatorKind.TEXT)

    submit = dom.find("[data-testid='submit']")
    dom.set_text(submit, "Submit")
    dom.set_text(dom.find("#cancel"), "Go")

    second = resolver.resolve(recorded)
    assert second.outcome is ResolveOutcome.FOUND
    assert second.candidate.handle is submit
    assert second.candidate.matched_kinds == (LocatorKind.TEST_ID,)
    assert len(second.candidates) == 2


def test_identical_siblings_without_hints_are_ambiguous(clock):
    dom = SnapshotDom(page('<div role="listbox"><div role="option">Apple</div><div role="option">Apple</div></div>'))
    result = Resolver(dom, clock).resolve(bundle(strategy(LocatorKind.TEXT, "Apple")))

    assert result.outcome is ResolveOutcome.AMBIGUOUS
    assert result.failure is FailureKind.AMBIGUOUS
    assert result.candidate is None
    assert len(result.candidates) == 2
    orders = [item.document_order for item in result.candidates]
    assert orders == sorted(orders)


def test_resolution_is_deterministic(clock):
    dom = SnapshotDom(page('<ul><li role="option">Apple</li><li role="option">Apple</li><li>Pear</li></ul>'))
    resolver = Resolver(dom, clock)
    recorded = bundle(strategy(LocatorKind.TEXT, "Apple"), strategy(LocatorKind.ROLE, "option"))

    runs = [resolver.resolve(recorded) for _ in range(3)]

    assert {run.outcome for run in runs} == {ResolveOutcome.AMBIGUOUS}
    handles = [[item.handle for item in run.candidates] for run in runs]
    assert all(
        all(left is right for left, right in zip(handles[0], other)) for other in handles[1:]
    )


def test_found_always_carries_exactly_one_winner(clock):
    dom = SnapshotDom(page('<button data-testid="pay" class="btn">Pay</button><button class="btn">Pay later</button>'))
    result = Resolver(dom, clock).resolve(
        bundle(strategy(LocatorKind.TEST_ID, "pay", stable=True), strategy(LocatorKind.CSS, "button.btn"))
    )

    assert result.outcome is ResolveOutcome.FOUND
    assert result.candidate is result.candidates[0]
    assert result.candidates[0].rank_key() < result.candidates[1].rank_key()


def test_table_row_scope_never_leaves_the_row(clock):
    dom = SnapshotDom(page(USERS_TABLE))
    resolver = Resolver(dom, clock)
    recorded = bundle(
        strategy(LocatorKind.TEST_ID, "edit", stable=True),
        strategy(LocatorKind.TEXT, "Edit"),
        scope=TableRowScope(key="Bob"),
    )

    scoped = resolver.resolve(recorded)
    unscoped = resolver.resolve(recorded.with_scope(None))

    assert scoped.outcome is ResolveOutcome.FOUND
    assert dom.contains(dom.find("#row-bob"), scoped.candidate.handle)
    assert unscoped.candidate.handle is dom.find("[data-testid='edit']")


def test_table_row_scope_can_match_a_single_column(clock):
    dom = SnapshotDom(page(USERS_TABLE))
    resolver = Resolver(dom, clock)

    by_role = resolver.resolve(bundle(strategy(LocatorKind.TEXT, "Edit"), scope=TableRowScope(key="Admin", column="Role")))
    wrong_column = resolver.resolve(
        bundle(strategy(LocatorKind.TEXT, "Edit"), scope=TableRowScope(key="Alice", column="Role"))
    )

    assert dom.contains(dom.find("#row-alice"), by_role.candidate.handle)
    assert wrong_column.failure is FailureKind.SCOPE_NOT_FOUND


def test_index_hint_breaks_a_tie(clock):
    dom = SnapshotDom(page('<div role="listbox"><div role="option">Apple</div><div role="option">Apple</div></div>'))
    result = Resolver(dom, clock).resolve(bundle(strategy(LocatorKind.TEXT, "Apple"), disambiguators=("index:2",)))

    assert result.outcome is ResolveOutcome.FOUND
    assert result.candidate.distance_from_hint == 0
    assert result.candidate.handle is dom.query_css(dom.document_root(), "[role='option']")[1]


def test_near_text_hint_breaks_a_tie(clock):
    dom = SnapshotDom(
        page(
            '<div id="shipping"><span>Shipping address</span><button>Edit</button></div>'
            '<div id="billing"><span>Billing address</span><button>Edit</button></div>'
        )
    )
    result = Resolver(dom, clock).resolve(
        bundle(strategy(LocatorKind.TEXT, "Edit"), disambiguators=("near:Billing address",))
    )

    assert result.outcome is ResolveOutcome.FOUND
    assert dom.contains(dom.find("#billing"), result.candidate.handle)


def test_landmark_hint_breaks_a_tie(clock):
    dom = SnapshotDom(page("<header><button>Search</button></header><main><button>Search</button></main>"))
    result = Resolver(dom, clock).resolve(
        bundle(strategy(LocatorKind.TEXT, "Search"), disambiguators=("landmark:main",))
    )

    assert result.outcome is ResolveOutcome.FOUND
    assert dom.contains(dom.find("main"), result.candidate.handle)


def test_fewer_dynamic_matches_break_equal_scores(clock):
    dom = SnapshotDom(page('<button id="ember1234">Save</button><button class="save">Save</button>'))
    result = Resolver(dom, clock).resolve(
        bundle(strategy(LocatorKind.CSS, "#ember1234", dynamic=True), strategy(LocatorKind.CSS, "button.save"))
    )

    assert result.outcome is ResolveOutcome.FOUND
    assert result.candidate.handle is dom.find("button.save")


def test_malformed_strategies_are_skipped(clock):
    dom = SnapshotDom(page('<button data-testid="submit">Go</button>'))
    result = Resolver(dom, clock).resolve(
        bundle(
            strategy(LocatorKind.CSS, "button[["),
            strategy(LocatorKind.XPATH, "//button["),
            strategy(LocatorKind.TEST_ID, "submit", stable=True),
        )
    )

    assert result.outcome is ResolveOutcome.FOUND
    assert result.metrics.skipped_strategies == ["css='button[['", "xpath='//button['"]


def test_missing_scope_returns_without_polling(clock):
    dom = SnapshotDom(page('<button>Close</button>'))
    recorded = bundle(strategy(LocatorKind.TEXT, "Close"), scope=ModalScope())

    result = Resolver(dom, clock).resolve(recorded, timeout_ms=5000)

    assert result.failure is FailureKind.SCOPE_NOT_FOUND
    assert result.metrics.elapsed_ms < 100
    assert clock.sleeps == []
    assert CandidateFinder(dom).find(recorded, None) == []


def test_no_candidates_after_the_timeout(clock):
    dom = SnapshotDom(page("<button>Save</button>"))
    result = Resolver(dom, clock).resolve(bundle(strategy(LocatorKind.CSS, "#missing")), timeout_ms=300)

    assert result.failure is FailureKind.NO_CANDIDATES
    assert result.metrics.elapsed_ms == 300
    assert result.metrics.polls == 4


def test_element_rendered_later_is_found_on_a_later_tick(clock):
    dom = SnapshotDom(page("<div id='app'></div>"))
    clock.schedule(250, lambda: dom.append_html(dom.find("#app"), '<button id="late">Later</button>'))

    result = Resolver(dom, clock).resolve(bundle(strategy(LocatorKind.CSS, "#late")), timeout_ms=1000)

    assert result.outcome is ResolveOutcome.FOUND
    assert clock.now == 300


def test_hidden_elements_are_not_candidates(clock):
    dom = SnapshotDom(page('<button hidden>Save</button><div style="display: none"><button>Save</button></div><button id="shown">Save</button>'))
    result = Resolver(dom, clock).resolve(bundle(strategy(LocatorKind.TEXT, "Save")))

    assert result.outcome is ResolveOutcome.FOUND
    assert result.candidate.handle is dom.find("#shown")


def test_expired_deadline_reports_timeout(clock):
    dom = SnapshotDom(page("<button>Save</button>"))
    result = Resolver(dom, clock).resolve(bundle(strategy(LocatorKind.TEXT, "Save")), deadline=Deadline(clock, 0))

    assert result.failure is FailureKind.TIMEOUT


def test_empty_bundle_is_an_invalid_strategy(clock):
    dom = SnapshotDom(page("<button>Save</button>"))
    result = Resolver(dom, clock).resolve(bundle())

    assert result.failure is FailureKind.INVALID_STRATEGY


def test_unexpected_errors_become_failed_results(clock):
    class BrokenDom(SnapshotDom):
        def query_css(self, root, selector):
            raise RuntimeError("frame detached")

    dom = BrokenDom(page("<button>Save</button>"))
    result = Resolver(dom, clock).resolve(bundle(strategy(LocatorKind.CSS, "button")))

    assert result.outcome is ResolveOutcome.NOT_FOUND
    assert result.failure is FailureKind.UNEXPECTED
    assert result.reason == "frame detached"


def test_aria_and_role_strategies(clock):
    dom = SnapshotDom(
        page(
            '<span id="lbl">Close dialog</span>'
            '<button aria-labelledby="lbl">x</button>'
            '<a href="/help">Help</a><a href="/about">About</a>'
        )
    )
    resolver = Resolver(dom, clock)

    aria = resolver.resolve(bundle(strategy(LocatorKind.ARIA, "Close dialog", stable=True)))
    role = resolver.resolve(bundle(strategy(LocatorKind.ROLE, "link:About", stable=True)))

    assert aria.candidate.handle is dom.find("button")
    assert role.candidate.handle is dom.find("a[href='/about']")


def test_disabled_winner_is_handed_out_once_it_becomes_enabled(clock):
    dom = SnapshotDom(page("<button data-testid='save' disabled>Save</button>"))
    clock.schedule(300, lambda: dom.remove_attribute(dom.find("[data-testid='save']"), "disabled"))

    result = Resolver(dom, clock).resolve(bundle(strategy(LocatorKind.TEST_ID, "save", stable=True)), timeout_ms=2000)

    assert result.outcome is ResolveOutcome.FOUND
    assert dom.element_state(result.candidate.handle).enabled is True
    assert clock.now == 300


def test_winner_that_stays_disabled_is_not_handed_out(clock):
    dom = SnapshotDom(page("<fieldset disabled><button data-testid='save'>Save</button></fieldset>"))

    result = Resolver(dom, clock).resolve(bundle(strategy(LocatorKind.TEST_ID, "save", stable=True)), timeout_ms=500)

    assert result.outcome is ResolveOutcome.NOT_FOUND
    assert result.failure is FailureKind.TIMEOUT
    assert result.candidate is None
    assert result.candidates[0].handle is dom.find("[data-testid='save']")
    assert 500 <= clock.now <= 600


def test_recorded_tag_and_role_settle_an_otherwise_even_match(clock):
    dom = SnapshotDom(
        page('<a class="nav" href="/next">Next</a><button class="nav" role="tab">Next</button><button class="nav">Next</button>')
    )
    resolver = Resolver(dom, clock)
    css = strategy(LocatorKind.CSS, ".nav")

    untyped = resolver.resolve(bundle(css))
    as_link = resolver.resolve(bundle(css, tag_name="A"))
    as_button = resolver.resolve(bundle(css, tag_name="button"))
    as_tab = resolver.resolve(bundle(css, tag_name="button", role="tab"))

    assert len(untyped.candidates) == 3
    assert as_link.candidate.handle is dom.find("a.nav")
    assert as_button.outcome is ResolveOutcome.AMBIGUOUS
    assert [dom.tag_name(item.handle) for item in as_button.candidates] == ["button", "button"]
    assert as_tab.outcome is ResolveOutcome.FOUND
    assert as_tab.candidate.handle is dom.find("[role='tab']")
