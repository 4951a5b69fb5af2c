from __future__ import annotations

import heapq
from itertools import count
from typing import Any, Callable

from replayer.core.exceptions import ActionFailed
from replayer.core.locators import LocatorBundle, LocatorFeatures, LocatorKind, LocatorStrategy
from replayer.core.steps import RecordedStep, StepType
from replayer.dom.snapshot import SnapshotDom


class ManualClock:
    """Test clock: time only moves when something sleeps, firing scheduled page changes on the way."""

    def __init__(self, start_ms: float = 0.0) -> None:
        self.now = start_ms
        self.sleeps: list[float] = []
        self._events: list[tuple[float, int, Callable[[], None]]] = []
        self._sequence = count()

    def now_ms(self) -> float:
        return self.now

    def sleep_ms(self, duration_ms: float) -> None:
        self.sleeps.append(duration_ms)
        self.advance_to(self.now + max(0.0, duration_ms))

    def schedule(self, at_ms: float, callback: Callable[[], None]) -> None:
        heapq.heappush(self._events, (at_ms, next(self._sequence), callback))

    def advance_to(self, target_ms: float) -> None:
        while self._events and self._events[0][0] <= target_ms:
            at_ms, _, callback = heapq.heappop(self._events)
            self.now = max(self.now, at_ms)
            callback()
        self.now = max(self.now, target_ms)


class RecordingPerformer:
    """Stands in for the browser: records every action and lets a test script its side effects."""

    def __init__(
        self,
        dom: SnapshotDom,
        on_perform: Callable[[RecordedStep, Any], None] | None = None,
        failures: int = 0,
    ) -> None:
        self.dom = dom
        self.on_perform = on_perform
        self.failures = failures
        self.performed: list[tuple[StepType, Any]] = []

    def perform(self, step: RecordedStep, handle: Any | None) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise ActionFailed(f"{step.type.value} failed: element click intercepted")
        self.performed.append((step.type, handle))
        if step.type is StepType.NAVIGATION:
            self.dom.navigate(step.payload.url)
        if self.on_perform is not None:
            self.on_perform(step, handle)


def page(body: str, title: str = "Test page") -> str:
    return f"<html><head><title>{title}</title></head><body>{body}</body></html>"


def strategy(kind: LocatorKind | str, value: str, stable: bool = False, dynamic: bool = False) -> LocatorStrategy:
    return LocatorStrategy(
        kind=kind,
        value=value,
        features=LocatorFeatures(has_stable_attributes=stable, has_dynamic_parts=dynamic),
    )


def bundle(*strategies: LocatorStrategy, **options) -> LocatorBundle:
    return LocatorBundle(strategies=strategies, **options)


def text_of(dom: SnapshotDom, handle) -> str:
    return " ".join(dom.text_content(handle).split())


USERS_TABLE = """
<button data-testid="edit">Edit</button>
<table id="users">
  <thead><tr><th>Name</th><th>Role</th><th>Actions</th></tr></thead>
  <tbody>
    <tr id="row-alice"><td>Alice</td><td>Admin</td><td><button>Edit</button></td></tr>
    <tr id="row-bob"><td>Bob</td><td>Viewer</td><td><button>Edit</button></td></tr>
  </tbody>
</table>
"""

CHECKOUT_FORM = """
<header><nav><a href="/">Home</a><a href="/cart">Cart</a></nav></header>
<main>
  <form id="checkout">
    <label for="email">Email</label>
    <input id="email" name="email" type="email" value="">
    <label for="country">Country</label>
    <select id="country" name="country">
      <option value="us">United States</option>
      <option value="de" selected>Germany</option>
    </select>
    <input id="terms" type="checkbox" name="terms" checked>
    <button type="submit" data-testid="place-order" class="btn btn-primary">Place order</button>
    <button type="button" class="btn" disabled>Save for later</button>
  </form>
  <div role="dialog" id="confirm" hidden>
    <h2>Order placed</h2>
    <button aria-label="Close dialog">x</button>
  </div>
</main>
"""
