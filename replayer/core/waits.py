from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Callable

from replayer.core.exceptions import InvalidStrategy, ReplayError
from replayer.core.metadata import ElementState, WaitResult
from replayer.core.scope import Scope, resolve_scope_root
from replayer.utils.scoring import normalize_text
from replayer.utils.wait import POLL_INTERVAL_MS, Clock, Deadline, MonotonicClock, poll_until

if TYPE_CHECKING:
    from replayer.dom.accessor import DomAccessor, Handle

log = logging.getLogger(__name__)

LOADER_SELECTORS = (
    ".loading",
    ".loader",
    ".spinner",
    "[class*='loading']",
    "[class*='spinner']",
    "[class*='loader']",
    "[role='progressbar']",
    "[aria-busy='true']",
    "[data-loading='true']",
    ".MuiCircularProgress-root",
    ".MuiLinearProgress-root",
    ".sk-spinner",
    ".ant-spin",
    ".chakra-spinner",
)
DEFAULT_DOM_QUIET_MS = 300
DEFAULT_NETWORK_IDLE_MS = 500
DEFAULT_WAIT_TIMEOUT_MS = 10000


def find_target(dom: DomAccessor, target: str, root: Handle) -> Handle | None:
    """Looks a condition target up as a CSS selector first, then as exact visible text."""

    try:
        matches = dom.query_css(root, target)
    except InvalidStrategy:
        matches = []
    if matches:
        return matches[0]
    wanted = normalize_text(target).casefold()
    for handle in dom.query_css(root, "*"):
        if normalize_text(dom.text_content(handle)).casefold() == wanted:
            return _innermost_with_text(dom, handle, wanted)
    return None


def _innermost_with_text(dom: DomAccessor, handle: Handle, wanted: str) -> Handle:
    current = handle
    while True:
        inner = next(
            (
                child
                for child in dom.children(current)
                if normalize_text(dom.text_content(child)).casefold() == wanted
            ),
            None,
        )
        if inner is None:
            return current
        current = inner


class StateWaitEngine:
    """Deterministic poll loops over page state. Every primitive reports, none raise."""

    def __init__(
        self,
        dom: DomAccessor,
        clock: Clock | None = None,
        poll_interval_ms: float = POLL_INTERVAL_MS,
    ) -> None:
        self.dom = dom
        self.clock = clock or MonotonicClock()
        self.poll_interval_ms = poll_interval_ms

    def _poll(
        self,
        check: Callable[[], bool],
        timeout_ms: float,
        deadline: Deadline | None = None,
    ) -> WaitResult:
        def guarded() -> bool:
            try:
                return bool(check())
            except ReplayError as exc:
                log.debug("wait check failed this tick: %s", exc)
                return False

        outcome = poll_until(guarded, timeout_ms, self.clock, self.poll_interval_ms, deadline)
        return WaitResult(success=bool(outcome))

    def _root(self, scope: Scope | None) -> Handle | None:
        return resolve_scope_root(self.dom, scope)

    def wait_for_url_change(
        self, from_url: str, timeout_ms: float = DEFAULT_WAIT_TIMEOUT_MS, deadline: Deadline | None = None
    ) -> WaitResult:
        return self._poll(lambda: self.dom.current_url() != from_url, timeout_ms, deadline)

    def wait_for_url_contains(
        self, fragment: str, timeout_ms: float = DEFAULT_WAIT_TIMEOUT_MS, deadline: Deadline | None = None
    ) -> WaitResult:
        return self._poll(lambda: fragment in self.dom.current_url(), timeout_ms, deadline)

    def wait_for_url_matches(
        self, pattern: str, timeout_ms: float = DEFAULT_WAIT_TIMEOUT_MS, deadline: Deadline | None = None
    ) -> WaitResult:
        try:
            compiled = re.compile(pattern)
        except re.error as exc:
            log.warning("invalid url pattern %r: %s", pattern, exc)
            return WaitResult(success=False)
        return self._poll(lambda: compiled.search(self.dom.current_url()) is not None, timeout_ms, deadline)

    def wait_for_text(
        self,
        text: str,
        scope: Scope | None = None,
        timeout_ms: float = DEFAULT_WAIT_TIMEOUT_MS,
        deadline: Deadline | None = None,
    ) -> WaitResult:
        wanted = normalize_text(text).casefold()

        def present() -> bool:
            root = self._root(scope)
            return root is not None and wanted in normalize_text(self.dom.text_content(root)).casefold()

        return self._poll(present, timeout_ms, deadline)

    def wait_for_text_gone(
        self,
        text: str,
        scope: Scope | None = None,
        timeout_ms: float = DEFAULT_WAIT_TIMEOUT_MS,
        deadline: Deadline | None = None,
    ) -> WaitResult:
        wanted = normalize_text(text).casefold()

        def absent() -> bool:
            root = self._root(scope)
            return root is None or wanted not in normalize_text(self.dom.text_content(root)).casefold()

        return self._poll(absent, timeout_ms, deadline)

    def wait_for_title_contains(
        self, fragment: str, timeout_ms: float = DEFAULT_WAIT_TIMEOUT_MS, deadline: Deadline | None = None
    ) -> WaitResult:
        wanted = fragment.casefold()
        return self._poll(lambda: wanted in self.dom.title().casefold(), timeout_ms, deadline)

    def wait_for_title_matches(
        self, pattern: str, timeout_ms: float = DEFAULT_WAIT_TIMEOUT_MS, deadline: Deadline | None = None
    ) -> WaitResult:
        try:
            compiled = re.compile(pattern)
        except re.error as exc:
            log.warning("invalid title pattern %r: %s", pattern, exc)
            return WaitResult(success=False)
        return self._poll(lambda: compiled.search(self.dom.title()) is not None, timeout_ms, deadline)

    def wait_for_dom_stable(
        self,
        quiet_ms: float = DEFAULT_DOM_QUIET_MS,
        timeout_ms: float = DEFAULT_WAIT_TIMEOUT_MS,
        scope: Scope | None = None,
        deadline: Deadline | None = None,
    ) -> WaitResult:
        last_fingerprint = None
        last_change_at = self.clock.now_ms()

        def settled() -> bool:
            nonlocal last_fingerprint, last_change_at
            root = self._root(scope)
            fingerprint = self.dom.fingerprint(root) if root is not None else None
            now = self.clock.now_ms()
            if fingerprint != last_fingerprint:
                last_fingerprint = fingerprint
                last_change_at = now
                return False
            return now - last_change_at >= quiet_ms

        return self._poll(settled, timeout_ms, deadline)

    def wait_for_network_idle(
        self,
        idle_ms: float = DEFAULT_NETWORK_IDLE_MS,
        timeout_ms: float = DEFAULT_WAIT_TIMEOUT_MS,
        deadline: Deadline | None = None,
    ) -> WaitResult:
        last_busy_at = self.clock.now_ms()

        def idle() -> bool:
            nonlocal last_busy_at
            now = self.clock.now_ms()
            if self.dom.pending_requests() > 0:
                last_busy_at = now
                return False
            return now - last_busy_at >= idle_ms

        return self._poll(idle, timeout_ms, deadline)

    def wait_for_loaders_gone(
        self, timeout_ms: float = DEFAULT_WAIT_TIMEOUT_MS, deadline: Deadline | None = None
    ) -> WaitResult:
        selector = ", ".join(LOADER_SELECTORS)

        def cleared() -> bool:
            root = self.dom.document_root()
            if root is None:
                return True
            return not any(self.dom.element_state(item).visible for item in self.dom.query_css(root, selector))

        return self._poll(cleared, timeout_ms, deadline)

    def wait_for_element(
        self,
        target: str,
        accept: Callable[[ElementState | None], bool],
        timeout_ms: float = DEFAULT_WAIT_TIMEOUT_MS,
        scope: Scope | None = None,
        deadline: Deadline | None = None,
    ) -> WaitResult:
        """Polls the element named by ``target`` until ``accept`` likes its state.

        ``accept`` receives None while the element (or its scope) is absent.
        """

        def check() -> bool:
            root = self._root(scope)
            handle = find_target(self.dom, target, root) if root is not None else None
            return accept(self.dom.element_state(handle) if handle is not None else None)

        return self._poll(check, timeout_ms, deadline)

    def wait_for_handle(
        self,
        handle: Handle,
        accept: Callable[[ElementState], bool],
        timeout_ms: float = DEFAULT_WAIT_TIMEOUT_MS,
        deadline: Deadline | None = None,
    ) -> WaitResult:
        return self._poll(lambda: accept(self.dom.element_state(handle)), timeout_ms, deadline)

    def wait_for_page_ready(
        self,
        timeout_ms: float = DEFAULT_WAIT_TIMEOUT_MS,
        quiet_ms: float = DEFAULT_DOM_QUIET_MS,
        idle_ms: float = DEFAULT_NETWORK_IDLE_MS,
        deadline: Deadline | None = None,
    ) -> WaitResult:
        budget = Deadline(self.clock, timeout_ms if deadline is None else deadline.clamp(timeout_ms))

        def remaining() -> float:
            return budget.remaining_ms() or 0.0

        if not self.wait_for_loaders_gone(remaining(), budget).success:
            return WaitResult(success=False)
        if not self.wait_for_dom_stable(quiet_ms, remaining(), deadline=budget).success:
            return WaitResult(success=False)
        return self.wait_for_network_idle(idle_ms, remaining(), budget)
