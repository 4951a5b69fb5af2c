from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from replayer.core.exceptions import InvalidStrategy, StaleElement
from replayer.core.locators import LocatorBundle, LocatorKind, LocatorStrategy
from replayer.core.metadata import Candidate
from replayer.dom.accessor import css_string
from replayer.utils.scoring import normalize_text, text_matches

if TYPE_CHECKING:
    from replayer.dom.accessor import DomAccessor, Handle

log = logging.getLogger(__name__)

TEST_ID_ATTRIBUTES = ("data-testid", "data-test-id", "data-test", "data-qa", "data-cy")

IMPLICIT_ROLE_SELECTORS = {
    "button": "button, input[type='button'], input[type='submit'], input[type='reset']",
    "link": "a[href]",
    "checkbox": "input[type='checkbox']",
    "radio": "input[type='radio']",
    "textbox": "input:not([type]), input[type='text'], input[type='email'], textarea",
    "combobox": "select",
    "option": "option",
    "heading": "h1, h2, h3, h4, h5, h6",
    "row": "tr",
    "cell": "td",
}

TEXT_BEARING_SELECTOR = "a, button, label, span, div, p, li, td, th, h1, h2, h3, h4, h5, h6, option, [role]"


class CandidateFinder:
    """Collects every element any strategy of a bundle matches inside one scope root."""

    def __init__(self, dom: DomAccessor, visible_only: bool = True) -> None:
        self.dom = dom
        self.visible_only = visible_only

    def find(self, bundle: LocatorBundle, scope_root: Handle | None) -> list[Candidate]:
        return self.find_with_report(bundle, scope_root)[0]

    def find_with_report(
        self, bundle: LocatorBundle, scope_root: Handle | None
    ) -> tuple[list[Candidate], list[str]]:
        if scope_root is None:
            return [], []
        by_key: dict = {}
        rejected: set = set()
        skipped: list[str] = []
        for strategy in bundle.strategies:
            try:
                matches = self.query(strategy, scope_root, bundle.tag_name)
            except InvalidStrategy as exc:
                log.info("strategy skipped: %s (%s)", strategy.describe(), exc)
                skipped.append(strategy.describe())
                continue
            for handle in matches:
                try:
                    self._collect(by_key, rejected, handle, strategy)
                except StaleElement:
                    continue
        candidates = sorted(by_key.values(), key=lambda item: item.document_order)
        return candidates, skipped

    def _collect(self, by_key: dict, rejected: set, handle: Handle, strategy: LocatorStrategy) -> None:
        key = self.dom.element_key(handle)
        if key in rejected:
            return
        candidate = by_key.get(key)
        if candidate is None:
            if self.visible_only and not self.dom.element_state(handle).visible:
                rejected.add(key)
                return
            candidate = Candidate(handle=handle, key=key, document_order=self.dom.document_order(handle))
            by_key[key] = candidate
        if strategy not in candidate.matched_strategies:
            candidate.matched_strategies.append(strategy)

    def query(self, strategy: LocatorStrategy, root: Handle, tag_name: str | None = None) -> list[Handle]:
        """Runs one strategy under ``root`` without any visibility filtering."""

        kind = strategy.kind
        if kind in (LocatorKind.CSS, LocatorKind.POSITION):
            return self.dom.query_css(root, strategy.value)
        if kind is LocatorKind.XPATH:
            return self.dom.query_xpath(root, strategy.value)
        if kind is LocatorKind.TEST_ID:
            value = css_string(strategy.value)
            selector = ", ".join(f'[{attr}="{value}"]' for attr in TEST_ID_ATTRIBUTES)
            return self.dom.query_css(root, selector)
        if kind is LocatorKind.ARIA:
            return [
                handle
                for handle in self.dom.query_css(root, "[aria-label], [aria-labelledby]")
                if text_matches(strategy.value, self.accessible_label(handle))
            ]
        if kind is LocatorKind.ROLE:
            return self._query_role(strategy.value, root)
        return self._query_text(strategy.value, root, tag_name)

    def accessible_label(self, handle: Handle) -> str:
        attrs = self.dom.attributes(handle)
        if attrs.get("aria-label"):
            return normalize_text(attrs["aria-label"])
        labelled_by = attrs.get("aria-labelledby", "").split()
        if not labelled_by:
            return ""
        document = self.dom.document_root()
        if document is None:
            return ""
        parts = []
        for label_id in labelled_by:
            for label in self.dom.query_css(document, f'[id="{css_string(label_id)}"]')[:1]:
                parts.append(self.dom.text_content(label))
        return normalize_text(" ".join(parts))

    def accessible_name(self, handle: Handle) -> str:
        return self.accessible_label(handle) or normalize_text(self.dom.text_content(handle))

    def _query_role(self, value: str, root: Handle) -> list[Handle]:
        role, _, name = value.partition(":")
        role = role.strip()
        selector = f'[role="{css_string(role)}"]'
        if role in IMPLICIT_ROLE_SELECTORS:
            selector = f"{selector}, {IMPLICIT_ROLE_SELECTORS[role]}"
        matches = self.dom.query_css(root, selector)
        if not name.strip():
            return matches
        return [handle for handle in matches if text_matches(name, self.accessible_name(handle))]

    def _query_text(self, value: str, root: Handle, tag_name: str | None) -> list[Handle]:
        selector = tag_name or TEXT_BEARING_SELECTOR
        found = []
        for handle in self.dom.query_css(root, selector):
            own_text = normalize_text(self.dom.direct_text(handle))
            if not own_text and tag_name:
                own_text = normalize_text(self.dom.text_content(handle))
            if not own_text:
                attrs = self.dom.attributes(handle)
                own_text = attrs.get("value") or attrs.get("aria-label") or attrs.get("title") or ""
            if text_matches(value, own_text):
                found.append(handle)
        return found
