from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from replayer.core.exceptions import InvalidStrategy
from replayer.core.finder import TEST_ID_ATTRIBUTES, CandidateFinder
from replayer.core.locators import (
    LocatorBundle,
    LocatorFeatures,
    LocatorKind,
    LocatorStrategy,
    rank_strategies,
)
from replayer.core.scope import (
    CELL_SELECTOR,
    TITLE_SELECTOR,
    IframeScope,
    ModalScope,
    PageScope,
    Scope,
    SectionScope,
    ShadowRootScope,
    TableRowScope,
    WidgetScope,
)
from replayer.dom.accessor import (
    HEADING_SELECTOR,
    LANDMARK_TAGS,
    ancestors,
    class_tokens,
    css_identifier,
    css_string,
    same_tag_index,
    xpath_literal,
)
from replayer.utils.scoring import (
    is_fragile_text,
    is_generated_token,
    is_likely_dynamic_text,
    normalize_text,
)

if TYPE_CHECKING:
    from replayer.dom.accessor import DomAccessor, Handle

log = logging.getLogger(__name__)

TEXT_LIMIT = 80
NAME_LIMIT = 50
STABLE_CSS_ATTRIBUTES = ("name", "placeholder", "title")
MAX_CLASS_TOKENS = 3
MAX_ATTRIBUTE_VALUE = 60
WIDGET_HINTS = ("widget", "card", "panel")


class FeatureExtractor:
    """Describes a recorded element in every way the resolver can find it again."""

    def __init__(self, dom: DomAccessor, finder: CandidateFinder | None = None) -> None:
        self.dom = dom
        self.finder = finder or CandidateFinder(dom, visible_only=False)

    def extract(self, handle: Handle) -> LocatorBundle:
        tag = self.dom.tag_name(handle)
        attrs = self.dom.attributes(handle)
        drafts: list[tuple[LocatorKind, str, bool, bool]] = []
        drafts.extend(self._css_drafts(tag, attrs))
        drafts.extend(self._text_drafts(handle))
        drafts.extend(self._aria_drafts(handle))
        drafts.extend(self._role_drafts(handle, attrs))
        drafts.extend(self._test_id_drafts(attrs))
        drafts.extend(self._xpath_drafts(handle, tag))
        drafts.extend(self._position_drafts(handle, tag))

        strategies: list[LocatorStrategy] = []
        seen: set[tuple[LocatorKind, str]] = set()
        for kind, value, stable, dynamic in drafts:
            if (kind, value) in seen:
                continue
            seen.add((kind, value))
            count = self._count_matches(kind, value, tag)
            features = LocatorFeatures(
                has_stable_attributes=stable,
                has_dynamic_parts=dynamic,
                unique_match_at_record_time=count == 1,
                match_count_at_record_time=count,
            )
            strategies.append(LocatorStrategy(kind=kind, value=value, features=features))

        return LocatorBundle(
            strategies=tuple(rank_strategies(strategies)),
            scope=self.infer_scope(handle),
            disambiguators=tuple(self.disambiguators(handle)),
            tag_name=tag,
            role=attrs.get("role"),
        )

    def propose(self, handle: Handle, bundle: LocatorBundle) -> list[LocatorStrategy]:
        """Strategies for ``handle`` that ``bundle`` does not have yet, best first."""

        known = {strategy.identity for strategy in bundle.strategies}
        fresh = self.extract(handle).strategies
        return [
            strategy
            for strategy in fresh
            if strategy.identity not in known and strategy.features.unique_match_at_record_time
        ]

    def _count_matches(self, kind: LocatorKind, value: str, tag: str) -> int:
        document = self.dom.document_root()
        if document is None:
            return 0
        probe = LocatorStrategy(kind=kind, value=value)
        try:
            return len(self.finder.query(probe, document, tag))
        except InvalidStrategy:
            log.debug("recorded strategy %s cannot be evaluated", probe.describe())
            return 0

    def _css_drafts(self, tag: str, attrs: dict[str, str]):
        element_id = attrs.get("id", "")
        if element_id:
            dynamic = is_generated_token(element_id)
            yield (LocatorKind.CSS, f"#{css_identifier(element_id)}", not dynamic, dynamic)
        for name, value in attrs.items():
            if not name.startswith("data-") or name in TEST_ID_ATTRIBUTES:
                continue
            if not value or len(value) > MAX_ATTRIBUTE_VALUE or is_generated_token(value):
                continue
            yield (LocatorKind.CSS, f'{tag}[{name}="{css_string(value)}"]', True, False)
            break
        role = attrs.get("role")
        label = attrs.get("aria-label")
        if role and label:
            selector = f'{tag}[role="{css_string(role)}"][aria-label="{css_string(label)}"]'
            yield (LocatorKind.CSS, selector, True, False)
        elif label:
            yield (LocatorKind.CSS, f'{tag}[aria-label="{css_string(label)}"]', True, False)
        for name in STABLE_CSS_ATTRIBUTES:
            value = attrs.get(name)
            if value and not is_generated_token(value):
                selector = f'{tag}[{name}="{css_string(value)}"]'
                if name == "name" and attrs.get("type"):
                    selector = f'{tag}[type="{css_string(attrs["type"])}"][name="{css_string(value)}"]'
                yield (LocatorKind.CSS, selector, True, False)
        tokens = attrs.get("class", "").split()
        stable_tokens = [token for token in tokens if not is_generated_token(token)]
        if stable_tokens:
            classes = "".join(f".{css_identifier(token)}" for token in stable_tokens[:MAX_CLASS_TOKENS])
            yield (LocatorKind.CSS, f"{tag}{classes}", False, False)
        elif tokens:
            classes = "".join(f".{css_identifier(token)}" for token in tokens[:MAX_CLASS_TOKENS])
            yield (LocatorKind.CSS, f"{tag}{classes}", False, True)

    def _own_text(self, handle: Handle) -> str:
        text = normalize_text(self.dom.direct_text(handle))
        if not text and not self.dom.children(handle):
            return ""
        return text or normalize_text(self.dom.text_content(handle))

    def _text_drafts(self, handle: Handle):
        text = normalize_text(self._own_text(handle), limit=TEXT_LIMIT)
        if text:
            yield (LocatorKind.TEXT, text, False, is_fragile_text(text))

    def _aria_drafts(self, handle: Handle):
        label = self.finder.accessible_label(handle)
        if label:
            yield (LocatorKind.ARIA, label, True, is_likely_dynamic_text(label))

    def _role_drafts(self, handle: Handle, attrs: dict[str, str]):
        role = attrs.get("role")
        if not role:
            return
        name = normalize_text(self.finder.accessible_name(handle), limit=NAME_LIMIT)
        value = f"{role}:{name}" if name else role
        yield (LocatorKind.ROLE, value, True, bool(name) and is_likely_dynamic_text(name))

    def _test_id_drafts(self, attrs: dict[str, str]):
        for name in TEST_ID_ATTRIBUTES:
            value = attrs.get(name)
            if value:
                yield (LocatorKind.TEST_ID, value, True, is_generated_token(value))
                return

    def _xpath_drafts(self, handle: Handle, tag: str):
        steps: list[str] = []
        current = handle
        while current is not None:
            anchor = self._xpath_anchor(current)
            if anchor is not None and current is not handle:
                yield (LocatorKind.XPATH, "/".join([anchor, *reversed(steps)]), False, False)
                return
            parent = self.dom.parent(current)
            if parent is None or self.dom.tag_name(parent) in ("body", "html"):
                break
            position, _ = same_tag_index(self.dom, current)
            steps.append(f"{self.dom.tag_name(current)}[{position}]")
            current = parent
        text = normalize_text(self._own_text(handle), limit=TEXT_LIMIT)
        if text and not is_fragile_text(text):
            yield (LocatorKind.XPATH, f"//{tag}[normalize-space()={xpath_literal(text)}]", False, False)

    def _xpath_anchor(self, handle: Handle) -> str | None:
        attrs = self.dom.attributes(handle)
        element_id = attrs.get("id")
        if element_id and not is_generated_token(element_id):
            return f"//*[@id={xpath_literal(element_id)}]"
        for name in TEST_ID_ATTRIBUTES:
            value = attrs.get(name)
            if value and not is_generated_token(value):
                return f"//*[@{name}={xpath_literal(value)}]"
        return None

    def _position_drafts(self, handle: Handle, tag: str):
        parent = self.dom.parent(handle)
        if parent is None:
            return
        position, _ = same_tag_index(self.dom, handle)
        yield (
            LocatorKind.POSITION,
            f"{self.simple_selector(parent)} > {tag}:nth-of-type({position})",
            False,
            False,
        )

    def simple_selector(self, handle: Handle) -> str:
        tag = self.dom.tag_name(handle)
        attrs = self.dom.attributes(handle)
        element_id = attrs.get("id")
        if element_id and not is_generated_token(element_id):
            return f"#{css_identifier(element_id)}"
        for name in (*TEST_ID_ATTRIBUTES, "name"):
            if attrs.get(name):
                return f'{tag}[{name}="{css_string(attrs[name])}"]'
        stable = [token for token in class_tokens(self.dom, handle) if not is_generated_token(token)]
        if stable:
            return f"{tag}.{css_identifier(stable[0])}"
        return tag

    def infer_scope(self, handle: Handle) -> Scope:
        boundary = self._boundary_scope(handle)
        if boundary is not None:
            return boundary
        for ancestor in ancestors(self.dom, handle):
            tag = self.dom.tag_name(ancestor)
            attrs = self.dom.attributes(ancestor)
            classes = attrs.get("class", "").lower()
            if (
                attrs.get("role") in ("dialog", "alertdialog")
                or attrs.get("aria-modal") == "true"
                or tag == "dialog"
                or "modal" in classes.split()
            ):
                selector = self.simple_selector(ancestor) if attrs.get("id") else None
                return ModalScope(selector=selector)
            if tag == "tr" or attrs.get("role") == "row":
                key = self._row_key(ancestor)
                if key:
                    return TableRowScope(key=key)
            if any(hint in classes for hint in WIDGET_HINTS):
                title = self._first_text(ancestor, TITLE_SELECTOR)
                if title:
                    return WidgetScope(title=title)
            if tag in ("section", "article"):
                heading = self._first_text(ancestor, HEADING_SELECTOR)
                if heading:
                    return SectionScope(heading=heading)
        return PageScope()

    def _boundary_scope(self, handle: Handle) -> Scope | None:
        boundary = self.dom.host_of(handle)
        if boundary is None:
            return None
        kind = boundary[0]
        path: list[str] = []
        while boundary is not None and boundary[0] == kind:
            host = boundary[1]
            path.append(self.simple_selector(host))
            boundary = self.dom.host_of(host)
        path.reverse()
        if kind == "shadow":
            return ShadowRootScope(path=tuple(path))
        return IframeScope(path=tuple(path))

    def _row_key(self, row: Handle) -> str:
        cells = self.dom.query_css(row, CELL_SELECTOR)
        for cell in cells:
            text = normalize_text(self.dom.text_content(cell), limit=NAME_LIMIT)
            if text:
                return text
        return ""

    def _first_text(self, root: Handle, selector: str) -> str:
        for match in self.dom.query_css(root, selector):
            text = normalize_text(self.dom.text_content(match), limit=NAME_LIMIT)
            if text:
                return text
        return ""

    def disambiguators(self, handle: Handle) -> list[str]:
        hints: list[str] = []
        position, total = same_tag_index(self.dom, handle)
        if total > 1:
            hints.append(f"index:{position}")
        near = self._near_text(handle)
        if near:
            hints.append(f"near:{near}")
        for ancestor in ancestors(self.dom, handle):
            tag = self.dom.tag_name(ancestor)
            if tag in LANDMARK_TAGS:
                hints.append(f"landmark:{tag}")
                break
        return hints

    def _near_text(self, handle: Handle) -> str:
        parent = self.dom.parent(handle)
        if parent is None:
            return ""
        key = self.dom.element_key(handle)
        previous = None
        for child in self.dom.children(parent):
            if self.dom.element_key(child) == key:
                break
            previous = child
        if previous is not None:
            text = normalize_text(self.dom.text_content(previous), limit=NAME_LIMIT)
            if text:
                return text
        own = normalize_text(self.dom.text_content(handle))
        context = normalize_text(self.dom.text_content(parent))
        if own:
            context = normalize_text(context.replace(own, " ", 1))
        return normalize_text(context, limit=NAME_LIMIT)
