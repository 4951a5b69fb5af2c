from __future__ import annotations

from pathlib import Path
from typing import Hashable

import lxml.html
from cssselect import SelectorError
from lxml import etree
from lxml.cssselect import CSSSelector

from replayer.core.exceptions import InvalidStrategy, StaleElement
from replayer.core.metadata import DETACHED, ElementState
from replayer.utils.scoring import normalize_text

_NEVER_RENDERED = {"head", "script", "style", "noscript", "template", "title", "meta", "link"}
_DISABLEABLE = {"button", "input", "select", "textarea", "option", "optgroup", "fieldset"}


def _inline_style(element: etree._Element) -> dict[str, str]:
    declarations: dict[str, str] = {}
    for chunk in element.get("style", "").split(";"):
        name, _, value = chunk.partition(":")
        if value:
            declarations[name.strip().lower()] = value.strip().lower()
    return declarations


def _is_shadow_template(element: etree._Element) -> bool:
    return element.tag == "template" and element.get("shadowrootmode") is not None


class SnapshotDom:
    """In-memory DOM over an lxml tree, with enough page state to drive replays offline.

    Visibility is derived from markup only: the ``hidden`` attribute, inline
    ``display``/``visibility``/``opacity`` styles and hidden inputs, inherited from
    ancestors. Declarative shadow roots (``<template shadowrootmode>``) and iframe
    ``srcdoc`` documents are supported as scope boundaries.
    """

    def __init__(self, html: str, url: str = "about:blank") -> None:
        self.url = url
        self.active_requests = 0
        self.scrolled: list[etree._Element] = []
        self._focused: etree._Element | None = None
        self._frames: dict[etree._Element, etree._Element] = {}
        self._frame_owners: dict[etree._Element, etree._Element] = {}
        self._document = lxml.html.document_fromstring(html)

    @classmethod
    def from_file(cls, path: str | Path, url: str = "about:blank") -> SnapshotDom:
        return cls(Path(path).read_text(encoding="utf-8"), url=url)

    # DomAccessor

    def document_root(self) -> etree._Element | None:
        return self._document.body

    def query_css(self, root: etree._Element, selector: str) -> list[etree._Element]:
        try:
            matcher = CSSSelector(selector, translator="html")
        except SelectorError as exc:
            raise InvalidStrategy(f"invalid css selector {selector!r}: {exc}") from exc
        return self._within(root, matcher(root))

    def query_xpath(self, root: etree._Element, expression: str) -> list[etree._Element]:
        try:
            matches = root.xpath(expression)
        except etree.XPathError as exc:
            raise InvalidStrategy(f"invalid xpath {expression!r}: {exc}") from exc
        if not isinstance(matches, list):
            return []
        elements = [item for item in matches if isinstance(item, etree._Element)]
        return self._within(root, elements)

    def tag_name(self, handle: etree._Element) -> str:
        return str(handle.tag).lower()

    def attributes(self, handle: etree._Element) -> dict[str, str]:
        return dict(handle.attrib)

    def text_content(self, handle: etree._Element) -> str:
        return handle.text_content()

    def direct_text(self, handle: etree._Element) -> str:
        parts = [handle.text or ""]
        parts.extend(child.tail or "" for child in handle)
        return "".join(parts)

    def parent(self, handle: etree._Element) -> etree._Element | None:
        return handle.getparent()

    def children(self, handle: etree._Element) -> list[etree._Element]:
        return [child for child in handle if isinstance(child.tag, str)]

    def contains(self, ancestor: etree._Element, handle: etree._Element) -> bool:
        if handle is ancestor:
            return True
        return any(item is ancestor for item in handle.iterancestors())

    def element_key(self, handle: etree._Element) -> Hashable:
        return handle

    def document_order(self, handle: etree._Element) -> int:
        tree_root = handle.getroottree().getroot()
        for index, element in enumerate(tree_root.iter()):
            if element is handle:
                return index
        raise StaleElement("element is no longer part of its document")

    def element_state(self, handle: etree._Element) -> ElementState:
        if not self.is_attached(handle):
            return DETACHED
        attrs = self.attributes(handle)
        return ElementState(
            attached=True,
            visible=self._is_visible(handle),
            enabled=self._is_enabled(handle),
            checked=self._is_checked(handle),
            focused=handle is self._focused,
            value=self._value(handle),
            text=normalize_text(handle.text_content()),
            attributes=attrs,
        )

    def is_attached(self, handle: etree._Element) -> bool:
        tree_root = handle.getroottree().getroot()
        if tree_root is self._document:
            return any(item is self._document for item in [handle, *handle.iterancestors()])
        owner = self._frame_owners.get(tree_root)
        return owner is not None and self.is_attached(owner)

    def frame_root(self, frame: etree._Element) -> etree._Element | None:
        if frame in self._frames:
            return self._frames[frame].body
        srcdoc = frame.get("srcdoc")
        if frame.tag not in ("iframe", "frame") or srcdoc is None:
            return None
        return self.attach_frame(frame, srcdoc)

    def shadow_root(self, host: etree._Element) -> etree._Element | None:
        for child in host:
            if isinstance(child.tag, str) and _is_shadow_template(child):
                return child
        return None

    def host_of(self, handle: etree._Element) -> tuple[str, etree._Element] | None:
        for ancestor in handle.iterancestors():
            if _is_shadow_template(ancestor):
                return ("shadow", ancestor.getparent())
        owner = self._frame_owners.get(handle.getroottree().getroot())
        return ("iframe", owner) if owner is not None else None

    def current_url(self) -> str:
        return self.url

    def title(self) -> str:
        found = self._document.find(".//title")
        return normalize_text(found.text_content()) if found is not None else ""

    def fingerprint(self, root: etree._Element) -> tuple[int, int]:
        count = sum(1 for _ in root.iter())
        return (count, len(etree.tostring(root, encoding="unicode", method="html")))

    def pending_requests(self) -> int:
        return self.active_requests

    def scroll_into_view(self, handle: etree._Element) -> None:
        self.scrolled.append(handle)

    def page_source(self) -> str:
        return lxml.html.tostring(self._document, encoding="unicode")

    # Page simulation

    def find(self, selector: str) -> etree._Element:
        matches = self.query_css(self._document, selector)
        if not matches:
            raise LookupError(f"no element matches {selector!r}")
        return matches[0]

    def navigate(self, url: str, html: str | None = None) -> None:
        self.url = url
        if html is not None:
            self._document = lxml.html.document_fromstring(html)
            self._frames.clear()
            self._frame_owners.clear()
            self._focused = None

    def attach_frame(self, frame: etree._Element, html: str) -> etree._Element:
        document = lxml.html.document_fromstring(html)
        self._frames[frame] = document
        self._frame_owners[document] = frame
        return document.body

    def set_title(self, title: str) -> None:
        head = self._document.find("head")
        if head is None:
            head = etree.SubElement(self._document, "head")
            self._document.insert(0, head)
        found = head.find("title")
        if found is None:
            found = etree.SubElement(head, "title")
        found.text = title

    def set_attribute(self, handle: etree._Element, name: str, value: str = "") -> None:
        handle.set(name, value)

    def remove_attribute(self, handle: etree._Element, name: str) -> None:
        handle.attrib.pop(name, None)

    def set_text(self, handle: etree._Element, text: str) -> None:
        for child in list(handle):
            handle.remove(child)
        handle.text = text

    def append_html(self, parent: etree._Element, html: str) -> etree._Element:
        fragment = lxml.html.fragment_fromstring(html)
        parent.append(fragment)
        return fragment

    def remove(self, handle: etree._Element) -> None:
        parent = handle.getparent()
        if parent is None:
            return
        # Keep trailing text in place when the element goes away.
        if handle.tail:
            previous = handle.getprevious()
            if previous is not None:
                previous.tail = (previous.tail or "") + handle.tail
            else:
                parent.text = (parent.text or "") + handle.tail
        parent.remove(handle)

    def focus(self, handle: etree._Element | None) -> None:
        self._focused = handle

    def start_request(self) -> None:
        self.active_requests += 1

    def finish_request(self) -> None:
        self.active_requests = max(0, self.active_requests - 1)

    # Internals

    def _within(self, root: etree._Element, matches: list[etree._Element]) -> list[etree._Element]:
        boundary = self._shadow_boundary(root, include_self=True)
        return [
            item
            for item in matches
            if item is not root
            and self.contains(root, item)
            and self._shadow_boundary(item) is boundary
        ]

    @staticmethod
    def _shadow_boundary(
        handle: etree._Element, include_self: bool = False
    ) -> etree._Element | None:
        if include_self and _is_shadow_template(handle):
            return handle
        for ancestor in handle.iterancestors():
            if _is_shadow_template(ancestor):
                return ancestor
        return None

    def _is_visible(self, handle: etree._Element) -> bool:
        if handle.tag == "input" and handle.get("type", "").lower() == "hidden":
            return False
        for element in [handle, *handle.iterancestors()]:
            if _is_shadow_template(element):
                continue
            if element.tag in _NEVER_RENDERED or element.get("hidden") is not None:
                return False
            style = _inline_style(element)
            if style.get("display") == "none" or style.get("visibility") == "hidden":
                return False
            if style.get("opacity") in ("0", "0.0"):
                return False
        return True

    def _is_enabled(self, handle: etree._Element) -> bool:
        if handle.get("aria-disabled", "").lower() == "true":
            return False
        if handle.tag in _DISABLEABLE and handle.get("disabled") is not None:
            return False
        if handle.tag in _DISABLEABLE:
            for ancestor in handle.iterancestors("fieldset"):
                if ancestor.get("disabled") is not None:
                    return False
        return True

    @staticmethod
    def _is_checked(handle: etree._Element) -> bool:
        if handle.tag == "input" and handle.get("checked") is not None:
            return True
        if handle.tag == "option" and handle.get("selected") is not None:
            return True
        return handle.get("aria-checked", "").lower() == "true"

    @staticmethod
    def _value(handle: etree._Element) -> str:
        if handle.tag == "textarea":
            return handle.text_content()
        if handle.tag == "select":
            options = handle.findall(".//option")
            chosen = [item for item in options if item.get("selected") is not None] or options[:1]
            if not chosen:
                return ""
            return chosen[0].get("value", normalize_text(chosen[0].text_content()))
        return handle.get("value", "")
