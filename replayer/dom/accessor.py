from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Hashable, Protocol

if TYPE_CHECKING:
    from replayer.core.metadata import ElementState

Handle = Any

LANDMARK_TAGS = ("form", "nav", "main", "header", "footer", "aside", "dialog", "section")
HEADING_SELECTOR = "h1, h2, h3, h4, h5, h6, [role='heading']"


class DomAccessor(Protocol):
    """Narrow read interface over a live or snapshot DOM.

    Query results are always descendants of the root passed in (the root itself
    excluded). Backends translate their own selector errors into
    ``InvalidStrategy``, vanished handles into ``StaleElement`` and any other
    driver failure into ``DomAccessError``.
    """

    def document_root(self) -> Handle | None: ...

    def query_css(self, root: Handle, selector: str) -> list[Handle]: ...

    def query_xpath(self, root: Handle, expression: str) -> list[Handle]: ...

    def tag_name(self, handle: Handle) -> str: ...

    def attributes(self, handle: Handle) -> dict[str, str]: ...

    def text_content(self, handle: Handle) -> str: ...

    def direct_text(self, handle: Handle) -> str: ...

    def parent(self, handle: Handle) -> Handle | None: ...

    def children(self, handle: Handle) -> list[Handle]: ...

    def contains(self, ancestor: Handle, handle: Handle) -> bool: ...

    def element_key(self, handle: Handle) -> Hashable: ...

    def document_order(self, handle: Handle) -> int: ...

    def element_state(self, handle: Handle) -> ElementState: ...

    def is_attached(self, handle: Handle) -> bool: ...

    def frame_root(self, frame: Handle) -> Handle | None: ...

    def shadow_root(self, host: Handle) -> Handle | None: ...

    def host_of(self, handle: Handle) -> tuple[str, Handle] | None: ...

    def current_url(self) -> str: ...

    def title(self) -> str: ...

    def fingerprint(self, root: Handle) -> tuple[int, int]: ...

    def pending_requests(self) -> int: ...

    def scroll_into_view(self, handle: Handle) -> None: ...

    def page_source(self) -> str: ...


def css_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def css_identifier(value: str) -> str:
    escaped: list[str] = []
    for index, char in enumerate(value):
        leading_digit = index == 0 and char.isdigit()
        if (char.isalnum() or char in ("-", "_")) and not leading_digit:
            escaped.append(char)
        else:
            escaped.append(f"\\{ord(char):x} ")
    return "".join(escaped)


def xpath_literal(value: str) -> str:
    if "'" not in value:
        return f"'{value}'"
    if '"' not in value:
        return f'"{value}"'
    pieces = value.split("'")
    return "concat(" + ", \"'\", ".join(f"'{piece}'" for piece in pieces) + ")"


def class_tokens(dom: DomAccessor, handle: Handle) -> list[str]:
    return [token for token in dom.attributes(handle).get("class", "").split() if token]


def ancestors(dom: DomAccessor, handle: Handle) -> list[Handle]:
    chain: list[Handle] = []
    current = dom.parent(handle)
    while current is not None:
        chain.append(current)
        current = dom.parent(current)
    return chain


def closest(
    dom: DomAccessor,
    handle: Handle,
    predicate: Callable[[Handle], bool],
    include_self: bool = False,
) -> Handle | None:
    if include_self and predicate(handle):
        return handle
    for ancestor in ancestors(dom, handle):
        if predicate(ancestor):
            return ancestor
    return None


def first_visible(dom: DomAccessor, handles: list[Handle]) -> Handle | None:
    for handle in handles:
        if dom.element_state(handle).visible:
            return handle
    return None


def same_tag_index(dom: DomAccessor, handle: Handle) -> tuple[int, int]:
    """Returns the 1-based index among same-tag siblings and the sibling count."""

    parent = dom.parent(handle)
    if parent is None:
        return 1, 1
    tag = dom.tag_name(handle)
    key = dom.element_key(handle)
    siblings = [child for child in dom.children(parent) if dom.tag_name(child) == tag]
    for position, sibling in enumerate(siblings, start=1):
        if dom.element_key(sibling) == key:
            return position, len(siblings)
    return 1, len(siblings)
