from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from replayer.core.exceptions import InvalidStrategy
from replayer.dom.accessor import HEADING_SELECTOR, closest, first_visible
from replayer.utils.scoring import normalize_text

if TYPE_CHECKING:
    from replayer.dom.accessor import DomAccessor, Handle

log = logging.getLogger(__name__)

MODAL_SELECTORS = (
    "[role='dialog']",
    "[role='alertdialog']",
    "[aria-modal='true']",
    "dialog[open]",
    ".modal",
    "[class*='modal']",
    ".MuiDialog-root",
    "[data-testid*='modal']",
)
ROW_SELECTOR = "tr, [role='row']"
CELL_SELECTOR = "td, th, [role='cell'], [role='gridcell'], [role='columnheader']"
WIDGET_SELECTOR = (
    "[class*='widget'], [class*='card'], [class*='panel'], [role='region'], gridster-item"
)
SECTION_TAGS = {"section", "article", "fieldset", "form", "main", "aside"}
TITLE_SELECTOR = f"{HEADING_SELECTOR}, [class*='title'], [class*='header']"


class _ScopeModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class PageScope(_ScopeModel):
    kind: Literal["page"] = "page"


class ModalScope(_ScopeModel):
    kind: Literal["modal"] = "modal"
    selector: str | None = None


class IframeScope(_ScopeModel):
    kind: Literal["iframe"] = "iframe"
    path: tuple[str, ...]

    @field_validator("path")
    @classmethod
    def validate_path(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            raise ValueError("iframe scope needs at least one frame selector")
        return value


class SectionScope(_ScopeModel):
    kind: Literal["section"] = "section"
    selector: str | None = None
    heading: str | None = None

    @model_validator(mode="after")
    def validate_locator(self) -> SectionScope:
        if not self.selector and not self.heading:
            raise ValueError("section scope needs a selector or a heading")
        return self


class TableRowScope(_ScopeModel):
    kind: Literal["table_row"] = "table_row"
    key: str
    column: str | None = None
    table_selector: str | None = None


class ContainerScope(_ScopeModel):
    kind: Literal["container"] = "container"
    selector: str
    fallback_text: str | None = None


class WidgetScope(_ScopeModel):
    kind: Literal["widget"] = "widget"
    selector: str | None = None
    title: str | None = None

    @model_validator(mode="after")
    def validate_locator(self) -> WidgetScope:
        if not self.selector and not self.title:
            raise ValueError("widget scope needs a selector or a title")
        return self


class ShadowRootScope(_ScopeModel):
    kind: Literal["shadow_root"] = "shadow_root"
    path: tuple[str, ...]

    @field_validator("path")
    @classmethod
    def validate_path(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            raise ValueError("shadow root scope needs at least one host selector")
        return value


Scope = Annotated[
    Union[
        PageScope,
        ModalScope,
        IframeScope,
        SectionScope,
        TableRowScope,
        ContainerScope,
        WidgetScope,
        ShadowRootScope,
    ],
    Field(discriminator="kind"),
]

_WIDENABLE = (ModalScope, SectionScope, TableRowScope, ContainerScope, WidgetScope)


def widen_scope(scope: Scope | None) -> Scope | None:
    """Returns the next enclosing scope, or None when there is nothing wider to try.

    Frames and shadow roots are hard boundaries: their content is not reachable
    from the page document, so they never widen.
    """

    if isinstance(scope, _WIDENABLE):
        return PageScope()
    return None


def describe_scope(scope: Scope | None) -> str:
    if scope is None or isinstance(scope, PageScope):
        return "page"
    if isinstance(scope, ModalScope):
        return f"modal({scope.selector or 'any'})"
    if isinstance(scope, (IframeScope, ShadowRootScope)):
        return f"{scope.kind}({' >> '.join(scope.path)})"
    if isinstance(scope, SectionScope):
        return f"section({scope.selector or scope.heading})"
    if isinstance(scope, TableRowScope):
        return f"table_row({scope.key})"
    if isinstance(scope, ContainerScope):
        return f"container({scope.selector})"
    return f"widget({scope.selector or scope.title})"


def resolve_scope_root(dom: DomAccessor, scope: Scope | None) -> Handle | None:
    """Resolves a scope to the root of its subtree, or None when it is not on the page."""

    document = dom.document_root()
    if document is None:
        return None
    if scope is None or isinstance(scope, PageScope):
        return document
    if isinstance(scope, ModalScope):
        return _resolve_modal(dom, document, scope)
    if isinstance(scope, IframeScope):
        return _walk_boundaries(dom, document, scope.path, dom.frame_root)
    if isinstance(scope, ShadowRootScope):
        return _walk_boundaries(dom, document, scope.path, dom.shadow_root)
    if isinstance(scope, SectionScope):
        return _resolve_section(dom, document, scope)
    if isinstance(scope, TableRowScope):
        return _resolve_table_row(dom, document, scope)
    if isinstance(scope, ContainerScope):
        return _resolve_container(dom, document, scope)
    return _resolve_widget(dom, document, scope)


def _query(dom: DomAccessor, root: Handle, selector: str) -> list[Handle]:
    try:
        return dom.query_css(root, selector)
    except InvalidStrategy as exc:
        log.warning("scope selector %r rejected: %s", selector, exc)
        return []


def _resolve_modal(dom: DomAccessor, document: Handle, scope: ModalScope) -> Handle | None:
    selectors = (scope.selector,) if scope.selector else MODAL_SELECTORS
    for selector in selectors:
        match = first_visible(dom, _query(dom, document, selector))
        if match is not None:
            return match
    return None


def _walk_boundaries(dom: DomAccessor, document: Handle, path, enter) -> Handle | None:
    root = document
    for selector in path:
        hosts = _query(dom, root, selector)
        if not hosts:
            return None
        root = enter(hosts[0])
        if root is None:
            return None
    return root


def _resolve_section(dom: DomAccessor, document: Handle, scope: SectionScope) -> Handle | None:
    if scope.selector:
        match = first_visible(dom, _query(dom, document, scope.selector))
        if match is not None or not scope.heading:
            return match
    wanted = normalize_text(scope.heading).casefold()
    for heading in _query(dom, document, HEADING_SELECTOR):
        if wanted not in normalize_text(dom.text_content(heading)).casefold():
            continue
        section = closest(dom, heading, lambda handle: _is_section(dom, handle))
        return section if section is not None else dom.parent(heading)
    return None


def _is_section(dom: DomAccessor, handle: Handle) -> bool:
    if dom.tag_name(handle) in SECTION_TAGS:
        return True
    classes = dom.attributes(handle).get("class", "").lower()
    return "section" in classes or "card" in classes


def _resolve_table_row(dom: DomAccessor, document: Handle, scope: TableRowScope) -> Handle | None:
    tables = _query(dom, document, scope.table_selector) if scope.table_selector else [document]
    wanted = normalize_text(scope.key).casefold()
    for table in tables:
        column_index = _column_index(dom, table, scope.column) if scope.column else None
        for row in _query(dom, table, ROW_SELECTOR):
            cells = _query(dom, row, CELL_SELECTOR)
            if column_index is not None:
                cells = cells[column_index : column_index + 1]
            if any(wanted in normalize_text(dom.text_content(cell)).casefold() for cell in cells):
                return row
    return None


def _column_index(dom: DomAccessor, table: Handle, column: str) -> int | None:
    wanted = normalize_text(column).casefold()
    for header in _query(dom, table, "thead tr, tr"):
        cells = _query(dom, header, "th, [role='columnheader']")
        for index, cell in enumerate(cells):
            if normalize_text(dom.text_content(cell)).casefold() == wanted:
                return index
    return None


def _resolve_container(dom: DomAccessor, document: Handle, scope: ContainerScope) -> Handle | None:
    match = first_visible(dom, _query(dom, document, scope.selector))
    if match is not None or not scope.fallback_text:
        return match
    wanted = normalize_text(scope.fallback_text).casefold()
    # The last match in document order is the innermost container holding the text.
    innermost = None
    for container in _query(dom, document, "div, section, article, form, fieldset"):
        if wanted in normalize_text(dom.text_content(container)).casefold():
            innermost = container
    return innermost


def _resolve_widget(dom: DomAccessor, document: Handle, scope: WidgetScope) -> Handle | None:
    if scope.selector:
        match = first_visible(dom, _query(dom, document, scope.selector))
        if match is not None or not scope.title:
            return match
    wanted = normalize_text(scope.title).casefold()
    innermost = None
    for widget in _query(dom, document, WIDGET_SELECTOR):
        titles = _query(dom, widget, TITLE_SELECTOR)
        if any(wanted in normalize_text(dom.text_content(title)).casefold() for title in titles):
            innermost = widget
    return innermost
