from __future__ import annotations

import re
from difflib import SequenceMatcher

TEXT_MATCH_THRESHOLD = 0.8

_WHITESPACE = re.compile(r"\s+")
_GENERATED_TOKEN_PATTERNS = (
    re.compile(r"\d{4,}"),
    re.compile(r"[a-f0-9]{8,}", re.IGNORECASE),
    re.compile(r"^css-[a-z0-9]+", re.IGNORECASE),
    re.compile(r"^sc-[a-z0-9]+", re.IGNORECASE),
    re.compile(r"^jsx-\d+"),
    re.compile(r"^ng-(?:\d|tns-|star-inserted)"),
    re.compile(r"^_?ngcontent-"),
    re.compile(r"^ember\d+$"),
    re.compile(r"^svelte-[a-z0-9]+$", re.IGNORECASE),
    re.compile(r":r[a-z0-9]+:", re.IGNORECASE),
    re.compile(r"__[a-z0-9]+__", re.IGNORECASE),
    re.compile(r"[_-](?=[a-z]*\d)[a-z0-9]{5,}$", re.IGNORECASE),
)
_DYNAMIC_TEXT_PATTERNS = (
    re.compile(r"^\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4}$"),
    re.compile(r"^\d{4}-\d{2}-\d{2}"),
    re.compile(r"^\d{1,2}:\d{2}(?::\d{2})?\s*(?:am|pm)?$", re.IGNORECASE),
    re.compile(r"^[$€£¥]\s?[\d,.]+$"),
    re.compile(r"^[\d,.]+\s?(?:usd|eur|gbp|[$€£¥])$", re.IGNORECASE),
    re.compile(r"^[\d\s,.%+-]+$"),
    re.compile(r"\b\d+\s+(?:second|minute|hour|day|week|month|year)s?\s+ago\b", re.IGNORECASE),
    re.compile(r"^(?:today|yesterday|tomorrow|just now)\b", re.IGNORECASE),
)


def normalize_text(value: str | None, limit: int | None = None) -> str:
    normalized = _WHITESPACE.sub(" ", value or "").strip()
    if limit is not None:
        normalized = normalized[:limit].rstrip()
    return normalized


def text_similarity(left: str, right: str) -> float:
    if not left and not right:
        return 1.0
    if not left or not right:
        return 0.0
    return SequenceMatcher(a=left.lower(), b=right.lower()).ratio()


def text_matches(expected: str, actual: str, threshold: float = TEXT_MATCH_THRESHOLD) -> bool:
    expected = normalize_text(expected).casefold()
    actual = normalize_text(actual).casefold()
    if not expected or not actual:
        return False
    return expected == actual or text_similarity(expected, actual) >= threshold


def is_generated_token(token: str) -> bool:
    """True for id/class tokens that look emitted by a build tool or framework."""

    return any(pattern.search(token) for pattern in _GENERATED_TOKEN_PATTERNS)


def has_generated_tokens(value: str) -> bool:
    return any(is_generated_token(token) for token in value.split())


def is_likely_dynamic_text(text: str) -> bool:
    text = normalize_text(text)
    if not text:
        return False
    return any(pattern.search(text) for pattern in _DYNAMIC_TEXT_PATTERNS)


def is_fragile_text(text: str) -> bool:
    text = normalize_text(text)
    return len(text) < 3 or is_likely_dynamic_text(text)
