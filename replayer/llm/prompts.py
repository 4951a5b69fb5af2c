from __future__ import annotations

import json
from typing import Any

SYSTEM_PROMPT = """You help a web replay engine find an element it could not re-identify.
You receive the locator bundle recorded for the element, why resolution failed, and the
candidates the engine saw with their scores and matched strategies.
Return exactly one selector that singles out the intended element and nothing else.
Rules:
1. Only use tags, attributes and text that appear in the candidate data.
2. Prefer a CSS selector built on stable attributes (test ids, aria labels, names).
3. Fall back to an XPath only when no CSS selector is unique.
4. Never anchor on generated class names or numeric ids.
5. Output a single line: no explanation, no quotes, no markdown."""


def build_user_prompt(payload: dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, sort_keys=True)
