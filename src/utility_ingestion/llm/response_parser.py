"""Recover a JSON object from free-form LLM output."""
from __future__ import annotations

import json
import re

_FENCED = re.compile(r'```(?:json)?\s*\n(.*?)\n\s*```', re.DOTALL)


def _as_object(candidate: str) -> dict | None:
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def extract_json_from_response(text: str) -> dict:
    """Extract a JSON object from LLM response text.

    Tries the whole text, then a fenced ```json block, then the span from the
    first ``{`` to the last ``}``.  Raises ``ValueError`` when none parses to
    an object.
    """
    text = (text or "").strip()

    parsed = _as_object(text)
    if parsed is not None:
        return parsed

    fenced = _FENCED.search(text)
    if fenced:
        parsed = _as_object(fenced.group(1))
        if parsed is not None:
            return parsed

    first_brace = text.find('{')
    last_brace = text.rfind('}')
    if first_brace != -1 and last_brace > first_brace:
        parsed = _as_object(text[first_brace:last_brace + 1])
        if parsed is not None:
            return parsed

    raise ValueError(f"Could not extract JSON from response: {text[:200]}...")
