from __future__ import annotations

import re

import orjson

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def extract_json_object(text: str) -> dict | None:
    """Pull the outermost ``{...}`` block out of a free-text reply."""
    if not text:
        return None
    match = _JSON_OBJECT.search(text)
    if not match:
        return None
    try:
        payload = orjson.loads(match.group(0))
    except orjson.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    return payload


def contains_any(text: str, phrases: list[str] | tuple[str, ...]) -> list[str]:
    lowered = text.lower()
    return [phrase for phrase in phrases if phrase in lowered]
