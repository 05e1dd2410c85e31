"""Best-effort recovery of a JSON object from model text."""

from __future__ import annotations

import json
import re
from typing import Any

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def extract_json_object(content: str) -> dict[str, Any] | None:
    """Return the first JSON object recoverable from `content`.

    Tried in order: the whole text, the first fenced code block, and a
    balanced-brace scan from the first `{`. Returns None when nothing parses
    to an object.
    """
    if not content or not content.strip():
        return None

    trimmed = content.strip()
    candidates = [trimmed]

    fenced = _FENCED_BLOCK.search(content)
    if fenced:
        candidates.append(fenced.group(1).strip())

    first_brace = trimmed.find("{")
    if first_brace != -1:
        balanced = balanced_object(trimmed, first_brace)
        if balanced:
            candidates.append(balanced)

    for candidate in candidates:
        parsed = _loads_object(candidate)
        if parsed is not None:
            return parsed
    return None


def balanced_object(text: str, start: int) -> str | None:
    """Slice `text` from `start` (a `{`) up to its matching `}`.

    Braces inside string literals are ignored. Returns None if unbalanced.
    """
    if start >= len(text) or text[start] != "{":
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if escaped:
            escaped = False
            continue
        if char == "\\":
            escaped = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def _loads_object(candidate: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(candidate)
    except (json.JSONDecodeError, TypeError):
        return None
    return parsed if isinstance(parsed, dict) else None
