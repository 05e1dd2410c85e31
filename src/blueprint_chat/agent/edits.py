"""Extraction of proposed field edits from assistant text."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from blueprint_chat.errors import ExtractionError
from blueprint_chat.gateway.json_extract import balanced_object
from blueprint_chat.obs.logging import get_logger
from blueprint_chat.types import PendingEdit

logger = get_logger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?[ \t]*\n?([\s\S]*?)```")
_EDIT_MARKER = '"isEdit"'
_FENCE = "```"
_MAX_PREVIEW_CHARS = 100


@dataclass(slots=True)
class EditExtraction:
    text: str
    edits: list[PendingEdit] = field(default_factory=list)
    block_found: bool = False

    @property
    def extraction_failed(self) -> bool:
        """A structured edit block was present but produced no edits."""
        return self.block_found and not self.edits


def extract_edits(text: str) -> EditExtraction:
    """Pull `isEdit` proposals out of free-form model output.

    The first fenced block mentioning `isEdit` is used; without any fenced
    block, the first bare JSON object mentioning it. Both the single-edit and
    the `edits`-array shapes are accepted, and candidates lacking `section`
    or `fieldPath` are dropped one by one. When edits are found the block is
    cut out of the returned text; otherwise the text is returned unchanged.
    """
    located = _locate_block(text)
    if located is None:
        return EditExtraction(text=text)

    span, body = located
    try:
        data = _parse_block(body)
    except ExtractionError as exc:
        logger.warning("Edit block could not be parsed: %s", exc)
        return EditExtraction(text=text, block_found=True)

    if data.get("isEdit") is not True:
        return EditExtraction(text=text)

    edits = [
        edit
        for edit in (_to_pending_edit(candidate) for candidate in _candidates(data))
        if edit is not None
    ]
    if not edits:
        logger.warning("Edit block contained no usable edits")
        return EditExtraction(text=text, block_found=True)

    start, end = span
    remaining = (text[:start] + text[end:]).strip()
    return EditExtraction(text=remaining, edits=edits, block_found=True)


def diff_preview(old_value: Any, new_value: Any) -> str:
    return f"- Old: {_format_value(old_value)}\n+ New: {_format_value(new_value)}"


class ProseFilter:
    """Streams the prose part of an edit response and holds back the JSON block.

    Everything from the first code fence onward is withheld, and so is a bare
    JSON object carrying `"isEdit"`. An object is buffered from its opening
    brace until it either shows the marker (withheld for good) or closes
    without it (released as prose). Up to two trailing backticks are buffered
    so a fence split across deltas is still recognised.
    """

    def __init__(self) -> None:
        self._pending = ""
        self._holding = False

    def feed(self, delta: str) -> str:
        if self._holding:
            return ""
        self._pending += delta
        visible: list[str] = []
        while not self._holding:
            fence_at = self._pending.find(_FENCE)
            brace_at = self._pending.find("{")
            if fence_at != -1 and (brace_at == -1 or fence_at < brace_at):
                visible.append(self._pending[:fence_at])
                self._hold()
            elif brace_at != -1:
                visible.append(self._pending[:brace_at])
                self._pending = self._pending[brace_at:]
                candidate = balanced_object(self._pending, 0)
                if _EDIT_MARKER in (candidate or self._pending):
                    self._hold()
                elif candidate is None:
                    # Object still open; wait for more text.
                    break
                else:
                    visible.append(candidate)
                    self._pending = self._pending[len(candidate):]
            else:
                keep = len(self._pending) - len(self._pending.rstrip("`"))
                keep = min(keep, len(_FENCE) - 1)
                split_at = len(self._pending) - keep
                visible.append(self._pending[:split_at])
                self._pending = self._pending[split_at:]
                break
        return "".join(visible)

    def _hold(self) -> None:
        self._pending = ""
        self._holding = True

    def flush(self) -> str:
        visible = "" if self._holding else self._pending
        self._pending = ""
        return visible


def _locate_block(text: str) -> tuple[tuple[int, int], str] | None:
    fenced_seen = False
    for match in _FENCED_BLOCK.finditer(text):
        fenced_seen = True
        if "isEdit" in match.group(1):
            return match.span(), match.group(1).strip()
    if fenced_seen:
        return None

    marker_at = text.find(_EDIT_MARKER)
    if marker_at == -1:
        return None
    start = text.rfind("{", 0, marker_at)
    while start != -1:
        candidate = balanced_object(text, start)
        if candidate is not None and start + len(candidate) > marker_at:
            return (start, start + len(candidate)), candidate
        start = text.rfind("{", 0, start)
    # Marker present but braces never balance.
    return (marker_at, len(text)), text[marker_at:]


def _parse_block(body: str) -> dict[str, Any]:
    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"invalid JSON in edit block: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise ExtractionError("edit block is not a JSON object")
    return data


def _candidates(data: dict[str, Any]) -> list[Any]:
    edits = data.get("edits")
    if isinstance(edits, list):
        return edits
    return [data]


def _to_pending_edit(candidate: Any) -> PendingEdit | None:
    if not isinstance(candidate, dict):
        return None
    section = candidate.get("section")
    field_path = candidate.get("fieldPath")
    if not section or not field_path:
        return None
    old_value = candidate.get("oldValue")
    new_value = candidate.get("newValue")
    return PendingEdit(
        section=str(section),
        field_path=str(field_path),
        old_value=old_value,
        new_value=new_value,
        explanation=str(candidate.get("explanation") or ""),
        diff_preview=diff_preview(old_value, new_value),
    )


def _format_value(value: Any) -> str:
    if isinstance(value, str):
        if len(value) > _MAX_PREVIEW_CHARS:
            return f'"{value[: _MAX_PREVIEW_CHARS - 3]}..."'
        return f'"{value}"'
    if isinstance(value, list):
        if not value:
            return "[]"
        if isinstance(value[0], str):
            return "[" + ", ".join(f'"{item}"' for item in value) + "]"
        return f"[{len(value)} items]"
    if isinstance(value, dict):
        return json.dumps(value, indent=2)
    if isinstance(value, bool) or value is None:
        return json.dumps(value)
    return str(value)
