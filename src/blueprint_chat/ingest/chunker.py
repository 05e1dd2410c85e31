"""Field-level chunking of blueprint documents for retrieval."""

from __future__ import annotations

import json
import re
from hashlib import sha1
from typing import Any

from blueprint_chat.types import BLUEPRINT_SECTIONS, ContextChunk

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


class BlueprintChunker:
    """Turns each section of a blueprint into independently retrievable chunks.

    Strategy per top-level field of a section:
    - scalars become one chunk;
    - lists become one chunk per item (`field[i]`), so a single pain point or
      competitor can be retrieved on its own;
    - objects become one chunk of flattened `key: value` lines.

    Sections are visited in blueprint order, then any unknown sections.
    Chunk ids are stable for a given (document, section, field path).
    """

    def __init__(self, max_chars: int = 1200) -> None:
        self.max_chars = max_chars

    def chunk_document(self, document_id: str, document: dict[str, Any]) -> list[ContextChunk]:
        chunks: list[ContextChunk] = []
        for section in _ordered_sections(document):
            fields = document.get(section)
            if not isinstance(fields, dict):
                continue
            title = BLUEPRINT_SECTIONS.get(section, humanize(section))
            for field_name, value in fields.items():
                for field_path, text in self._field_texts(field_name, value):
                    if not text.strip():
                        continue
                    chunks.append(
                        ContextChunk(
                            chunk_id=_chunk_id(document_id, section, field_path),
                            section=section,
                            field_path=field_path,
                            similarity=0.0,
                            text=self._truncate(f"{title} / {humanize(field_name)}: {text}"),
                            metadata={
                                "sectionTitle": title,
                                "fieldDescription": humanize(field_name),
                            },
                        )
                    )
        return chunks

    def _field_texts(self, field_name: str, value: Any) -> list[tuple[str, str]]:
        if isinstance(value, list):
            return [
                (f"{field_name}[{index}]", flatten_value(item))
                for index, item in enumerate(value)
                if item not in (None, "", [], {})
            ]
        if value is None:
            return []
        return [(field_name, flatten_value(value))]

    def _truncate(self, text: str) -> str:
        if len(text) <= self.max_chars:
            return text
        return text[: self.max_chars - 3] + "..."


def flatten_value(value: Any) -> str:
    """Readable single-string rendering of a JSON value."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        parts = []
        for key, item in value.items():
            if item in (None, "", [], {}):
                continue
            parts.append(f"{humanize(key)}: {flatten_value(item)}")
        return "; ".join(parts)
    if isinstance(value, list):
        return ", ".join(flatten_value(item) for item in value)
    if isinstance(value, bool) or value is None:
        return json.dumps(value)
    return str(value)


def humanize(key: str) -> str:
    """`recommendedPositioning` -> `Recommended Positioning`."""
    words = _CAMEL_BOUNDARY.sub(" ", key).replace("_", " ").split()
    return " ".join(word[:1].upper() + word[1:] for word in words)


def _ordered_sections(document: dict[str, Any]) -> list[str]:
    known = [section for section in BLUEPRINT_SECTIONS if section in document]
    extra = [section for section in document if section not in BLUEPRINT_SECTIONS]
    return known + extra


def _chunk_id(document_id: str, section: str, field_path: str) -> str:
    digest = sha1(f"{document_id}:{section}:{field_path}".encode("utf-8")).hexdigest()[:12]
    return f"{document_id}-{section}-{digest}"
