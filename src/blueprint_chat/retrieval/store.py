"""Chunk store contract and the in-memory reference store."""

from __future__ import annotations

from dataclasses import dataclass
from math import sqrt
from typing import Protocol

from blueprint_chat.types import ContextChunk


class ChunkStore(Protocol):
    """Similarity retrieval over a document's indexed chunks."""

    async def upsert(
        self,
        document_id: str,
        chunks: list[ContextChunk],
        embeddings: list[list[float]],
    ) -> None:
        """Insert or replace chunk vectors for a document."""

    async def match_chunks(
        self,
        document_id: str,
        query_embedding: list[float],
        *,
        k: int,
        min_similarity: float,
        section_filter: str | None = None,
    ) -> list[ContextChunk]:
        """Top-k chunks of `document_id` with similarity >= `min_similarity`.

        With `section_filter`, only chunks of that section are considered.
        """


@dataclass(slots=True)
class _StoredVector:
    chunk: ContextChunk
    embedding: list[float]


class InMemoryChunkStore:
    """Process-local store keyed by document id; nothing is persisted."""

    def __init__(self) -> None:
        self._documents: dict[str, dict[str, _StoredVector]] = {}

    async def upsert(
        self,
        document_id: str,
        chunks: list[ContextChunk],
        embeddings: list[list[float]],
    ) -> None:
        if len(chunks) != len(embeddings):
            raise ValueError("chunks and embeddings must have the same length")
        records = self._documents.setdefault(document_id, {})
        for chunk, embedding in zip(chunks, embeddings, strict=True):
            records[chunk.chunk_id] = _StoredVector(chunk=chunk, embedding=embedding)

    async def match_chunks(
        self,
        document_id: str,
        query_embedding: list[float],
        *,
        k: int,
        min_similarity: float,
        section_filter: str | None = None,
    ) -> list[ContextChunk]:
        scored = []
        for record in self._documents.get(document_id, {}).values():
            if section_filter is not None and record.chunk.section != section_filter:
                continue
            score = _cosine_similarity(query_embedding, record.embedding)
            if score >= min_similarity:
                scored.append((score, record.chunk))
        scored.sort(key=lambda item: item[0], reverse=True)
        return [
            ContextChunk(
                chunk_id=chunk.chunk_id,
                section=chunk.section,
                field_path=chunk.field_path,
                similarity=score,
                text=chunk.text,
                metadata=dict(chunk.metadata),
            )
            for score, chunk in scored[:k]
        ]


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
