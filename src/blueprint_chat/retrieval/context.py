"""Hybrid grounding context: retrieved chunks when possible, summary otherwise."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from blueprint_chat.config import RetrievalConfig
from blueprint_chat.ingest.embedder import Embedder
from blueprint_chat.obs.logging import get_logger
from blueprint_chat.retrieval.store import ChunkStore
from blueprint_chat.retrieval.summary import summarize_document
from blueprint_chat.types import BLUEPRINT_SECTIONS, ContextChunk, ContextSource

logger = get_logger(__name__)

# Per-token embedding price; tokens approximated as 4 characters.
_EMBEDDING_COST_PER_TOKEN = 0.00002


@dataclass(slots=True)
class BuiltContext:
    source: ContextSource
    text: str
    chunks: list[ContextChunk] = field(default_factory=list)
    rag_cost: float = 0.0


class ContextBuilder:
    """Builds the grounding text for one chat turn.

    With a document id the query is embedded and matched against the indexed
    chunks, first within `section_filter` when one is given and then across
    the whole document if that section has no match. No id, no matches, or
    any retrieval failure falls back to the deterministic document summary,
    so `build` does not raise.
    """

    def __init__(
        self,
        embedder: Embedder,
        store: ChunkStore,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.config = config or RetrievalConfig()

    async def build(
        self,
        document: dict[str, Any],
        query: str,
        document_id: str | None = None,
        *,
        section_filter: str | None = None,
    ) -> BuiltContext:
        if document_id:
            try:
                chunks = await self._retrieve(document_id, query, section_filter)
            except Exception as exc:
                logger.warning(
                    "Retrieval failed for document %s, using summary: %s", document_id, exc
                )
            else:
                if chunks:
                    return BuiltContext(
                        source="rag",
                        text=build_context_from_chunks(chunks),
                        chunks=chunks,
                        rag_cost=estimate_embedding_cost(query),
                    )
                logger.info("No chunks matched for document %s, using summary", document_id)

        return BuiltContext(source="summary", text=summarize_document(document))

    async def _retrieve(
        self, document_id: str, query: str, section_filter: str | None
    ) -> list[ContextChunk]:
        query_embedding = await self.embedder.embed_query(query)
        if section_filter is not None:
            chunks = await self._match(document_id, query_embedding, section_filter)
            if chunks:
                return chunks
            logger.info(
                "No chunks matched in section %s, searching the whole document", section_filter
            )
        return await self._match(document_id, query_embedding, None)

    async def _match(
        self, document_id: str, query_embedding: list[float], section_filter: str | None
    ) -> list[ContextChunk]:
        return await self.store.match_chunks(
            document_id,
            query_embedding,
            k=self.config.top_k,
            min_similarity=self.config.min_similarity,
            section_filter=section_filter,
        )


def build_context_from_chunks(chunks: list[ContextChunk]) -> str:
    """Number chunks and tag each with its section, field and relevance."""
    if not chunks:
        return "No relevant context found in the blueprint."

    blocks = []
    for index, chunk in enumerate(chunks, start=1):
        title = chunk.metadata.get("sectionTitle") or BLUEPRINT_SECTIONS.get(
            chunk.section, chunk.section
        )
        relevance = round(chunk.similarity * 100)
        blocks.append(
            f"[{index}] {title} - {chunk.field_path} (relevance: {relevance}%):\n{chunk.text}"
        )
    return "\n\n".join(blocks)


def estimate_embedding_cost(query: str) -> float:
    return _EMBEDDING_COST_PER_TOKEN * (len(query) / 4)
