"""Indexing pipeline: chunk -> embed -> upsert."""

from __future__ import annotations

from typing import Any

from blueprint_chat.ingest.chunker import BlueprintChunker
from blueprint_chat.ingest.embedder import Embedder
from blueprint_chat.retrieval.store import ChunkStore
from blueprint_chat.types import ContextChunk


class IndexPipeline:
    """Coordinates chunker/embedder/store so a blueprint becomes retrievable.

    Runs once per generated blueprint, outside the chat request path.
    """

    def __init__(self, chunker: BlueprintChunker, embedder: Embedder, store: ChunkStore) -> None:
        self._chunker = chunker
        self._embedder = embedder
        self._store = store

    async def index_document(self, document_id: str, document: dict[str, Any]) -> list[ContextChunk]:
        """Index one blueprint and return the chunks written."""

        chunks = self._chunker.chunk_document(document_id, document)
        if not chunks:
            return []
        embeddings = await self._embedder.embed_documents([chunk.text for chunk in chunks])
        await self._store.upsert(document_id, chunks, embeddings)
        return chunks
