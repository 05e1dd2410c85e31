"""Embedding abstractions: gateway-backed and deterministic offline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt

from blueprint_chat.gateway.client import GatewayClient


class Embedder(ABC):
    """Embedder interface used by indexing and query-time retrieval."""

    @abstractmethod
    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many chunk texts."""

    @abstractmethod
    async def embed_query(self, text: str) -> list[float]:
        """Embed one query."""


class GatewayEmbedder(Embedder):
    """Embeddings from the remote embedding model behind the gateway."""

    def __init__(self, gateway: GatewayClient, model: str | None = None) -> None:
        self._gateway = gateway
        self._model = model

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        response = await self._gateway.embeddings(texts, model=self._model)
        return response.vectors

    async def embed_query(self, text: str) -> list[float]:
        vectors = await self.embed_documents([text])
        return vectors[0] if vectors else []


class HashingEmbedder(Embedder):
    """Signed feature-hashing embedding, normalized to unit length.

    No network calls; used offline and in tests where identical wording must
    land on identical vectors.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    async def embed_query(self, text: str) -> list[float]:
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for token in text.lower().split():
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            vector[idx] += -1.0 if digest[4] % 2 else 1.0

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]
