"""Shared fakes and fixtures for chat service tests."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from blueprint_chat.agent.explain import ExplainHandler
from blueprint_chat.agent.intent import IntentClassifier
from blueprint_chat.agent.router import ChatRouter
from blueprint_chat.config import ChatConfig, GatewayConfig, RetrievalConfig
from blueprint_chat.gateway.client import CompletionRequest, GatewayResponse
from blueprint_chat.ingest.embedder import Embedder, HashingEmbedder
from blueprint_chat.obs.tracing import TraceStore
from blueprint_chat.retrieval.context import ContextBuilder
from blueprint_chat.retrieval.store import ChunkStore, InMemoryChunkStore
from blueprint_chat.types import UsageRecord


class FakeGateway:
    """Scripted stand-in for `GatewayClient` that counts every call.

    `json_responses` are consumed in order by `chat_json` (classifier first,
    then the explain handler); an Exception entry is raised instead.
    """

    def __init__(
        self,
        *,
        json_responses: list[dict[str, Any] | Exception] | None = None,
        stream_chunks: list[str] | None = None,
        stream_error: Exception | None = None,
        completion: str = "The recommended positioning is AI-first workflow automation.",
    ) -> None:
        self.config = GatewayConfig(api_key="test-key")
        self.json_responses = list(json_responses or [])
        self.stream_chunks = list(stream_chunks or [])
        self.stream_error = stream_error
        self.completion = completion
        self.requests: list[CompletionRequest] = []
        self.calls = {"chat": 0, "chat_json": 0, "chat_stream": 0, "embeddings": 0}

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    async def chat(self, request: CompletionRequest) -> GatewayResponse:
        self.calls["chat"] += 1
        self.requests.append(request)
        return GatewayResponse(
            content=self.completion,
            usage=UsageRecord(prompt_tokens=100, completion_tokens=50, total_tokens=150, cost=0.001),
        )

    async def chat_json(self, request: CompletionRequest) -> tuple[dict[str, Any], GatewayResponse]:
        self.calls["chat_json"] += 1
        self.requests.append(request)
        item = self.json_responses.pop(0) if self.json_responses else {"type": "general"}
        if isinstance(item, Exception):
            raise item
        return item, GatewayResponse(
            content=json.dumps(item),
            usage=UsageRecord(prompt_tokens=40, completion_tokens=10, total_tokens=50, cost=0.0001),
        )

    async def chat_stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        self.calls["chat_stream"] += 1
        self.requests.append(request)
        for chunk in self.stream_chunks:
            yield chunk
        if self.stream_error is not None:
            raise self.stream_error


class ExplodingStore:
    """Chunk store whose retrieval always fails."""

    async def upsert(self, document_id: str, chunks: list[Any], embeddings: list[list[float]]) -> None:
        raise RuntimeError("vector store unavailable")

    async def match_chunks(
        self,
        document_id: str,
        query_embedding: list[float],
        *,
        k: int,
        min_similarity: float,
        section_filter: str | None = None,
    ) -> list[Any]:
        raise RuntimeError("vector store unavailable")


@pytest.fixture
def sample_blueprint() -> dict[str, Any]:
    return {
        "industryMarketOverview": {
            "categorySnapshot": {"category": "B2B SaaS workflow automation", "marketSize": "$12B"},
            "painPoints": {
                "primary": [
                    "Manual handoffs slow down operations teams",
                    "Reporting takes days to assemble",
                    "Tools do not integrate with each other",
                    "Hiring cannot keep up with demand",
                ],
                "secondary": ["Budget scrutiny"],
            },
            "messagingOpportunities": {"opportunities": ["Time saved per week", "Fewer tools"]},
        },
        "icpAnalysisValidation": {
            "finalVerdict": {"status": "VALIDATED", "reasoning": "Clear pain and budget ownership."},
        },
        "offerAnalysisViability": {
            "offerStrength": {"overallScore": 7.5},
            "recommendation": {"status": "PROCEED"},
        },
        "competitorAnalysis": {
            "competitors": [{"name": "Zapier"}, {"name": "Make"}],
            "gapsAndOpportunities": {"messagingOpportunities": ["No one owns operations reporting"]},
        },
        "crossAnalysisSynthesis": {
            "recommendedPositioning": "The operations copilot for lean teams",
            "primaryMessagingAngles": ["Reclaim 10 hours a week", "One hub for ops"],
            "nextSteps": ["Launch LinkedIn test", "Build case study"],
        },
    }


@pytest.fixture
def make_router() -> Callable[..., ChatRouter]:
    def _make(
        gateway: FakeGateway,
        *,
        embedder: Embedder | None = None,
        store: ChunkStore | None = None,
        trace_store: TraceStore | None = None,
    ) -> ChatRouter:
        config = ChatConfig()
        return ChatRouter(
            gateway=gateway,
            classifier=IntentClassifier(gateway, config),
            context_builder=ContextBuilder(
                embedder or HashingEmbedder(),
                store or InMemoryChunkStore(),
                RetrievalConfig(),
            ),
            explainer=ExplainHandler(gateway, config),
            trace_store=trace_store or TraceStore(),
            config=config,
        )

    return _make


def parse_sse(body: str) -> list[dict[str, Any]]:
    """Decode `data: <json>` frames from an SSE body."""
    events = []
    for frame in body.split("\n\n"):
        frame = frame.strip()
        if frame.startswith("data:"):
            events.append(json.loads(frame[len("data:"):].strip()))
    return events
