"""FastAPI entrypoint for chat, indexing and trace endpoints."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from functools import lru_cache
from typing import Any, Literal, assert_never

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from blueprint_chat.agent.explain import ExplainHandler
from blueprint_chat.agent.intent import IntentClassifier
from blueprint_chat.agent.protocol import EventStream, JsonReply
from blueprint_chat.agent.router import ChatRouter, ChatTurn
from blueprint_chat.config import BreakerConfig, ChatConfig, RetrievalConfig, get_settings
from blueprint_chat.errors import BlueprintChatError, InputValidationError
from blueprint_chat.gateway.breaker import CircuitBreaker
from blueprint_chat.gateway.client import GatewayClient
from blueprint_chat.ingest.chunker import BlueprintChunker
from blueprint_chat.ingest.embedder import Embedder, GatewayEmbedder, HashingEmbedder
from blueprint_chat.ingest.pipeline import IndexPipeline
from blueprint_chat.obs.logging import get_logger
from blueprint_chat.obs.tracing import TraceStore
from blueprint_chat.retrieval.context import ContextBuilder
from blueprint_chat.retrieval.store import InMemoryChunkStore
from blueprint_chat.types import ChatMessage

logger = get_logger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class ChatHistoryItem(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str | None = None
    blueprint: Any = None
    blueprint_id: str | None = Field(default=None, alias="blueprintId")
    chat_history: list[ChatHistoryItem] = Field(default_factory=list, alias="chatHistory")


class IndexRequest(BaseModel):
    blueprint: dict[str, Any]


@lru_cache
def get_trace_store() -> TraceStore:
    return TraceStore()


@lru_cache
def get_chunk_store() -> InMemoryChunkStore:
    return InMemoryChunkStore()


@lru_cache
def get_gateway() -> GatewayClient:
    settings = get_settings()
    if not settings.OPENROUTER_API_KEY:
        raise HTTPException(status_code=503, detail="Model gateway is not configured")
    breaker = CircuitBreaker.from_config("openrouter", BreakerConfig())
    return GatewayClient(settings.gateway_config(), breaker=breaker)


@lru_cache
def get_embedder() -> Embedder:
    if get_settings().OPENROUTER_API_KEY:
        return GatewayEmbedder(get_gateway())
    logger.info("No gateway key configured, using offline hashing embeddings")
    return HashingEmbedder()


@lru_cache
def get_router() -> ChatRouter:
    gateway = get_gateway()
    config = ChatConfig()
    return ChatRouter(
        gateway=gateway,
        classifier=IntentClassifier(gateway, config),
        context_builder=ContextBuilder(get_embedder(), get_chunk_store(), RetrievalConfig()),
        explainer=ExplainHandler(gateway, config),
        trace_store=get_trace_store(),
        config=config,
    )


@lru_cache
def get_index_pipeline() -> IndexPipeline:
    return IndexPipeline(BlueprintChunker(), get_embedder(), get_chunk_store())


def validated_turn(request: ChatRequest) -> ChatTurn:
    """Reject bad input before anything touches the model gateway."""
    if not request.message or not request.message.strip():
        raise InputValidationError("Message is required")
    if not isinstance(request.blueprint, dict):
        raise InputValidationError("Blueprint context is required")
    return ChatTurn(
        message=request.message,
        document=request.blueprint,
        document_id=request.blueprint_id,
        chat_history=[
            ChatMessage(role=item.role, content=item.content) for item in request.chat_history
        ],
    )


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    yield
    if get_gateway.cache_info().currsize:
        await get_gateway().aclose()


app = FastAPI(title="Blueprint Chat", version="0.1.0", lifespan=lifespan)


@app.exception_handler(InputValidationError)
async def input_validation_handler(_: Request, exc: InputValidationError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


@app.get("/health")
def health(store: TraceStore = Depends(get_trace_store)) -> dict[str, Any]:
    configured = bool(get_settings().OPENROUTER_API_KEY)
    circuit = get_gateway().breaker.get_state().value if configured else None
    return {
        "status": "ok",
        "gateway_configured": configured,
        "circuit_state": circuit,
        "trace_count": len(store.list_recent(limit=1000)),
    }


# Dependency order matters: `validated_turn` runs before `get_router`, so
# invalid requests never build or call the gateway.
@app.post("/chat/blueprint")
async def chat_blueprint(
    turn: ChatTurn = Depends(validated_turn),
    router: ChatRouter = Depends(get_router),
) -> dict[str, Any]:
    return await router.respond(turn)


@app.post("/chat/blueprint/stream")
async def chat_blueprint_stream(
    turn: ChatTurn = Depends(validated_turn),
    router: ChatRouter = Depends(get_router),
) -> Response:
    reply = await router.stream(turn)
    if isinstance(reply, JsonReply):
        return JSONResponse(reply.body)
    if isinstance(reply, EventStream):
        return StreamingResponse(reply.frames, media_type="text/event-stream", headers=SSE_HEADERS)
    assert_never(reply)


@app.post("/documents/{document_id}/index")
async def index_document(
    document_id: str,
    request: IndexRequest,
    pipeline: IndexPipeline = Depends(get_index_pipeline),
) -> dict[str, Any]:
    try:
        chunks = await pipeline.index_document(document_id, request.blueprint)
    except BlueprintChatError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    return {
        "document_id": document_id,
        "chunks_created": len(chunks),
        "chunk_ids": [chunk.chunk_id for chunk in chunks],
    }


@app.get("/traces")
def traces(limit: int = 20, store: TraceStore = Depends(get_trace_store)) -> dict[str, Any]:
    return {"items": [asdict(record) for record in store.list_recent(limit=limit)]}


@app.get("/traces/{trace_id}")
def trace_detail(trace_id: str, store: TraceStore = Depends(get_trace_store)) -> dict[str, Any]:
    try:
        record = store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)


@app.get("/metrics")
def metrics(store: TraceStore = Depends(get_trace_store)) -> dict[str, Any]:
    return store.summary()
