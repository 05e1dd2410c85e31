"""Typed stream events, their SSE encoding, and the producer/consumer channel.

Every event stream is zero or more `TextEvent`, at most one `EditsEvent`,
an optional `ErrorEvent`, and exactly one `DoneEvent`, always last.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, assert_never, cast

from blueprint_chat.types import ConfidenceLevel, PendingEdit


@dataclass(slots=True)
class TextEvent:
    content: str


@dataclass(slots=True)
class EditsEvent:
    pending_edits: list[PendingEdit]
    confidence: ConfidenceLevel


@dataclass(slots=True)
class ErrorEvent:
    message: str


@dataclass(slots=True)
class DoneEvent:
    metadata: dict[str, Any]
    error: bool = False
    sources: list[dict[str, Any]] | None = None
    source_quality: dict[str, Any] | None = None
    confidence: ConfidenceLevel | None = None
    confidence_explanation: str | None = None


StreamEvent = TextEvent | EditsEvent | ErrorEvent | DoneEvent


@dataclass(slots=True)
class JsonReply:
    """A complete JSON body, used for intents that are never streamed."""

    body: dict[str, Any]


@dataclass(slots=True)
class EventStream:
    """SSE frames produced lazily for the lifetime of one request."""

    frames: AsyncIterator[str]


StreamReply = JsonReply | EventStream


def event_payload(event: StreamEvent) -> dict[str, Any]:
    if isinstance(event, TextEvent):
        return {"type": "text", "content": event.content}
    if isinstance(event, EditsEvent):
        return {
            "type": "edits",
            "pendingEdits": [edit.to_payload() for edit in event.pending_edits],
            "confidence": event.confidence,
        }
    if isinstance(event, ErrorEvent):
        return {"type": "error", "error": event.message}
    if isinstance(event, DoneEvent):
        payload: dict[str, Any] = {"type": "done", "done": True}
        if event.error:
            payload["error"] = True
        if event.sources is not None:
            payload["sources"] = event.sources
        if event.source_quality is not None:
            payload["sourceQuality"] = event.source_quality
        if event.confidence is not None:
            payload["confidence"] = event.confidence
        if event.confidence_explanation is not None:
            payload["confidenceExplanation"] = event.confidence_explanation
        payload["metadata"] = event.metadata
        return payload
    assert_never(event)


def encode_event(event: StreamEvent) -> str:
    """One SSE frame: `data: <json>` followed by a blank line."""
    return f"data: {json.dumps(event_payload(event), default=str)}\n\n"


_CLOSED = object()


class EventChannel:
    """Bounded queue between a producer task and the HTTP response.

    `send` waits while the queue is full. `close` never waits, so it is safe
    in a producer's `finally` even after the consumer has gone away.
    """

    def __init__(self, maxsize: int = 32) -> None:
        self._queue: asyncio.Queue[StreamEvent | object] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    async def send(self, event: StreamEvent) -> None:
        if self._closed:
            raise RuntimeError("channel is closed")
        await self._queue.put(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # The consumer stops on `_closed` once the queue drains.
            return

    async def events(self) -> AsyncIterator[StreamEvent]:
        while True:
            if self._closed and self._queue.empty():
                return
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield cast(StreamEvent, item)
