"""Routes a classified chat turn to its response mode.

Streaming (`ChatRouter.stream`):
- question/general: plain-text answer streamed as text events.
- edit: prose streamed, JSON edit block held back and turned into one edits
  event (or an error event when the block cannot be parsed).
- explain/regenerate: never streamed; a complete JSON body is returned.

Non-streaming (`ChatRouter.respond`) handles every intent with one completion
and always returns a body; failures become an apology with low confidence.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, assert_never

from blueprint_chat.agent.confidence import (
    ConfidenceResult,
    build_source_quality,
    score_response,
)
from blueprint_chat.agent.edits import EditExtraction, ProseFilter, extract_edits
from blueprint_chat.agent.explain import ExplainHandler
from blueprint_chat.agent.intent import ClassificationResult, IntentClassifier
from blueprint_chat.agent.prompts import ANSWER_PROMPT, EDIT_PROMPT, history_messages, render
from blueprint_chat.agent.protocol import (
    DoneEvent,
    EditsEvent,
    ErrorEvent,
    EventChannel,
    EventStream,
    JsonReply,
    StreamReply,
    TextEvent,
    encode_event,
)
from blueprint_chat.config import ChatConfig
from blueprint_chat.gateway.client import CompletionRequest, GatewayClient
from blueprint_chat.obs.logging import get_logger, log_with_context
from blueprint_chat.obs.tracing import Timer, TraceRecord, TraceStore, estimate_token_count
from blueprint_chat.retrieval.context import BuiltContext, ContextBuilder
from blueprint_chat.types import (
    ChatMessage,
    ClassifiedIntent,
    ContextChunk,
    EditIntent,
    ExplainIntent,
    GeneralIntent,
    QuestionIntent,
    RegenerateIntent,
    UsageRecord,
)

logger = get_logger(__name__)

APOLOGY = "I apologize, but I encountered an error processing your request. Please try again."
EDIT_PARSE_FAILED = (
    "I couldn't turn that into a concrete edit proposal. Please try rephrasing your request."
)


@dataclass(slots=True)
class ChatTurn:
    """One inbound chat message with its document and prior turns."""

    message: str
    document: dict[str, Any]
    document_id: str | None = None
    chat_history: list[ChatMessage] = field(default_factory=list)


class ChatRouter:
    """Classify, ground, generate, and encode one chat turn."""

    def __init__(
        self,
        *,
        gateway: GatewayClient,
        classifier: IntentClassifier,
        context_builder: ContextBuilder,
        explainer: ExplainHandler,
        trace_store: TraceStore,
        config: ChatConfig | None = None,
    ) -> None:
        self.gateway = gateway
        self.classifier = classifier
        self.context_builder = context_builder
        self.explainer = explainer
        self.trace_store = trace_store
        self.config = config or ChatConfig()

    async def stream(self, turn: ChatTurn) -> StreamReply:
        """Classify `turn` and return either SSE frames or a complete JSON body."""
        timer = Timer().start()
        classification = await self.classifier.classify(turn.message, turn.chat_history)
        intent = classification.intent

        if isinstance(intent, (QuestionIntent, GeneralIntent, EditIntent)):
            return EventStream(frames=self._stream_frames(turn, classification, timer))
        if isinstance(intent, (ExplainIntent, RegenerateIntent)):
            return JsonReply(body=await self._reply(turn, classification, timer, streamed=False))
        assert_never(intent)

    async def respond(self, turn: ChatTurn) -> dict[str, Any]:
        timer = Timer().start()
        classification = await self.classifier.classify(turn.message, turn.chat_history)
        return await self._reply(turn, classification, timer, streamed=False)

    async def _stream_frames(
        self,
        turn: ChatTurn,
        classification: ClassificationResult,
        timer: Timer,
    ) -> AsyncIterator[str]:
        channel = EventChannel(maxsize=self.config.stream_queue_size)
        producer = asyncio.create_task(self._produce(turn, classification, timer, channel))
        try:
            async for event in channel.events():
                yield encode_event(event)
        finally:
            # Client went away or the stream finished; either way the producer
            # must not outlive the response.
            if not producer.done():
                producer.cancel()

    async def _produce(
        self,
        turn: ChatTurn,
        classification: ClassificationResult,
        timer: Timer,
        channel: EventChannel,
    ) -> None:
        intent = classification.intent
        context: BuiltContext | None = None
        parts: list[str] = []
        confidence = ConfidenceResult(level="low", explanation="Response generation failed.")
        error: str | None = None
        try:
            context = await self._build_context(turn, intent)
            extraction: EditExtraction | None = None
            if isinstance(intent, EditIntent):
                prose = ProseFilter()
                request = self._edit_request(turn, intent, context)
                async for delta in self.gateway.chat_stream(request):
                    parts.append(delta)
                    visible = prose.feed(delta)
                    if visible:
                        await channel.send(TextEvent(content=visible))
                tail = prose.flush()
                if tail:
                    await channel.send(TextEvent(content=tail))

                extraction = extract_edits("".join(parts))
                if extraction.edits:
                    await channel.send(
                        EditsEvent(pending_edits=extraction.edits, confidence="high")
                    )
                elif extraction.extraction_failed:
                    error = EDIT_PARSE_FAILED
                    await channel.send(ErrorEvent(message=error))
            else:
                async for delta in self.gateway.chat_stream(self._answer_request(turn, context)):
                    parts.append(delta)
                    await channel.send(TextEvent(content=delta))

            confidence = score_response(context, extraction)
            await channel.send(
                self._done_event(classification, context, timer, confidence, error=error is not None)
            )
        except asyncio.CancelledError:
            error = "client disconnected"
            raise
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            logger.exception("Streaming failed for intent %s", intent.type)
            await channel.send(ErrorEvent(message=error))
            await channel.send(
                self._done_event(classification, context, timer, confidence, error=True)
            )
        finally:
            channel.close()
            response_text = "".join(parts)
            # Streamed completions carry no usage report.
            streamed_tokens = estimate_token_count(response_text)
            self._record(
                turn,
                classification,
                context,
                response=response_text,
                streamed=True,
                usage=classification.usage
                + UsageRecord(completion_tokens=streamed_tokens, total_tokens=streamed_tokens),
                timer=timer,
                confidence=confidence,
                error=error,
            )

    async def _reply(
        self,
        turn: ChatTurn,
        classification: ClassificationResult,
        timer: Timer,
        *,
        streamed: bool,
    ) -> dict[str, Any]:
        intent = classification.intent
        context: BuiltContext | None = None
        usage = classification.usage
        confidence = ConfidenceResult(level="low", explanation="Response generation failed.")
        error: str | None = None
        body: dict[str, Any]
        try:
            if isinstance(intent, (QuestionIntent, GeneralIntent)):
                context = await self._build_context(turn, intent)
                response = await self.gateway.chat(self._answer_request(turn, context))
                usage = usage + response.usage
                confidence = score_response(context)
                body = {"response": response.content, "confidence": confidence.level}
            elif isinstance(intent, EditIntent):
                context = await self._build_context(turn, intent)
                response = await self.gateway.chat(self._edit_request(turn, intent, context))
                usage = usage + response.usage
                extraction = extract_edits(response.content)
                confidence = score_response(context, extraction)
                body = {"response": format_edit_response(extraction), "confidence": confidence.level}
                if extraction.edits:
                    edits = [edit.to_payload() for edit in extraction.edits]
                    if len(edits) == 1:
                        body["pendingEdit"] = edits[0]
                    body["pendingEdits"] = edits
                elif extraction.extraction_failed:
                    error = EDIT_PARSE_FAILED
            elif isinstance(intent, ExplainIntent):
                result = await self.explainer.explain(turn.document, intent, turn.chat_history)
                usage = usage + result.usage
                confidence = ConfidenceResult(
                    level=result.confidence,
                    explanation="Confidence reported by the explanation model.",
                )
                body = {
                    "response": result.explanation,
                    "confidence": result.confidence,
                    "isExplanation": True,
                }
                if result.related_factors:
                    body["relatedFactors"] = [factor.to_payload() for factor in result.related_factors]
            elif isinstance(intent, RegenerateIntent):
                confidence = ConfidenceResult(level="high", explanation="Regeneration placeholder.")
                body = {
                    "response": regenerate_message(intent),
                    "confidence": "high",
                    "isRegenerate": True,
                }
            else:
                assert_never(intent)
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            logger.exception("Chat response failed for intent %s", intent.type)
            confidence = ConfidenceResult(level="low", explanation="Response generation failed.")
            body = {"response": APOLOGY, "confidence": "low", "error": error}

        metadata = self._metadata(classification, context, timer)
        metadata["tokensUsed"] = usage.total_tokens
        metadata["cost"] = usage.cost + (context.rag_cost if context is not None else 0.0)
        metadata["confidenceExplanation"] = confidence.explanation
        record = self._record(
            turn,
            classification,
            context,
            response=str(body["response"]),
            streamed=streamed,
            usage=usage,
            timer=timer,
            confidence=confidence,
            error=error,
        )
        metadata["traceId"] = record.trace_id
        body["metadata"] = metadata
        return body

    async def _build_context(self, turn: ChatTurn, intent: ClassifiedIntent) -> BuiltContext:
        return await self.context_builder.build(
            turn.document,
            turn.message,
            turn.document_id,
            section_filter=section_filter(intent),
        )

    def _answer_request(self, turn: ChatTurn, context: BuiltContext) -> CompletionRequest:
        return CompletionRequest(
            model=self.gateway.config.chat_model,
            messages=render(
                ANSWER_PROMPT,
                chat_history=history_messages(turn.chat_history, self.config.history_window),
                context=context.text,
                message=turn.message,
            ),
            temperature=self.config.answer_temperature,
            max_tokens=self.config.answer_max_tokens,
        )

    def _edit_request(
        self, turn: ChatTurn, intent: EditIntent, context: BuiltContext
    ) -> CompletionRequest:
        return CompletionRequest(
            model=self.gateway.config.chat_model,
            messages=render(
                EDIT_PROMPT,
                chat_history=history_messages(turn.chat_history, self.config.history_window),
                context=context.text,
                document_json=json.dumps(turn.document, indent=2),
                section=intent.section,
                field=intent.field or "(not specified)",
                desired_change=intent.desired_change or turn.message,
                message=turn.message,
            ),
            temperature=self.config.answer_temperature,
            max_tokens=self.config.edit_max_tokens,
        )

    def _metadata(
        self,
        classification: ClassificationResult,
        context: BuiltContext | None,
        timer: Timer,
    ) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "processingTime": round(timer.current_ms()),
            "classificationCost": classification.usage.cost,
            "classificationTokens": classification.usage.total_tokens,
            "intentType": classification.intent.type,
            "contextSource": context.source if context is not None else "summary",
        }
        if context is not None and context.source == "rag":
            metadata["ragCost"] = context.rag_cost
            metadata["chunksRetrieved"] = len(context.chunks)
        return metadata

    def _done_event(
        self,
        classification: ClassificationResult,
        context: BuiltContext | None,
        timer: Timer,
        confidence: ConfidenceResult,
        *,
        error: bool,
    ) -> DoneEvent:
        sources = None
        source_quality = None
        if context is not None and context.source == "rag":
            sources = [source_payload(chunk) for chunk in context.chunks]
            source_quality = build_source_quality(context.chunks).to_payload()
        return DoneEvent(
            metadata=self._metadata(classification, context, timer),
            error=error,
            sources=sources,
            source_quality=source_quality,
            confidence=confidence.level,
            confidence_explanation=confidence.explanation,
        )

    def _record(
        self,
        turn: ChatTurn,
        classification: ClassificationResult,
        context: BuiltContext | None,
        *,
        response: str,
        streamed: bool,
        usage: UsageRecord,
        timer: Timer,
        confidence: ConfidenceResult,
        error: str | None,
    ) -> TraceRecord:
        context_source = context.source if context is not None else "summary"
        record = self.trace_store.create_record(
            message=turn.message,
            intent_type=classification.intent.type,
            context_source=context_source,
            response=response,
            streamed=streamed,
            total_tokens=usage.total_tokens,
            estimated_cost_usd=usage.cost + (context.rag_cost if context is not None else 0.0),
            latency_ms=timer.current_ms(),
            confidence=confidence.level,
            error=error,
        )
        log_with_context(
            logger,
            logging.WARNING if error else logging.INFO,
            "Chat turn completed",
            trace_id=record.trace_id,
            intent=record.intent_type,
            context_source=context_source,
            streamed=streamed,
            latency_ms=round(record.latency_ms),
            error=error,
        )
        return record


def format_edit_response(extraction: EditExtraction) -> str:
    """Prose followed by a per-edit diff summary and a confirmation prompt."""
    edits = extraction.edits
    if not edits:
        if extraction.extraction_failed:
            return f"{extraction.text}\n\n{EDIT_PARSE_FAILED}".strip()
        return extraction.text

    many = len(edits) > 1
    summaries = []
    for index, edit in enumerate(edits, start=1):
        label = f"{index}: " if many else ""
        summaries.append(
            f"### Edit {label}{edit.section} / {edit.field_path}\n{edit.explanation}\n\n"
            f"```diff\n{edit.diff_preview}\n```"
        )
    heading = f"Edits ({len(edits)})" if many else "Edit"
    confirm = "All" if many else "Edit"
    return (
        f"{extraction.text}\n\n**Proposed {heading}:**\n\n"
        + "\n\n".join(summaries)
        + f"\n\nClick **Confirm {confirm}** below to apply, or **Cancel** to discard."
    )


def regenerate_message(intent: RegenerateIntent) -> str:
    instructions = f' with instructions: "{intent.instructions}"' if intent.instructions else ""
    return (
        f"I understand you want to regenerate the {intent.section} section{instructions}. "
        "Regenerate capability is coming soon. For now, I can answer questions about your blueprint."
    )


def section_filter(intent: ClassifiedIntent) -> str | None:
    """Section to retrieve from first: an edit's target, or a question's only section."""
    if isinstance(intent, EditIntent):
        return intent.section
    if isinstance(intent, QuestionIntent) and len(intent.sections) == 1:
        return intent.sections[0]
    return None


def source_payload(chunk: ContextChunk) -> dict[str, Any]:
    return {
        "id": chunk.chunk_id,
        "section": chunk.section,
        "fieldPath": chunk.field_path,
        "similarity": chunk.similarity,
        "content": chunk.text,
    }
