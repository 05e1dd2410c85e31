"""Async client for the OpenAI-compatible model gateway.

Response handling:
- `chat`: one completion, token usage and estimated cost, plus citations for
  web-search models (decided once into a `CitationPayload`).
- `chat_stream`: SSE `data:` lines -> text deltas, until `[DONE]`.
- `chat_json`: JSON-mode chat with tolerant object extraction.
- `embeddings`: vectors ordered by input index.

Every network call goes through the client's `CircuitBreaker`.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass, field, replace
from typing import Any, Literal

import httpx

from blueprint_chat.config import GatewayConfig
from blueprint_chat.errors import GatewayError, GatewayTimeoutError
from blueprint_chat.gateway.breaker import CircuitBreaker
from blueprint_chat.gateway.citations import (
    CitationPayload,
    NoCitations,
    citations_from_payload,
    parse_citation_payload,
)
from blueprint_chat.gateway.json_extract import extract_json_object
from blueprint_chat.gateway.models import (
    estimate_cost,
    has_web_search,
    supports_json_mode,
    supports_reasoning,
)
from blueprint_chat.obs.logging import get_logger
from blueprint_chat.types import ChatMessage, Citation, UsageRecord

logger = get_logger(__name__)

_JSON_INSTRUCTION = """

CRITICAL OUTPUT REQUIREMENT:
You MUST respond with ONLY a valid JSON object.
- Start your response with { and end with }
- Do NOT include any text before or after the JSON
- Do NOT use markdown code blocks""".rstrip()


_MIN_REASONING_TOKENS = 1024


@dataclass(slots=True)
class ReasoningOptions:
    """Thinking parameters; `effort` for o-series, `max_tokens` for Anthropic/Gemini."""

    effort: Literal["low", "medium", "high"] | None = None
    max_tokens: int | None = None
    include: bool = False

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.effort:
            payload["effort"] = self.effort
        if self.max_tokens:
            payload["max_tokens"] = max(_MIN_REASONING_TOKENS, self.max_tokens)
        if self.include:
            payload["include"] = True
        return payload


@dataclass(slots=True)
class CompletionRequest:
    model: str
    messages: list[ChatMessage]
    temperature: float = 0.7
    max_tokens: int = 4096
    json_mode: bool = False
    timeout: float | None = None
    reasoning: ReasoningOptions | None = None


@dataclass(slots=True)
class GatewayResponse:
    content: str
    usage: UsageRecord
    citation_payload: CitationPayload = field(default_factory=NoCitations)


@dataclass(slots=True)
class EmbeddingResponse:
    vectors: list[list[float]]
    usage: UsageRecord


def extract_citations(response: GatewayResponse) -> list[Citation]:
    """Canonical citation list for a completion (empty for non-search models)."""
    return citations_from_payload(response.citation_payload)


class GatewayClient:
    """Uniform call interface to the remote models behind the gateway."""

    def __init__(
        self,
        config: GatewayConfig,
        *,
        breaker: CircuitBreaker | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not config.api_key:
            raise ValueError("Gateway API key is required")
        self.config = config
        self.breaker = breaker or CircuitBreaker("model-gateway")
        self._http = httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {config.api_key}",
                "Content-Type": "application/json",
                "HTTP-Referer": config.app_url,
                "X-Title": config.app_title,
            },
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def chat(self, request: CompletionRequest) -> GatewayResponse:
        body = self._completion_body(request, stream=False)
        timeout = self._timeout(request)
        data = await self.breaker.execute(
            lambda: self._post_json("/chat/completions", body, timeout)
        )
        return _parse_completion(request.model, data)

    async def chat_json(self, request: CompletionRequest) -> tuple[dict[str, Any], GatewayResponse]:
        """Chat in JSON mode and return the recovered object with the raw response.

        Raises:
            GatewayError: the call failed or no JSON object could be recovered.
        """
        json_request = replace(
            request,
            json_mode=True,
            messages=_with_json_instruction(request.messages),
        )
        response = await self.chat(json_request)
        data = extract_json_object(response.content)
        if data is None:
            logger.warning("Failed to extract JSON from response: %s", response.content[:200])
            raise GatewayError("Model response did not contain a JSON object")
        return data, response

    async def chat_stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        """Yield content deltas as they arrive. Usage is not reported when streaming."""
        body = self._completion_body(request, stream=True)
        timeout = self._timeout(request)
        response = await self.breaker.execute(lambda: self._open_stream(body, timeout))
        try:
            async for line in response.aiter_lines():
                line = line.strip()
                if not line or line.startswith(":") or not line.startswith("data:"):
                    continue
                payload = line[5:].strip()
                if payload == "[DONE]":
                    return
                delta = _stream_delta(payload)
                if delta:
                    yield delta
        except httpx.TimeoutException as exc:
            raise GatewayTimeoutError(timeout) from exc
        except httpx.HTTPError as exc:
            raise GatewayError(f"Gateway stream interrupted: {exc}") from exc
        finally:
            await response.aclose()

    async def embeddings(
        self,
        texts: list[str],
        *,
        model: str | None = None,
        timeout: float | None = None,
    ) -> EmbeddingResponse:
        model = model or self.config.embedding_model
        body = {"model": model, "input": texts}
        data = await self.breaker.execute(
            lambda: self._post_json("/embeddings", body, timeout or self.config.timeout_seconds)
        )
        rows = [row for row in data.get("data") or [] if isinstance(row, dict)]
        rows.sort(key=lambda row: row.get("index", 0))
        prompt_tokens = int(_object(data.get("usage")).get("prompt_tokens") or 0)
        return EmbeddingResponse(
            vectors=[list(row.get("embedding") or []) for row in rows],
            usage=UsageRecord(
                prompt_tokens=prompt_tokens,
                total_tokens=prompt_tokens,
                cost=estimate_cost(model, prompt_tokens, 0),
            ),
        )

    def _completion_body(self, request: CompletionRequest, *, stream: bool) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": request.model,
            "messages": [message.to_payload() for message in request.messages],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        if stream:
            body["stream"] = True
        elif request.json_mode and supports_json_mode(request.model):
            body["response_format"] = {"type": "json_object"}
        if request.reasoning is not None and supports_reasoning(request.model):
            reasoning = request.reasoning.to_payload()
            if reasoning:
                body["reasoning"] = reasoning
        return body

    def _timeout(self, request: CompletionRequest) -> float:
        if request.timeout:
            return request.timeout
        if has_web_search(request.model):
            return self.config.research_timeout_seconds
        return self.config.timeout_seconds

    async def _post_json(self, path: str, body: dict[str, Any], timeout: float) -> dict[str, Any]:
        try:
            response = await self._http.post(path, json=body, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise GatewayTimeoutError(timeout) from exc
        except httpx.HTTPError as exc:
            raise GatewayError(f"Gateway request failed: {exc}") from exc

        if response.status_code >= 400:
            raise _api_error(response.status_code, response.text)
        try:
            data = response.json()
        except ValueError as exc:
            raise GatewayError("Gateway returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise GatewayError(f"Gateway returned {type(data).__name__} instead of a JSON object")
        return data

    async def _open_stream(self, body: dict[str, Any], timeout: float) -> httpx.Response:
        request = self._http.build_request("POST", "/chat/completions", json=body, timeout=timeout)
        try:
            response = await self._http.send(request, stream=True)
        except httpx.TimeoutException as exc:
            raise GatewayTimeoutError(timeout) from exc
        except httpx.HTTPError as exc:
            raise GatewayError(f"Gateway request failed: {exc}") from exc

        if response.status_code >= 400:
            text = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            raise _api_error(response.status_code, text)
        return response


def _parse_completion(model: str, data: dict[str, Any]) -> GatewayResponse:
    message = _first_choice(data, "message")
    usage = _object(data.get("usage"))
    prompt_tokens = int(usage.get("prompt_tokens") or 0)
    completion_tokens = int(usage.get("completion_tokens") or 0)
    return GatewayResponse(
        content=message.get("content") or "",
        usage=UsageRecord(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            cost=estimate_cost(model, prompt_tokens, completion_tokens),
        ),
        citation_payload=parse_citation_payload(data),
    )


def _stream_delta(payload: str) -> str | None:
    try:
        chunk = json.loads(payload)
    except json.JSONDecodeError:
        logger.warning("Failed to parse SSE chunk: %s", payload[:200])
        return None
    if not isinstance(chunk, dict):
        logger.warning("Skipping non-object SSE chunk: %s", payload[:200])
        return None
    content = _first_choice(chunk, "delta").get("content")
    return content if isinstance(content, str) else None


def _first_choice(payload: dict[str, Any], key: str) -> dict[str, Any]:
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return {}
    return _object(choices[0].get(key))


def _object(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _api_error(status_code: int, text: str) -> GatewayError:
    message = text
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            message = str(error["message"])
        elif payload.get("message"):
            message = str(payload["message"])
    logger.error("Gateway API error [%s]: %s", status_code, message)
    return GatewayError(f"Gateway API error: {status_code} - {message}", status_code=status_code)


def _with_json_instruction(messages: list[ChatMessage]) -> list[ChatMessage]:
    if messages and messages[0].role == "system":
        first = ChatMessage(role="system", content=messages[0].content + _JSON_INSTRUCTION)
        return [first, *messages[1:]]
    return [ChatMessage(role="system", content=_JSON_INSTRUCTION.strip()), *messages]
