"""Structured "why" explanations over the full blueprint."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from blueprint_chat.agent.prompts import EXPLAIN_PROMPT, history_messages, render
from blueprint_chat.config import ChatConfig
from blueprint_chat.errors import GatewayError
from blueprint_chat.gateway.client import CompletionRequest, GatewayClient
from blueprint_chat.types import (
    ChatMessage,
    ConfidenceLevel,
    ExplainIntent,
    RelatedFactor,
    UsageRecord,
)


class RelatedFactorPayload(BaseModel):
    section: str = ""
    factor: str = ""
    relevance: str = ""


class ExplanationPayload(BaseModel):
    """Shape the explain model is asked to return."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    explanation: str = Field(min_length=1)
    related_factors: list[RelatedFactorPayload] = Field(default_factory=list, alias="relatedFactors")
    confidence: Literal["high", "medium", "low"] = "medium"

    @field_validator("related_factors", mode="before")
    @classmethod
    def _drop_malformed_factors(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]

    @field_validator("confidence", mode="before")
    @classmethod
    def _default_confidence(cls, value: Any) -> str:
        return value if value in ("high", "medium", "low") else "medium"


@dataclass(slots=True)
class ExplainResult:
    explanation: str
    confidence: ConfidenceLevel
    related_factors: list[RelatedFactor] = field(default_factory=list)
    usage: UsageRecord = field(default_factory=UsageRecord)


class ExplainHandler:
    """Answers explain intents with one JSON-mode call; never streamed."""

    def __init__(self, gateway: GatewayClient, config: ChatConfig | None = None) -> None:
        self.gateway = gateway
        self.config = config or ChatConfig()

    async def explain(
        self,
        document: dict[str, Any],
        intent: ExplainIntent,
        chat_history: list[ChatMessage] | None = None,
    ) -> ExplainResult:
        messages = render(
            EXPLAIN_PROMPT,
            chat_history=history_messages(chat_history, self.config.history_window),
            document_json=json.dumps(document, indent=2),
            section=intent.section,
            field=intent.field or "(not specified)",
            what_to_explain=intent.what_to_explain,
        )
        data, response = await self.gateway.chat_json(
            CompletionRequest(
                model=self.gateway.config.chat_model,
                messages=messages,
                temperature=self.config.answer_temperature,
                max_tokens=self.config.explain_max_tokens,
            )
        )
        try:
            payload = ExplanationPayload.model_validate(data)
        except ValueError as exc:
            raise GatewayError(f"Explanation response was malformed: {exc}") from exc

        return ExplainResult(
            explanation=payload.explanation,
            confidence=payload.confidence,
            related_factors=[
                RelatedFactor(section=item.section, factor=item.factor, relevance=item.relevance)
                for item in payload.related_factors
            ],
            usage=response.usage,
        )
