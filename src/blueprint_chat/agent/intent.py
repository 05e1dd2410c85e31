"""Intent classification for incoming chat messages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from blueprint_chat.agent.prompts import CLASSIFIER_PROMPT, render
from blueprint_chat.config import ChatConfig
from blueprint_chat.errors import ClassificationError
from blueprint_chat.gateway.client import CompletionRequest, GatewayClient
from blueprint_chat.obs.logging import get_logger
from blueprint_chat.types import (
    BLUEPRINT_SECTIONS,
    DEFAULT_SECTION,
    ChatMessage,
    ClassifiedIntent,
    EditIntent,
    ExplainIntent,
    GeneralIntent,
    QuestionIntent,
    RegenerateIntent,
    UsageRecord,
)

logger = get_logger(__name__)


@dataclass(slots=True)
class ClassificationResult:
    intent: ClassifiedIntent
    usage: UsageRecord = field(default_factory=UsageRecord)


class IntentClassifier:
    """Classifies a message with one small JSON-mode model call.

    The classifier never fails a request: any gateway error, open circuit,
    or malformed output degrades to `GeneralIntent` with zero usage.
    """

    def __init__(self, gateway: GatewayClient, config: ChatConfig | None = None) -> None:
        self.gateway = gateway
        self.config = config or ChatConfig()

    async def classify(
        self,
        message: str,
        chat_history: list[ChatMessage] | None = None,
    ) -> ClassificationResult:
        del chat_history  # classification looks at the current message only.
        request = CompletionRequest(
            model=self.gateway.config.classifier_model,
            messages=render(CLASSIFIER_PROMPT, message=message),
            temperature=0.0,
            max_tokens=self.config.classifier_max_tokens,
        )
        try:
            data, response = await self.gateway.chat_json(request)
            intent = parse_intent(data)
        except Exception as exc:
            logger.warning("Intent classification failed, defaulting to general: %s", exc)
            return ClassificationResult(intent=GeneralIntent())
        return ClassificationResult(intent=intent, usage=response.usage)


def parse_intent(raw: dict[str, Any]) -> ClassifiedIntent:
    """Map classifier JSON onto an intent variant.

    Raises:
        ClassificationError: `type` is missing or not a known intent.
    """
    intent_type = raw.get("type")
    if intent_type == "question":
        return QuestionIntent(
            topic=_str(raw.get("topic")) or "unknown",
            sections=valid_sections(raw.get("sections")),
        )
    if intent_type == "edit":
        return EditIntent(
            section=valid_section(raw.get("section")),
            field=_str(raw.get("field")),
            desired_change=_str(raw.get("desiredChange")),
        )
    if intent_type == "explain":
        return ExplainIntent(
            section=valid_section(raw.get("section")),
            field=_str(raw.get("field")),
            what_to_explain=_str(raw.get("whatToExplain")),
        )
    if intent_type == "regenerate":
        return RegenerateIntent(
            section=valid_section(raw.get("section")),
            instructions=_str(raw.get("instructions")),
        )
    if intent_type == "general":
        return GeneralIntent(topic=_str(raw.get("topic")) or "conversation")
    raise ClassificationError(f"Unknown intent type: {intent_type!r}")


def valid_section(section: Any) -> str:
    if isinstance(section, str) and section in BLUEPRINT_SECTIONS:
        return section
    return DEFAULT_SECTION


def valid_sections(sections: Any) -> list[str]:
    if not isinstance(sections, list):
        return []
    return [section for section in sections if isinstance(section, str) and section in BLUEPRINT_SECTIONS]


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""
