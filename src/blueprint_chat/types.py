"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["user", "assistant", "system"]
ConfidenceLevel = Literal["high", "medium", "low"]
ContextSource = Literal["rag", "summary"]

# Known top-level sections of a strategic blueprint, in document order.
BLUEPRINT_SECTIONS: dict[str, str] = {
    "industryMarketOverview": "Industry & Market Overview",
    "icpAnalysisValidation": "ICP Analysis & Validation",
    "offerAnalysisViability": "Offer Analysis & Viability",
    "competitorAnalysis": "Competitor Analysis",
    "crossAnalysisSynthesis": "Cross-Analysis Synthesis",
}
DEFAULT_SECTION = "crossAnalysisSynthesis"


@dataclass(slots=True)
class ChatMessage:
    role: Role
    content: str

    def to_payload(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True)
class UsageRecord:
    """Token usage and estimated cost for one or more gateway calls."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0

    def __add__(self, other: UsageRecord) -> UsageRecord:
        return UsageRecord(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            cost=self.cost + other.cost,
        )


@dataclass(slots=True)
class Citation:
    url: str
    title: str | None = None
    date: str | None = None
    snippet: str | None = None


@dataclass(slots=True)
class ContextChunk:
    """A scored fragment of a blueprint returned by similarity retrieval."""

    chunk_id: str
    section: str
    field_path: str
    similarity: float
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class PendingEdit:
    """A proposed field-level change awaiting user confirmation."""

    section: str
    field_path: str
    old_value: Any
    new_value: Any
    explanation: str
    diff_preview: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "section": self.section,
            "fieldPath": self.field_path,
            "oldValue": self.old_value,
            "newValue": self.new_value,
            "explanation": self.explanation,
            "diffPreview": self.diff_preview,
        }


@dataclass(slots=True)
class RelatedFactor:
    section: str
    factor: str
    relevance: str

    def to_payload(self) -> dict[str, str]:
        return {"section": self.section, "factor": self.factor, "relevance": self.relevance}


# Classified intents. The union below is closed: every consumer matches all
# five variants.


@dataclass(slots=True)
class QuestionIntent:
    topic: str
    sections: list[str] = field(default_factory=list)
    type: Literal["question"] = "question"


@dataclass(slots=True)
class GeneralIntent:
    topic: str = "conversation"
    type: Literal["general"] = "general"


@dataclass(slots=True)
class EditIntent:
    section: str
    desired_change: str
    field: str = ""
    type: Literal["edit"] = "edit"


@dataclass(slots=True)
class ExplainIntent:
    section: str
    what_to_explain: str
    field: str = ""
    type: Literal["explain"] = "explain"


@dataclass(slots=True)
class RegenerateIntent:
    section: str
    instructions: str = ""
    type: Literal["regenerate"] = "regenerate"


ClassifiedIntent = QuestionIntent | GeneralIntent | EditIntent | ExplainIntent | RegenerateIntent
