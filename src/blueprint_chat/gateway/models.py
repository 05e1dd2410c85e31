"""Static model catalogue: identifiers, capability flags and pricing."""

from __future__ import annotations

from dataclasses import dataclass


class Models:
    """Model identifiers routed through the gateway."""

    GEMINI_FLASH = "google/gemini-2.0-flash-001"
    PERPLEXITY_SONAR = "perplexity/sonar-pro"
    GPT_4O = "openai/gpt-4o"
    CLAUDE_SONNET = "anthropic/claude-sonnet-4"
    PERPLEXITY_DEEP_RESEARCH = "perplexity/sonar-deep-research"
    O3_MINI = "openai/o3-mini"
    GEMINI_25_FLASH = "google/gemini-2.5-flash"
    CLAUDE_OPUS = "anthropic/claude-opus-4"
    EMBEDDING = "openai/text-embedding-3-small"


@dataclass(frozen=True, slots=True)
class ModelDescriptor:
    id: str
    reasoning: bool = False
    web_search: bool = False
    json_mode: bool = False


_REASONING_MODELS = frozenset(
    {Models.O3_MINI, Models.GEMINI_25_FLASH, Models.CLAUDE_OPUS, Models.PERPLEXITY_DEEP_RESEARCH}
)
_WEB_SEARCH_MODELS = frozenset({Models.PERPLEXITY_SONAR, Models.PERPLEXITY_DEEP_RESEARCH})
# Perplexity models reject `response_format`.
_JSON_MODE_MODELS = frozenset(
    {
        Models.GEMINI_FLASH,
        Models.GPT_4O,
        Models.CLAUDE_SONNET,
        Models.CLAUDE_OPUS,
        Models.O3_MINI,
        Models.GEMINI_25_FLASH,
    }
)

# USD per 1M tokens (input, output). Search fees are not included.
_MODEL_COSTS: dict[str, tuple[float, float]] = {
    Models.GEMINI_FLASH: (0.075, 0.30),
    Models.PERPLEXITY_SONAR: (3.0, 15.0),
    Models.GPT_4O: (2.5, 10.0),
    Models.CLAUDE_SONNET: (3.0, 15.0),
    Models.PERPLEXITY_DEEP_RESEARCH: (2.0, 8.0),
    Models.O3_MINI: (1.10, 4.40),
    Models.GEMINI_25_FLASH: (0.30, 2.50),
    Models.CLAUDE_OPUS: (15.0, 75.0),
    Models.EMBEDDING: (0.02, 0.0),
}
_DEFAULT_COST = (1.0, 1.0)


def supports_reasoning(model: str) -> bool:
    return model in _REASONING_MODELS


def has_web_search(model: str) -> bool:
    return model in _WEB_SEARCH_MODELS


def supports_json_mode(model: str) -> bool:
    return model in _JSON_MODE_MODELS


def describe_model(model: str) -> ModelDescriptor:
    """Capability flags for `model`; unknown ids get all-false flags."""
    return ModelDescriptor(
        id=model,
        reasoning=supports_reasoning(model),
        web_search=has_web_search(model),
        json_mode=supports_json_mode(model),
    )


def estimate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    input_rate, output_rate = _MODEL_COSTS.get(model, _DEFAULT_COST)
    return (prompt_tokens / 1_000_000) * input_rate + (completion_tokens / 1_000_000) * output_rate
