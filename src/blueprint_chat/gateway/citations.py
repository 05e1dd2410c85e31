"""Citation payload shapes returned by web-search models.

Providers return either structured `search_results` or a legacy flat list of
URLs in `citations`. The shape is decided once, when the gateway parses the
response, and downstream code only sees the tagged union below.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, assert_never

from blueprint_chat.types import Citation


@dataclass(slots=True)
class SearchResultCitations:
    results: list[Citation]
    kind: Literal["search_results"] = "search_results"


@dataclass(slots=True)
class LegacyUrlCitations:
    urls: list[str]
    kind: Literal["legacy_urls"] = "legacy_urls"


@dataclass(slots=True)
class NoCitations:
    kind: Literal["none"] = "none"


CitationPayload = SearchResultCitations | LegacyUrlCitations | NoCitations


def parse_citation_payload(data: dict[str, Any]) -> CitationPayload:
    """Classify the raw provider payload into one citation shape.

    Non-empty structured results win; the legacy URL list is used only when
    structured results are absent or empty.
    """
    search_results = data.get("search_results")
    if isinstance(search_results, list):
        structured = [_to_citation(item) for item in search_results if isinstance(item, dict)]
        structured = [item for item in structured if item is not None]
        if structured:
            return SearchResultCitations(results=structured)

    legacy = data.get("citations")
    if isinstance(legacy, list):
        urls = [str(url) for url in legacy if isinstance(url, str) and url]
        if urls:
            return LegacyUrlCitations(urls=urls)

    return NoCitations()


def citations_from_payload(payload: CitationPayload) -> list[Citation]:
    if isinstance(payload, SearchResultCitations):
        return list(payload.results)
    if isinstance(payload, LegacyUrlCitations):
        return [Citation(url=url) for url in payload.urls]
    if isinstance(payload, NoCitations):
        return []
    assert_never(payload)


def _to_citation(item: dict[str, Any]) -> Citation | None:
    url = item.get("url")
    if not isinstance(url, str) or not url:
        return None
    return Citation(
        url=url,
        title=_optional_str(item.get("title")),
        date=_optional_str(item.get("date")),
        snippet=_optional_str(item.get("snippet")),
    )


def _optional_str(value: Any) -> str | None:
    return str(value) if value is not None else None
