"""Deterministic, query-independent blueprint summary.

This is the grounding fallback when retrieval is unavailable, so every
accessor here tolerates missing keys and wrong types instead of raising.
"""

from __future__ import annotations

from typing import Any

from blueprint_chat.ingest.chunker import flatten_value, humanize
from blueprint_chat.types import BLUEPRINT_SECTIONS

_NA = "N/A"


def summarize_document(document: Any) -> str:
    """Build a short per-section summary of a raw blueprint object."""
    if not isinstance(document, dict):
        return "No blueprint content available."

    sections: list[str] = []

    s1 = _obj(document.get("industryMarketOverview"))
    if s1 is not None:
        sections.append(
            "## Industry & Market Overview\n"
            f"- Category: {_text(_get(s1, 'categorySnapshot', 'category'))}\n"
            f"- Primary Pain Points: {_join(_get(s1, 'painPoints', 'primary'))}\n"
            f"- Messaging Opportunities: {_join(_get(s1, 'messagingOpportunities', 'opportunities'))}"
        )

    s2 = _obj(document.get("icpAnalysisValidation"))
    if s2 is not None:
        sections.append(
            "## ICP Analysis\n"
            f"- Status: {_text(_get(s2, 'finalVerdict', 'status'))}\n"
            f"- Reasoning: {_text(_get(s2, 'finalVerdict', 'reasoning'))}"
        )

    s3 = _obj(document.get("offerAnalysisViability"))
    if s3 is not None:
        sections.append(
            "## Offer Analysis\n"
            f"- Overall Score: {_text(_get(s3, 'offerStrength', 'overallScore'))}/10\n"
            f"- Recommendation: {_text(_get(s3, 'recommendation', 'status'))}"
        )

    s4 = _obj(document.get("competitorAnalysis"))
    if s4 is not None:
        competitors = _get(s4, "competitors")
        names = (
            [item.get("name") for item in competitors if isinstance(item, dict)]
            if isinstance(competitors, list)
            else None
        )
        gaps = _text(_get(s4, "gapsAndOpportunities", "messagingOpportunities"))
        sections.append(
            "## Competitor Analysis\n"
            f"- Competitors: {_join(names, limit=None, sep=', ')}\n"
            f"- Gaps: {gaps[:200]}"
        )

    s5 = _obj(document.get("crossAnalysisSynthesis"))
    if s5 is not None:
        sections.append(
            "## Cross-Analysis Synthesis\n"
            f"- Recommended Positioning: {_text(_get(s5, 'recommendedPositioning'))}\n"
            f"- Primary Messaging Angles: {_join(_get(s5, 'primaryMessagingAngles'))}\n"
            f"- Next Steps: {_join(_get(s5, 'nextSteps'))}"
        )

    for key, value in document.items():
        if key in BLUEPRINT_SECTIONS or not isinstance(value, dict):
            continue
        sections.append(_generic_section(key, value))

    if not sections:
        return "No blueprint content available."
    return "\n\n".join(sections)


def _generic_section(key: str, section: dict[str, Any], max_fields: int = 3) -> str:
    lines = [f"## {humanize(key)}"]
    for field_name, value in list(section.items())[:max_fields]:
        rendered = flatten_value(value) if value is not None else _NA
        lines.append(f"- {humanize(field_name)}: {rendered[:200] or _NA}")
    return "\n".join(lines)


def _obj(value: Any) -> dict[str, Any] | None:
    return value if isinstance(value, dict) else None


def _get(source: dict[str, Any], *path: str) -> Any:
    current: Any = source
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _text(value: Any) -> str:
    if value is None or value == "":
        return _NA
    if isinstance(value, (dict, list)):
        return flatten_value(value) or _NA
    return str(value)


def _join(value: Any, *, limit: int | None = 3, sep: str = "; ") -> str:
    if not isinstance(value, list):
        return _NA
    items = [str(item) for item in value if item not in (None, "")]
    if limit is not None:
        items = items[:limit]
    return sep.join(items) or _NA
