"""Confidence scoring from retrieval quality and edit extraction outcome."""

from __future__ import annotations

from dataclasses import dataclass

from blueprint_chat.agent.edits import EditExtraction
from blueprint_chat.retrieval.context import BuiltContext
from blueprint_chat.types import ConfidenceLevel, ContextChunk

HIGH_QUALITY_THRESHOLD = 0.85
MEDIUM_QUALITY_THRESHOLD = 0.65


@dataclass(slots=True)
class ConfidenceFactors:
    avg_similarity: float
    chunk_count: int
    coverage_score: float
    high_quality_chunks: int


@dataclass(slots=True)
class ConfidenceResult:
    level: ConfidenceLevel
    explanation: str
    factors: ConfidenceFactors | None = None


@dataclass(slots=True)
class SourceQuality:
    avg_relevance: float
    source_count: int
    high_quality_sources: int
    explanation: str

    def to_payload(self) -> dict[str, float | int | str]:
        return {
            "avgRelevance": self.avg_relevance,
            "sourceCount": self.source_count,
            "highQualitySources": self.high_quality_sources,
            "explanation": self.explanation,
        }


def calculate_confidence(chunks: list[ContextChunk]) -> ConfidenceResult:
    """Multi-factor confidence over retrieved chunks.

    high: average similarity > 0.8 with at least 3 chunks, 2 of them above
    0.85. medium: average similarity > 0.65 or at least 2 chunks. Otherwise
    low.
    """
    if not chunks:
        return ConfidenceResult(
            level="low",
            explanation="No relevant sources found in the blueprint.",
            factors=ConfidenceFactors(0.0, 0, 0.0, 0),
        )

    chunk_count = len(chunks)
    avg_similarity = sum(chunk.similarity for chunk in chunks) / chunk_count
    high_quality = sum(1 for chunk in chunks if chunk.similarity > HIGH_QUALITY_THRESHOLD)
    unique_sections = len({chunk.section for chunk in chunks})
    coverage = min(1.0, (unique_sections / 5) * (chunk_count / 3))
    factors = ConfidenceFactors(
        avg_similarity=round(avg_similarity, 2),
        chunk_count=chunk_count,
        coverage_score=round(coverage, 2),
        high_quality_chunks=high_quality,
    )
    percent = round(avg_similarity * 100)

    if avg_similarity > 0.8 and chunk_count >= 3 and high_quality >= 2:
        return ConfidenceResult(
            level="high",
            explanation=(
                f"High confidence: {high_quality} high-quality sources with {percent}% "
                f"average relevance across {chunk_count} total sources."
            ),
            factors=factors,
        )

    if avg_similarity > MEDIUM_QUALITY_THRESHOLD or chunk_count >= 2:
        if avg_similarity > MEDIUM_QUALITY_THRESHOLD:
            if chunk_count < 3:
                caveat = "limited source count"
            elif high_quality < 2:
                caveat = "few high-quality matches"
            else:
                caveat = "moderate match quality"
            explanation = f"Medium confidence: {percent}% average relevance, but {caveat}."
        else:
            explanation = (
                f"Medium confidence: Found {chunk_count} relevant sources, "
                f"but average relevance is {percent}%."
            )
        return ConfidenceResult(level="medium", explanation=explanation, factors=factors)

    return ConfidenceResult(
        level="low",
        explanation="Low confidence: Only 1 source found. Answer may be incomplete.",
        factors=factors,
    )


def build_source_quality(chunks: list[ContextChunk]) -> SourceQuality:
    if not chunks:
        return SourceQuality(0.0, 0, 0, "No sources available.")

    source_count = len(chunks)
    avg_relevance = sum(chunk.similarity for chunk in chunks) / source_count
    high_quality = sum(1 for chunk in chunks if chunk.similarity > HIGH_QUALITY_THRESHOLD)
    percent = round(avg_relevance * 100)

    if high_quality >= 3:
        explanation = (
            f"Excellent: {high_quality} highly relevant sources with {percent}% average match."
        )
    elif high_quality >= 1:
        noun = "source" if high_quality == 1 else "sources"
        explanation = (
            f"Good: {high_quality} highly relevant {noun} among {source_count} total "
            f"with {percent}% average relevance."
        )
    elif source_count >= 2 and avg_relevance > MEDIUM_QUALITY_THRESHOLD:
        explanation = (
            f"Adequate: {source_count} sources with {percent}% average relevance. "
            "No exceptionally strong matches."
        )
    else:
        noun = "source" if source_count == 1 else "sources"
        explanation = (
            f"Limited: {source_count} {noun} found with {percent}% average relevance. "
            "Results may be incomplete."
        )

    return SourceQuality(
        avg_relevance=round(avg_relevance, 2),
        source_count=source_count,
        high_quality_sources=high_quality,
        explanation=explanation,
    )


def score_response(context: BuiltContext, extraction: EditExtraction | None = None) -> ConfidenceResult:
    """Final confidence for one answer.

    Edit outcome overrides retrieval: extracted edits force high, a block that
    failed to parse forces low. Summary-grounded answers are medium.
    """
    if extraction is not None and extraction.edits:
        return ConfidenceResult(level="high", explanation="Edit proposal extracted successfully.")
    if extraction is not None and extraction.extraction_failed:
        return ConfidenceResult(
            level="low",
            explanation="The proposed edit could not be parsed from the response.",
        )
    if context.source == "rag":
        return calculate_confidence(context.chunks)
    return ConfidenceResult(
        level="medium",
        explanation="Answer grounded in the blueprint summary; no retrieved sources.",
    )
