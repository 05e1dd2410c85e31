import pytest

from conftest import ExplodingStore

from blueprint_chat.config import RetrievalConfig
from blueprint_chat.ingest.chunker import BlueprintChunker
from blueprint_chat.ingest.embedder import HashingEmbedder
from blueprint_chat.ingest.pipeline import IndexPipeline
from blueprint_chat.retrieval.context import (
    ContextBuilder,
    build_context_from_chunks,
    estimate_embedding_cost,
)
from blueprint_chat.retrieval.store import InMemoryChunkStore
from blueprint_chat.retrieval.summary import summarize_document
from blueprint_chat.types import ContextChunk


def test_summary_covers_known_sections(sample_blueprint) -> None:
    summary = summarize_document(sample_blueprint)

    assert "## Industry & Market Overview" in summary
    assert "- Category: B2B SaaS workflow automation" in summary
    # Only the first three pain points are listed.
    assert "Hiring cannot keep up" not in summary
    assert "- Status: VALIDATED" in summary
    assert "- Overall Score: 7.5/10" in summary
    assert "- Competitors: Zapier, Make" in summary
    assert "- Recommended Positioning: The operations copilot for lean teams" in summary


@pytest.mark.parametrize(
    "document",
    [
        {},
        None,
        [],
        {"industryMarketOverview": "not an object"},
        {"industryMarketOverview": {"painPoints": {"primary": "not a list"}}},
        {"competitorAnalysis": {"competitors": [None, 5, {"name": None}]}},
        {"crossAnalysisSynthesis": {"nextSteps": [None, {"a": 1}]}},
        {"customAppendix": {"note": {"deep": [1, 2]}}},
    ],
)
def test_summary_never_raises(document) -> None:
    assert isinstance(summarize_document(document), str)


def test_summary_includes_unknown_sections() -> None:
    summary = summarize_document({"launchPlan": {"firstChannel": "LinkedIn"}})

    assert "## Launch Plan" in summary
    assert "- First Channel: LinkedIn" in summary


def test_chunk_context_format() -> None:
    chunk = ContextChunk(
        chunk_id="c1",
        section="crossAnalysisSynthesis",
        field_path="recommendedPositioning",
        similarity=0.873,
        text="The operations copilot",
        metadata={"sectionTitle": "Cross-Analysis Synthesis"},
    )

    text = build_context_from_chunks([chunk])

    assert text == "[1] Cross-Analysis Synthesis - recommendedPositioning (relevance: 87%):\nThe operations copilot"


@pytest.mark.asyncio
async def test_rag_path_used_when_chunks_match(sample_blueprint) -> None:
    embedder = HashingEmbedder()
    store = InMemoryChunkStore()
    chunks = await IndexPipeline(BlueprintChunker(), embedder, store).index_document("bp-1", sample_blueprint)
    builder = ContextBuilder(embedder, store, RetrievalConfig(top_k=2, min_similarity=0.65))
    query = chunks[0].text

    context = await builder.build(sample_blueprint, query, document_id="bp-1")

    assert context.source == "rag"
    assert 1 <= len(context.chunks) <= 2
    assert context.text.startswith("[1] Industry & Market Overview - categorySnapshot")
    assert context.rag_cost == pytest.approx(estimate_embedding_cost(query))


@pytest.mark.asyncio
async def test_falls_back_to_summary(sample_blueprint) -> None:
    embedder = HashingEmbedder()
    expected = summarize_document(sample_blueprint)

    no_id = await ContextBuilder(embedder, InMemoryChunkStore()).build(sample_blueprint, "positioning")
    no_match = await ContextBuilder(embedder, InMemoryChunkStore()).build(
        sample_blueprint, "positioning", document_id="never-indexed"
    )
    failing = await ContextBuilder(embedder, ExplodingStore()).build(
        sample_blueprint, "positioning", document_id="bp-1"
    )

    for context in (no_id, no_match, failing):
        assert context.source == "summary"
        assert context.text == expected
        assert context.chunks == []
        assert context.rag_cost == 0.0


class RecordingStore(InMemoryChunkStore):
    def __init__(self) -> None:
        super().__init__()
        self.filters: list[str | None] = []

    async def match_chunks(self, document_id, query_embedding, *, k, min_similarity, section_filter=None):
        self.filters.append(section_filter)
        return await super().match_chunks(
            document_id, query_embedding, k=k, min_similarity=min_similarity, section_filter=section_filter
        )


@pytest.mark.asyncio
async def test_section_filter_narrows_then_widens(sample_blueprint) -> None:
    embedder = HashingEmbedder()
    store = RecordingStore()
    chunks = await IndexPipeline(BlueprintChunker(), embedder, store).index_document("bp-1", sample_blueprint)
    target = next(chunk for chunk in chunks if chunk.field_path == "recommendedPositioning")
    builder = ContextBuilder(embedder, store)

    narrowed = await builder.build(
        sample_blueprint, target.text, document_id="bp-1", section_filter="crossAnalysisSynthesis"
    )
    assert store.filters == ["crossAnalysisSynthesis"]
    assert {chunk.section for chunk in narrowed.chunks} == {"crossAnalysisSynthesis"}

    store.filters.clear()
    widened = await builder.build(sample_blueprint, target.text, document_id="bp-1", section_filter="nowhere")
    assert store.filters == ["nowhere", None]
    assert widened.source == "rag"
    assert widened.chunks[0].chunk_id == target.chunk_id
