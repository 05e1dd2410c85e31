import pytest

from blueprint_chat.ingest.chunker import BlueprintChunker, flatten_value, humanize
from blueprint_chat.ingest.embedder import HashingEmbedder
from blueprint_chat.ingest.pipeline import IndexPipeline
from blueprint_chat.retrieval.store import InMemoryChunkStore


def test_list_fields_become_one_chunk_per_item(sample_blueprint) -> None:
    chunks = BlueprintChunker().chunk_document("bp-1", sample_blueprint)

    paths = [chunk.field_path for chunk in chunks if chunk.section == "crossAnalysisSynthesis"]
    assert paths == [
        "recommendedPositioning",
        "primaryMessagingAngles[0]",
        "primaryMessagingAngles[1]",
        "nextSteps[0]",
        "nextSteps[1]",
    ]
    first = chunks[0]
    assert first.section == "industryMarketOverview"
    assert first.metadata["sectionTitle"] == "Industry & Market Overview"
    assert first.text.startswith("Industry & Market Overview / Category Snapshot: ")


def test_chunk_ids_are_stable_and_unique(sample_blueprint) -> None:
    chunker = BlueprintChunker()

    first = [chunk.chunk_id for chunk in chunker.chunk_document("bp-1", sample_blueprint)]
    second = [chunk.chunk_id for chunk in chunker.chunk_document("bp-1", sample_blueprint)]

    assert first == second
    assert len(set(first)) == len(first)


def test_long_text_truncated_and_empty_values_skipped() -> None:
    document = {"crossAnalysisSynthesis": {"recommendedPositioning": "y" * 500, "nextSteps": [], "notes": None}}

    chunks = BlueprintChunker(max_chars=100).chunk_document("bp-2", document)

    assert len(chunks) == 1
    assert len(chunks[0].text) == 100
    assert chunks[0].text.endswith("...")


def test_flatten_and_humanize() -> None:
    assert humanize("recommendedPositioning") == "Recommended Positioning"
    assert flatten_value({"overallScore": 7, "notes": "", "flags": ["a", "b"]}) == "Overall Score: 7; Flags: a, b"
    assert flatten_value(True) == "true"


@pytest.mark.asyncio
async def test_index_pipeline_makes_chunks_retrievable(sample_blueprint) -> None:
    embedder = HashingEmbedder()
    store = InMemoryChunkStore()
    pipeline = IndexPipeline(BlueprintChunker(), embedder, store)

    chunks = await pipeline.index_document("bp-1", sample_blueprint)
    query = await embedder.embed_query(chunks[0].text)
    matches = await store.match_chunks("bp-1", query, k=3, min_similarity=0.65)

    assert matches[0].chunk_id == chunks[0].chunk_id
    assert matches[0].similarity == pytest.approx(1.0)
    assert await store.match_chunks("other-doc", query, k=3, min_similarity=0.0) == []


@pytest.mark.asyncio
async def test_section_filter_excludes_other_sections(sample_blueprint) -> None:
    embedder = HashingEmbedder()
    store = InMemoryChunkStore()
    chunks = await IndexPipeline(BlueprintChunker(), embedder, store).index_document("bp-1", sample_blueprint)
    query = await embedder.embed_query("operations teams")

    unfiltered = await store.match_chunks("bp-1", query, k=len(chunks), min_similarity=-1.0)
    filtered = await store.match_chunks(
        "bp-1", query, k=len(chunks), min_similarity=-1.0, section_filter="competitorAnalysis"
    )

    assert {chunk.section for chunk in unfiltered} > {"competitorAnalysis"}
    assert filtered
    assert {chunk.section for chunk in filtered} == {"competitorAnalysis"}
