"""Tests for semantic search and search answers."""

import pytest

from edgeinsights.adapters.storage import InMemoryVectorIndex
from edgeinsights.core.errors import EmbeddingError, InvalidFieldError
from edgeinsights.core.models import EmbeddingRecord, SearchHit
from edgeinsights.services.search import (
    NO_RESULTS_ANSWER,
    SemanticSearchEngine,
    answer,
)
from tests.fakes import KeywordEmbedder

pytestmark = pytest.mark.tier(1)


def _record(embedding_id: str, chunk: str, embedding: tuple[float, ...]) -> EmbeddingRecord:
    return EmbeddingRecord(
        embedding_id=embedding_id,
        timestamp=1000.0,
        device_id=f"dev-{embedding_id}",
        chunk_seq=0,
        chunk=chunk,
        embedding=embedding,
    )


@pytest.fixture
async def populated_index(embedder: KeywordEmbedder) -> InMemoryVectorIndex:
    index = InMemoryVectorIndex()
    for i, text in enumerate(
        [
            "door malfunction at lobby",
            "temperature reading normal",
            "battery low on motion sensor",
        ]
    ):
        await index.write(_record(str(i), text, tuple(await embedder.embed(text))))
    return index


class TestSemanticSearchEngine:
    """Tests for SemanticSearchEngine.search()."""

    @pytest.mark.unit
    async def test_most_similar_record_comes_first(
        self, embedder: KeywordEmbedder, populated_index: InMemoryVectorIndex
    ) -> None:
        engine = SemanticSearchEngine(embedder, populated_index)
        hits = await engine.search("why does the door malfunction", limit=3)
        assert hits[0].record.chunk == "door malfunction at lobby"
        distances = [hit.distance for hit in hits]
        assert distances == sorted(distances)

    @pytest.mark.unit
    async def test_limit_caps_results(
        self, embedder: KeywordEmbedder, populated_index: InMemoryVectorIndex
    ) -> None:
        engine = SemanticSearchEngine(embedder, populated_index)
        assert len(await engine.search("temperature", limit=2)) == 2

    @pytest.mark.unit
    async def test_empty_index_returns_no_hits(
        self, embedder: KeywordEmbedder, vector_index: InMemoryVectorIndex
    ) -> None:
        engine = SemanticSearchEngine(embedder, vector_index)
        assert await engine.search("anything") == []

    @pytest.mark.unit
    @pytest.mark.parametrize("limit", [0, -1])
    async def test_non_positive_limit_is_rejected(
        self, embedder: KeywordEmbedder, vector_index: InMemoryVectorIndex, limit: int
    ) -> None:
        engine = SemanticSearchEngine(embedder, vector_index)
        with pytest.raises(InvalidFieldError):
            await engine.search("door", limit=limit)
        assert embedder.calls == []

    @pytest.mark.unit
    async def test_embedder_failure_propagates(
        self, vector_index: InMemoryVectorIndex
    ) -> None:
        engine = SemanticSearchEngine(KeywordEmbedder(fail=True), vector_index)
        with pytest.raises(EmbeddingError):
            await engine.search("door")

    @pytest.mark.unit
    async def test_empty_vector_is_an_error(
        self, vector_index: InMemoryVectorIndex
    ) -> None:
        engine = SemanticSearchEngine(KeywordEmbedder(empty=True), vector_index)
        with pytest.raises(EmbeddingError, match="empty vector"):
            await engine.search("door")

    @pytest.mark.unit
    async def test_records_of_other_dimensions_are_skipped(
        self, embedder: KeywordEmbedder, vector_index: InMemoryVectorIndex
    ) -> None:
        await vector_index.write(_record("short", "legacy", (1.0, 0.0)))
        engine = SemanticSearchEngine(embedder, vector_index)
        assert await engine.search("door") == []


class TestAnswer:
    """Tests for answer()."""

    @pytest.mark.unit
    def test_no_hits(self) -> None:
        assert answer([]) == NO_RESULTS_ANSWER

    @pytest.mark.unit
    def test_lists_top_three_hits(self) -> None:
        hits = [
            SearchHit(record=_record(str(i), f"chunk {i}", (1.0,)), distance=i / 10)
            for i in range(5)
        ]
        lines = answer(hits).splitlines()
        assert lines[0] == "Based on 5 relevant logs, here's what I found:"
        assert lines[2] == "• chunk 0 (Device: dev-0, Similarity: 0.00)"
        assert len([line for line in lines if line.startswith("•")]) == 3
