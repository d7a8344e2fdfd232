"""Tests for in-memory storage adapters."""

import pytest

from edgeinsights.adapters.storage import InMemoryReadingStorage, InMemoryVectorIndex
from edgeinsights.core.models import EmbeddingRecord, Reading
from edgeinsights.core.ports import ReadingStoragePort, VectorIndexPort

pytestmark = pytest.mark.tier(1)


def _record(embedding_id: str, embedding: tuple[float, ...], timestamp: float = 0.0):
    return EmbeddingRecord(
        embedding_id=embedding_id,
        timestamp=timestamp,
        device_id="d1",
        chunk_seq=0,
        chunk=embedding_id,
        embedding=embedding,
    )


class TestInMemoryReadingStorage:
    """Tests for InMemoryReadingStorage."""

    @pytest.mark.storage
    def test_implements_port(self) -> None:
        assert isinstance(InMemoryReadingStorage(), ReadingStoragePort)

    @pytest.mark.storage
    async def test_empty_storage(self, reading_storage: InMemoryReadingStorage) -> None:
        assert [r async for r in reading_storage.recent(10)] == []
        assert await reading_storage.count() == 0

    @pytest.mark.storage
    async def test_recent_is_newest_first_and_limited(
        self, reading_storage: InMemoryReadingStorage
    ) -> None:
        for ts in (100.0, 300.0, 200.0):
            await reading_storage.write(Reading("d1", "INFO", f"at {ts}", ts))

        readings = [r async for r in reading_storage.recent(2)]
        assert [r.timestamp for r in readings] == [300.0, 200.0]

    @pytest.mark.storage
    async def test_recent_filters_device_and_since(
        self, reading_storage: InMemoryReadingStorage
    ) -> None:
        await reading_storage.write(Reading("d1", "INFO", "old", 100.0))
        await reading_storage.write(Reading("d1", "INFO", "new", 200.0))
        await reading_storage.write(Reading("d2", "INFO", "other", 200.0))

        readings = [
            r async for r in reading_storage.recent(10, device_id="d1", since=150.0)
        ]
        assert [r.message for r in readings] == ["new"]

    @pytest.mark.storage
    async def test_equal_timestamps_newest_write_first(
        self, reading_storage: InMemoryReadingStorage
    ) -> None:
        await reading_storage.write(Reading("d1", "INFO", "first", 100.0))
        await reading_storage.write(Reading("d1", "INFO", "second", 100.0))

        readings = [r async for r in reading_storage.recent(10)]
        assert [r.message for r in readings] == ["second", "first"]


class TestInMemoryVectorIndex:
    """Tests for InMemoryVectorIndex."""

    @pytest.mark.storage
    def test_implements_port(self) -> None:
        assert isinstance(InMemoryVectorIndex(), VectorIndexPort)

    @pytest.mark.storage
    async def test_nearest_orders_by_distance(
        self, vector_index: InMemoryVectorIndex
    ) -> None:
        await vector_index.write(_record("far", (0.0, 1.0)))
        await vector_index.write(_record("near", (1.0, 0.1)))
        await vector_index.write(_record("exact", (1.0, 0.0)))

        hits = await vector_index.nearest([1.0, 0.0], limit=2)
        assert [h.record.embedding_id for h in hits] == ["exact", "near"]
        assert hits[0].distance == pytest.approx(0.0)

    @pytest.mark.storage
    async def test_ties_prefer_newer_records(
        self, vector_index: InMemoryVectorIndex
    ) -> None:
        await vector_index.write(_record("old", (1.0, 0.0), timestamp=1.0))
        await vector_index.write(_record("new", (2.0, 0.0), timestamp=2.0))

        hits = await vector_index.nearest([1.0, 0.0], limit=2)
        assert [h.record.embedding_id for h in hits] == ["new", "old"]

    @pytest.mark.storage
    async def test_unrankable_records_are_skipped(
        self, vector_index: InMemoryVectorIndex
    ) -> None:
        await vector_index.write(_record("zero", (0.0, 0.0)))
        await vector_index.write(_record("short", (1.0,)))

        assert await vector_index.nearest([1.0, 0.0], limit=5) == []
        assert await vector_index.count() == 2
