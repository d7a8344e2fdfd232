"""In-memory storage adapters for readings and embedding records."""

from collections.abc import AsyncIterable, Sequence

from edgeinsights.core.models import EmbeddingRecord, Reading, SearchHit
from edgeinsights.core.similarity import cosine_distance


class InMemoryReadingStorage:
    """In-memory implementation of ReadingStoragePort.

    Stores readings in a list. Suitable for testing and for running the
    hub without a database; it does not execute generated queries.
    """

    def __init__(self) -> None:
        self._readings: list[Reading] = []

    async def write(self, reading: Reading) -> None:
        """Write a reading to storage."""
        self._readings.append(reading)

    async def recent(
        self, limit: int, device_id: str | None = None, since: float = 0
    ) -> AsyncIterable[Reading]:
        """Read the most recent readings, newest first.

        Readings with equal timestamps come back in reverse write order.
        """
        matching = [
            r
            for r in reversed(self._readings)
            if r.timestamp >= since and (device_id is None or r.device_id == device_id)
        ]
        matching.sort(key=lambda r: r.timestamp, reverse=True)
        for reading in matching[:limit]:
            yield reading

    async def count(self) -> int:
        """Return total number of readings in storage."""
        return len(self._readings)


class InMemoryVectorIndex:
    """In-memory implementation of VectorIndexPort."""

    def __init__(self) -> None:
        self._records: list[EmbeddingRecord] = []

    async def write(self, record: EmbeddingRecord) -> None:
        """Write an embedding record to storage."""
        self._records.append(record)

    async def nearest(self, vector: Sequence[float], limit: int) -> list[SearchHit]:
        """Return up to ``limit`` records ordered by ascending cosine distance."""
        hits: list[SearchHit] = []
        for record in self._records:
            distance = cosine_distance(record.embedding, vector)
            if distance is not None:
                hits.append(SearchHit(record=record, distance=distance))
        hits.sort(key=lambda hit: (hit.distance, -hit.record.timestamp))
        return hits[:limit]

    async def count(self) -> int:
        """Return total number of embedding records in storage."""
        return len(self._records)
