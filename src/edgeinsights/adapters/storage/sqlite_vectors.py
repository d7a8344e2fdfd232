"""SQLite storage adapter for embedding records."""

import json
from collections.abc import Sequence
from typing import Any

import aiosqlite

from edgeinsights.adapters.storage.sqlite_base import SQLiteStorageBase
from edgeinsights.core.models import EmbeddingRecord, SearchHit
from edgeinsights.core.similarity import cosine_distance

_VECTORS_SCHEMA = """
CREATE TABLE IF NOT EXISTS embedding_records (
    embedding_id TEXT PRIMARY KEY,
    time REAL NOT NULL,
    device_id TEXT NOT NULL,
    chunk_seq INTEGER NOT NULL,
    chunk TEXT NOT NULL,
    embedding TEXT NOT NULL,
    device_type TEXT NOT NULL DEFAULT '',
    location TEXT NOT NULL DEFAULT '',
    log_type TEXT NOT NULL DEFAULT '',
    raw_value REAL,
    unit TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_embedding_records_device_time
    ON embedding_records(device_id, time);
"""

_INSERT_RECORD = """
INSERT INTO embedding_records (
    embedding_id, time, device_id, chunk_seq, chunk, embedding,
    device_type, location, log_type, raw_value, unit
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

_SELECT_NEAREST = """
SELECT * FROM (
    SELECT embedding_id, time, device_id, chunk_seq, chunk, embedding,
        device_type, location, log_type, raw_value, unit,
        cosine_distance(embedding, ?) AS distance
    FROM embedding_records
)
WHERE distance IS NOT NULL
ORDER BY distance ASC, time DESC
LIMIT ?
"""

_COUNT_RECORDS = """
SELECT COUNT(*) FROM embedding_records
"""


def _sql_cosine_distance(stored: str, query: str) -> float | None:
    """SQL function over two JSON-encoded vectors."""
    try:
        return cosine_distance(json.loads(stored), json.loads(query))
    except (TypeError, ValueError):
        return None


async def _register_functions(db: aiosqlite.Connection) -> None:
    await db.create_function("cosine_distance", 2, _sql_cosine_distance)


def _hit_from_row(row: Sequence[Any]) -> SearchHit:
    record = EmbeddingRecord(
        embedding_id=row[0],
        timestamp=row[1],
        device_id=row[2],
        chunk_seq=row[3],
        chunk=row[4],
        embedding=tuple(json.loads(row[5])),
        device_type=row[6],
        location=row[7],
        log_type=row[8],
        raw_value=row[9],
        unit=row[10],
    )
    return SearchHit(record=record, distance=row[11])


class SQLiteVectorIndex(SQLiteStorageBase):
    """SQLite implementation of VectorIndexPort.

    Vectors are stored as JSON text and ranked with a ``cosine_distance``
    SQL function registered on every connection. Records whose vector
    cannot be compared with the query vector are left out of the ranking.
    """

    def __init__(self, db_path: str) -> None:
        super().__init__(db_path, _VECTORS_SCHEMA, on_connect=_register_functions)

    async def write(self, record: EmbeddingRecord) -> None:
        """Write an embedding record to storage."""
        async with self.async_connection() as db:
            await db.execute(
                _INSERT_RECORD,
                (
                    record.embedding_id,
                    record.timestamp,
                    record.device_id,
                    record.chunk_seq,
                    record.chunk,
                    json.dumps(list(record.embedding)),
                    record.device_type,
                    record.location,
                    record.log_type,
                    record.raw_value,
                    record.unit,
                ),
            )
            await db.commit()

    async def nearest(self, vector: Sequence[float], limit: int) -> list[SearchHit]:
        """Return up to ``limit`` records ordered by ascending cosine distance."""
        async with self.async_connection() as db:
            async with db.execute(
                _SELECT_NEAREST, (json.dumps(list(vector)), limit)
            ) as cursor:
                return [_hit_from_row(row) async for row in cursor]

    async def count(self) -> int:
        """Return total number of embedding records in storage."""
        async with self.async_connection() as db:
            async with db.execute(_COUNT_RECORDS) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else 0
