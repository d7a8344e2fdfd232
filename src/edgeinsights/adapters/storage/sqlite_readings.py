"""SQLite storage adapter for readings and their rollup tiers."""

from collections.abc import AsyncIterable, Sequence
from typing import Any

from edgeinsights.adapters.storage.sqlite_base import SQLiteStorageBase
from edgeinsights.core.models import ERROR_SEVERITIES, WARNING_SEVERITIES, Reading
from edgeinsights.core.rollups import (
    DataSource,
    RollupPipeline,
    RollupStage,
    source_table,
)

_NUMERIC_TIER_COLUMNS = """
    device_type TEXT NOT NULL,
    location TEXT NOT NULL,
    avg_value REAL NOT NULL,
    min_value REAL NOT NULL,
    max_value REAL NOT NULL,
    reading_count INTEGER NOT NULL,
"""

_READINGS_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS sensor_readings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    time REAL NOT NULL,
    device_id TEXT NOT NULL,
    device_type TEXT NOT NULL DEFAULT '',
    location TEXT NOT NULL DEFAULT '',
    raw_value REAL,
    unit TEXT NOT NULL DEFAULT '',
    log_type TEXT NOT NULL,
    message TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_sensor_readings_time ON sensor_readings(time);
CREATE INDEX IF NOT EXISTS idx_sensor_readings_device_time
    ON sensor_readings(device_id, time);

CREATE TABLE IF NOT EXISTS five_min_sensor_averages (
    five_min_bucket REAL NOT NULL,{_NUMERIC_TIER_COLUMNS}
    PRIMARY KEY (five_min_bucket, device_type, location)
);
CREATE TABLE IF NOT EXISTS hourly_sensor_averages (
    hour REAL NOT NULL,{_NUMERIC_TIER_COLUMNS}
    PRIMARY KEY (hour, device_type, location)
);
CREATE TABLE IF NOT EXISTS daily_sensor_averages (
    day REAL NOT NULL,{_NUMERIC_TIER_COLUMNS}
    PRIMARY KEY (day, device_type, location)
);
CREATE TABLE IF NOT EXISTS daily_device_activity (
    day REAL NOT NULL,
    device_type TEXT NOT NULL,
    location TEXT NOT NULL,
    total_readings INTEGER NOT NULL,
    error_count INTEGER NOT NULL,
    warning_count INTEGER NOT NULL,
    info_count INTEGER NOT NULL,
    PRIMARY KEY (day, device_type, location)
);
"""

_INSERT_READING = """
INSERT INTO sensor_readings
    (time, device_id, device_type, location, raw_value, unit, log_type, message)
VALUES (?, ?, ?, ?, ?, ?, ?, ?)
"""

_READING_COLUMNS = "time, device_id, device_type, location, raw_value, unit, log_type, message"

_SELECT_RECENT = f"""
SELECT {_READING_COLUMNS}
FROM sensor_readings
WHERE time >= ?
ORDER BY time DESC, id DESC
LIMIT ?
"""

_SELECT_RECENT_BY_DEVICE = f"""
SELECT {_READING_COLUMNS}
FROM sensor_readings
WHERE time >= ? AND device_id = ?
ORDER BY time DESC, id DESC
LIMIT ?
"""

_COUNT_READINGS = """
SELECT COUNT(*) FROM sensor_readings
"""


def _in_list(values: frozenset[str]) -> str:
    return ", ".join(f"'{value}'" for value in sorted(values))


def _bucket_expr(column: str, bucket_seconds: float) -> str:
    size = int(bucket_seconds)
    return f"(CAST({column} / {size} AS INTEGER) * {size})"


def _refresh_statements(stage: RollupStage) -> tuple[str, str]:
    """DELETE and INSERT statements that recompute ``stage`` from ``since``.

    Both take the window start as their only parameter. The raw tier is
    averaged directly; higher tiers combine the tier below weighted by
    reading count so that re-aggregation stays exact.
    """
    target = stage.table
    source = stage.source_table
    assert target.bucket_seconds is not None
    bucket = _bucket_expr(source.time_column, target.bucket_seconds)
    delete = f"DELETE FROM {target.table} WHERE {target.time_column} >= ?"

    if stage.target is DataSource.ACTIVITY:
        insert = f"""
INSERT INTO {target.table}
    (day, device_type, location, total_readings, error_count, warning_count, info_count)
SELECT {bucket}, device_type, location, COUNT(*),
    SUM(CASE WHEN log_type IN ({_in_list(ERROR_SEVERITIES)}) THEN 1 ELSE 0 END),
    SUM(CASE WHEN log_type IN ({_in_list(WARNING_SEVERITIES)}) THEN 1 ELSE 0 END),
    SUM(CASE WHEN log_type = 'INFO' THEN 1 ELSE 0 END)
FROM {source.table}
WHERE {source.time_column} >= ?
GROUP BY 1, device_type, location
"""
    elif stage.source is DataSource.RAW:
        insert = f"""
INSERT INTO {target.table}
    ({target.time_column}, device_type, location,
     avg_value, min_value, max_value, reading_count)
SELECT {bucket}, device_type, location,
    AVG(raw_value), MIN(raw_value), MAX(raw_value), COUNT(*)
FROM {source.table}
WHERE {source.time_column} >= ? AND raw_value IS NOT NULL
GROUP BY 1, device_type, location
"""
    else:
        insert = f"""
INSERT INTO {target.table}
    ({target.time_column}, device_type, location,
     avg_value, min_value, max_value, reading_count)
SELECT {bucket}, device_type, location,
    SUM(avg_value * reading_count) / SUM(reading_count),
    MIN(min_value), MAX(max_value), SUM(reading_count)
FROM {source.table}
WHERE {source.time_column} >= ?
GROUP BY 1, device_type, location
"""
    return delete, insert


def _reading_from_row(row: Sequence[Any]) -> Reading:
    return Reading(
        timestamp=row[0],
        device_id=row[1],
        device_type=row[2],
        location=row[3],
        raw_value=row[4],
        unit=row[5],
        log_type=row[6],
        message=row[7],
    )


class SQLiteReadingStorage(SQLiteStorageBase):
    """SQLite implementation of the reading, query and rollup ports.

    Stores readings in ``sensor_readings`` and materializes the rollup
    tiers into their own tables, using aiosqlite for non-blocking access
    and WAL mode for file databases.

    Args:
        db_path: Database file path or ":memory:".
        pipeline: Rollup stages refreshed by ``refresh_all``.
    """

    def __init__(self, db_path: str, pipeline: RollupPipeline | None = None) -> None:
        super().__init__(db_path, _READINGS_SCHEMA)
        self._pipeline = pipeline or RollupPipeline()

    async def write(self, reading: Reading) -> None:
        """Write a reading to storage."""
        async with self.async_connection() as db:
            await db.execute(
                _INSERT_READING,
                (
                    reading.timestamp,
                    reading.device_id,
                    reading.device_type,
                    reading.location,
                    reading.raw_value,
                    reading.unit,
                    reading.log_type,
                    reading.message,
                ),
            )
            await db.commit()

    async def recent(
        self, limit: int, device_id: str | None = None, since: float = 0
    ) -> AsyncIterable[Reading]:
        """Read the most recent readings, newest first."""
        if device_id is not None:
            query = _SELECT_RECENT_BY_DEVICE
            params: tuple[Any, ...] = (since, device_id, limit)
        else:
            query = _SELECT_RECENT
            params = (since, limit)
        async with self.async_connection() as db:
            async with db.execute(query, params) as cursor:
                async for row in cursor:
                    yield _reading_from_row(row)

    async def count(self) -> int:
        """Return total number of readings in storage."""
        async with self.async_connection() as db:
            async with db.execute(_COUNT_READINGS) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else 0

    async def query(
        self, sql: str, params: Sequence[Any] = ()
    ) -> list[dict[str, Any]]:
        """Execute a read-only query and return rows keyed by column name."""
        async with self.async_connection() as db:
            async with db.execute(sql, tuple(params)) as cursor:
                columns = [column[0] for column in cursor.description or ()]
                rows = await cursor.fetchall()
        return [dict(zip(columns, row, strict=True)) for row in rows]

    async def refresh(self, stage: RollupStage, since: float) -> int:
        """Recompute every bucket of ``stage`` from ``since`` onwards.

        Buckets in the window are deleted and rebuilt in one transaction,
        so a bucket whose source rows disappeared is removed as well.
        """
        delete, insert = _refresh_statements(stage)
        async with self.async_connection() as db:
            try:
                await db.execute(delete, (since,))
                cursor = await db.execute(insert, (since,))
                written = cursor.rowcount
                await db.commit()
            except BaseException:
                await db.rollback()
                raise
        return written

    async def refresh_all(self) -> None:
        """Recompute every tier over its full history, in pipeline order."""
        for stage in self._pipeline:
            await self.refresh(stage, float("-inf"))

    async def tier_rows(self, source: DataSource) -> list[dict[str, Any]]:
        """Every row of a data source, oldest bucket first."""
        table = source_table(source)
        return await self.query(
            f"SELECT * FROM {table.table} ORDER BY {table.time_column}, device_type, location"
        )
