"""Queryable data sources and the hierarchical rollup pipeline.

Numeric rollups form a strict chain: raw readings feed the five-minute
tier, which feeds the hourly tier, which feeds the daily tier. Each stage
refreshes only from the stage directly below it, and each stage refreshes
less often than the one below it. The activity summary is built from raw
readings and sits outside the chain because severity counts do not
compose across numeric buckets.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum

MINUTE = 60.0
HOUR = 3600.0
DAY = 86400.0


class DataSource(str, Enum):
    """Every source a structured query may target."""

    RAW = "raw"
    FIVE_MINUTE = "five_minute"
    HOURLY = "hourly"
    DAILY = "daily"
    ACTIVITY = "activity"


@dataclass(frozen=True)
class SourceTable:
    """Physical layout of a data source.

    Attributes:
        table: Table name.
        time_column: Column holding the time axis.
        bucket_seconds: Bucket width, or None for the raw table.
    """

    table: str
    time_column: str
    bucket_seconds: float | None = None

    @property
    def is_bucketed(self) -> bool:
        return self.bucket_seconds is not None


SOURCE_TABLES: dict[DataSource, SourceTable] = {
    DataSource.RAW: SourceTable("sensor_readings", "time"),
    DataSource.FIVE_MINUTE: SourceTable(
        "five_min_sensor_averages", "five_min_bucket", 5 * MINUTE
    ),
    DataSource.HOURLY: SourceTable("hourly_sensor_averages", "hour", HOUR),
    DataSource.DAILY: SourceTable("daily_sensor_averages", "day", DAY),
    DataSource.ACTIVITY: SourceTable("daily_device_activity", "day", DAY),
}


def source_table(source: DataSource) -> SourceTable:
    """Return the table layout for a data source."""
    return SOURCE_TABLES[source]


def bucket_floor(timestamp: float, bucket_seconds: float) -> float:
    """Align a timestamp down to the start of its bucket."""
    return (timestamp // bucket_seconds) * bucket_seconds


@dataclass(frozen=True)
class RollupStage:
    """One materialized tier and its refresh policy.

    Attributes:
        target: The data source this stage materializes.
        source: The data source it reads from.
        schedule_interval: Seconds between refreshes.
        start_offset: How far back each refresh recomputes, in seconds.
    """

    target: DataSource
    source: DataSource
    schedule_interval: float
    start_offset: float

    @property
    def name(self) -> str:
        return self.target.value

    @property
    def table(self) -> SourceTable:
        return SOURCE_TABLES[self.target]

    @property
    def source_table(self) -> SourceTable:
        return SOURCE_TABLES[self.source]

    def window_start(self, now: float) -> float:
        """Earliest bucket start recomputed by a refresh at ``now``."""
        bucket_seconds = self.table.bucket_seconds
        assert bucket_seconds is not None
        return bucket_floor(now - self.start_offset, bucket_seconds)


# Order of the numeric chain, lowest tier first.
NUMERIC_CHAIN: tuple[DataSource, ...] = (
    DataSource.RAW,
    DataSource.FIVE_MINUTE,
    DataSource.HOURLY,
    DataSource.DAILY,
)

DEFAULT_STAGES: tuple[RollupStage, ...] = (
    RollupStage(
        DataSource.FIVE_MINUTE,
        DataSource.RAW,
        schedule_interval=MINUTE,
        start_offset=HOUR,
    ),
    RollupStage(
        DataSource.HOURLY,
        DataSource.FIVE_MINUTE,
        schedule_interval=5 * MINUTE,
        start_offset=3 * HOUR,
    ),
    RollupStage(
        DataSource.DAILY,
        DataSource.HOURLY,
        schedule_interval=HOUR,
        start_offset=3 * DAY,
    ),
)

DEFAULT_ACTIVITY_STAGE = RollupStage(
    DataSource.ACTIVITY,
    DataSource.RAW,
    schedule_interval=HOUR,
    start_offset=3 * DAY,
)


class RollupPipeline:
    """Ordered refresh pipeline: numeric chain first, then side stages.

    Args:
        stages: Numeric chain stages, lowest tier first.
        side_stages: Stages built directly from raw readings.

    Raises:
        ValueError: If a chain stage does not read from the stage directly
            below it, or its schedule is not strictly more relaxed.
    """

    def __init__(
        self,
        stages: Iterable[RollupStage] = DEFAULT_STAGES,
        side_stages: Iterable[RollupStage] = (DEFAULT_ACTIVITY_STAGE,),
    ) -> None:
        self._stages = tuple(stages)
        self._side_stages = tuple(side_stages)
        self._check_chain()
        for stage in self._side_stages:
            if stage.source is not DataSource.RAW:
                raise ValueError(f"side stage {stage.name} must read raw readings")

    def _check_chain(self) -> None:
        previous: RollupStage | None = None
        for position, stage in enumerate(self._stages, start=1):
            if position >= len(NUMERIC_CHAIN):
                raise ValueError(f"stage {stage.name} extends past the daily tier")
            if stage.target is not NUMERIC_CHAIN[position]:
                raise ValueError(
                    f"stage {stage.name} is out of order; "
                    f"expected {NUMERIC_CHAIN[position].value}"
                )
            if stage.source is not NUMERIC_CHAIN[position - 1]:
                raise ValueError(
                    f"stage {stage.name} must read from "
                    f"{NUMERIC_CHAIN[position - 1].value}, not {stage.source.value}"
                )
            if previous and stage.schedule_interval <= previous.schedule_interval:
                raise ValueError(
                    f"stage {stage.name} must refresh less often than {previous.name}"
                )
            previous = stage

    @property
    def stages(self) -> tuple[RollupStage, ...]:
        return self._stages

    @property
    def side_stages(self) -> tuple[RollupStage, ...]:
        return self._side_stages

    def __iter__(self) -> Iterator[RollupStage]:
        """Iterate stages in refresh order."""
        yield from self._stages
        yield from self._side_stages
