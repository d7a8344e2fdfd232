"""Core domain models for device telemetry."""

from dataclasses import dataclass, field

# Severities accepted on the ingestion channel. WARN and WARNING are both
# in circulation among device firmwares and are kept distinct on the wire.
SEVERITIES = frozenset(
    {"DEBUG", "INFO", "WARN", "WARNING", "ERROR", "CRITICAL", "SECURITY"}
)
ERROR_SEVERITIES = frozenset({"ERROR", "CRITICAL"})
WARNING_SEVERITIES = frozenset({"WARN", "WARNING"})


@dataclass(frozen=True)
class Reading:
    """A single telemetry event reported by a device.

    Attributes:
        device_id: Identifier of the reporting device.
        log_type: Severity (INFO, WARN, WARNING, ERROR, CRITICAL, DEBUG, SECURITY).
        message: Free-text message. May be empty for pure-metric readings.
        timestamp: Unix timestamp in seconds. 0 means "not provided".
        device_type: Kind of device (e.g. temperature_sensor).
        location: Where the device is installed (e.g. warehouse_a).
        raw_value: Numeric measurement, if the reading carries one.
        unit: Unit of raw_value (e.g. celsius, percent).
    """

    device_id: str
    log_type: str
    message: str = ""
    timestamp: float = 0.0
    device_type: str = ""
    location: str = ""
    raw_value: float | None = None
    unit: str = ""


@dataclass(frozen=True)
class AggregateRow:
    """One time bucket of a numeric rollup tier.

    Attributes:
        bucket: Bucket start as a unix timestamp.
        device_type: Device type the bucket aggregates.
        location: Location the bucket aggregates.
        avg_value: Average of raw_value in the bucket.
        min_value: Minimum raw_value in the bucket.
        max_value: Maximum raw_value in the bucket.
        reading_count: Number of readings folded into the bucket.
    """

    bucket: float
    device_type: str
    location: str
    avg_value: float
    min_value: float
    max_value: float
    reading_count: int


@dataclass(frozen=True)
class ActivitySummaryRow:
    """Per-day severity counts for one device type and location."""

    day: float
    device_type: str
    location: str
    total_readings: int
    error_count: int
    warning_count: int
    info_count: int


@dataclass(frozen=True)
class EmbeddingRecord:
    """An immutable vector derived from a chunk of reading text.

    Attributes:
        embedding_id: Unique id of the record.
        timestamp: Time of the source reading.
        device_id: Device of the source reading.
        chunk_seq: Position of the chunk within the source text.
        chunk: The text that was embedded.
        embedding: The vector.
        device_type: Copied from the source reading.
        location: Copied from the source reading.
        log_type: Copied from the source reading.
        raw_value: Copied from the source reading.
        unit: Copied from the source reading.
    """

    embedding_id: str
    timestamp: float
    device_id: str
    chunk_seq: int
    chunk: str
    embedding: tuple[float, ...]
    device_type: str = ""
    location: str = ""
    log_type: str = ""
    raw_value: float | None = None
    unit: str = ""


@dataclass(frozen=True)
class SearchHit:
    """An embedding record ranked against a query vector.

    Lower distance means more similar.
    """

    record: EmbeddingRecord
    distance: float


@dataclass(frozen=True)
class Anomaly:
    """A reading flagged as unusual."""

    timestamp: float
    device_id: str
    type: str
    severity: str
    message: str
    confidence: float


@dataclass(frozen=True)
class LogSummary:
    """Textual summary of readings over a time range."""

    summary: str
    time_range: str
    log_count: int
    key_insights: list[str] = field(default_factory=list)
