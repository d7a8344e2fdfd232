"""JSON wire codec for readings and query results."""

import json
import math
from datetime import UTC, datetime
from typing import Any

from edgeinsights.core.errors import InvalidFieldError, InvalidReadingError
from edgeinsights.core.models import (
    Anomaly,
    LogSummary,
    Reading,
    SearchHit,
)

_TEXT_FIELDS = ("device_id", "device_type", "location", "unit", "log_type", "message")

# Unix seconds that datetime can render, years 1 through 9999.
MIN_TIMESTAMP = datetime(1, 1, 2, tzinfo=UTC).timestamp()
MAX_TIMESTAMP = datetime(9999, 12, 31, tzinfo=UTC).timestamp()


def format_timestamp(timestamp: float) -> str:
    """Render a unix timestamp as an ISO-8601 UTC string."""
    return datetime.fromtimestamp(timestamp, tz=UTC).isoformat()


def parse_timestamp(value: Any) -> float:
    """Parse a wire timestamp into unix seconds.

    Accepts unix numbers and ISO-8601 strings. Naive strings are read as UTC.
    Missing values and the year-1 zero time some clients send for "unset"
    both map to 0.0. Millisecond epochs and non-finite numbers are
    rejected rather than stored.

    Raises:
        InvalidFieldError: If the value cannot be interpreted as a time.
    """
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        raise InvalidFieldError("time", "must be a timestamp")
    if isinstance(value, int | float):
        return _checked_timestamp(_as_float(value, "time"), value)
    if not isinstance(value, str):
        raise InvalidFieldError("time", "must be a timestamp")
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise InvalidFieldError("time", f"unparseable timestamp {value!r}") from e
    if parsed.year <= 1:
        return 0.0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return _checked_timestamp(parsed.timestamp(), value)


def _as_float(value: int | float, name: str) -> float:
    try:
        return float(value)
    except OverflowError:
        raise InvalidFieldError(name, "number out of range") from None


def _checked_timestamp(timestamp: float, value: Any) -> float:
    if not math.isfinite(timestamp) or not MIN_TIMESTAMP <= timestamp <= MAX_TIMESTAMP:
        raise InvalidFieldError("time", f"timestamp out of range {value!r}")
    return timestamp


def decode_reading(payload: Any) -> Reading:
    """Build a Reading from a decoded JSON object.

    Only shape and types are checked here; required-field rules live in
    ``edgeinsights.core.validation``.

    Raises:
        InvalidReadingError: If the payload is not a JSON object.
        InvalidFieldError: If a field has the wrong type.
    """
    if not isinstance(payload, dict):
        raise InvalidReadingError("reading must be a JSON object")

    text: dict[str, str] = {}
    for name in _TEXT_FIELDS:
        value = payload.get(name)
        if value is None:
            text[name] = ""
        elif isinstance(value, str):
            text[name] = value.strip() if name != "message" else value
        else:
            raise InvalidFieldError(name, "must be a string")

    raw_value = payload.get("raw_value")
    if raw_value is not None and (
        isinstance(raw_value, bool) or not isinstance(raw_value, int | float)
    ):
        raise InvalidFieldError("raw_value", "must be a number")
    if raw_value is not None:
        raw_value = _as_float(raw_value, "raw_value")
        if not math.isfinite(raw_value):
            raise InvalidFieldError("raw_value", "must be finite")

    return Reading(
        device_id=text["device_id"],
        log_type=text["log_type"],
        message=text["message"],
        timestamp=parse_timestamp(payload.get("time")),
        device_type=text["device_type"],
        location=text["location"],
        raw_value=raw_value,
        unit=text["unit"],
    )


def parse_message(message: str | bytes) -> Reading:
    """Decode one ingestion-channel message into a Reading.

    Raises:
        InvalidReadingError: If the message is not valid JSON.
    """
    try:
        payload = json.loads(message)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidReadingError("Invalid JSON format") from e
    return decode_reading(payload)


def encode_reading(reading: Reading) -> dict[str, Any]:
    """Encode a Reading as a JSON-compatible dict."""
    obj: dict[str, Any] = {
        "time": format_timestamp(reading.timestamp),
        "device_id": reading.device_id,
        "device_type": reading.device_type,
        "location": reading.location,
        "log_type": reading.log_type,
        "message": reading.message,
    }
    if reading.raw_value is not None:
        obj["raw_value"] = reading.raw_value
    if reading.unit:
        obj["unit"] = reading.unit
    return obj


def encode_hit(hit: SearchHit) -> dict[str, Any]:
    """Encode a semantic search hit."""
    record = hit.record
    obj: dict[str, Any] = {
        "embedding_id": record.embedding_id,
        "time": format_timestamp(record.timestamp),
        "device_id": record.device_id,
        "device_type": record.device_type,
        "location": record.location,
        "log_type": record.log_type,
        "chunk_seq": record.chunk_seq,
        "chunk": record.chunk,
        "distance": hit.distance,
    }
    if record.raw_value is not None:
        obj["raw_value"] = record.raw_value
    if record.unit:
        obj["unit"] = record.unit
    return obj


def encode_anomaly(anomaly: Anomaly) -> dict[str, Any]:
    """Encode a detected anomaly."""
    return {
        "time": format_timestamp(anomaly.timestamp),
        "device_id": anomaly.device_id,
        "type": anomaly.type,
        "severity": anomaly.severity,
        "message": anomaly.message,
        "confidence": anomaly.confidence,
    }


def encode_summary(summary: LogSummary) -> dict[str, Any]:
    """Encode a log summary."""
    return {
        "summary": summary.summary,
        "time_range": summary.time_range,
        "log_count": summary.log_count,
        "key_insights": list(summary.key_insights),
    }
