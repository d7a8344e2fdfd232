"""Aggregate-tier selection for structured questions.

Given a question already classified as a structured query, pick the one
data source that answers it at the lowest cost. Precedence, first match
wins:

1. a named device id, or a request for raw/individual readings -> raw table
2. error/warning count questions -> daily activity summary
3. time span of about an hour or less -> five-minute tier
4. time span of hours up to two days -> hourly tier
5. anything longer -> daily tier

Questions without a recognizable span default to the hourly tier over
the last 24 hours.
"""

import re
import time
from dataclasses import dataclass

from edgeinsights.core.rollups import (
    DAY,
    HOUR,
    MINUTE,
    DataSource,
    bucket_floor,
    source_table,
)

FIVE_MINUTE_MAX_SPAN = HOUR
HOURLY_MAX_SPAN = 2 * DAY
DEFAULT_SPAN = DAY
DEFAULT_ACTIVITY_SPAN = 7 * DAY

KNOWN_LOCATIONS: tuple[str, ...] = (
    "warehouse_a",
    "warehouse_b",
    "office_floor_1",
    "parking_lot",
    "server_room",
)

# Words in a question mapped to the device_type they imply.
METRIC_DEVICE_TYPES: dict[str, str] = {
    "temperature": "temperature_sensor",
    "temp": "temperature_sensor",
    "humidity": "humidity_sensor",
    "motion": "motion_detector",
    "camera": "camera",
    "controller": "controller",
}

SEVERITY_WORDS: dict[str, tuple[str, ...]] = {
    "error": ("ERROR",),
    "critical": ("CRITICAL",),
    "warning": ("WARN", "WARNING"),
    "security": ("SECURITY",),
    "debug": ("DEBUG",),
}

# Tokens that look like device ids but name a measured quantity.
_NOT_DEVICE_IDS = frozenset({"co2", "no2", "o3", "pm25", "pm10", "h2o", "so2"})

_UNIT_SECONDS: dict[str, float] = {
    "second": 1.0,
    "sec": 1.0,
    "minute": MINUTE,
    "min": MINUTE,
    "hour": HOUR,
    "hr": HOUR,
    "day": DAY,
    "week": 7 * DAY,
    "month": 30 * DAY,
}

_NUMBER_WORDS: dict[str, int] = {
    "a": 1,
    "an": 1,
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
    "ten": 10,
    "twelve": 12,
    "fifteen": 15,
    "thirty": 30,
}

_UNIT_PATTERN = r"(seconds?|secs?|minutes?|mins?|hours?|hrs?|days?|weeks?|months?)"
_QUANTITY_SPAN = re.compile(
    r"\b(\d+(?:\.\d+)?|" + "|".join(_NUMBER_WORDS) + r")[\s-]*" + _UNIT_PATTERN + r"\b"
)
_SINGLE_UNIT_SPAN = re.compile(
    r"\b(?:last|past|previous|this|the)\s+(minute|hour|day|week|month)\b"
)
_RECENT = re.compile(r"\b(recent|recently|latest|right now|real[- ]?time|live|current)\b")
_CADENCE: dict[str, float] = {
    "hourly": DAY,
    "daily": 7 * DAY,
    "weekly": 28 * DAY,
    "monthly": 90 * DAY,
}
_CADENCE_PATTERN = re.compile(r"\b(hourly|daily|weekly|monthly)\b")

_EXPLICIT_DEVICE = re.compile(
    r"\bdevice(?:[ _-]?id)?\s*(?:[:=#]\s*)?(?:'([^']+)'|\"([^\"]+)\")",
    re.IGNORECASE,
)
_DEVICE_TOKEN = re.compile(r"(?<![\w-])((?:[a-z]+[-_])*[a-z]+[-_]?\d+[a-z0-9_-]*)(?![\w-])")
# Bare tokens need a separator ("sensor-01") or the short "d7" form, so
# "Q3" or "mp3" are not taken for devices; "device gw42" still is.
_SHORT_DEVICE = re.compile(r"d\d+")
_DEVICE_CUE = re.compile(r"\bdevice\s+([a-z][a-z0-9]*\d[a-z0-9]*)(?![\w-])")
_RAW_WORDS = re.compile(
    r"\b(raw|individual|each reading|every reading|specific readings?"
    r"|single readings?|exact readings?|unaggregated)\b"
)
_RECORD_NOUNS = re.compile(r"\b(readings|logs|messages|entries|events)\b")
_AGGREGATE_WORDS = re.compile(
    r"\b(average|avg|mean|min|minimum|max|maximum|counts?|total|sum|trends?"
    r"|hourly|daily|weekly|rollups?|aggregated?|how many|number of)\b"
)
_SEVERITY_NOUNS = re.compile(
    r"\b(errors?|warnings?|criticals?|failures?|severity|severities|log levels?)\b"
)
_COUNT_WORDS = re.compile(
    r"\b(counts?|how many|number of|totals?|tally|per day|summary|breakdown)\b"
)


@dataclass(frozen=True)
class SourceSelection:
    """The data source chosen for a question, plus extracted filters.

    Attributes:
        source: Chosen data source.
        reason: Human-readable rule that fired.
        span_seconds: Time span the question refers to, if any.
        since: Lower time bound for the query (bucket-aligned for rollups).
        device_id: Named device id, if any.
        device_type: Device type implied by the question, if any.
        location: Known location named in the question, if any.
        severities: Severities named in the question (raw source only).
    """

    source: DataSource
    reason: str
    span_seconds: float | None = None
    since: float | None = None
    device_id: str | None = None
    device_type: str | None = None
    location: str | None = None
    severities: tuple[str, ...] = ()


@dataclass(frozen=True)
class _Span:
    seconds: float
    since: float


def _location_pattern(location: str) -> re.Pattern[str]:
    spaced = r"[\s_-]?".join(re.escape(part) for part in location.split("_"))
    return re.compile(rf"\b{spaced}\b")


_LOCATION_PATTERNS = {
    location: _location_pattern(location) for location in KNOWN_LOCATIONS
}


def extract_span(text: str, now: float) -> _Span | None:
    """Find the widest time span a lower-cased question refers to."""
    spans: list[_Span] = []

    for amount, unit in _QUANTITY_SPAN.findall(text):
        number = _NUMBER_WORDS.get(amount)
        value = float(number) if number is not None else float(amount)
        seconds = value * _UNIT_SECONDS[unit.rstrip("s")]
        spans.append(_Span(seconds, now - seconds))

    for unit in _SINGLE_UNIT_SPAN.findall(text):
        seconds = _UNIT_SECONDS[unit]
        spans.append(_Span(seconds, now - seconds))

    midnight = bucket_floor(now, DAY)
    if re.search(r"\btoday\b", text):
        # Tier choice treats "today" as a full day; the bound is midnight.
        spans.append(_Span(DAY, midnight))
    if re.search(r"\byesterday\b", text):
        spans.append(_Span(2 * DAY, midnight - DAY))

    if not spans:
        cadence = _CADENCE_PATTERN.search(text)
        if cadence:
            seconds = _CADENCE[cadence.group(1)]
            spans.append(_Span(seconds, now - seconds))
        elif _RECENT.search(text):
            spans.append(_Span(HOUR, now - HOUR))

    if not spans:
        return None
    return max(spans, key=lambda span: span.seconds)


def extract_device_id(text: str) -> str | None:
    """Return a device id named in the question, if any.

    Quoted ids after "device" are taken verbatim (case preserved), as is an
    unquoted token with a digit right after "device". Otherwise the first
    letters-then-digits token with a separator, or of the short "d7" form,
    that is not a known location or quantity name (e.g. d1, sensor-01,
    temp_sensor_03).
    """
    explicit = _EXPLICIT_DEVICE.search(text)
    if explicit:
        return explicit.group(1) or explicit.group(2)
    lowered = text.lower()
    cue = _DEVICE_CUE.search(lowered)
    if cue:
        return text[cue.start(1) : cue.end(1)]
    for token in _DEVICE_TOKEN.findall(lowered):
        if token in _NOT_DEVICE_IDS or token in KNOWN_LOCATIONS:
            continue
        if "-" not in token and "_" not in token and not _SHORT_DEVICE.fullmatch(token):
            continue
        start = lowered.index(token)
        return text[start : start + len(token)]
    return None


def extract_device_type(text: str) -> str | None:
    """Return the device type implied by metric words in the question."""
    for device_type in dict.fromkeys(METRIC_DEVICE_TYPES.values()):
        if re.search(rf"\b{re.escape(device_type)}s?\b", text):
            return device_type
    for word, device_type in METRIC_DEVICE_TYPES.items():
        if re.search(rf"\b{word}s?\b", text):
            return device_type
    return None


def extract_location(text: str) -> str | None:
    """Return a known location named in the question."""
    for location, pattern in _LOCATION_PATTERNS.items():
        if pattern.search(text):
            return location
    return None


def extract_severities(text: str) -> tuple[str, ...]:
    """Return the severities named in the question."""
    found: list[str] = []
    for word, severities in SEVERITY_WORDS.items():
        if re.search(rf"\b{word}s?\b", text):
            found.extend(severities)
    return tuple(found)


def _wants_raw(text: str) -> bool:
    if _RAW_WORDS.search(text):
        return True
    return bool(_RECORD_NOUNS.search(text)) and not _AGGREGATE_WORDS.search(text)


def _wants_activity(text: str) -> bool:
    return bool(_SEVERITY_NOUNS.search(text)) and bool(_COUNT_WORDS.search(text))


def _tier_for_span(seconds: float) -> DataSource:
    if seconds <= FIVE_MINUTE_MAX_SPAN:
        return DataSource.FIVE_MINUTE
    if seconds <= HOURLY_MAX_SPAN:
        return DataSource.HOURLY
    return DataSource.DAILY


def select_source(text: str, now: float | None = None) -> SourceSelection:
    """Choose the data source for a structured question.

    Args:
        text: The question as asked.
        now: Reference time (defaults to the current time).

    Returns:
        SourceSelection naming the source, the rule that chose it, the
        time bound and any filters found in the question.
    """
    if now is None:
        now = time.time()
    lowered = text.lower()
    span = extract_span(lowered, now)
    device_id = extract_device_id(text)
    filters = {
        "device_type": extract_device_type(lowered),
        "location": extract_location(lowered),
    }

    if device_id or _wants_raw(lowered):
        reason = (
            f"question names device {device_id}"
            if device_id
            else "question asks for individual readings"
        )
        return SourceSelection(
            source=DataSource.RAW,
            reason=reason,
            span_seconds=span.seconds if span else None,
            since=span.since if span else None,
            device_id=device_id,
            severities=extract_severities(lowered),
            **filters,
        )

    if _wants_activity(lowered):
        source = DataSource.ACTIVITY
        reason = "question asks for severity counts per day"
        if span is None:
            span = _Span(DEFAULT_ACTIVITY_SPAN, now - DEFAULT_ACTIVITY_SPAN)
    elif span is None:
        source = DataSource.HOURLY
        reason = "no time span given; defaulting to hourly rollup for the last 24 hours"
        span = _Span(DEFAULT_SPAN, now - DEFAULT_SPAN)
    else:
        source = _tier_for_span(span.seconds)
        reason = f"time span of {_describe_span(span.seconds)} fits the {source.value} tier"

    bucket_seconds = source_table(source).bucket_seconds
    assert bucket_seconds is not None
    return SourceSelection(
        source=source,
        reason=reason,
        span_seconds=span.seconds,
        since=bucket_floor(span.since, bucket_seconds),
        **filters,
    )


def _describe_span(seconds: float) -> str:
    for unit, size in (("day", DAY), ("hour", HOUR), ("minute", MINUTE)):
        if seconds >= size:
            value = seconds / size
            amount = f"{value:g}"
            return f"{amount} {unit}" + ("" if value == 1 else "s")
    return f"{seconds:g} seconds"
