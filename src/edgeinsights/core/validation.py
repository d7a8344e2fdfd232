"""Ingestion validator for inbound readings."""

import time
from collections.abc import Callable
from dataclasses import replace

from edgeinsights.core.errors import InvalidFieldError, MissingFieldError
from edgeinsights.core.models import SEVERITIES, Reading


def validate(reading: Reading, now: Callable[[], float] = time.time) -> Reading:
    """Check a reading and return the version that may be persisted.

    Rules:
        - device_id must be non-empty.
        - log_type must be non-empty and a known severity (case-insensitive).
        - message may be empty only when raw_value is present.
        - a zero timestamp is replaced with ``now()``.

    Args:
        reading: The decoded reading.
        now: Clock used for timestamp substitution.

    Returns:
        The reading with severity upper-cased and timestamp filled in.

    Raises:
        MissingFieldError: If a required field is empty.
        InvalidFieldError: If log_type is not a known severity.
    """
    if not reading.device_id:
        raise MissingFieldError("device_id")
    if not reading.log_type:
        raise MissingFieldError("log_type")

    severity = reading.log_type.upper()
    if severity not in SEVERITIES:
        raise InvalidFieldError("log_type", f"unknown severity {reading.log_type!r}")

    if not reading.message and reading.raw_value is None:
        raise MissingFieldError("message")

    timestamp = reading.timestamp if reading.timestamp else now()
    return replace(reading, log_type=severity, timestamp=timestamp)
