"""Summaries and anomaly detection over recent readings."""

import re
import statistics
from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence

from edgeinsights.core.errors import InvalidFieldError
from edgeinsights.core.models import (
    ERROR_SEVERITIES,
    WARNING_SEVERITIES,
    Anomaly,
    LogSummary,
    Reading,
)

HIGH_VOLUME_THRESHOLD = 50
DEFAULT_Z_THRESHOLD = 3.0
DEFAULT_MIN_SAMPLES = 10

_RANGE = re.compile(r"^\s*(\d+)\s*([smhdw])\s*$", re.IGNORECASE)
_RANGE_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 7 * 86400}

# severity -> (anomaly type, anomaly severity, confidence)
_SEVERITY_ANOMALIES: dict[str, tuple[str, str, float]] = {
    "CRITICAL": ("critical", "critical", 0.95),
    "SECURITY": ("security", "high", 0.9),
    "ERROR": ("error", "high", 0.8),
}


def parse_time_range(label: str) -> float:
    """Convert a range label such as ``30m``, ``1h``, ``24h`` or ``7d`` to seconds.

    Raises:
        InvalidFieldError: If the label is not a positive amount and unit.
    """
    match = _RANGE.match(label or "")
    if not match or int(match.group(1)) <= 0:
        raise InvalidFieldError("range", f"expected a duration like 1h or 7d, got {label!r}")
    return int(match.group(1)) * _RANGE_UNITS[match.group(2).lower()]


def summarize_readings(readings: Sequence[Reading], time_range: str) -> LogSummary:
    """Count readings per severity and device and derive key insights."""
    if not readings:
        return LogSummary(
            summary=f"No logs found in the last {time_range}.",
            time_range=time_range,
            log_count=0,
        )

    severities = Counter(reading.log_type for reading in readings)
    devices = {reading.device_id for reading in readings}
    warnings = sum(severities[s] for s in WARNING_SEVERITIES)
    errors = sum(severities[s] for s in ERROR_SEVERITIES)

    lines = [
        f"In the last {time_range}, {len(readings)} logs were generated "
        f"across {len(devices)} devices:",
        f"• {severities['INFO']} INFO logs",
        f"• {warnings} WARN logs",
        f"• {errors} ERROR logs",
    ]
    if severities["SECURITY"]:
        lines.append(f"• {severities['SECURITY']} SECURITY logs")

    insights: list[str] = []
    if errors:
        insights.append(f"Found {errors} error logs that may need attention")
    if severities["SECURITY"]:
        insights.append(f"Found {severities['SECURITY']} security events to review")
    if len(readings) > HIGH_VOLUME_THRESHOLD:
        insights.append("High log volume detected - consider reviewing system health")
    noisiest, noisiest_errors = _noisiest_device(readings)
    if noisiest and noisiest_errors > 1:
        insights.append(f"Device {noisiest} reported {noisiest_errors} errors")

    return LogSummary(
        summary="\n".join(lines) + "\n",
        time_range=time_range,
        log_count=len(readings),
        key_insights=insights,
    )


def _noisiest_device(readings: Iterable[Reading]) -> tuple[str | None, int]:
    counts = Counter(r.device_id for r in readings if r.log_type in ERROR_SEVERITIES)
    if not counts:
        return None, 0
    return counts.most_common(1)[0]


def detect_anomalies(
    readings: Sequence[Reading],
    z_threshold: float = DEFAULT_Z_THRESHOLD,
    min_samples: int = DEFAULT_MIN_SAMPLES,
) -> list[Anomaly]:
    """Flag error-severity readings and numeric outliers.

    Error, critical and security readings are flagged with a confidence
    that grows with severity. Numeric readings are grouped by device type
    and location; within a group of at least ``min_samples`` values, a
    reading whose z-score reaches ``z_threshold`` is flagged as an outlier
    with confidence ``1 - 1/z``.

    Returns:
        Anomalies, newest first.
    """
    anomalies: list[Anomaly] = []
    for reading in readings:
        flagged = _SEVERITY_ANOMALIES.get(reading.log_type)
        if flagged is None:
            continue
        kind, severity, confidence = flagged
        anomalies.append(
            Anomaly(
                timestamp=reading.timestamp,
                device_id=reading.device_id,
                type=kind,
                severity=severity,
                message=reading.message,
                confidence=confidence,
            )
        )
    anomalies.extend(_outliers(readings, z_threshold, min_samples))
    anomalies.sort(key=lambda anomaly: anomaly.timestamp, reverse=True)
    return anomalies


def _outliers(
    readings: Sequence[Reading], z_threshold: float, min_samples: int
) -> list[Anomaly]:
    groups: dict[tuple[str, str], list[Reading]] = defaultdict(list)
    for reading in readings:
        if reading.raw_value is not None:
            groups[(reading.device_type, reading.location)].append(reading)

    found: list[Anomaly] = []
    for (device_type, location), members in groups.items():
        if len(members) < min_samples:
            continue
        values = [m.raw_value for m in members if m.raw_value is not None]
        mean = statistics.fmean(values)
        spread = statistics.pstdev(values)
        if spread == 0:
            continue
        for member in members:
            assert member.raw_value is not None
            z = abs(member.raw_value - mean) / spread
            if z < z_threshold:
                continue
            unit = f" {member.unit}" if member.unit else ""
            found.append(
                Anomaly(
                    timestamp=member.timestamp,
                    device_id=member.device_id,
                    type="outlier",
                    severity="high" if z >= 2 * z_threshold else "medium",
                    message=(
                        f"value {member.raw_value:g}{unit} is {z:.1f} standard "
                        f"deviations from the {device_type or 'device'} mean of "
                        f"{mean:.2f} at {location or 'unknown location'}"
                    ),
                    confidence=round(1 - 1 / z, 3),
                )
            )
    return found
