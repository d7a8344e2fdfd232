"""Tests for log summaries and anomaly detection."""

import pytest

from edgeinsights.core.analysis import (
    detect_anomalies,
    parse_time_range,
    summarize_readings,
)
from edgeinsights.core.errors import InvalidFieldError
from edgeinsights.core.models import Reading

pytestmark = pytest.mark.tier(0)


def _reading(
    device_id: str = "d1",
    log_type: str = "INFO",
    timestamp: float = 1000.0,
    raw_value: float | None = None,
    message: str = "ok",
) -> Reading:
    return Reading(
        device_id=device_id,
        log_type=log_type,
        message=message,
        timestamp=timestamp,
        device_type="temperature_sensor",
        location="warehouse_a",
        raw_value=raw_value,
        unit="celsius" if raw_value is not None else "",
    )


class TestParseTimeRange:
    """Tests for parse_time_range()."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        ("label", "seconds"),
        [
            ("30s", 30),
            ("30m", 1800),
            ("1h", 3600),
            ("24H", 86400),
            ("7d", 604800),
            ("2w", 1209600),
        ],
    )
    def test_valid_labels(self, label: str, seconds: float) -> None:
        assert parse_time_range(label) == seconds

    @pytest.mark.unit
    @pytest.mark.parametrize("label", ["", "h", "0h", "-1h", "1y", "one hour"])
    def test_invalid_labels(self, label: str) -> None:
        with pytest.raises(InvalidFieldError, match="range"):
            parse_time_range(label)


class TestSummarizeReadings:
    """Tests for summarize_readings()."""

    @pytest.mark.unit
    def test_empty_range(self) -> None:
        summary = summarize_readings([], "1h")
        assert summary.summary == "No logs found in the last 1h."
        assert summary.log_count == 0
        assert summary.key_insights == []

    @pytest.mark.unit
    def test_counts_per_severity_and_devices(self) -> None:
        readings = [
            _reading("d1", "INFO"),
            _reading("d1", "WARN"),
            _reading("d2", "WARNING"),
            _reading("d2", "ERROR"),
            _reading("d2", "CRITICAL"),
        ]
        summary = summarize_readings(readings, "1h")
        assert summary.summary.splitlines() == [
            "In the last 1h, 5 logs were generated across 2 devices:",
            "• 1 INFO logs",
            "• 2 WARN logs",
            "• 2 ERROR logs",
        ]
        assert summary.log_count == 5
        assert "Found 2 error logs that may need attention" in summary.key_insights
        assert "Device d2 reported 2 errors" in summary.key_insights

    @pytest.mark.unit
    def test_security_events_are_listed(self) -> None:
        summary = summarize_readings([_reading(log_type="SECURITY")], "24h")
        assert "• 1 SECURITY logs" in summary.summary
        assert "Found 1 security events to review" in summary.key_insights

    @pytest.mark.unit
    def test_high_volume_insight(self) -> None:
        readings = [_reading(timestamp=float(i)) for i in range(51)]
        summary = summarize_readings(readings, "1h")
        assert (
            "High log volume detected - consider reviewing system health"
            in summary.key_insights
        )

    @pytest.mark.unit
    def test_single_error_device_is_not_called_out(self) -> None:
        summary = summarize_readings([_reading(log_type="ERROR")], "1h")
        assert not any(i.startswith("Device ") for i in summary.key_insights)


class TestDetectAnomalies:
    """Tests for detect_anomalies()."""

    @pytest.mark.unit
    def test_severity_anomalies(self) -> None:
        anomalies = detect_anomalies(
            [
                _reading("d1", "ERROR", timestamp=1.0),
                _reading("d2", "CRITICAL", timestamp=2.0),
                _reading("d3", "SECURITY", timestamp=3.0),
                _reading("d4", "INFO", timestamp=4.0),
            ]
        )
        assert [(a.device_id, a.type, a.severity, a.confidence) for a in anomalies] == [
            ("d3", "security", "high", 0.9),
            ("d2", "critical", "critical", 0.95),
            ("d1", "error", "high", 0.8),
        ]

    @pytest.mark.unit
    def test_outlier_in_numeric_group(self) -> None:
        readings = [
            _reading(f"t{i}", raw_value=20.0 + (i % 2) * 0.5, timestamp=float(i))
            for i in range(19)
        ]
        readings.append(_reading("t99", raw_value=80.0, timestamp=100.0))
        anomalies = detect_anomalies(readings, z_threshold=3.0)
        assert len(anomalies) == 1
        outlier = anomalies[0]
        assert outlier.device_id == "t99"
        assert outlier.type == "outlier"
        assert 0 < outlier.confidence < 1
        assert "80 celsius" in outlier.message

    @pytest.mark.unit
    def test_small_groups_are_not_scored(self) -> None:
        readings = [_reading(raw_value=v) for v in (1.0, 1.0, 1.0, 50.0)]
        assert detect_anomalies(readings, min_samples=10) == []

    @pytest.mark.unit
    def test_constant_group_has_no_outliers(self) -> None:
        readings = [_reading(raw_value=5.0) for _ in range(12)]
        assert detect_anomalies(readings) == []
