"""Shared query parameter parsing utilities for framework adapters.

This module provides utilities for parsing and validating query parameters
that are common across the ASGI and FastAPI adapters.
"""

DEFAULT_LOGS_LIMIT = 50
DEFAULT_DEVICE_LOGS_LIMIT = 20
DEFAULT_SEARCH_LIMIT = 10
MAX_LIMIT = 1000
DEFAULT_RANGE = "1h"


def parse_limit(value: object, default: int) -> int:
    """Parse a result-count bound.

    Returns:
        The value clamped to ``[1, MAX_LIMIT]``, or ``default`` if the value
        is missing, not an integer, or not positive.
    """
    if isinstance(value, bool):
        return default
    try:
        limit = int(str(value)) if not isinstance(value, int) else value
    except (TypeError, ValueError):
        return default
    if limit < 1:
        return default
    return min(limit, MAX_LIMIT)


def _parse_limit_param(params: dict[str, list[str]], default: int) -> int:
    """Parse the 'limit' query parameter.

    Args:
        params: Parsed query string parameters (as returned by urllib.parse.parse_qs).
        default: Value used when the parameter is missing or invalid.
    """
    values = params.get("limit")
    return parse_limit(values[0], default) if values else default


def _parse_range_param(params: dict[str, list[str]]) -> str:
    """Parse the 'range' query parameter.

    Returns:
        The range label (e.g. "30m", "24h"), or DEFAULT_RANGE if missing.
        Malformed labels are passed through so the caller can reject them.
    """
    values = params.get("range")
    if not values or not values[0].strip():
        return DEFAULT_RANGE
    return values[0].strip()
