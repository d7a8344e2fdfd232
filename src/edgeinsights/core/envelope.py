"""Response envelope shared by every query-style endpoint."""

import time
from dataclasses import dataclass
from typing import Any

from edgeinsights.core.encoding.wire import format_timestamp


@dataclass(frozen=True)
class Envelope:
    """Uniform wrapper for query results.

    Callers branch on ``success`` only. A failed envelope never carries a
    result payload.

    Attributes:
        success: Whether the query produced a result.
        query: The original question or search text.
        timestamp: When the envelope was produced (unix seconds).
        result: Payload of a successful query.
        error: Error text of a failed query.
    """

    success: bool
    query: str
    timestamp: float
    result: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, query: str, result: Any, timestamp: float | None = None) -> "Envelope":
        """Wrap a successful result."""
        return cls(
            success=True,
            query=query,
            timestamp=time.time() if timestamp is None else timestamp,
            result=result,
        )

    @classmethod
    def failure(
        cls, query: str, error: str | BaseException, timestamp: float | None = None
    ) -> "Envelope":
        """Wrap an error; the payload is omitted."""
        return cls(
            success=False,
            query=query,
            timestamp=time.time() if timestamp is None else timestamp,
            error=str(error),
        )

    def to_dict(self) -> dict[str, Any]:
        """Encode as a JSON-compatible dict."""
        obj: dict[str, Any] = {
            "success": self.success,
            "query": self.query,
            "time": format_timestamp(self.timestamp),
        }
        if self.success:
            obj["result"] = self.result
        else:
            obj["error"] = self.error or "unknown error"
        return obj
