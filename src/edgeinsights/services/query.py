"""Natural-language query routing, summaries and anomaly reports.

Every public method returns an Envelope. Malformed input, collaborator
failures and rejected generated queries all become failed envelopes;
nothing is retried.
"""

import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from edgeinsights.core.analysis import (
    DEFAULT_MIN_SAMPLES,
    DEFAULT_Z_THRESHOLD,
    detect_anomalies,
    parse_time_range,
    summarize_readings,
)
from edgeinsights.core.classifier import QueryKind, classify
from edgeinsights.core.encoding.wire import (
    encode_anomaly,
    encode_hit,
    encode_summary,
    format_timestamp,
)
from edgeinsights.core.envelope import Envelope
from edgeinsights.core.errors import (
    CollaboratorError,
    MalformedQueryError,
    ValidationError,
)
from edgeinsights.core.models import Reading
from edgeinsights.core.ports import QueryExecutorPort, ReadingStoragePort
from edgeinsights.core.querygen import (
    QueryGenerator,
    TemplateQueryGenerator,
    check_generated_query,
    ensure_rows_have_time_axis,
)
from edgeinsights.core.rollups import SOURCE_TABLES
from edgeinsights.core.tiers import select_source
from edgeinsights.services.search import DEFAULT_LIMIT, SemanticSearchEngine, answer

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY_RANGE = "1h"
DEFAULT_ANOMALY_RANGE = "24h"
DEFAULT_ANALYSIS_LIMIT = 1000
PATTERN_SEARCH_LIMIT = 5

_TIME_COLUMNS = frozenset(table.time_column for table in SOURCE_TABLES.values())
_HIDDEN_COLUMNS = frozenset({"embedding"})

_HANDLED = (CollaboratorError, MalformedQueryError, ValidationError)


def format_row(row: Mapping[str, Any]) -> dict[str, Any]:
    """Render time-axis columns as ISO-8601 and drop vector columns."""
    formatted: dict[str, Any] = {}
    for column, value in row.items():
        if column in _HIDDEN_COLUMNS:
            continue
        if column in _TIME_COLUMNS and isinstance(value, int | float):
            value = format_timestamp(value)
        formatted[column] = value
    return formatted


class QueryService:
    """Routes analyst questions to structured queries or semantic search.

    Args:
        storage: Persistence gateway for recent readings.
        executor: Runs generated queries against readings and rollups.
        search_engine: Semantic search over embedding records.
        generator: Structured query generator (template-based by default).
        now: Clock used for time spans.
        analysis_limit: Maximum readings considered by summaries and
            anomaly detection.
        z_threshold: Outlier threshold for anomaly detection.
        min_samples: Minimum group size for outlier detection.
    """

    def __init__(
        self,
        storage: ReadingStoragePort,
        executor: QueryExecutorPort,
        search_engine: SemanticSearchEngine,
        generator: QueryGenerator | None = None,
        now: Callable[[], float] = time.time,
        analysis_limit: int = DEFAULT_ANALYSIS_LIMIT,
        z_threshold: float = DEFAULT_Z_THRESHOLD,
        min_samples: int = DEFAULT_MIN_SAMPLES,
    ) -> None:
        self._storage = storage
        self._executor = executor
        self._search_engine = search_engine
        self._generator = generator or TemplateQueryGenerator()
        self._now = now
        self._analysis_limit = analysis_limit
        self._z_threshold = z_threshold
        self._min_samples = min_samples

    async def query(self, text: str) -> Envelope:
        """Classify a question and answer it from the matching source."""
        question = (text or "").strip()
        if not question:
            return Envelope.failure(text or "", "query is required")
        kind = classify(question)
        logger.info("Routing query as %s: %r", kind.value, question)
        try:
            if kind is QueryKind.STRUCTURED:
                result = await self._structured(question)
            else:
                result = await self._pattern(question)
        except _HANDLED as e:
            logger.warning("Query failed (%s): %s", type(e).__name__, e)
            return Envelope.failure(question, e)
        return Envelope.ok(question, result)

    async def _structured(self, question: str) -> dict[str, Any]:
        selection = select_source(question, now=self._now())
        logger.debug("Selected %s: %s", selection.source.value, selection.reason)
        generated = check_generated_query(
            await self._generator.generate(question, selection)
        )
        rows = await self._executor.query(generated.sql, generated.params)
        ensure_rows_have_time_axis(rows, generated.source)
        return {
            "sql": generated.sql,
            "result": [format_row(row) for row in rows],
            "row_count": len(rows),
            "query_type": generated.query_type,
            "explanation": generated.explanation,
            "source": selection.source.value,
            "reason": selection.reason,
        }

    async def _pattern(self, question: str) -> dict[str, Any]:
        hits = await self._search_engine.search(question, PATTERN_SEARCH_LIMIT)
        return {
            "answer": answer(hits),
            "relevant_logs": [encode_hit(hit) for hit in hits],
            "log_count": len(hits),
            "query_type": QueryKind.PATTERN.value,
        }

    async def search(self, text: str, limit: int = DEFAULT_LIMIT) -> Envelope:
        """Semantic search that bypasses the classifier."""
        search_text = (text or "").strip()
        if not search_text:
            return Envelope.failure(text or "", "search_text is required")
        try:
            hits = await self._search_engine.search(search_text, limit)
        except _HANDLED as e:
            logger.warning("Search failed (%s): %s", type(e).__name__, e)
            return Envelope.failure(search_text, e)
        return Envelope.ok(
            search_text,
            {
                "results": [encode_hit(hit) for hit in hits],
                "count": len(hits),
                "query": search_text,
            },
        )

    async def summarize(self, time_range: str = DEFAULT_SUMMARY_RANGE) -> Envelope:
        """Summarize readings received within ``time_range`` (e.g. ``1h``)."""
        label = f"Summarize logs from last {time_range}"
        try:
            readings = await self._recent(time_range)
        except _HANDLED as e:
            return Envelope.failure(label, e)
        return Envelope.ok(label, encode_summary(summarize_readings(readings, time_range)))

    async def detect_anomalies(
        self, time_range: str = DEFAULT_ANOMALY_RANGE
    ) -> Envelope:
        """Report anomalous readings within ``time_range``."""
        label = "Detect anomalies in recent logs"
        try:
            readings = await self._recent(time_range)
        except _HANDLED as e:
            return Envelope.failure(label, e)
        anomalies = detect_anomalies(
            readings, z_threshold=self._z_threshold, min_samples=self._min_samples
        )
        return Envelope.ok(
            label,
            {
                "anomalies": [encode_anomaly(anomaly) for anomaly in anomalies],
                "total_found": len(anomalies),
                "time_range": time_range,
            },
        )

    async def _recent(self, time_range: str) -> list[Reading]:
        since = self._now() - parse_time_range(time_range)
        return [
            reading
            async for reading in self._storage.recent(self._analysis_limit, since=since)
        ]
