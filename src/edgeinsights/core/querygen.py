"""Structured query generation and the time-axis guard.

Generators turn a question and its SourceSelection into SQL against the
selected source. Whatever produced the SQL, it passes through
``check_generated_query`` before it is executed: it must be a single
read-only SELECT against the selected table, and a query against a
bucketed source must project the bucket column.
"""

import re
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from edgeinsights.core.errors import CompletionError, MalformedQueryError
from edgeinsights.core.rollups import SOURCE_TABLES, DataSource, source_table
from edgeinsights.core.tiers import SourceSelection

DEFAULT_MAX_ROWS = 100

_NUMERIC_COLUMNS = "device_type, location, avg_value, min_value, max_value, reading_count"
_ACTIVITY_COLUMNS = (
    "device_type, location, total_readings, error_count, warning_count, info_count"
)
_RAW_COLUMNS = "time, device_id, device_type, location, raw_value, unit, log_type, message"

_SOURCE_LABELS: dict[DataSource, str] = {
    DataSource.RAW: "raw sensor readings",
    DataSource.FIVE_MINUTE: "five-minute rollup",
    DataSource.HOURLY: "hourly rollup",
    DataSource.DAILY: "daily rollup",
    DataSource.ACTIVITY: "daily device activity summary",
}

_WRITE_KEYWORDS = re.compile(
    r"\b(insert|update|delete|drop|alter|create|replace|attach|detach|pragma|vacuum|reindex)\b",
    re.IGNORECASE,
)
_AGGREGATE_CALL = re.compile(r"\b(avg|count|sum|min|max)\s*\(", re.IGNORECASE)
_SEVERITY_LITERAL = re.compile(r"'(error|critical|warn|warning|security)'", re.IGNORECASE)
_CODE_FENCE = re.compile(r"```(?:sql)?\s*(.*?)```", re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True)
class GeneratedQuery:
    """A parameterized query ready for the persistence gateway.

    Attributes:
        sql: Query text.
        params: Positional parameters for the query.
        source: Data source the query targets.
        query_type: Coarse category (time_series, activity_summary,
            aggregation, alert_filter, data_query).
        explanation: Human-readable description of what the query does.
    """

    sql: str
    params: tuple[Any, ...] = field(default_factory=tuple)
    source: DataSource = DataSource.RAW
    query_type: str = "data_query"
    explanation: str = ""


class QueryGenerator(Protocol):
    """Turns a structured question into a query against a selected source."""

    async def generate(
        self, question: str, selection: SourceSelection
    ) -> GeneratedQuery: ...


# --- Guards ---


def _projection(sql: str) -> str:
    """Return the select list of the outermost SELECT.

    Scans for the first FROM at parenthesis depth zero outside string
    literals, so subqueries and function calls in the select list are kept
    intact.
    """
    match = re.match(r"\s*select\s+(?:distinct\s+)?", sql, re.IGNORECASE)
    if not match:
        raise MalformedQueryError("generated query must be a SELECT statement")
    depth = 0
    quote: str | None = None
    position = match.end()
    lowered = sql.lower()
    while position < len(sql):
        char = sql[position]
        if quote:
            if char == quote:
                quote = None
        elif char in ("'", '"'):
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        elif depth == 0 and re.match(r"\sfrom\s", lowered[position - 1 : position + 5]):
            return sql[match.end() : position]
        position += 1
    raise MalformedQueryError("generated query has no FROM clause")


def _projects_column(projection: str, column: str) -> bool:
    for item in projection.split(","):
        item = item.strip()
        if item == "*" or item.endswith(".*"):
            return True
    return re.search(rf"\b{re.escape(column)}\b", projection, re.IGNORECASE) is not None


def ensure_read_only(sql: str) -> None:
    """Reject anything but a single SELECT statement.

    Raises:
        MalformedQueryError: If the query could modify data or holds
            several statements.
    """
    body = sql.strip().rstrip(";").strip()
    if ";" in body:
        raise MalformedQueryError("generated query must be a single statement")
    if not re.match(r"select\b", body, re.IGNORECASE):
        raise MalformedQueryError("generated query must be a SELECT statement")
    if _WRITE_KEYWORDS.search(body):
        raise MalformedQueryError("generated query must be read-only")


def ensure_time_axis(sql: str, source: DataSource) -> None:
    """Require the bucket column in the projection of a bucketed query.

    Raises:
        MalformedQueryError: If the query targets a bucketed source but
            does not return its bucket column.
    """
    table = source_table(source)
    if not table.is_bucketed:
        return
    if not _projects_column(_projection(sql), table.time_column):
        raise MalformedQueryError(
            f"query against {table.table} must return the {table.time_column} column"
        )


def ensure_rows_have_time_axis(
    rows: Sequence[Mapping[str, Any]], source: DataSource
) -> None:
    """Reject result rows from a bucketed source that lack the bucket column.

    Raises:
        MalformedQueryError: If any row is missing the bucket column.
    """
    table = source_table(source)
    if not table.is_bucketed:
        return
    for row in rows:
        if table.time_column not in row:
            raise MalformedQueryError(
                f"result rows from {table.table} are missing {table.time_column}"
            )


def ensure_targets_source(sql: str, source: DataSource) -> None:
    """Require the query to read from the selected source's table.

    Raises:
        MalformedQueryError: If the selected table is not referenced.
    """
    table = source_table(source).table
    if not re.search(rf"\b(from|join)\s+{re.escape(table)}\b", sql, re.IGNORECASE):
        raise MalformedQueryError(f"generated query must read from {table}")


def check_generated_query(query: GeneratedQuery) -> GeneratedQuery:
    """Run every guard over a generated query and return it unchanged."""
    ensure_read_only(query.sql)
    ensure_targets_source(query.sql, query.source)
    ensure_time_axis(query.sql, query.source)
    return query


# --- Descriptions ---


def describe_query_type(sql: str, source: DataSource) -> str:
    """Categorize a query for the response payload."""
    if source is DataSource.ACTIVITY:
        return "activity_summary"
    if source_table(source).is_bucketed:
        return "time_series"
    if _AGGREGATE_CALL.search(sql):
        return "aggregation"
    if _SEVERITY_LITERAL.search(sql):
        return "alert_filter"
    return "data_query"


def explain(question: str, source: DataSource, query_type: str) -> str:
    """Build the human-readable explanation returned with query results."""
    label = _SOURCE_LABELS[source]
    if query_type == "time_series":
        verb = "shows time-bucketed trends"
    elif query_type == "activity_summary":
        verb = "counts readings per severity and day"
    elif query_type == "aggregation":
        verb = "calculates aggregated statistics"
    elif query_type == "alert_filter":
        verb = "filters for alerts and issues"
    else:
        verb = "retrieves specific readings"
    return f"This query {verb} from the {label} based on: '{question}'"


# --- Generators ---


class TemplateQueryGenerator:
    """Deterministic, parameterized SQL built from a SourceSelection.

    Args:
        max_rows: Row limit applied to every query.
    """

    def __init__(self, max_rows: int = DEFAULT_MAX_ROWS) -> None:
        self._max_rows = max_rows

    async def generate(
        self, question: str, selection: SourceSelection
    ) -> GeneratedQuery:
        source = selection.source
        table = source_table(source)
        conditions: list[str] = []
        params: list[Any] = []

        if source is DataSource.RAW:
            columns = _RAW_COLUMNS
            if selection.device_id:
                conditions.append("device_id = ?")
                params.append(selection.device_id)
            if selection.severities:
                marks = ", ".join("?" for _ in selection.severities)
                conditions.append(f"log_type IN ({marks})")
                params.extend(selection.severities)
        elif source is DataSource.ACTIVITY:
            columns = f"{table.time_column}, {_ACTIVITY_COLUMNS}"
        else:
            columns = f"{table.time_column}, {_NUMERIC_COLUMNS}"

        if selection.since is not None:
            conditions.append(f"{table.time_column} >= ?")
            params.append(selection.since)
        if selection.device_type and not selection.device_id:
            conditions.append("device_type = ?")
            params.append(selection.device_type)
        if selection.location:
            conditions.append("location = ?")
            params.append(selection.location)

        sql = f"SELECT {columns} FROM {table.table}"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += f" ORDER BY {table.time_column} DESC LIMIT ?"
        params.append(self._max_rows)

        query_type = describe_query_type(sql, source)
        return GeneratedQuery(
            sql=sql,
            params=tuple(params),
            source=source,
            query_type=query_type,
            explanation=explain(question, source, query_type),
        )


def describe_schema() -> str:
    """Schema description handed to the completion collaborator."""
    raw = SOURCE_TABLES[DataSource.RAW].table
    return f"""Tables (all times are unix epoch seconds stored as REAL):

{raw} (raw readings):
- time, device_id, device_type, location, raw_value, unit, log_type, message
- log_type is one of INFO, WARN, WARNING, ERROR, CRITICAL, DEBUG, SECURITY

five_min_sensor_averages (built from {raw}):
- five_min_bucket, {_NUMERIC_COLUMNS}

hourly_sensor_averages (built from five_min_sensor_averages):
- hour, {_NUMERIC_COLUMNS}

daily_sensor_averages (built from hourly_sensor_averages):
- day, {_NUMERIC_COLUMNS}

daily_device_activity (built from {raw}):
- day, {_ACTIVITY_COLUMNS}

Known device types: temperature_sensor, humidity_sensor, motion_detector, camera, controller.
"""


def build_prompt(question: str, selection: SourceSelection, max_rows: int) -> str:
    """Prompt asking for one SQLite query against the selected source."""
    table = source_table(selection.source)
    rules = [
        f"Query only the table {table.table}.",
        "Return a single SQLite SELECT statement and nothing else.",
        "For relative times compare against (strftime('%s','now') - <seconds>).",
        f"Order by {table.time_column} descending and return at most {max_rows} rows.",
    ]
    if table.is_bucketed:
        rules.append(
            f"Always include the {table.time_column} column in the select list; "
            "never return an aggregate value without its time bucket."
        )
    if selection.since is not None:
        rules.append(f"Only include rows with {table.time_column} >= {selection.since:.0f}.")
    if selection.device_id:
        rules.append(f"Filter on device_id = '{selection.device_id}'.")
    if selection.device_type:
        rules.append(f"Filter on device_type = '{selection.device_type}'.")
    if selection.location:
        rules.append(f"Filter on location = '{selection.location}'.")
    numbered = "\n".join(f"{i}. {rule}" for i, rule in enumerate(rules, start=1))
    return (
        "You are a SQL expert for an IoT time-series database.\n\n"
        f"{describe_schema()}\nRules:\n{numbered}\n\n"
        f"Convert this question to SQL: {question}"
    )


def extract_sql(text: str) -> str:
    """Strip code fences and whitespace from a completion."""
    fenced = _CODE_FENCE.search(text)
    sql = fenced.group(1) if fenced else text
    return sql.strip().rstrip(";").strip()


class CompletionQueryGenerator:
    """SQL written by the completion collaborator, constrained to the selection.

    Args:
        complete: Async ``Complete(prompt) -> text`` collaborator.
        max_rows: Row limit requested in the prompt.
    """

    def __init__(
        self,
        complete: Callable[[str], Awaitable[str]],
        max_rows: int = DEFAULT_MAX_ROWS,
    ) -> None:
        self._complete = complete
        self._max_rows = max_rows

    async def generate(
        self, question: str, selection: SourceSelection
    ) -> GeneratedQuery:
        text = await self._complete(build_prompt(question, selection, self._max_rows))
        sql = extract_sql(text or "")
        if not sql:
            raise CompletionError("completion returned no SQL")
        query_type = describe_query_type(sql, selection.source)
        return GeneratedQuery(
            sql=sql,
            source=selection.source,
            query_type=query_type,
            explanation=explain(question, selection.source, query_type),
        )
