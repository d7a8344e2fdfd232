"""Keyword heuristic that routes free-text questions.

A question is either a structured data query (answered by generated SQL
against the rollup tiers) or a pattern search (answered by semantic
search). Scoring is a pure function over two fixed lexicons.
"""

import re
from dataclasses import dataclass
from enum import Enum


class QueryKind(str, Enum):
    """Routing outcome of the classifier."""

    STRUCTURED = "data_query"
    PATTERN = "pattern_search"


STRUCTURED_TERMS: tuple[str, ...] = (
    # quantity words
    "show me",
    "what is",
    "what's",
    "how many",
    "average",
    "avg",
    "mean",
    "count",
    "total",
    "sum",
    "minimum",
    "maximum",
    "min",
    "max",
    "list",
    # metric and entity names
    "temperature",
    "humidity",
    "motion",
    "camera",
    "controller",
    "device",
    "location",
    "reading",
    "raw_value",
    "unit",
    "value",
    # comparison operators
    "above",
    "below",
    "between",
    "greater than",
    "less than",
    "more than",
    "fewer than",
    "over",
    "under",
    # relative time
    "last hour",
    "last 24 hours",
    "last minute",
    "yesterday",
    "today",
    "this week",
    "last week",
    "this month",
    "minute",
    "time",
    "hour",
    "day",
    "week",
    "month",
)

PATTERN_TERMS: tuple[str, ...] = (
    "why",
    "how",
    "pattern",
    "similar",
    "unusual",
    "anomaly",
    "anomalies",
    "abnormal",
    "problem",
    "issue",
    "failure",
    "fail",
    "malfunction",
    "error",
    "warning",
    "critical",
    "security",
    "behavior",
    "behaviour",
    "trend",
    "insight",
    "analysis",
    "explain",
    "understand",
    "cause",
    "root cause",
    "find logs",
    "search for",
    "discover",
    "investigate",
    "diagnose",
)


def _build_matcher(
    structured: tuple[str, ...], pattern: tuple[str, ...]
) -> tuple[re.Pattern[str], dict[str, QueryKind]]:
    """Compile one alternation over both lexicons, longest term first.

    Longest-first alternation makes overlapping terms ("how" inside
    "how many") resolve to the longer term, so one span is never counted
    for both lexicons.
    """
    kinds: dict[str, QueryKind] = {}
    for term in pattern:
        kinds[term] = QueryKind.PATTERN
    for term in structured:
        kinds[term] = QueryKind.STRUCTURED
    ordered = sorted(kinds, key=len, reverse=True)
    alternation = "|".join(re.escape(term) for term in ordered)
    return re.compile(rf"(?<![\w'])({alternation})(?:e?s)?(?!\w)"), kinds


_MATCHER, _TERM_KINDS = _build_matcher(STRUCTURED_TERMS, PATTERN_TERMS)


@dataclass(frozen=True)
class ClassifierScore:
    """Lexicon hit counts for one question."""

    structured: int
    pattern: int

    @property
    def kind(self) -> QueryKind:
        # Ties go to pattern search.
        if self.structured > self.pattern:
            return QueryKind.STRUCTURED
        return QueryKind.PATTERN


def score(text: str) -> ClassifierScore:
    """Count structured and pattern lexicon occurrences in ``text``."""
    structured = pattern = 0
    for match in _MATCHER.finditer(text.lower()):
        if _TERM_KINDS[match.group(1)] is QueryKind.STRUCTURED:
            structured += 1
        else:
            pattern += 1
    return ClassifierScore(structured=structured, pattern=pattern)


def classify(text: str) -> QueryKind:
    """Route a question to structured querying or pattern search."""
    return score(text).kind
