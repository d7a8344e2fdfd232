"""Per-task logging context for connections and requests.

Context lives in a ContextVar, so every asyncio task (one per WebSocket
connection, one per HTTP request) sees only its own fields.
"""

import logging
import sys
from contextvars import ContextVar
from typing import Any

_log_context: ContextVar[dict[str, Any] | None] = ContextVar(
    "edgeinsights_log_context", default=None
)

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s %(context)s%(message)s"


def get_log_context() -> dict[str, Any]:
    """Return a copy of the current task's logging context."""
    return dict(_log_context.get() or {})


def set_log_context(**fields: Any) -> None:
    """Replace the current task's logging context."""
    _log_context.set(dict(fields))


def update_log_context(**fields: Any) -> None:
    """Add fields to the current task's logging context."""
    context = get_log_context()
    context.update(fields)
    _log_context.set(context)


def clear_log_context() -> None:
    """Remove every field from the current task's logging context."""
    _log_context.set(None)


class LogContextFilter(logging.Filter):
    """Copies the logging context onto each record.

    Fields become record attributes; ``record.context`` holds them rendered
    as ``key=value`` pairs for format strings.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        context = get_log_context()
        for key, value in context.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        record.context = "".join(f"[{key}={value}] " for key, value in context.items())
        return True


def configure_logging(level: str | int = "INFO", fmt: str = DEFAULT_FORMAT) -> None:
    """Install a stderr handler carrying the context filter on the package logger."""
    logger = logging.getLogger("edgeinsights")
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    for existing in logger.handlers:
        if any(isinstance(f, LogContextFilter) for f in existing.filters):
            return
    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(LogContextFilter())
    handler.setFormatter(logging.Formatter(fmt))
    logger.addHandler(handler)
