"""Logging helpers shared by services and adapters."""

import logging
import sys
import time
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass

_logger = logging.getLogger("edgeinsights")


def log_exception(
    message: str,
    logger: logging.Logger | None = None,
    **attributes: str | int | float | bool,
) -> None:
    """Log the exception currently being handled at ERROR level.

    Call from inside an ``except`` block. The traceback goes to the log,
    never to the client.

    Args:
        message: What was being attempted.
        logger: Logger to use (defaults to the package logger).
        **attributes: Structured fields attached to the record.
    """
    exc_type, exc_value, _ = sys.exc_info()
    fields: dict[str, str | int | float | bool] = dict(attributes)
    if exc_type is not None:
        fields["exc_type"] = exc_type.__name__
        fields["exc_message"] = str(exc_value)
    (logger or _logger).error(message, exc_info=exc_type is not None, extra=fields)


@dataclass
class TimedLogResult:
    """Result object for the timed_log context manager."""

    elapsed_seconds: float = 0.0


@contextmanager
def timed_log(
    message: str,
    logger: logging.Logger | None = None,
    level: int = logging.DEBUG,
    **attributes: str | int | float | bool,
) -> Generator[TimedLogResult]:
    """Context manager that logs entry and exit with elapsed time.

    Args:
        message: The base log message.
        logger: Logger to use (defaults to the package logger).
        level: Log level for both records.
        **attributes: Additional structured fields.

    Yields:
        TimedLogResult whose ``elapsed_seconds`` is set on exit.
    """
    target = logger or _logger
    result = TimedLogResult()
    start = time.perf_counter()
    target.log(level, "%s [entry]", message, extra={"phase": "entry", **attributes})
    try:
        yield result
    finally:
        result.elapsed_seconds = time.perf_counter() - start
        target.log(
            level,
            "%s [exit] %.3fs",
            message,
            result.elapsed_seconds,
            extra={"phase": "exit", "elapsed_seconds": result.elapsed_seconds, **attributes},
        )
