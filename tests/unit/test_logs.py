"""Tests for log helper functions and the per-task logging context."""

import asyncio
import logging

import pytest

from edgeinsights.adapters.logging_context import (
    LogContextFilter,
    clear_log_context,
    configure_logging,
    get_log_context,
    set_log_context,
    update_log_context,
)
from edgeinsights.core.logs import TimedLogResult, log_exception, timed_log

pytestmark = pytest.mark.tier(1)


@pytest.fixture(autouse=True)
def _reset_context():
    clear_log_context()
    yield
    clear_log_context()


class TestLogException:
    """Tests for log_exception()."""

    @pytest.mark.unit
    def test_records_exception_type_and_message(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        logger = logging.getLogger("edgeinsights.test")
        with caplog.at_level(logging.ERROR, logger="edgeinsights.test"):
            try:
                raise ValueError("bad value")
            except ValueError:
                log_exception("Processing failed", logger, device_id="d1")

        [record] = caplog.records
        assert record.getMessage() == "Processing failed"
        assert record.exc_type == "ValueError"
        assert record.exc_message == "bad value"
        assert record.device_id == "d1"
        assert record.exc_info is not None

    @pytest.mark.unit
    def test_outside_except_block(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = logging.getLogger("edgeinsights.test")
        with caplog.at_level(logging.ERROR, logger="edgeinsights.test"):
            log_exception("Nothing raised", logger)

        [record] = caplog.records
        assert not hasattr(record, "exc_type")
        assert not record.exc_info


class TestTimedLog:
    """Tests for timed_log()."""

    @pytest.mark.unit
    def test_logs_entry_and_exit(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = logging.getLogger("edgeinsights.test")
        with caplog.at_level(logging.DEBUG, logger="edgeinsights.test"):
            with timed_log("Refreshing", logger, stage="hourly") as result:
                assert isinstance(result, TimedLogResult)

        entry, exit_ = caplog.records
        assert entry.phase == "entry"
        assert exit_.phase == "exit"
        assert exit_.stage == "hourly"
        assert exit_.elapsed_seconds == result.elapsed_seconds >= 0

    @pytest.mark.unit
    def test_exit_is_logged_on_error(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = logging.getLogger("edgeinsights.test")
        with caplog.at_level(logging.DEBUG, logger="edgeinsights.test"):
            with pytest.raises(RuntimeError):
                with timed_log("Refreshing", logger):
                    raise RuntimeError("boom")

        assert [r.phase for r in caplog.records] == ["entry", "exit"]


class TestLogContext:
    """Tests for the ContextVar-backed logging context."""

    @pytest.mark.unit
    def test_set_update_clear(self) -> None:
        set_log_context(request_id="r1")
        update_log_context(path="/health")
        assert get_log_context() == {"request_id": "r1", "path": "/health"}
        clear_log_context()
        assert get_log_context() == {}

    @pytest.mark.unit
    def test_get_returns_a_copy(self) -> None:
        set_log_context(request_id="r1")
        get_log_context()["request_id"] = "changed"
        assert get_log_context() == {"request_id": "r1"}

    @pytest.mark.unit
    async def test_tasks_do_not_share_context(self) -> None:
        async def connection(connection_id: str) -> dict:
            set_log_context(connection_id=connection_id)
            await asyncio.sleep(0)
            return get_log_context()

        first, second = await asyncio.gather(connection("a"), connection("b"))
        assert first == {"connection_id": "a"}
        assert second == {"connection_id": "b"}
        assert get_log_context() == {}

    @pytest.mark.unit
    def test_filter_copies_fields_onto_record(self) -> None:
        set_log_context(connection_id="c1", device_id="d1")
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        record.device_id = "from-record"

        assert LogContextFilter().filter(record)

        assert record.connection_id == "c1"
        assert record.device_id == "from-record"
        assert record.context == "[connection_id=c1] [device_id=d1] "

    @pytest.mark.unit
    def test_configure_logging_installs_one_handler(self) -> None:
        logger = logging.getLogger("edgeinsights")
        before = list(logger.handlers)
        try:
            configure_logging("debug")
            configure_logging("debug")
            added = [h for h in logger.handlers if h not in before]
            assert len(added) <= 1
            assert logger.level == logging.DEBUG
        finally:
            for handler in logger.handlers[:]:
                if handler not in before:
                    logger.removeHandler(handler)
            logger.setLevel(logging.NOTSET)
