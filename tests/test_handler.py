"""Tests for sqlsink.handler - the stdlib logging bridge."""

import json
import logging
import sys

import pytest

from sqlsink.errors import ConfigurationError
from sqlsink.events import LevelSwitch, LogLevel
from sqlsink.handler import SqlLogHandler, configure, to_log_record

from helpers import fetch_rows


class FakeSink:
    def __init__(self, fail=False):
        self.records = []
        self.fail = fail
        self.flushed = 0
        self.closed = False

    def emit(self, record):
        if self.fail:
            raise RuntimeError("sink broke")
        self.records.append(record)

    def flush(self):
        self.flushed += 1

    def close(self):
        self.closed = True


def stdlib_record(name="app.web", level=logging.INFO, msg="user %s signed in", args=("ada",), **extra):
    record = logging.LogRecord(name, level, __file__, 10, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def app_logger():
    logger = logging.getLogger("app.sqlsink_test")
    old_level, old_propagate = logger.level, logger.propagate
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    handlers = []
    yield logger, handlers
    for handler in handlers:
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(old_level)
    logger.propagate = old_propagate


class TestToLogRecord:
    def test_maps_fields(self):
        record = to_log_record(stdlib_record(level=logging.WARNING, tenant="acme"))
        assert record.level == LogLevel.WARNING
        assert record.message_template == "user %s signed in"
        assert record.message == "user ada signed in"
        assert record.parameters == ("ada",)
        assert record.properties == {"SourceContext": "app.web", "tenant": "acme"}
        assert record.exception is None
        assert record.timestamp.tzinfo is not None

    def test_exception_info(self):
        try:
            raise ValueError("bad input")
        except ValueError:
            exc_info = sys.exc_info()
        source = logging.LogRecord("app", logging.ERROR, __file__, 1, "failed", (), exc_info)
        record = to_log_record(source)
        assert record.exception.startswith("Traceback")
        assert record.exception.endswith("ValueError: bad input")

    @pytest.mark.parametrize("levelno,expected", [
        (5, LogLevel.VERBOSE),
        (logging.DEBUG, LogLevel.DEBUG),
        (logging.INFO, LogLevel.INFORMATION),
        (logging.WARNING, LogLevel.WARNING),
        (logging.ERROR, LogLevel.ERROR),
        (logging.CRITICAL, LogLevel.FATAL),
    ])
    def test_level_mapping(self, levelno, expected):
        assert to_log_record(stdlib_record(level=levelno)).level == expected


class TestSqlLogHandler:
    def test_forwards_records(self):
        sink = FakeSink()
        handler = SqlLogHandler(sink)
        handler.handle(stdlib_record())
        assert [r.message for r in sink.records] == ["user ada signed in"]

    def test_minimum_level(self):
        sink = FakeSink()
        handler = SqlLogHandler(sink, minimum_level=LogLevel.WARNING)
        handler.handle(stdlib_record(level=logging.INFO))
        handler.handle(stdlib_record(level=logging.ERROR))
        assert [r.level for r in sink.records] == [LogLevel.ERROR]

    def test_level_switch_changes_at_runtime(self):
        sink = FakeSink()
        switch = LevelSwitch(LogLevel.ERROR)
        handler = SqlLogHandler(sink, level_switch=switch)
        handler.handle(stdlib_record(level=logging.WARNING))
        switch.minimum_level = LogLevel.DEBUG
        handler.handle(stdlib_record(level=logging.WARNING))
        assert len(sink.records) == 1

    @pytest.mark.parametrize("name", ["sqlsink", "sqlsink.writer", "sqlalchemy.engine.Engine"])
    def test_skips_own_loggers(self, name):
        sink = FakeSink()
        SqlLogHandler(sink).handle(stdlib_record(name=name))
        assert sink.records == []

    def test_similar_names_not_skipped(self):
        sink = FakeSink()
        SqlLogHandler(sink).handle(stdlib_record(name="sqlsinkish"))
        assert len(sink.records) == 1

    def test_sink_failure_does_not_raise(self, monkeypatch):
        monkeypatch.setattr(logging, "raiseExceptions", False)
        handler = SqlLogHandler(FakeSink(fail=True))
        handler.handle(stdlib_record())  # should not raise

    def test_flush_and_close_delegate(self):
        sink = FakeSink()
        handler = SqlLogHandler(sink)
        handler.flush()
        handler.close()
        assert sink.flushed == 1
        assert sink.closed


class TestConfigure:
    def test_end_to_end(self, app_logger, db_url, engine, diagnostics):
        logger, handlers = app_logger
        handler = configure(db_url, logger=logger, diagnostics=diagnostics, flush_interval=0)
        handlers.append(handler)
        logger.info("user %s signed in", "ada", extra={"tenant": "acme"})
        handler.flush()

        row = fetch_rows(engine, "Logs")[0]
        assert row["Level"] == "Information"
        assert row["Message"] == "user ada signed in"
        assert row["Template"] == "user %s signed in"
        properties = json.loads(row["Properties"])
        assert properties["SourceContext"] == "app.sqlsink_test"
        assert properties["tenant"] == "acme"
        assert diagnostics.errors == []

    def test_restricted_to_minimum_level(self, app_logger, db_url, engine, diagnostics):
        logger, handlers = app_logger
        handler = configure(
            db_url, restricted_to_minimum_level="Warning",
            logger=logger, diagnostics=diagnostics, flush_interval=0,
        )
        handlers.append(handler)
        logger.info("ignored")
        logger.error("kept")
        handler.flush()
        assert [r["Message"] for r in fetch_rows(engine, "Logs")] == ["kept"]

    def test_dated_table(self, app_logger, db_url, engine, diagnostics):
        logger, handlers = app_logger
        handler = configure(
            db_url, table_name="Logs_{0:%Y%m%d}",
            logger=logger, diagnostics=diagnostics, flush_interval=0,
        )
        handlers.append(handler)
        logger.warning("routed")
        handler.flush()
        name = handler.sink.router.resolve(to_log_record(stdlib_record()).timestamp)
        assert [r["Message"] for r in fetch_rows(engine, name)] == ["routed"]

    @pytest.mark.parametrize("batch_size", [0, 1001])
    def test_bad_batch_size(self, db_url, batch_size):
        with pytest.raises(ConfigurationError):
            configure(db_url, batch_size=batch_size, logger="app.never_attached")
        assert logging.getLogger("app.never_attached").handlers == []

    def test_empty_connection_string(self):
        with pytest.raises(ConfigurationError):
            configure("", logger="app.never_attached")
