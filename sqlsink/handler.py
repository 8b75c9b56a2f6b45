"""Bridge from the stdlib ``logging`` package into a SqlSink.

    handler = configure("sqlite:///logs.db", table_name="Logs_{0:%Y%m%d}", batch_size=50)
    logging.getLogger("app").info("user %s signed in", "ada", extra={"tenant": "acme"})

Level filtering happens here, in front of the sink: records below the
handler's minimum level, or below a LevelSwitch's current level, never reach
the buffer.
"""

import logging
import traceback
from datetime import datetime

from sqlsink.config import DEFAULT_BATCH_SIZE, DEFAULT_TABLE_NAME, SinkOptions
from sqlsink.diagnostics import DiagnosticSink
from sqlsink.events import LevelSwitch, LogLevel, LogRecord
from sqlsink.sink import SqlSink

# attributes every stdlib record carries; anything else arrived through extra=
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message", "asctime", "taskName",
}

# never written to the sink: its own loggers and its driver stack
_SKIP_LOGGERS = ("sqlsink", "sqlalchemy")


def _skipped(name: str) -> bool:
    return any(name == prefix or name.startswith(prefix + ".") for prefix in _SKIP_LOGGERS)


def to_log_record(record: logging.LogRecord) -> LogRecord:
    """Convert a stdlib record. The %-formatted text is carried pre-rendered."""
    properties = {"SourceContext": record.name}
    for key, value in vars(record).items():
        if key not in _STANDARD_ATTRS and not key.startswith("_"):
            properties[key] = value

    exception = None
    if record.exc_info and record.exc_info[1] is not None:
        exception = "".join(traceback.format_exception(*record.exc_info)).rstrip("\n")
    elif record.exc_text:
        exception = record.exc_text

    return LogRecord(
        timestamp=datetime.fromtimestamp(record.created).astimezone(),
        level=LogLevel.from_logging(record.levelno),
        message_template=str(record.msg),
        parameters=record.args or (),
        exception=exception,
        properties=properties,
        message=record.getMessage(),
    )


class SqlLogHandler(logging.Handler):
    """logging.Handler that forwards records into a SqlSink."""

    def __init__(
        self,
        sink: SqlSink,
        minimum_level: LogLevel = LogLevel.VERBOSE,
        level_switch: LevelSwitch | None = None,
    ):
        super().__init__(logging.NOTSET)
        self.sink = sink
        self.minimum_level = LogLevel.parse(minimum_level)
        self.level_switch = level_switch

    def enabled(self, level: LogLevel) -> bool:
        if level < self.minimum_level:
            return False
        return self.level_switch is None or self.level_switch.allows(level)

    def emit(self, record: logging.LogRecord) -> None:
        if _skipped(record.name):
            return
        try:
            if not self.enabled(LogLevel.from_logging(record.levelno)):
                return
            self.sink.emit(to_log_record(record))
        except Exception:
            self.handleError(record)

    def flush(self) -> None:
        self.sink.flush()

    def close(self) -> None:
        try:
            self.sink.close()
        finally:
            super().close()


def configure(
    connection_string: str,
    table_name: str = DEFAULT_TABLE_NAME,
    restricted_to_minimum_level: LogLevel | str = LogLevel.VERBOSE,
    store_timestamp_in_utc: bool = False,
    batch_size: int = DEFAULT_BATCH_SIZE,
    level_switch: LevelSwitch | None = None,
    logger: logging.Logger | str | None = None,
    diagnostics: DiagnosticSink | None = None,
    **options,
) -> SqlLogHandler:
    """Create a sink and attach a handler for it to ``logger`` (root by default).

    Raises ConfigurationError for an empty connection string, a batch size
    outside 1..1000, or an invalid table name. Extra keyword arguments are
    passed through to SinkOptions.
    """
    minimum_level = LogLevel.parse(restricted_to_minimum_level)
    sink = SqlSink(
        SinkOptions(
            connection_string=connection_string,
            table_name=table_name,
            minimum_level=minimum_level,
            store_timestamp_in_utc=store_timestamp_in_utc,
            batch_size=batch_size,
            **options,
        ),
        diagnostics=diagnostics,
    )
    handler = SqlLogHandler(sink, minimum_level, level_switch)
    target = logger if isinstance(logger, logging.Logger) else logging.getLogger(logger)
    target.addHandler(handler)
    return handler
