"""SqlSink: batches log records and persists them to a relational table.

Usage:
    sink = SqlSink(SinkOptions("mysql+pymysql://user:pw@host/db", table_name="Logs_{0:%Y%m%d}"))
    sink.emit(record)
    ...
    sink.close()

Or as a context manager:
    with SqlSink(options) as sink:
        ...
"""

import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import ArgumentError, NoSuchModuleError

from sqlsink.buffer import EventBuffer
from sqlsink.config import SinkOptions
from sqlsink.diagnostics import DiagnosticSink, SelfLog, report
from sqlsink.errors import ConfigurationError, SinkConnectionError
from sqlsink.events import LogRecord
from sqlsink.routing import TableRouter
from sqlsink.schema import SchemaManager, StatementCache
from sqlsink.serializer import Serializer
from sqlsink.writer import BatchWriter

log = logging.getLogger(__name__)


def create_sink_engine(options: SinkOptions) -> Engine:
    """Engine for ``options.connection_string``; a bad URL or missing driver is a ConfigurationError."""
    try:
        return create_engine(options.connection_string, pool_pre_ping=True, **options.engine_options)
    except (ArgumentError, NoSuchModuleError, ValueError) as exc:
        raise ConfigurationError(f"invalid connection string: {exc}") from exc


class SqlSink:
    """Producer-facing entry point.

    Construction validates everything and raises ConfigurationError on bad
    options. After that, nothing on the write path raises to callers of
    ``emit``; failures go to the diagnostic sink.
    """

    def __init__(
        self,
        options: SinkOptions,
        diagnostics: DiagnosticSink | None = None,
        engine: Engine | None = None,
    ):
        options.validate()
        self.options = options
        self.diagnostics = diagnostics or SelfLog()
        self.router = TableRouter(options.table_name)
        self.schema = SchemaManager(self.diagnostics, options.create_table_sql, options.store_template)
        self.statements = StatementCache(self.schema, options.insert_sql)
        self.engine = engine if engine is not None else create_sink_engine(options)
        self._owns_engine = engine is None
        self.writer = BatchWriter(
            self.engine, self.router, self.statements,
            Serializer(options.store_timestamp_in_utc), self.diagnostics,
        )
        if not self.router.is_dated:
            self._prepare_static_table()
        self.buffer = EventBuffer(
            self.writer.write,
            batch_size=options.batch_size,
            diagnostics=self.diagnostics,
            flush_interval=options.flush_interval,
            queue_limit=options.queue_limit,
        )
        log.info(
            "sql sink ready (table=%s, batch_size=%d, utc=%s)",
            options.table_name, options.batch_size, options.store_timestamp_in_utc,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _prepare_static_table(self) -> None:
        """Create a fixed destination table up front rather than on the first flush."""
        try:
            with self.engine.connect() as conn:
                self.statements.get_or_build(conn, self.router.table_name)
        except Exception as exc:
            report(self.diagnostics, SinkConnectionError.caused_by(
                f"could not prepare table {self.router.table_name}: {exc}", exc,
            ))

    # ── producers ───────────────────────────────────────────────────────

    def emit(self, record: LogRecord) -> None:
        self.buffer.push(record)

    def emit_many(self, records) -> None:
        self.buffer.push_many(records)

    # ── lifecycle ───────────────────────────────────────────────────────

    def flush(self) -> None:
        """Write everything buffered so far and wait for it."""
        self.buffer.flush()

    def close(self) -> None:
        """Final best-effort flush, then release pooled connections."""
        if self.buffer.closed:
            return
        self.buffer.close()
        if self._owns_engine:
            self.engine.dispose()
        log.info(
            "sql sink closed (%d records written, %d dropped)",
            self.buffer.records_written, self.buffer.records_dropped,
        )
