"""Write one batch of records in a single transaction."""

import logging
from collections.abc import Sequence

from sqlalchemy.engine import Connection, Engine

from sqlsink.diagnostics import DiagnosticSink, report
from sqlsink.errors import SinkConnectionError, WriteError
from sqlsink.events import LogRecord
from sqlsink.routing import TableRouter
from sqlsink.schema import InsertStatement, StatementCache
from sqlsink.serializer import Serializer

log = logging.getLogger(__name__)


class BatchWriter:
    """Persists a batch atomically, or reports it and drops it.

    Delivery is at-most-once: a batch that fails to open a connection, to
    insert, or to commit is rolled back and never retried.
    """

    def __init__(
        self,
        engine: Engine,
        router: TableRouter,
        statements: StatementCache,
        serializer: Serializer,
        diagnostics: DiagnosticSink,
    ):
        self._engine = engine
        self._router = router
        self._statements = statements
        self._serializer = serializer
        self._diagnostics = diagnostics

    def write(self, batch: Sequence[LogRecord]) -> bool:
        if not batch:
            return True
        try:
            conn = self._engine.connect()
        except Exception as exc:
            report(self._diagnostics, SinkConnectionError.caused_by(
                f"could not connect to write {len(batch)} records: {exc}", exc,
            ))
            return False

        with conn:
            try:
                runs = self._plan(conn, batch)
                with conn.begin():
                    for statement, rows in runs:
                        conn.execute(statement.statement, rows)
            except Exception as exc:
                report(self._diagnostics, WriteError.caused_by(
                    f"failed to write batch of {len(batch)} records: {exc}", exc,
                ))
                return False

        log.debug(
            "wrote %d records to %s",
            len(batch), ", ".join(sorted({s.table_name for s, _ in runs})),
        )
        return True

    def _plan(self, conn: Connection, batch: Sequence[LogRecord]) -> list[tuple[InsertStatement, list[dict]]]:
        """Group consecutive records by destination table, keeping batch order.

        Any schema work for a newly seen table happens here, before the
        batch transaction is opened.
        """
        runs: list[tuple[InsertStatement, list[dict]]] = []
        statement: InsertStatement | None = None
        for record in batch:
            table_name = self._router.resolve(record.timestamp)
            if statement is None or statement.table_name != table_name:
                statement = self._statements.get_or_build(conn, table_name)
                runs.append((statement, []))
            runs[-1][1].append(statement.bind(self._serializer.fields(record)))
        return runs
