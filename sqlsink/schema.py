"""Destination table schema and the per-table insert statement cache.

The default table is declared through SQLAlchemy metadata so identifiers are
quoted by the dialect and creation is create-if-not-exists on every backend.
Callers may instead supply raw ``create_table_sql`` / ``insert_sql``
templates with a ``{table}`` placeholder.
"""

import logging
import re
import threading
from dataclasses import dataclass

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, Text, text
from sqlalchemy.engine import Connection
from sqlalchemy.sql.expression import Executable

from sqlsink.config import TABLE_PLACEHOLDER
from sqlsink.diagnostics import DiagnosticSink, report
from sqlsink.errors import ConfigurationError, SchemaError
from sqlsink.routing import validate_table_name
from sqlsink.serializer import Serializer

log = logging.getLogger(__name__)

# (column, serialized field) in insert order
_COLUMNS = (
    ("Timestamp", "ts"),
    ("Level", "level"),
    ("Template", "template"),
    ("Message", "msg"),
    ("Exception", "ex"),
    ("Properties", "prop"),
)

# same rule SQLAlchemy's text() uses to find :name binds
_BIND_RE = re.compile(r"(?<![:\w\\]):(\w+)(?!:)")


def default_table(table_name: str, store_template: bool = True, metadata: MetaData | None = None) -> Table:
    """Default log table. Declared InnoDB on MySQL so batches commit atomically."""
    columns = [
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("Timestamp", String(100)),
        Column("Level", String(15)),
    ]
    if store_template:
        columns.append(Column("Template", Text))
    columns += [
        Column("Message", Text),
        Column("Exception", Text),
        Column("Properties", Text),
        Column("_ts", DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")),
    ]
    return Table(
        table_name,
        metadata if metadata is not None else MetaData(),
        *columns,
        mysql_engine="InnoDB",
        mysql_charset="utf8mb4",
    )


def template_bindings(insert_sql: str) -> tuple[tuple[str, str], ...]:
    """Bind parameters used by a custom insert template, in order of appearance."""
    bindings = []
    for name in _BIND_RE.findall(insert_sql):
        if name not in Serializer.FIELDS:
            raise ConfigurationError(
                f"insert_sql binds unknown parameter :{name}; "
                f"available: {', '.join(':' + f for f in Serializer.FIELDS)}"
            )
        if (name, name) not in bindings:
            bindings.append((name, name))
    return tuple(bindings)


@dataclass(frozen=True)
class InsertStatement:
    """Compiled insert for one table plus its ordered (bind parameter, field) slots."""
    table_name: str
    statement: Executable
    bindings: tuple[tuple[str, str], ...]

    def bind(self, fields: dict[str, str]) -> dict[str, str]:
        return {param: fields[name] for param, name in self.bindings}


class SchemaManager:
    """Creates destination tables. Errors are reported and swallowed."""

    def __init__(
        self,
        diagnostics: DiagnosticSink,
        create_table_sql: str | None = None,
        store_template: bool = True,
    ):
        self._diagnostics = diagnostics
        self.create_table_sql = create_table_sql
        self.store_template = store_template

    def ensure_table(self, connection: Connection, table_name: str) -> bool:
        """Create ``table_name`` if missing and commit the DDL on its own.

        Must run outside the batch transaction. Returns False when creation
        failed; inserts are still attempted and fail naturally if the table
        really is missing.
        """
        try:
            if self.create_table_sql:
                connection.exec_driver_sql(self.create_table_sql.replace(TABLE_PLACEHOLDER, table_name))
            else:
                default_table(table_name, self.store_template).create(connection, checkfirst=True)
            connection.commit()
        except Exception as exc:
            try:
                connection.rollback()
            except Exception:
                log.debug("rollback after failed create of %s also failed", table_name, exc_info=True)
            report(self._diagnostics, SchemaError.caused_by(f"could not create table {table_name}: {exc}", exc))
            return False
        log.info("table %s ready", table_name)
        return True


class StatementCache:
    """Insert statements keyed by resolved table name.

    Entries are built once. Building an entry is also the one point where
    the schema for that table is ensured, so a table is created at most once
    per cache lifetime even when first use races between threads.
    """

    def __init__(self, schema: SchemaManager, insert_sql: str | None = None):
        self._schema = schema
        self._insert_sql = insert_sql
        self._custom_bindings = template_bindings(insert_sql) if insert_sql else None
        self._statements: dict[str, InsertStatement] = {}
        self._lock = threading.Lock()

    def __contains__(self, table_name: str) -> bool:
        return table_name in self._statements

    def __len__(self) -> int:
        return len(self._statements)

    def get_or_build(self, connection: Connection, table_name: str) -> InsertStatement:
        statement = self._statements.get(table_name)
        if statement is not None:
            return statement
        with self._lock:
            statement = self._statements.get(table_name)
            if statement is None:
                statement = self._build(table_name)
                self._statements[table_name] = statement
                self._schema.ensure_table(connection, table_name)
        return statement

    def invalidate(self, table_name: str | None = None) -> None:
        """Forget one table (or all); the next use rebuilds and re-ensures it."""
        with self._lock:
            if table_name is None:
                self._statements.clear()
            else:
                self._statements.pop(table_name, None)

    def _build(self, table_name: str) -> InsertStatement:
        validate_table_name(table_name)
        if self._insert_sql:
            sql = self._insert_sql.replace(TABLE_PLACEHOLDER, table_name)
            return InsertStatement(table_name, text(sql), self._custom_bindings)
        table = default_table(table_name, self._schema.store_template)
        bindings = tuple(
            (column, name) for column, name in _COLUMNS
            if column in table.c
        )
        return InsertStatement(table_name, table.insert(), bindings)
