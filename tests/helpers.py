"""Record builders and database helpers shared by the sqlsink tests."""

import threading
from datetime import datetime, timedelta, timezone

from sqlalchemy import inspect, text

from sqlsink.events import LogLevel, LogRecord

BASE_TS = datetime(2024, 3, 5, 14, 7, 9, 123000, tzinfo=timezone(timedelta(hours=2)))


class RecordingDiagnostics:
    """Collects reported errors instead of logging them."""

    def __init__(self):
        self._lock = threading.Lock()
        self.errors = []

    def report(self, error) -> None:
        with self._lock:
            self.errors.append(error)


def make_record(template="hello", level=LogLevel.INFORMATION, timestamp=BASE_TS, **kwargs) -> LogRecord:
    return LogRecord(timestamp=timestamp, level=level, message_template=template, **kwargs)


def count_rows(engine, table: str) -> int:
    with engine.connect() as conn:
        if not inspect(conn).has_table(table):
            return 0
        return conn.execute(text(f'SELECT COUNT(*) FROM "{table}"')).scalar_one()


def fetch_rows(engine, table: str) -> list[dict]:
    with engine.connect() as conn:
        result = conn.execute(text(f'SELECT * FROM "{table}" ORDER BY id'))
        return [dict(row) for row in result.mappings()]


def table_names(engine) -> set[str]:
    return set(inspect(engine).get_table_names())
