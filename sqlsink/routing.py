"""Resolve the destination table for a record.

A table name containing ``{`` is a date pattern rendered with ``str.format``
against the record's calendar date, e.g. ``Logs_{0:%Y%m%d}`` or
``Logs_{date:%Y_%m}``. Every name, static or generated, must be a plain SQL
identifier; names are interpolated into DDL and custom templates.
"""

import re
from datetime import datetime, time

from sqlsink.errors import ConfigurationError

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_SAMPLE_DATE = datetime(2000, 12, 31)


def validate_table_name(name: str) -> str:
    """Return ``name`` unchanged, raising ConfigurationError if it is not a plain identifier."""
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise ConfigurationError(f"invalid table name: {name!r}")
    return name


class TableRouter:
    """Maps a record timestamp to a table name. Pure, safe to share between threads."""

    def __init__(self, table_name: str):
        if not table_name:
            raise ConfigurationError("table_name must be a non-empty string")
        self.table_name = table_name
        self.is_dated = "{" in table_name
        if self.is_dated:
            # render once so a bad pattern fails at construction, not mid-flush
            try:
                sample = self._render(_SAMPLE_DATE)
            except (IndexError, KeyError, ValueError) as exc:
                raise ConfigurationError(f"invalid table name pattern {table_name!r}: {exc}") from exc
            validate_table_name(sample)
        else:
            validate_table_name(table_name)

    def _render(self, day: datetime) -> str:
        return self.table_name.format(day, date=day)

    def resolve(self, timestamp: datetime) -> str:
        if not self.is_dated:
            return self.table_name
        return self._render(datetime.combine(timestamp.date(), time()))
