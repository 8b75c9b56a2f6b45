"""Error taxonomy for sqlsink.

Only ConfigurationError is ever raised to callers. The others are built by
the write path, attached to the original exception, and handed to the
diagnostic sink.
"""


class SinkError(Exception):
    """Base class for everything sqlsink reports or raises."""

    @classmethod
    def caused_by(cls, message: str, cause: BaseException) -> "SinkError":
        """Build an error chained to ``cause`` without raising it."""
        error = cls(message)
        error.__cause__ = cause
        return error


class ConfigurationError(SinkError, ValueError):
    """Invalid options at construction time (connection string, batch size, table name)."""


class SinkConnectionError(SinkError):
    """A connection for a flush could not be opened; the batch was dropped."""


class SchemaError(SinkError):
    """Creating a destination table failed; inserts are still attempted."""


class WriteError(SinkError):
    """An insert or the commit failed; the whole batch was rolled back and dropped."""
