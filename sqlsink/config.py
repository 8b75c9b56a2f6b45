"""Central configuration for sqlsink.

Module-level defaults come from the environment (optionally seeded from a
``.env`` file in the working directory). ``SinkOptions`` carries the settings
of one sink instance and validates them at construction.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from sqlsink.errors import ConfigurationError
from sqlsink.events import LogLevel


def load_env_file(path: Path) -> None:
    """Seed os.environ from KEY=VALUE lines; existing variables win."""
    if not path.exists():
        return
    for line in path.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            k, _, v = line.partition("=")
            os.environ.setdefault(k.strip(), v.strip().strip("\"'"))


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ── Defaults ───────────────────────────────────────────────────────────
DEFAULT_TABLE_NAME = "Logs"
DEFAULT_BATCH_SIZE = 100
MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 1000

# ── Buffer ─────────────────────────────────────────────────────────────
FLUSH_INTERVAL = 5.0  # seconds between timed flushes, 0 = size-triggered only
QUEUE_LIMIT = 100     # batches waiting for the flush worker before new ones are dropped

# ── Templates ──────────────────────────────────────────────────────────
TABLE_PLACEHOLDER = "{table}"


@dataclass
class SinkOptions:
    """Settings for one SqlSink.

    ``insert_sql`` and ``create_table_sql`` are used verbatim with
    ``{table}`` replaced by the resolved table name. The insert template
    binds any of ``:ts``, ``:level``, ``:template``, ``:msg``, ``:ex`` and
    ``:prop``.
    """

    connection_string: str
    table_name: str = DEFAULT_TABLE_NAME
    minimum_level: LogLevel = LogLevel.VERBOSE
    store_timestamp_in_utc: bool = False
    batch_size: int = DEFAULT_BATCH_SIZE
    insert_sql: str | None = None
    create_table_sql: str | None = None
    store_template: bool = True
    flush_interval: float = FLUSH_INTERVAL
    queue_limit: int = QUEUE_LIMIT
    engine_options: dict = field(default_factory=dict)

    def validate(self) -> None:
        if not self.connection_string or not str(self.connection_string).strip():
            raise ConfigurationError("connection_string must be a non-empty string")
        if isinstance(self.batch_size, bool) or not isinstance(self.batch_size, int):
            raise ConfigurationError(f"batch_size must be an integer, got {self.batch_size!r}")
        if not MIN_BATCH_SIZE <= self.batch_size <= MAX_BATCH_SIZE:
            raise ConfigurationError(
                f"batch_size must be between {MIN_BATCH_SIZE} and {MAX_BATCH_SIZE} "
                f"inclusive, got {self.batch_size}"
            )
        if not self.table_name:
            raise ConfigurationError("table_name must be a non-empty string")
        if self.flush_interval < 0:
            raise ConfigurationError("flush_interval must be >= 0")
        if self.queue_limit < 1:
            raise ConfigurationError("queue_limit must be >= 1")
        for name in ("insert_sql", "create_table_sql"):
            template = getattr(self, name)
            if template is not None and TABLE_PLACEHOLDER not in template:
                raise ConfigurationError(f"{name} must contain the {TABLE_PLACEHOLDER} placeholder")

    @classmethod
    def from_env(cls, env_file: Path | None = None, **overrides) -> "SinkOptions":
        """Build options from SQLSINK_* variables; keyword overrides win."""
        load_env_file(env_file or Path.cwd() / ".env")
        try:
            values = {
                "connection_string": os.environ.get("SQLSINK_URL", ""),
                "table_name": os.environ.get("SQLSINK_TABLE", DEFAULT_TABLE_NAME),
                "batch_size": int(os.environ.get("SQLSINK_BATCH_SIZE", DEFAULT_BATCH_SIZE)),
                "flush_interval": float(os.environ.get("SQLSINK_FLUSH_INTERVAL", FLUSH_INTERVAL)),
                "queue_limit": int(os.environ.get("SQLSINK_QUEUE_LIMIT", QUEUE_LIMIT)),
                "store_timestamp_in_utc": _env_bool("SQLSINK_UTC", False),
            }
        except ValueError as exc:
            raise ConfigurationError(f"invalid SQLSINK_* environment value: {exc}") from exc
        values.update(overrides)
        return cls(**values)
