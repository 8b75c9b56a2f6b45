"""sqlsink CLI - push log lines from stdin into a table and inspect tables.

    some-app 2>&1 | sqlsink ingest --url sqlite:///logs.db --table "Logs_{0:%Y%m%d}"
    sqlsink count --url sqlite:///logs.db --table Logs_20240305

Input lines are either JSON objects (``level``, ``message``, ``parameters``,
``properties``, ``exception``, ``timestamp``) or plain text logged at
``--level``.
"""

import argparse
import json
import logging
import sys
from datetime import datetime

from sqlalchemy import func, select, table
from sqlalchemy.exc import SQLAlchemyError

from sqlsink.config import SinkOptions
from sqlsink.diagnostics import SelfLog
from sqlsink.errors import ConfigurationError, SinkError
from sqlsink.events import LogLevel, LogRecord
from sqlsink.routing import validate_table_name
from sqlsink.sink import SqlSink, create_sink_engine


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


class _CountingSelfLog(SelfLog):
    def __init__(self):
        super().__init__()
        self.errors = 0

    def report(self, error: SinkError) -> None:
        self.errors += 1
        super().report(error)


def parse_line(line: str, default_level: LogLevel) -> LogRecord | None:
    """Turn one input line into a record; blank lines yield None."""
    line = line.rstrip("\r\n")
    if not line.strip():
        return None
    now = datetime.now().astimezone()
    if line.lstrip().startswith("{"):
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            ts = now
            if data.get("timestamp"):
                try:
                    ts = datetime.fromisoformat(str(data["timestamp"]))
                except ValueError:
                    pass
            try:
                level = LogLevel.parse(data.get("level", default_level))
            except ValueError:
                level = default_level
            return LogRecord(
                timestamp=ts,
                level=level,
                message_template=str(data.get("message", "")),
                parameters=data.get("parameters") or (),
                exception=data.get("exception"),
                properties=data.get("properties") or {},
            )
    return LogRecord(timestamp=now, level=default_level, message_template=line, message=line)


# ── Subcommands ──────────────────────────────────────────────────────────


def cmd_ingest(args: argparse.Namespace) -> int:
    overrides = {"flush_interval": 0.0}
    if args.url:
        overrides["connection_string"] = args.url
    if args.table:
        overrides["table_name"] = args.table
    if args.batch_size is not None:
        overrides["batch_size"] = args.batch_size
    if args.utc:
        overrides["store_timestamp_in_utc"] = True

    diagnostics = _CountingSelfLog()
    try:
        default_level = LogLevel.parse(args.level)
        sink = SqlSink(SinkOptions.from_env(**overrides), diagnostics=diagnostics)
    except (ConfigurationError, ValueError) as exc:
        print(f"sqlsink: {exc}", file=sys.stderr)
        return 2

    count = 0
    with sink:
        for line in sys.stdin:
            record = parse_line(line, default_level)
            if record is not None:
                sink.emit(record)
                count += 1

    print(
        f"sqlsink: ingested {count} records "
        f"({sink.buffer.records_written} written, {sink.buffer.records_dropped} dropped)",
        file=sys.stderr,
    )
    return 1 if diagnostics.errors else 0


def cmd_count(args: argparse.Namespace) -> int:
    try:
        options = SinkOptions.from_env(**({"connection_string": args.url} if args.url else {}))
        options.validate()
        name = validate_table_name(args.table)
        engine = create_sink_engine(options)
    except ConfigurationError as exc:
        print(f"sqlsink: {exc}", file=sys.stderr)
        return 2

    try:
        with engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(table(name))).scalar_one()
    except SQLAlchemyError as exc:
        print(f"sqlsink: count failed: {exc}", file=sys.stderr)
        return 1
    finally:
        engine.dispose()
    print(total)
    return 0


# ── Main ─────────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="sqlsink",
        description="batch log records into a relational table",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command")

    p_ingest = sub.add_parser("ingest", help="write stdin lines as log records")
    p_ingest.add_argument("--url", help="SQLAlchemy connection string (default: $SQLSINK_URL)")
    p_ingest.add_argument("--table", help="table name or date pattern (default: $SQLSINK_TABLE or Logs)")
    p_ingest.add_argument("--batch-size", type=int, help="records per transaction (1-1000)")
    p_ingest.add_argument("--level", default="Information", help="level for plain-text lines")
    p_ingest.add_argument("--utc", action="store_true", help="store timestamps in UTC")

    p_count = sub.add_parser("count", help="print the row count of a table")
    p_count.add_argument("--url", help="SQLAlchemy connection string (default: $SQLSINK_URL)")
    p_count.add_argument("--table", default="Logs", help="table name (default: Logs)")

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    commands = {
        "ingest": cmd_ingest,
        "count": cmd_count,
    }

    if args.command in commands:
        return commands[args.command](args)
    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
