"""Render log records into the text fields bound to the insert statement.

Every function here is total: bad input degrades to literal text rather
than raising.
"""

import json
import re
import traceback
from datetime import datetime, timezone
from collections.abc import Mapping, Sequence
from typing import Any

from sqlsink.events import LogRecord

# {{ and }} escapes, or {[@$]name[,alignment][:format]}
_TOKEN_RE = re.compile(r"\{\{|\}\}|\{([@$]?)([A-Za-z0-9_]+)(?:,(-?\d+))?(?::([^{}]*))?\}")


def _lookup(name: str, parameters, properties) -> tuple[bool, Any]:
    if name.isdigit():
        if isinstance(parameters, Sequence) and not isinstance(parameters, (str, bytes)):
            index = int(name)
            if index < len(parameters):
                return True, parameters[index]
        return False, None
    if isinstance(parameters, Mapping) and name in parameters:
        return True, parameters[name]
    if properties and name in properties:
        return True, properties[name]
    return False, None


def _dumps(value: Any) -> str:
    """Strict JSON: no NaN/Infinity literals, non-JSON objects via ``str``."""
    return json.dumps(value, default=str, ensure_ascii=False, allow_nan=False)


def _json_safe(value: Any) -> Any:
    """``value`` if it serializes as strict JSON, otherwise its ``str``."""
    try:
        _dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


def _format_value(value: Any, hint: str, spec: str | None) -> str:
    if hint == "@":
        return _dumps(_json_safe(value))
    if hint == "$" or not spec:
        return str(value)
    try:
        return format(value, spec)
    except (TypeError, ValueError):
        return str(value)


def render_message(template: str, parameters=(), properties: Mapping[str, Any] | None = None) -> str:
    """Substitute placeholders in ``template``.

    Positional placeholders (``{0}``) index into a sequence of parameters;
    named ones (``{user}``) look in a parameter mapping, then in the record
    properties. Placeholders that cannot be resolved are kept verbatim.
    """
    if not template:
        return ""

    def substitute(m: re.Match) -> str:
        token = m.group(0)
        if token == "{{":
            return "{"
        if token == "}}":
            return "}"
        hint, name, alignment, spec = m.groups()
        found, value = _lookup(name, parameters, properties)
        if not found:
            return token
        text = _format_value(value, hint, spec)
        if alignment:
            width = int(alignment)
            text = text.ljust(-width) if width < 0 else text.rjust(width)
        return text

    return _TOKEN_RE.sub(substitute, template)


def format_timestamp(ts: datetime, use_utc: bool = False) -> str:
    """``YYYY-MM-DD HH:MM:SS.fff+HH:MM``; naive datetimes are taken as local time."""
    if ts.tzinfo is None:
        ts = ts.astimezone()
    if use_utc:
        ts = ts.astimezone(timezone.utc)
    offset = ts.strftime("%z")
    offset = f"{offset[:3]}:{offset[3:]}" if offset else "+00:00"
    return f"{ts:%Y-%m-%d %H:%M:%S}.{ts.microsecond // 1000:03d}{offset}"


def serialize_properties(properties: Mapping[str, Any] | None) -> str:
    """JSON object text; an empty or missing map is ``"{}"``.

    Keys are stringified. A value that cannot be written as strict JSON
    (NaN, circular containers, non-string nested keys) is stored as its
    ``str`` so one bad property never costs the record.
    """
    if not properties:
        return "{}"
    items = {str(key): value for key, value in properties.items()}
    try:
        return _dumps(items)
    except (TypeError, ValueError):
        return _dumps({key: _json_safe(value) for key, value in items.items()})


def stringify_exception(exc: BaseException | str | None) -> str:
    if exc is None:
        return ""
    if isinstance(exc, str):
        return exc
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).rstrip("\n")


class Serializer:
    """Produces the bound field values for one record.

    Keys match the bind parameter names of the insert statement.
    """

    FIELDS = ("ts", "level", "template", "msg", "ex", "prop")

    def __init__(self, store_timestamp_in_utc: bool = False):
        self.store_timestamp_in_utc = store_timestamp_in_utc

    def fields(self, record: LogRecord) -> dict[str, str]:
        if record.message is not None:
            msg = record.message
        else:
            msg = render_message(record.message_template, record.parameters, record.properties)
        return {
            "ts": format_timestamp(record.timestamp, self.store_timestamp_in_utc),
            "level": record.level.label,
            "template": record.message_template or "",
            "msg": msg,
            "ex": stringify_exception(record.exception),
            "prop": serialize_properties(record.properties),
        }
