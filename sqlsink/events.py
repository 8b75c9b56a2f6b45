"""Log record value types consumed by the sink."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from collections.abc import Mapping, Sequence
from typing import Any


class LogLevel(IntEnum):
    VERBOSE = 0
    DEBUG = 1
    INFORMATION = 2
    WARNING = 3
    ERROR = 4
    FATAL = 5

    @property
    def label(self) -> str:
        """Text stored in the Level column, e.g. ``"Information"``."""
        return self.name.title()

    @classmethod
    def from_logging(cls, levelno: int) -> "LogLevel":
        """Map a stdlib logging level number onto the nearest LogLevel."""
        if levelno >= logging.CRITICAL:
            return cls.FATAL
        if levelno >= logging.ERROR:
            return cls.ERROR
        if levelno >= logging.WARNING:
            return cls.WARNING
        if levelno >= logging.INFO:
            return cls.INFORMATION
        if levelno >= logging.DEBUG:
            return cls.DEBUG
        return cls.VERBOSE

    @classmethod
    def parse(cls, value: "str | int | LogLevel") -> "LogLevel":
        """Accept a LogLevel, its name in any case, or a stdlib level name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return cls(value)
        name = str(value).strip().upper()
        aliases = {"INFO": "INFORMATION", "WARN": "WARNING", "CRITICAL": "FATAL", "TRACE": "VERBOSE"}
        name = aliases.get(name, name)
        try:
            return cls[name]
        except KeyError:
            raise ValueError(f"unknown log level: {value!r}") from None


@dataclass(frozen=True)
class LogRecord:
    """A single log event, immutable once created by the producer.

    ``parameters`` is a sequence for positional placeholders (``{0}``) or a
    mapping for named ones (``{user}``). ``message`` holds text a producer
    already rendered, in which case the template is stored but not rendered.
    """
    timestamp: datetime
    level: LogLevel
    message_template: str
    parameters: Sequence[Any] | Mapping[str, Any] = ()
    exception: BaseException | str | None = None
    properties: Mapping[str, Any] = field(default_factory=dict)
    message: str | None = None


class LevelSwitch:
    """Minimum level that can be raised or lowered while the sink is running."""

    def __init__(self, minimum_level: LogLevel = LogLevel.INFORMATION):
        self._lock = threading.Lock()
        self._minimum_level = LogLevel.parse(minimum_level)

    @property
    def minimum_level(self) -> LogLevel:
        return self._minimum_level

    @minimum_level.setter
    def minimum_level(self, value: LogLevel) -> None:
        with self._lock:
            self._minimum_level = LogLevel.parse(value)

    def allows(self, level: LogLevel) -> bool:
        return level >= self._minimum_level
