"""Diagnostic channel for failures the write path contains.

The sink never raises write-path errors to producers; it hands them to a
DiagnosticSink instead. The default one logs them to ``sqlsink.selflog``.
"""

import logging
from typing import Protocol

from sqlsink.errors import SinkError

log = logging.getLogger(__name__)


class DiagnosticSink(Protocol):
    def report(self, error: SinkError) -> None:
        ...


class SelfLog:
    """Writes reported errors to a stdlib logger."""

    def __init__(self, logger: logging.Logger | None = None):
        self._log = logger or logging.getLogger("sqlsink.selflog")

    def report(self, error: SinkError) -> None:
        cause = error.__cause__
        self._log.error(
            "%s: %s", type(error).__name__, error,
            exc_info=(type(cause), cause, cause.__traceback__) if cause else None,
        )


def report(diagnostics: DiagnosticSink, error: SinkError) -> None:
    """Hand ``error`` to ``diagnostics``; a failing sink is logged, never raised."""
    try:
        diagnostics.report(error)
    except Exception:
        log.exception("diagnostic sink %r failed while reporting %s", diagnostics, type(error).__name__)
