"""Thread-safe event buffer that hands fixed-size batches to a flush worker."""

import logging
import queue
import threading
import time
from collections.abc import Callable, Iterable, Sequence

import sqlsink.config as config
from sqlsink.diagnostics import DiagnosticSink, SelfLog, report
from sqlsink.errors import ConfigurationError, WriteError
from sqlsink.events import LogRecord

log = logging.getLogger(__name__)

Batch = tuple[LogRecord, ...]
WriteBatch = Callable[[Sequence[LogRecord]], bool]

_STOP = object()


class EventBuffer:
    """Accumulates records from producer threads and flushes them in batches.

    Producers only ever take the short list lock. Full batches go onto a
    bounded queue drained by a single worker thread, so at most one
    ``write_batch`` call runs at a time and batches are written in the order
    they were captured.
    """

    def __init__(
        self,
        write_batch: WriteBatch,
        batch_size: int = config.DEFAULT_BATCH_SIZE,
        diagnostics: DiagnosticSink | None = None,
        flush_interval: float = config.FLUSH_INTERVAL,
        queue_limit: int = config.QUEUE_LIMIT,
    ):
        if not config.MIN_BATCH_SIZE <= batch_size <= config.MAX_BATCH_SIZE:
            raise ConfigurationError(
                f"batch_size must be between {config.MIN_BATCH_SIZE} and "
                f"{config.MAX_BATCH_SIZE} inclusive, got {batch_size}"
            )
        self._write_batch = write_batch
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self._diagnostics = diagnostics or SelfLog()
        self._lock = threading.Lock()
        self._events: list[LogRecord] = []
        self._pending: queue.Queue = queue.Queue(maxsize=queue_limit)
        self._closed = False
        self.records_written = 0
        self.records_dropped = 0
        self._worker = threading.Thread(target=self._run, name="sqlsink-flush", daemon=True)
        self._worker.start()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    @property
    def closed(self) -> bool:
        return self._closed

    # ── producers ───────────────────────────────────────────────────────

    def push(self, record: LogRecord) -> None:
        self.push_many((record,))

    def push_many(self, records: Iterable[LogRecord]) -> None:
        dropped: list[tuple[Batch, str]] = []
        with self._lock:
            if self._closed:
                dropped.append((tuple(records), "buffer is closed"))
            else:
                for record in records:
                    self._events.append(record)
                    if len(self._events) >= self.batch_size:
                        overflow = self._submit_locked()
                        if overflow:
                            dropped.append((overflow, "flush queue is full"))
        for batch, reason in dropped:
            self._drop(batch, reason)

    # ── flushing ────────────────────────────────────────────────────────

    def flush(self) -> None:
        """Hand over everything buffered and wait until the worker has written it."""
        with self._lock:
            if self._closed:
                return
            overflow = self._submit_locked()
        if overflow:
            self._drop(overflow, "flush queue is full")
        self._pending.join()

    def drain(self) -> Batch:
        """Remove and return whatever is buffered, regardless of count."""
        with self._lock:
            return self._take_locked()

    def close(self) -> None:
        """Write the remainder as a final batch and stop the worker.

        Waits for the worker with no timeout, so a hung database also hangs
        shutdown.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            remaining = self._take_locked()
        if remaining:
            self._pending.put(remaining)
        self._pending.put(_STOP)
        self._worker.join()
        log.debug(
            "buffer closed (%d records written, %d dropped)",
            self.records_written, self.records_dropped,
        )

    def _take_locked(self) -> Batch:
        """Must be called while holding self._lock."""
        batch = tuple(self._events)
        self._events.clear()
        return batch

    def _submit_locked(self) -> Batch | None:
        """Must be called while holding self._lock. Returns the batch if the queue was full."""
        batch = self._take_locked()
        if not batch:
            return None
        try:
            self._pending.put_nowait(batch)
        except queue.Full:
            return batch
        return None

    def _drop(self, batch: Batch, reason: str) -> None:
        if not batch:
            return
        with self._lock:
            self.records_dropped += len(batch)
        report(self._diagnostics, WriteError(f"{reason}; dropped {len(batch)} records"))

    # ── worker ──────────────────────────────────────────────────────────

    def _run(self) -> None:
        next_flush = time.monotonic() + self.flush_interval
        while True:
            timeout = max(0.0, next_flush - time.monotonic()) if self.flush_interval > 0 else None
            try:
                batch = self._pending.get(timeout=timeout)
            except queue.Empty:
                next_flush = time.monotonic() + self.flush_interval
                with self._lock:
                    overflow = self._submit_locked()
                if overflow:
                    self._drop(overflow, "flush queue is full")
                continue
            try:
                if batch is _STOP:
                    return
                self._write(batch)
            finally:
                self._pending.task_done()

    def _write(self, batch: Batch) -> None:
        try:
            ok = self._write_batch(batch)
        except Exception as exc:
            report(self._diagnostics, WriteError.caused_by(f"batch writer raised on {len(batch)} records: {exc}", exc))
            ok = False
        with self._lock:
            if ok:
                self.records_written += len(batch)
            else:
                self.records_dropped += len(batch)
        log.debug("flushed batch of %d records (ok=%s)", len(batch), ok)
