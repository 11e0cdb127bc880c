"""
Sink contracts shared by every delivery target.

``Sink.write(entry)`` is always available; ``BatchSink.write_batch(entries)``
is preferred by the dispatcher when a sink implements it.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any, Sequence

from loguru import logger
from prometheus_client import Counter, Histogram

from ..errors import OnError
from ..models import LogEntry

SINK_WRITES_TOTAL = Counter(
    "log_relay_sink_writes_total",
    "Total sink write calls by outcome",
    ["sink", "mode", "status"],
)

SINK_WRITE_LATENCY = Histogram(
    "log_relay_sink_write_latency_seconds",
    "Sink write latency in seconds",
    ["sink"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10],
)


class Sink(ABC):
    """A delivery target for log entries.

    ``on_error`` decides what happens to I/O failures the sink cannot
    recover from: SWALLOW logs and drops them, PROPAGATE re-raises so the
    dispatcher can fall back to per-record delivery.
    """

    name: str = "sink"
    on_error: OnError = OnError.SWALLOW

    @abstractmethod
    def write(self, entry: LogEntry) -> None:
        """Deliver a single entry."""

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # --------------------------- helpers for subclasses

    def _observe(self, mode: str, status: str, started: float) -> None:
        SINK_WRITES_TOTAL.labels(sink=self.name, mode=mode, status=status).inc()
        SINK_WRITE_LATENCY.labels(sink=self.name).observe(time.perf_counter() - started)

    def _fail(self, exc: Exception, mode: str, started: float) -> None:
        """Record a failed write, then drop or re-raise per ``on_error``."""
        self._observe(mode, "failure", started)
        if self.on_error is OnError.PROPAGATE:
            logger.error(f"{self.name} sink {mode} write failed: {type(exc).__name__}: {exc}")
            raise exc
        logger.debug(f"{self.name} sink {mode} write dropped: {type(exc).__name__}: {exc}")


class BatchSink(Sink):
    """A sink that accepts many entries in one outbound call."""

    @abstractmethod
    def write_batch(self, entries: Sequence[LogEntry]) -> Any:
        """Deliver all entries, preferably in a single request."""


def supports_batch(sink: Sink) -> bool:
    return isinstance(sink, BatchSink)
