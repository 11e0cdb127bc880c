"""
Channel dispatcher.

Routes entries to the sinks bound to their channel, preferring batch
delivery and degrading step by step: batch -> per-record on the same sink
-> last-resort writer. Nothing raised by a sink escapes ``dispatch``.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from loguru import logger

from .errors import UnknownChannelError
from .metrics.registry import DISPATCH_FALLBACK_TOTAL
from .models import LogEntry
from .sinks import Sink, supports_batch

FallbackWriter = Callable[[LogEntry], None]


def loguru_fallback(entry: LogEntry) -> None:
    """Last-resort delivery: the process's own loguru handlers."""
    logger.bind(channel=entry.channel, fields=dict(entry.fields)).log(entry.level.loguru_level, entry.message)


class SinkRegistry:
    """Channel name -> sinks bound to it."""

    def __init__(self, channels: Optional[Mapping[str, Iterable[Sink]]] = None) -> None:
        self._channels: Dict[str, List[Sink]] = {}
        for channel, sinks in (channels or {}).items():
            for sink in sinks:
                self.register(channel, sink)

    @property
    def channels(self) -> List[str]:
        return list(self._channels)

    def register(self, channel: str, sink: Sink) -> None:
        self._channels.setdefault(channel, []).append(sink)

    def resolve(self, channel: str) -> List[Sink]:
        try:
            return list(self._channels[channel])
        except KeyError:
            raise UnknownChannelError(f"No sink registered for channel {channel!r}") from None

    def close(self) -> None:
        seen = set()
        for sinks in self._channels.values():
            for sink in sinks:
                if id(sink) in seen:
                    continue
                seen.add(id(sink))
                try:
                    sink.close()
                except Exception as exc:
                    logger.debug(f"Closing sink {sink.name!r} failed (ignored): {exc}")


class ChannelDispatcher:
    """
    Deliver entries channel by channel.

    For each channel, batch-capable sinks get one ``write_batch`` call; if it
    raises, that sink gets one ``write`` per entry instead. Other sinks
    always get per-entry writes. If the channel cannot be resolved at all,
    every entry goes to ``fallback``. Each per-entry write is guarded on
    its own so one bad entry does not stop the rest.
    """

    def __init__(self, registry: SinkRegistry, *, fallback: FallbackWriter = loguru_fallback) -> None:
        self.registry = registry
        self._fallback = fallback

    def dispatch(self, entries: Sequence[LogEntry]) -> int:
        by_channel: Dict[str, List[LogEntry]] = {}
        for entry in entries:
            by_channel.setdefault(entry.channel, []).append(entry)

        for channel, channel_entries in by_channel.items():
            self._flush_channel(channel, channel_entries)
        return len(entries)

    def dispatch_one(self, entry: LogEntry) -> None:
        self.dispatch([entry])

    def _flush_channel(self, channel: str, entries: List[LogEntry]) -> None:
        try:
            sinks = self.registry.resolve(channel)

            for sink in sinks:
                if not supports_batch(sink):
                    continue
                try:
                    sink.write_batch(entries)
                except Exception as exc:
                    logger.debug(
                        f"Batch write to {sink.name!r} failed for channel {channel!r}, "
                        f"falling back to per-record writes: {type(exc).__name__}: {exc}"
                    )
                    DISPATCH_FALLBACK_TOTAL.labels(path="per_record").inc()
                    self._write_each(sink.write, entries)

            for sink in sinks:
                if not supports_batch(sink):
                    self._write_each(sink.write, entries)
        except Exception as exc:
            logger.debug(f"Dispatch to channel {channel!r} failed, using last-resort writer: {exc}")
            DISPATCH_FALLBACK_TOTAL.labels(path="last_resort").inc()
            self._write_each(self._fallback, entries)

    @staticmethod
    def _write_each(write: FallbackWriter, entries: Sequence[LogEntry]) -> None:
        for entry in entries:
            try:
                write(entry)
            except Exception as exc:
                logger.debug(f"Dropping {entry.channel!r} entry {entry.message!r}: {type(exc).__name__}: {exc}")
