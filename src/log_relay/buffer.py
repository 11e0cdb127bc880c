"""
Deferred in-memory buffer.

Entries accumulate during a request or job and are written in one go at
the boundary, with batch delivery where sinks support it. Reaching
``max_entries`` triggers an immediate flush so memory stays bounded;
execution then carries on normally.
"""

from __future__ import annotations

from typing import Any, List, Mapping, Optional

from loguru import logger

from .dispatcher import ChannelDispatcher
from .metrics.registry import DEFERRED_AUTO_FLUSH_TOTAL, DEFERRED_ENTRIES_FLUSHED_TOTAL
from .models import LogEntry, LogLevel


class DeferredBuffer:
    """
    Accumulates log entries and hands them to a ChannelDispatcher on flush.

    Example:
        buffer = DeferredBuffer(dispatcher, max_entries=1000)
        buffer.defer("search", "info", "user_created", {"log_index": "general_log"})
        buffer.flush()  # never raises
    """

    def __init__(
        self,
        dispatcher: ChannelDispatcher,
        max_entries: Optional[int] = 1000,
        warn_on_limit: bool = True,
    ) -> None:
        self.dispatcher = dispatcher
        self._max_entries = max_entries
        self._warn_on_limit = warn_on_limit
        self._entries: List[LogEntry] = []
        self._auto_flush_count = 0

    @property
    def max_entries(self) -> Optional[int]:
        return self._max_entries

    def defer(
        self,
        channel: str,
        level: "LogLevel | str",
        message: str,
        fields: Optional[Mapping[str, Any]] = None,
    ) -> LogEntry:
        entry = LogEntry(channel=channel, level=level, message=message, fields=dict(fields or {}))
        self.defer_entry(entry)
        return entry

    def defer_entry(self, entry: LogEntry) -> None:
        self._entries.append(entry)
        if self._max_entries and self._max_entries > 0 and len(self._entries) >= self._max_entries:
            self._auto_flush()

    def flush(self) -> int:
        """Dispatch every buffered entry, then empty the buffer. Returns the count."""
        if not self._entries:
            return 0

        # swap first so entries deferred during dispatch wait for the next flush
        entries, self._entries = self._entries, []
        for entry in entries:
            DEFERRED_ENTRIES_FLUSHED_TOTAL.labels(channel=entry.channel).inc()
        try:
            self.dispatcher.dispatch(entries)
        except Exception as exc:
            logger.debug(f"Deferred flush failed, {len(entries)} entries dropped: {type(exc).__name__}: {exc}")
        return len(entries)

    def clear(self) -> None:
        """Drop buffered entries without writing them."""
        self._entries = []
        self._auto_flush_count = 0

    def count(self) -> int:
        return len(self._entries)

    def auto_flush_count(self) -> int:
        return self._auto_flush_count

    def __len__(self) -> int:
        return len(self._entries)

    def _auto_flush(self) -> None:
        self._auto_flush_count += 1
        DEFERRED_AUTO_FLUSH_TOTAL.inc()

        if self._warn_on_limit:
            try:
                logger.bind(
                    limit=self._max_entries,
                    logs_flushed=len(self._entries),
                    auto_flush_count=self._auto_flush_count,
                ).warning(
                    f"Deferred buffer limit reached ({self._max_entries}), auto-flushing "
                    f"{len(self._entries)} entries (auto-flush #{self._auto_flush_count})"
                )
            except Exception:  # noqa: BLE001
                pass

        self.flush()
