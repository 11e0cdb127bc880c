"""
Multi-channel application logger.

One call fans a record out to every channel of the configured stack
(``search``, ``broker``, ``index_file``, ...). Records carry a
``request_id`` and ``trace_id`` taken from the current request context.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterable, Iterator, List, Mapping, Optional

from .buffer import DeferredBuffer
from .models import LogEntry, LogLevel
from .sinks.builders import DEFAULT_INDEX
from .utils import generate_id

request_id_var: ContextVar[Optional[str]] = ContextVar("log_relay_request_id", default=None)
trace_id_var: ContextVar[Optional[str]] = ContextVar("log_relay_trace_id", default=None)


@contextmanager
def request_context(request_id: Optional[str] = None, trace_id: Optional[str] = None) -> Iterator[str]:
    """Bind request/trace ids for everything logged inside the block."""
    request_id = request_id or generate_id()
    request_token = request_id_var.set(request_id)
    trace_token = trace_id_var.set(trace_id or request_id)
    try:
        yield request_id
    finally:
        trace_id_var.reset(trace_token)
        request_id_var.reset(request_token)


class MultiChannelLogger:
    """
    Fan-out logger over a DeferredBuffer.

    Example:
        log = MultiChannelLogger(["index_file", "search"], buffer)
        log.info("user_created", {"user_id": 7}, log_index="user_log")
    """

    def __init__(self, channels: Iterable[str], buffer: DeferredBuffer) -> None:
        self.channels: List[str] = list(channels)
        self.buffer = buffer

    def log(
        self,
        level: "LogLevel | str",
        message: str,
        fields: Optional[Mapping[str, Any]] = None,
        *,
        log_index: str = DEFAULT_INDEX,
        defer: bool = True,
    ) -> List[LogEntry]:
        payload = dict(fields or {})
        payload.setdefault("log_index", log_index)
        entry = LogEntry(channel="*", level=level, message=message, fields=payload)
        return self.publish(entry, defer=defer)

    def debug(self, message: str, fields: Optional[Mapping[str, Any]] = None, **kwargs) -> List[LogEntry]:
        return self.log(LogLevel.DEBUG, message, fields, **kwargs)

    def info(self, message: str, fields: Optional[Mapping[str, Any]] = None, **kwargs) -> List[LogEntry]:
        return self.log(LogLevel.INFO, message, fields, **kwargs)

    def warning(self, message: str, fields: Optional[Mapping[str, Any]] = None, **kwargs) -> List[LogEntry]:
        return self.log(LogLevel.WARNING, message, fields, **kwargs)

    def error(self, message: str, fields: Optional[Mapping[str, Any]] = None, **kwargs) -> List[LogEntry]:
        return self.log(LogLevel.ERROR, message, fields, **kwargs)

    def publish(self, entry: LogEntry, *, defer: bool = True) -> List[LogEntry]:
        """Copy ``entry`` onto every configured channel; its own channel is ignored."""
        fields = dict(entry.fields)
        fields.setdefault("log_index", DEFAULT_INDEX)
        if not fields.get("request_id"):
            fields["request_id"] = request_id_var.get() or generate_id()
        if not fields.get("trace_id"):
            fields["trace_id"] = trace_id_var.get() or fields["request_id"]

        copies = [
            LogEntry(channel=channel, level=entry.level, message=entry.message, fields=fields, timestamp=entry.timestamp)
            for channel in self.channels
        ]
        if defer:
            for copy in copies:
                self.buffer.defer_entry(copy)
        elif copies:
            self.buffer.dispatcher.dispatch(copies)
        return copies
