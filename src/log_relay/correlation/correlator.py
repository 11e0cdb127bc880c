"""
Operation correlator.

Pairs write queries (INSERT/UPDATE/DELETE) with the ORM lifecycle event
that caused them, producing one combined ``orm_log`` entry that carries the
SQL, timing, transaction id and the before/after attribute snapshots.

Pending queries live at most ``max_pending_age_sec`` (5s). Anything that
never gets a lifecycle event is flushed as a query-only entry, so no write
is ever dropped.

Matching caveat: when the exact ``connection:table:kind:id`` key misses,
the most recent pending query for the same ``connection:table:kind`` is
taken. Two concurrent writes to one table inside the window can therefore
be paired with the wrong lifecycle event. The pending set is small, so the
fallback is a plain linear scan.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from loguru import logger

from ..metrics.registry import CORRELATOR_ENTRIES_TOTAL
from ..models import LogEntry, LogLevel, ModelEvent, ModelEventKind, QueryEvent
from ..utils import format_bindings
from .sql import (
    DEFAULT_IGNORE_PATTERNS,
    WRITE_QUERY_TYPES,
    action_for,
    extract_query_type,
    extract_row_id,
    extract_table,
    should_ignore,
)
from .transactions import TransactionTracker

MAX_PENDING_AGE_SEC = 5.0
ORM_LOG_INDEX = "orm_log"

EmitFn = Callable[[LogEntry], None]

_KIND_TO_QUERY_TYPE = {
    ModelEventKind.CREATED: "INSERT",
    ModelEventKind.UPDATED: "UPDATE",
    ModelEventKind.DELETED: "DELETE",
}


def correlation_key(connection: str, table: Optional[str], query_type: str, row_id: Optional[str]) -> str:
    base = f"{connection}:{table or ''}:{query_type}"
    return f"{base}:{row_id}" if row_id is not None else f"{base}:*"


def round_duration_ms(elapsed_ms: float) -> int:
    """Whole milliseconds, half rounded away from zero."""
    return int(math.floor(abs(elapsed_ms) + 0.5)) * (1 if elapsed_ms >= 0 else -1)


@dataclass
class PendingQuery:
    sql: str
    bindings: Optional[str]
    duration_ms: int
    is_slow: bool
    transaction_id: Optional[str]
    observed_at: float
    connection: str
    table: Optional[str]
    query_kind: str
    row_id: Optional[str]

    @property
    def key(self) -> str:
        return correlation_key(self.connection, self.table, self.query_kind, self.row_id)


class OperationCorrelator:
    """
    Correlates query-executed and model lifecycle streams into log entries.

    Args:
        emit: Callback receiving every produced LogEntry
        tracker: Optional TransactionTracker for ``transaction_id``
        enabled: Master switch; when False both entry points are no-ops
        log_read_operations: Emit SELECT statements as query-only entries
        slow_query_threshold_ms: Duration at which entries become ``warning``
        ignore_patterns: Case-insensitive substrings of statements to drop
        max_bindings_size: Byte cap for the serialized bindings field
        model_resolver: Maps a table name to a model name for query-only entries
        context_provider: Extra fields merged into every entry (e.g. user_id)
        clock: Monotonic seconds, injectable for tests

    Instances are per process/worker; call ``drain()`` at request or job
    boundaries.
    """

    def __init__(
        self,
        emit: EmitFn,
        tracker: Optional[TransactionTracker] = None,
        *,
        enabled: bool = True,
        log_read_operations: bool = False,
        slow_query_threshold_ms: int = 1000,
        ignore_patterns: Iterable[str] = DEFAULT_IGNORE_PATTERNS,
        max_bindings_size: int = 2048,
        max_pending_age_sec: float = MAX_PENDING_AGE_SEC,
        channel: str = "orm",
        model_resolver: Optional[Callable[[str], Optional[str]]] = None,
        context_provider: Optional[Callable[[], Mapping[str, Any]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._emit_fn = emit
        self._tracker = tracker
        self.enabled = enabled
        self.log_read_operations = log_read_operations
        self.slow_query_threshold_ms = slow_query_threshold_ms
        self.ignore_patterns = tuple(ignore_patterns)
        self.max_bindings_size = max_bindings_size
        self._max_age = max_pending_age_sec
        self._channel = channel
        self._model_resolver = model_resolver
        self._context_provider = context_provider
        self._clock = clock
        self._pending: Dict[str, PendingQuery] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # --------------------------- entry points

    def on_query_executed(self, event: QueryEvent) -> None:
        if not self.enabled:
            return
        if should_ignore(event.sql, self.ignore_patterns):
            return

        query_type = extract_query_type(event.sql)

        if query_type in WRITE_QUERY_TYPES:
            self._store_pending(event, query_type)
            self.evict_expired()
            return

        self.evict_expired()
        if query_type == "SELECT" and not self.log_read_operations:
            return
        self._emit_query_only(self._pending_from(event, query_type), outcome="read")

    def on_model_event(self, event: ModelEvent) -> None:
        if not self.enabled:
            return

        self.evict_expired()

        query_type = _KIND_TO_QUERY_TYPE[event.kind]
        pending = self._find_and_remove(event.connection_name, event.table, query_type, event.primary_key)

        if pending is not None:
            self._emit_combined(event, pending)
        else:
            self._emit_model_only(event, query_type)

    # --------------------------- housekeeping

    def evict_expired(self) -> int:
        """Flush pending queries older than the window as query-only entries."""
        now = self._clock()
        expired = [k for k, p in self._pending.items() if now - p.observed_at > self._max_age]
        for key in expired:
            self._emit_query_only(self._pending.pop(key), outcome="expired")
        return len(expired)

    def drain(self) -> int:
        """Flush every pending query (request/job boundary)."""
        pending = list(self._pending.values())
        self._pending.clear()
        for p in pending:
            self._emit_query_only(p, outcome="expired")
        return len(pending)

    # --------------------------- internals

    def _pending_from(self, event: QueryEvent, query_type: Optional[str]) -> PendingQuery:
        duration_ms = round_duration_ms(event.elapsed_ms)
        return PendingQuery(
            sql=event.sql,
            bindings=format_bindings(event.bindings, self.max_bindings_size),
            duration_ms=duration_ms,
            is_slow=duration_ms >= self.slow_query_threshold_ms,
            transaction_id=self._transaction_id(event.connection_name),
            observed_at=self._clock(),
            connection=event.connection_name,
            table=extract_table(event.sql),
            query_kind=query_type or "UNKNOWN",
            row_id=extract_row_id(event.sql, query_type, event.bindings),
        )

    def _store_pending(self, event: QueryEvent, query_type: str) -> None:
        pending = self._pending_from(event, query_type)
        previous = self._pending.pop(pending.key, None)
        if previous is not None:
            # same key still waiting: flush it rather than overwrite it
            self._emit_query_only(previous, outcome="query_only")
        self._pending[pending.key] = pending

    def _find_and_remove(
        self, connection: str, table: str, query_type: str, row_id: Optional[str]
    ) -> Optional[PendingQuery]:
        if row_id is not None and query_type != "INSERT":
            hit = self._pending.pop(correlation_key(connection, table, query_type, row_id), None)
            if hit is not None:
                return hit

        best_key = None
        best: Optional[PendingQuery] = None
        for key, p in self._pending.items():
            if p.connection != connection or p.table != table or p.query_kind != query_type:
                continue
            if query_type != "INSERT" and row_id is not None and p.row_id not in (None, row_id):
                continue
            if best is None or p.observed_at >= best.observed_at:
                best_key, best = key, p

        if best_key is not None:
            del self._pending[best_key]
        return best

    def _transaction_id(self, connection: str) -> Optional[str]:
        if self._tracker is None:
            return None
        return self._tracker.id_for(connection)

    def _emit_combined(self, event: ModelEvent, pending: PendingQuery) -> None:
        fields = {
            "model": event.model_type,
            "model_id": event.primary_key or pending.row_id,
            "action": action_for(pending.query_kind),
            "query": pending.sql,
            "query_type": pending.query_kind,
            "is_slow_query": pending.is_slow,
            "duration_ms": pending.duration_ms,
            "bindings": pending.bindings,
            "connection": event.connection_name,
            "table": event.table,
            "transaction_id": pending.transaction_id,
            "previous_value": event.previous_attributes,
            "after_value": event.after_attributes,
        }
        level = LogLevel.WARNING if pending.is_slow else LogLevel.INFO
        self._emit(f"model_{event.kind.value}", level, fields, outcome="combined")

    def _emit_model_only(self, event: ModelEvent, query_type: str) -> None:
        fields = {
            "model": event.model_type,
            "model_id": event.primary_key,
            "action": action_for(query_type),
            "query_type": query_type,
            "connection": event.connection_name,
            "table": event.table,
            "transaction_id": self._transaction_id(event.connection_name),
            "previous_value": event.previous_attributes,
            "after_value": event.after_attributes,
        }
        self._emit(f"model_{event.kind.value}", LogLevel.INFO, fields, outcome="model_only")

    def _emit_query_only(self, pending: PendingQuery, *, outcome: str) -> None:
        model = None
        if self._model_resolver is not None and pending.table:
            try:
                model = self._model_resolver(pending.table)
            except Exception as exc:
                logger.debug(f"ORM model resolver failed for {pending.table!r} (ignored): {exc}")
        fields = {
            "model": model,
            "model_id": pending.row_id,
            "action": action_for(pending.query_kind),
            "query": pending.sql,
            "query_type": pending.query_kind,
            "is_slow_query": pending.is_slow,
            "duration_ms": pending.duration_ms,
            "bindings": pending.bindings,
            "connection": pending.connection,
            "table": pending.table,
            "transaction_id": pending.transaction_id,
        }
        level = LogLevel.WARNING if pending.is_slow else LogLevel.INFO
        self._emit("database_query", level, fields, outcome=outcome)

    def _emit(self, message: str, level: LogLevel, fields: Dict[str, Any], *, outcome: str) -> None:
        payload: Dict[str, Any] = {"log_index": ORM_LOG_INDEX}
        payload.update((k, v) for k, v in fields.items() if v is not None)
        if self._context_provider is not None:
            try:
                for k, v in self._context_provider().items():
                    if v is not None:
                        payload.setdefault(k, v)
            except Exception as exc:
                logger.debug(f"ORM context provider failed (ignored): {exc}")

        entry = LogEntry(channel=self._channel, level=level, message=message, fields=payload)
        CORRELATOR_ENTRIES_TOTAL.labels(outcome=outcome).inc()
        try:
            self._emit_fn(entry)
        except Exception as exc:
            # Logging must never break the host operation
            logger.debug(f"ORM log emission failed (ignored): {type(exc).__name__}: {exc}")
