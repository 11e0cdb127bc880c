"""
Transaction id attribution per database connection.

Maps ``(connection, nesting_level)`` to an opaque ``txn-<uuid>`` id so every
log entry written inside the same transaction shares one id.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from loguru import logger

from ..utils import generate_id

LevelResolver = Callable[[str], int]

MAX_TRANSACTION_AGE_SEC = 3600


@dataclass
class TransactionRecord:
    id: str
    observed_at: float


class TransactionTracker:
    """
    In-memory transaction id cache, one instance per process or worker.

    ``level_resolver(connection_name)`` must return the connection's current
    transaction nesting depth (0 when no transaction is open). Lookups are
    best-effort: a resolver failure yields None instead of raising.

    Example:
        tracker = TransactionTracker(lambda name: engines[name].transaction_level)
        tracker.id_for("default")  # "txn-..." inside a transaction, else None
    """

    def __init__(
        self,
        level_resolver: LevelResolver,
        *,
        max_age_sec: float = MAX_TRANSACTION_AGE_SEC,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._resolve_level = level_resolver
        self._max_age = max_age_sec
        self._clock = clock
        self._records: Dict[Tuple[str, int], TransactionRecord] = {}

    def id_for(self, connection_name: str) -> Optional[str]:
        try:
            level = int(self._resolve_level(connection_name))
        except Exception as exc:
            logger.debug(f"Transaction level lookup failed for {connection_name!r}: {exc}")
            return None

        if level <= 0:
            self.clear_connection(connection_name)
            return None

        self._collect_garbage(connection_name, level)

        key = (connection_name, level)
        record = self._records.get(key)
        if record is None:
            record = TransactionRecord(id=generate_id("txn-"), observed_at=self._clock())
            self._records[key] = record
        return record.id

    def clear_connection(self, connection_name: str) -> None:
        for key in [k for k in self._records if k[0] == connection_name]:
            del self._records[key]

    def reset(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)

    def _collect_garbage(self, connection_name: str, current_level: int) -> None:
        """Drop expired records and any deeper than the current level."""
        now = self._clock()
        stale = []
        for key, record in self._records.items():
            name, stored_level = key
            if name != connection_name:
                continue
            if now - record.observed_at > self._max_age or stored_level > current_level:
                stale.append(key)
        for key in stale:
            del self._records[key]
