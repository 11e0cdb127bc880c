"""
Append-only JSONL file sink.

Writes ``<index>-YYYY-MM-DD.jsonl`` files (one JSON object per line) under
a directory, with a daily retention sweep. File I/O problems never reach
the host: by default the affected entries are dropped.
"""

from __future__ import annotations

import fcntl
import time
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from loguru import logger

from ..errors import OnError
from ..models import LogEntry
from ..utils import sanitize_index, utc_today
from .base import BatchSink
from .builders import DEFAULT_INDEX
from .encoding import encode_document
from .retention import RetentionSweeper


class FileSink(BatchSink):
    name = "index_file"

    def __init__(
        self,
        directory: Union[str, Path],
        *,
        default_index: str = DEFAULT_INDEX,
        retention_days: int = 0,
        sweep_name: str = "log-relay-index-file",
        on_error: OnError = OnError.SWALLOW,
        today: Callable[[], date] = utc_today,
    ) -> None:
        self.directory = Path(directory)
        self._default_index = default_index
        self.on_error = on_error
        self.sweeper = RetentionSweeper(self.directory, retention_days, name=sweep_name, today=today)

    def path_for(self, entry: LogEntry) -> Path:
        index = sanitize_index(self._index_for(entry))
        return self.directory / f"{index}-{entry.timestamp.date().isoformat()}.jsonl"

    def write(self, entry: LogEntry) -> None:
        self.write_batch([entry])

    def write_batch(self, entries: Sequence[LogEntry]) -> None:
        """Append entries, one ``open`` per target file."""
        if not entries:
            return

        started = time.perf_counter()
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self._fail(exc, "batch", started)
            return

        try:
            self.sweeper.maybe_prune()
        except Exception as exc:
            logger.debug(f"Retention sweep of {self.directory} skipped: {type(exc).__name__}: {exc}")

        groups: Dict[Path, List[str]] = {}
        for entry in entries:
            index = self._index_for(entry)
            line = encode_document(self._payload(entry, index), entry, index)
            groups.setdefault(self.path_for(entry), []).append(line)

        failed = False
        for path, lines in groups.items():
            try:
                self._append(path, lines)
            except OSError as exc:
                failed = True
                self._fail(exc, "batch", started)
        if not failed:
            self._observe("batch", "success", started)

    # --------------------------- internals

    def _index_for(self, entry: LogEntry) -> str:
        return entry.log_index or self._default_index

    @staticmethod
    def _payload(entry: LogEntry, index: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"@timestamp": entry.timestamp.isoformat(), "log_index": index}
        payload.update((k, v) for k, v in entry.fields.items() if k != "log_index")
        payload.setdefault("level", entry.level.value)
        payload.setdefault("message", entry.message)
        return payload

    @staticmethod
    def _append(path: Path, lines: List[str]) -> None:
        with open(path, "a", encoding="utf-8") as fh:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
            try:
                fh.write("\n".join(lines) + "\n")
                fh.flush()
            finally:
                fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
