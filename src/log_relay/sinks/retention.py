"""
Daily retention sweep for JSONL log directories.

Safe across processes sharing one directory: a marker file records the
last sweep date (cheap check), and only a process holding the exclusive
lock on ``<marker>.lock`` re-checks the marker and prunes. A process that
cannot take the lock skips the sweep; pruning is best-effort.
"""

from __future__ import annotations

import fcntl
import re
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional, Union

from loguru import logger

from ..utils import utc_today

_DATE_IN_NAME = re.compile(r"(?<!\d)(\d{4}-\d{2}-\d{2})(?!\d)")


def date_from_filename(filename: str) -> Optional[date]:
    """First ``YYYY-MM-DD`` in ``filename``; None when absent or not a real date."""
    m = _DATE_IN_NAME.search(filename)
    if m is None:
        return None
    try:
        return date.fromisoformat(m.group(1))
    except ValueError:
        return None


class RetentionSweeper:
    """Delete files older than ``retention_days`` at most once per calendar day.

    Today and the previous ``retention_days - 1`` days are kept. Files are
    dated by the date in their name, or by modification time when the name
    has none. ``retention_days <= 0`` disables pruning.
    """

    def __init__(
        self,
        directory: Union[str, Path],
        retention_days: int,
        *,
        name: str = "log-relay",
        pattern: str = "*.jsonl",
        today: Callable[[], date] = utc_today,
    ) -> None:
        self.directory = Path(directory)
        self.retention_days = retention_days
        self.pattern = pattern
        self.marker_path = self.directory / f".{name}-last-prune"
        self.lock_path = self.marker_path.with_name(self.marker_path.name + ".lock")
        self._today = today

    def maybe_prune(self) -> bool:
        """Run the sweep unless it already ran today. Returns True if it ran."""
        if self.retention_days <= 0:
            return False

        today = self._today().isoformat()
        if self._last_sweep() == today:
            return False

        try:
            lock = open(self.lock_path, "a+")
        except OSError as exc:
            logger.debug(f"Retention lock unavailable at {self.lock_path}: {exc}")
            return False

        with lock:
            try:
                fcntl.flock(lock.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except OSError:
                # another process is sweeping
                return False
            try:
                if self._last_sweep() == today:
                    return False
                self.prune()
                self.marker_path.write_text(today, encoding="utf-8")
                return True
            except OSError as exc:
                logger.debug(f"Retention sweep of {self.directory} failed: {exc}")
                return False
            finally:
                fcntl.flock(lock.fileno(), fcntl.LOCK_UN)

    def prune(self) -> List[Path]:
        """Delete expired files now, ignoring the daily throttle."""
        if self.retention_days <= 0:
            return []
        keep_from = self._today() - timedelta(days=max(0, self.retention_days - 1))
        deleted = []
        for path in sorted(self.directory.glob(self.pattern)):
            file_date = date_from_filename(path.name) or self._mtime_date(path)
            if file_date is None or file_date >= keep_from:
                continue
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            deleted.append(path)

        if deleted:
            logger.info(f"Retention sweep removed {len(deleted)} file(s) from {self.directory}")
        return deleted

    def _last_sweep(self) -> Optional[str]:
        try:
            return self.marker_path.read_text(encoding="utf-8").strip()
        except (OSError, ValueError):
            return None

    @staticmethod
    def _mtime_date(path: Path) -> Optional[date]:
        try:
            return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc).date()
        except OSError:
            return None
