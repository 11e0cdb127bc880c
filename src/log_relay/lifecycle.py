"""
Queue-job lifecycle logging.

``started`` records when a job began; ``finished`` publishes one
``job_log`` entry with the job's outcome and duration.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional

from .models import LogEntry, LogLevel

JOB_LOG_INDEX = "job_log"


class JobEvents:
    def __init__(
        self,
        publish: Callable[[LogEntry], Any],
        *,
        clock: Callable[[], float] = time.monotonic,
        channel: str = "job",
    ) -> None:
        self._publish = publish
        self._clock = clock
        self._channel = channel
        self._started: Dict[str, float] = {}

    def started(self, job_id: str) -> None:
        self._started[job_id] = self._clock()

    def finished(
        self,
        job_id: str,
        name: str,
        *,
        status: str = "success",
        error: Optional[BaseException] = None,
        attempts: Optional[int] = None,
        queue: Optional[str] = None,
    ) -> LogEntry:
        """Publish the ``job_log`` entry. ``duration_ms`` is omitted if ``started`` was never called."""
        started = self._started.pop(job_id, None)
        failed = status != "success"

        fields: Dict[str, Any] = {
            "log_index": JOB_LOG_INDEX,
            "job_id": job_id,
            "job_name": name,
            "status": status,
        }
        if started is not None:
            fields["duration_ms"] = round((self._clock() - started) * 1000)
        if queue is not None:
            fields["queue"] = queue
        if attempts is not None:
            fields["attempts"] = attempts
        if error is not None:
            fields["error_class"] = type(error).__name__
            fields["error_message"] = str(error)

        entry = LogEntry(
            channel=self._channel,
            level=LogLevel.ERROR if failed else LogLevel.INFO,
            message="job_failed" if failed else "job_processed",
            fields=fields,
        )
        self._publish(entry)
        return entry

    def pending(self) -> int:
        return len(self._started)
