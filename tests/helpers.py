"""
Shared test doubles for log-relay tests.
"""

import json
from datetime import datetime, timezone

from log_relay.models import LogEntry
from log_relay.sinks import BatchSink, Sink


class RecordingSink(Sink):
    """Single-record sink that keeps every entry it receives."""

    name = "recording"

    def __init__(self, fail_on=None):
        self.entries = []
        self.closed = False
        self._fail_on = fail_on or set()

    def write(self, entry):
        if entry.message in self._fail_on:
            raise RuntimeError(f"refusing {entry.message}")
        self.entries.append(entry)

    def close(self):
        self.closed = True


class RecordingBatchSink(BatchSink):
    """Batch sink that records batches and per-record writes separately."""

    name = "recording_batch"

    def __init__(self, batch_error=None, fail_on=None):
        self.batches = []
        self.singles = []
        self.closed = False
        self._batch_error = batch_error
        self._fail_on = fail_on or set()

    def write(self, entry):
        if entry.message in self._fail_on:
            raise RuntimeError(f"refusing {entry.message}")
        self.singles.append(entry)

    def write_batch(self, entries):
        if self._batch_error is not None:
            raise self._batch_error
        self.batches.append(list(entries))

    def close(self):
        self.closed = True


class FakeClock:
    """Manually advanced clock (seconds)."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_entry(channel="search", message="hello", level="info", timestamp=None, **fields):
    return LogEntry(
        channel=channel,
        level=level,
        message=message,
        fields=fields,
        timestamp=timestamp or datetime(2024, 5, 17, 12, 30, tzinfo=timezone.utc),
    )


def bulk_response(*statuses, errors=None):
    """Bulk API body with one ``index`` item per status."""
    items = []
    for status in statuses:
        action = {"status": status}
        if not 200 <= status < 300:
            action["error"] = {"type": "mapper_parsing_exception", "reason": f"failed with {status}"}
        items.append({"index": action})
    if errors is None:
        errors = any(not 200 <= s < 300 for s in statuses)
    return {"took": 3, "errors": errors, "items": items}


def ndjson_lines(request):
    return [json.loads(line) for line in request.content.decode("utf-8").splitlines() if line]
