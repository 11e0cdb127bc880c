"""
Unit tests for DeferredBuffer.
"""

import pytest
from helpers import RecordingBatchSink, RecordingSink
from loguru import logger

from log_relay.buffer import DeferredBuffer
from log_relay.dispatcher import ChannelDispatcher, SinkRegistry


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_buffer(sink):
    def _build(max_entries=10, warn_on_limit=False, dispatcher=None):
        dispatcher = dispatcher or ChannelDispatcher(SinkRegistry({"search": [sink]}))
        return DeferredBuffer(dispatcher, max_entries=max_entries, warn_on_limit=warn_on_limit)

    return _build


@pytest.mark.parametrize("n", [1, 2, 9])
def test_flush_delivers_every_deferred_entry(make_buffer, sink, n):
    """N defers then one flush deliver exactly N entries and empty the buffer."""
    buffer = make_buffer(max_entries=10)
    for i in range(n):
        buffer.defer("search", "info", f"m{i}", {"i": i})
    assert buffer.count() == n
    assert sink.entries == []

    assert buffer.flush() == n
    assert [e.message for e in sink.entries] == [f"m{i}" for i in range(n)]
    assert buffer.count() == 0
    assert buffer.auto_flush_count() == 0


def test_reaching_capacity_auto_flushes_once(make_buffer, sink):
    """Deferring max_entries entries triggers exactly one auto-flush."""
    buffer = make_buffer(max_entries=5)
    for i in range(5):
        buffer.defer("search", "info", f"m{i}")

    assert buffer.auto_flush_count() == 1
    assert buffer.count() == 0
    assert len(sink.entries) == 5


def test_auto_flush_continues_counting(make_buffer, sink):
    """Every time the buffer refills to capacity another auto-flush happens."""
    buffer = make_buffer(max_entries=3)
    for i in range(7):
        buffer.defer("search", "info", f"m{i}")

    assert buffer.auto_flush_count() == 2
    assert buffer.count() == 1
    assert len(sink.entries) == 6


def test_zero_capacity_disables_auto_flush(make_buffer, sink):
    """max_entries <= 0 means no capacity trigger."""
    buffer = make_buffer(max_entries=0)
    for i in range(50):
        buffer.defer("search", "info", f"m{i}")
    assert buffer.count() == 50
    assert buffer.auto_flush_count() == 0


def test_limit_warning_goes_through_loguru(make_buffer, log_messages):
    """The auto-flush warning carries limit, flushed count and auto-flush count."""
    buffer = make_buffer(max_entries=2, warn_on_limit=True)
    buffer.defer("search", "info", "a")
    buffer.defer("search", "info", "b")

    warnings = [m for m in log_messages if m.record["level"].name == "WARNING"]
    assert len(warnings) == 1
    extra = warnings[0].record["extra"]
    assert extra["limit"] == 2
    assert extra["logs_flushed"] == 2
    assert extra["auto_flush_count"] == 1


def test_flush_never_raises(make_buffer):
    """A dispatcher that blows up is absorbed and the buffer still empties."""

    class ExplodingDispatcher:
        def dispatch(self, entries):
            raise RuntimeError("boom")

    buffer = make_buffer(dispatcher=ExplodingDispatcher())
    buffer.defer("search", "info", "a")
    assert buffer.flush() == 1
    assert buffer.count() == 0


def test_flush_of_empty_buffer(make_buffer, sink):
    """Flushing nothing dispatches nothing."""
    buffer = make_buffer()
    assert buffer.flush() == 0
    assert sink.entries == []


def test_clear_drops_entries_without_writing(make_buffer, sink):
    """clear() discards buffered entries and resets the auto-flush counter."""
    buffer = make_buffer(max_entries=2)
    buffer.defer("search", "info", "a")
    buffer.defer("search", "info", "b")
    buffer.defer("search", "info", "c")
    assert buffer.auto_flush_count() == 1

    buffer.clear()
    assert buffer.count() == 0
    assert buffer.auto_flush_count() == 0
    assert [e.message for e in sink.entries] == ["a", "b"]


def test_entries_are_routed_by_channel():
    """A flush delivers each entry to its own channel's sink in one batch."""
    search, files = RecordingBatchSink(), RecordingBatchSink()
    dispatcher = ChannelDispatcher(SinkRegistry({"search": [search], "index_file": [files]}))
    buffer = DeferredBuffer(dispatcher, max_entries=100)

    buffer.defer("search", "info", "s1")
    buffer.defer("index_file", "info", "f1")
    buffer.defer("search", "info", "s2")
    buffer.flush()

    assert [[e.message for e in b] for b in search.batches] == [["s1", "s2"]]
    assert [[e.message for e in b] for b in files.batches] == [["f1"]]


def test_reentrant_defer_during_flush_is_kept():
    """Entries deferred by a sink while flushing wait for the next flush."""
    holder = {}

    class ChattySink(RecordingSink):
        def write(self, entry):
            super().write(entry)
            if entry.message == "first":
                holder["buffer"].defer("search", "info", "from-sink")

    sink = ChattySink()
    buffer = DeferredBuffer(ChannelDispatcher(SinkRegistry({"search": [sink]})), max_entries=100)
    holder["buffer"] = buffer

    buffer.defer("search", "info", "first")
    assert buffer.flush() == 1
    assert buffer.count() == 1
    buffer.flush()
    assert [e.message for e in sink.entries] == ["first", "from-sink"]


def test_failing_limit_warning_does_not_block_flush(make_buffer, sink):
    """A log handler that raises on the limit warning still lets the auto-flush deliver."""

    def broken_handler(message):
        raise RuntimeError("log handler down")

    handler_id = logger.add(broken_handler, level="WARNING", catch=False)
    try:
        buffer = make_buffer(max_entries=2, warn_on_limit=True)
        buffer.defer("search", "info", "a")
        buffer.defer("search", "info", "b")
    finally:
        logger.remove(handler_id)

    assert buffer.auto_flush_count() == 1
    assert buffer.count() == 0
    assert [e.message for e in sink.entries] == ["a", "b"]
