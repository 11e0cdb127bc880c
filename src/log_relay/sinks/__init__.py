"""
Delivery sinks for log-relay.

Every sink implements ``write(entry)``; batch-capable sinks also implement
``write_batch(entries)``, which the dispatcher prefers.
"""

from .base import SINK_WRITE_LATENCY, SINK_WRITES_TOTAL, BatchSink, Sink, supports_batch
from .broker import BrokerSink
from .builders import (
    DefaultBrokerValueBuilder,
    DefaultSearchDocumentBuilder,
    IndexKeyBrokerValueBuilder,
)
from .file import FileSink
from .retention import RetentionSweeper
from .search import BULK_ITEMS_FAILED_TOTAL, SearchBulkSink, verify_bulk_response

__all__ = [
    "Sink",
    "BatchSink",
    "supports_batch",
    "SearchBulkSink",
    "BrokerSink",
    "FileSink",
    "RetentionSweeper",
    "DefaultSearchDocumentBuilder",
    "DefaultBrokerValueBuilder",
    "IndexKeyBrokerValueBuilder",
    "verify_bulk_response",
    "SINK_WRITES_TOTAL",
    "SINK_WRITE_LATENCY",
    "BULK_ITEMS_FAILED_TOTAL",
]
