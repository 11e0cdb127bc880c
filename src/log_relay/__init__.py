"""
log-relay: ORM event correlation and buffered multi-sink log delivery.
"""

from .buffer import DeferredBuffer
from .config import Settings, get_settings
from .correlation import OperationCorrelator, TransactionTracker
from .dispatcher import ChannelDispatcher, SinkRegistry
from .errors import (
    ClientRejection,
    LogRelayError,
    OnError,
    PartialBatchFailure,
    SerializationError,
    TransientIoError,
    UnknownChannelError,
)
from .lifecycle import JobEvents
from .logger import MultiChannelLogger, request_context
from .models import LogEntry, LogLevel, ModelEvent, ModelEventKind, QueryEvent
from .pipeline import Pipeline, build_pipeline
from .policy import RetryPolicy
from .sinks import BatchSink, BrokerSink, FileSink, SearchBulkSink, Sink

__version__ = "0.1.0"

__all__ = [
    "LogEntry",
    "LogLevel",
    "QueryEvent",
    "ModelEvent",
    "ModelEventKind",
    "OnError",
    "LogRelayError",
    "TransientIoError",
    "ClientRejection",
    "SerializationError",
    "UnknownChannelError",
    "PartialBatchFailure",
    "RetryPolicy",
    "TransactionTracker",
    "OperationCorrelator",
    "Sink",
    "BatchSink",
    "SearchBulkSink",
    "BrokerSink",
    "FileSink",
    "SinkRegistry",
    "ChannelDispatcher",
    "DeferredBuffer",
    "MultiChannelLogger",
    "request_context",
    "JobEvents",
    "Pipeline",
    "build_pipeline",
    "Settings",
    "get_settings",
]
