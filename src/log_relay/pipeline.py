"""
Pipeline wiring.

``build_pipeline(settings)`` constructs one instance of every stateful
component for a process or worker and connects them:

    host events -> OperationCorrelator (+ TransactionTracker)
                -> MultiChannelLogger -> DeferredBuffer
                -> ChannelDispatcher -> sinks
"""

from __future__ import annotations

import socket
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Mapping, Optional

from loguru import logger

from .buffer import DeferredBuffer
from .config import Settings, get_settings
from .correlation import OperationCorrelator, TransactionTracker
from .correlation.sql import guess_model_name
from .dispatcher import ChannelDispatcher, SinkRegistry
from .errors import OnError
from .lifecycle import JobEvents
from .logger import MultiChannelLogger, request_context
from .models import ModelEvent, QueryEvent
from .sinks import BrokerSink, DefaultSearchDocumentBuilder, FileSink, SearchBulkSink


@dataclass
class Pipeline:
    settings: Settings
    registry: SinkRegistry
    dispatcher: ChannelDispatcher
    buffer: DeferredBuffer
    logger: MultiChannelLogger
    tracker: Optional[TransactionTracker]
    correlator: OperationCorrelator
    jobs: JobEvents

    def on_query_executed(self, event: QueryEvent) -> None:
        self.correlator.on_query_executed(event)

    def on_model_event(self, event: ModelEvent) -> None:
        self.correlator.on_model_event(event)

    @contextmanager
    def request_scope(self, request_id: Optional[str] = None, trace_id: Optional[str] = None) -> Iterator[str]:
        """Bind request ids for the block and flush everything at its end."""
        with request_context(request_id, trace_id) as rid:
            try:
                yield rid
            finally:
                self.end_scope()

    @contextmanager
    def job_scope(self, job_id: str, name: str, *, queue: Optional[str] = None) -> Iterator[None]:
        """Log the job's outcome and duration, then flush its buffered entries."""
        self.jobs.started(job_id)
        try:
            yield
        except Exception as exc:
            self.jobs.finished(job_id, name, status="failed", error=exc, queue=queue)
            raise
        else:
            self.jobs.finished(job_id, name, status="success", queue=queue)
        finally:
            self.end_scope()

    def end_scope(self) -> int:
        """Request/job boundary: drain pending queries, forget transactions, flush."""
        self.correlator.drain()
        if self.tracker is not None:
            self.tracker.reset()
        return self.buffer.flush()

    def close(self) -> None:
        self.end_scope()
        self.registry.close()


def build_sinks(settings: Settings) -> SinkRegistry:
    """Bind real sinks to the configured channels.

    Channels without a sink (unknown names, or missing URLs) stay
    unregistered and are delivered through the dispatcher's loguru fallback.
    """
    registry = SinkRegistry()

    for channel in settings.channels:
        if channel == "search" and settings.SEARCH_URL:
            builder = DefaultSearchDocumentBuilder(
                environment=settings.ENVIRONMENT,
                service_name=settings.SERVICE_NAME,
                hostname=socket.gethostname(),
            )
            registry.register(
                channel,
                SearchBulkSink(
                    settings.SEARCH_URL,
                    settings.SEARCH_DEFAULT_INDEX,
                    document_builder=builder,
                    username=settings.SEARCH_USERNAME,
                    password=settings.SEARCH_PASSWORD,
                    timeout=settings.SEARCH_TIMEOUT,
                    verify_tls=settings.SEARCH_VERIFY_TLS,
                    max_retries=settings.SEARCH_MAX_RETRIES,
                    on_error=OnError.from_silent(settings.SEARCH_SILENT),
                ),
            )
        elif channel == "broker" and settings.BROKER_URL:
            registry.register(
                channel,
                BrokerSink(
                    settings.BROKER_URL,
                    settings.BROKER_TOPIC,
                    timeout=settings.BROKER_TIMEOUT,
                    on_error=OnError.from_silent(settings.BROKER_SILENT),
                ),
            )
        elif channel == "index_file":
            registry.register(
                channel,
                FileSink(
                    settings.INDEX_FILE_DIR,
                    default_index=settings.SEARCH_DEFAULT_INDEX,
                    retention_days=settings.INDEX_FILE_RETENTION_DAYS,
                ),
            )
        else:
            logger.debug(f"No sink configured for channel {channel!r}; entries go to the fallback writer")

    return registry


def _model_resolver(namespace: Optional[str]) -> Optional[Callable[[str], Optional[str]]]:
    if not namespace:
        return None

    def resolve(table: str) -> Optional[str]:
        name = guess_model_name(table)
        return f"{namespace.rstrip('.')}.{name}" if name else None

    return resolve


def build_pipeline(
    settings: Optional[Settings] = None,
    *,
    level_resolver: Optional[Callable[[str], int]] = None,
    registry: Optional[SinkRegistry] = None,
    context_provider: Optional[Callable[[], Mapping[str, Any]]] = None,
) -> Pipeline:
    """
    Construct a Pipeline for this process/worker.

    Args:
        settings: Defaults to ``get_settings()``
        level_resolver: Connection name -> current transaction nesting level;
            without one no ``transaction_id`` is attached
        registry: Pre-built sinks (tests); defaults to ``build_sinks(settings)``
        context_provider: Extra fields for ORM entries (e.g. ``user_id``)
    """
    settings = settings or get_settings()
    registry = registry if registry is not None else build_sinks(settings)

    dispatcher = ChannelDispatcher(registry)
    buffer = DeferredBuffer(
        dispatcher,
        max_entries=settings.DEFERRED_MAX_LOGS,
        warn_on_limit=settings.DEFERRED_WARN_ON_LIMIT,
    )
    multi = MultiChannelLogger(settings.channels, buffer)
    tracker = TransactionTracker(level_resolver) if level_resolver is not None else None
    correlator = OperationCorrelator(
        multi.publish,
        tracker,
        enabled=settings.ORM_ENABLED,
        log_read_operations=settings.ORM_LOG_READ_OPERATIONS,
        slow_query_threshold_ms=settings.ORM_SLOW_QUERY_THRESHOLD_MS,
        ignore_patterns=settings.ORM_IGNORE_PATTERNS,
        max_bindings_size=settings.MAX_BINDINGS_SIZE,
        model_resolver=_model_resolver(settings.ORM_MODEL_NAMESPACE),
        context_provider=context_provider,
    )
    jobs = JobEvents(multi.publish)

    logger.debug(f"log-relay pipeline ready (channels={settings.channels}, sinks={registry.channels})")
    return Pipeline(
        settings=settings,
        registry=registry,
        dispatcher=dispatcher,
        buffer=buffer,
        logger=multi,
        tracker=tracker,
        correlator=correlator,
        jobs=jobs,
    )
