"""
Ensures log-relay metrics are visible in the Prometheus global REGISTRY.
Simply import this module at app startup.
"""

from prometheus_client import Counter

from log_relay.sinks import BULK_ITEMS_FAILED_TOTAL, SINK_WRITE_LATENCY, SINK_WRITES_TOTAL  # noqa: F401


# --- Buffer / dispatch metrics ---

DEFERRED_AUTO_FLUSH_TOTAL = Counter(
    "log_relay_deferred_auto_flush_total",
    "Times the deferred buffer flushed because it reached capacity",
)

DEFERRED_ENTRIES_FLUSHED_TOTAL = Counter(
    "log_relay_deferred_entries_flushed_total",
    "Entries handed to the dispatcher by the deferred buffer",
    ["channel"],
)

DISPATCH_FALLBACK_TOTAL = Counter(
    "log_relay_dispatch_fallback_total",
    "Dispatcher degradations by path",
    ["path"],  # per_record | last_resort
)

# --- Correlation metrics ---

CORRELATOR_ENTRIES_TOTAL = Counter(
    "log_relay_correlator_entries_total",
    "ORM log entries produced by the correlator",
    ["outcome"],  # combined | query_only | model_only | expired | read
)


class MetricsRegistry:
    """Centralized metrics registry for log-relay components."""

    sink_writes_total = SINK_WRITES_TOTAL
    sink_write_latency = SINK_WRITE_LATENCY
    bulk_items_failed_total = BULK_ITEMS_FAILED_TOTAL
    deferred_auto_flush_total = DEFERRED_AUTO_FLUSH_TOTAL
    deferred_entries_flushed_total = DEFERRED_ENTRIES_FLUSHED_TOTAL
    dispatch_fallback_total = DISPATCH_FALLBACK_TOTAL
    correlator_entries_total = CORRELATOR_ENTRIES_TOTAL


# Singleton instance
metrics_registry = MetricsRegistry()
