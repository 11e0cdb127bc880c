"""
Unit tests for OperationCorrelator.

Tests:
- Combined entries for matched query/lifecycle pairs
- Query-only entries on expiry, drain and key collision
- Model-only entries when no query is pending
- Read logging, ignore patterns and slow-query levels
"""

import pytest

from log_relay.correlation import OperationCorrelator, TransactionTracker, correlation_key
from log_relay.correlation.correlator import round_duration_ms
from log_relay.models import LogLevel, ModelEvent, QueryEvent

UPDATE_SQL = "UPDATE users SET name=? WHERE id=?"


@pytest.fixture
def emitted():
    return []


@pytest.fixture
def correlator(emitted, clock):
    return OperationCorrelator(emitted.append, clock=clock)


def update_query(row_id=42, elapsed_ms=3.4, connection="c"):
    return QueryEvent(sql=UPDATE_SQL, bindings=["X", row_id], elapsed_ms=elapsed_ms, connection_name=connection)


def updated_event(primary_key="42", connection="c", model_type="App\\User"):
    return ModelEvent(
        kind="updated",
        model_type=model_type,
        table="users",
        primary_key=primary_key,
        connection_name=connection,
        previous_attributes={"name": "Y"},
        after_attributes={"name": "X"},
    )


class TestCombined:
    """Query followed by its lifecycle event."""

    def test_update_then_event_emits_one_combined_entry(self, correlator, emitted):
        """The pair produces exactly one entry with SQL and attribute snapshots."""
        correlator.on_query_executed(update_query())
        assert emitted == []
        assert correlator.pending_count == 1

        correlator.on_model_event(updated_event())

        assert len(emitted) == 1
        entry = emitted[0]
        assert entry.message == "model_updated"
        assert entry.level is LogLevel.INFO
        assert entry.fields["log_index"] == "orm_log"
        assert entry.fields["query"] == UPDATE_SQL
        assert entry.fields["query_type"] == "UPDATE"
        assert entry.fields["action"] == "update"
        assert entry.fields["model"] == "App\\User"
        assert entry.fields["model_id"] == "42"
        assert entry.fields["duration_ms"] == 3
        assert entry.fields["bindings"] == '["X", 42]'
        assert entry.fields["previous_value"] == {"name": "Y"}
        assert entry.fields["after_value"] == {"name": "X"}
        assert entry.fields["is_slow_query"] is False
        assert correlator.pending_count == 0

    def test_insert_matches_without_row_id(self, correlator, emitted):
        """INSERTs have no id yet and match through the wildcard fallback."""
        correlator.on_query_executed(
            QueryEvent(sql="insert into users (name) values (?)", bindings=["X"], connection_name="c")
        )
        correlator.on_model_event(
            ModelEvent(kind="created", model_type="User", table="users", primary_key=7, connection_name="c")
        )

        assert len(emitted) == 1
        assert emitted[0].message == "model_created"
        assert emitted[0].fields["model_id"] == "7"
        assert emitted[0].fields["action"] == "create"

    def test_fallback_picks_most_recent_pending(self, correlator, emitted, clock):
        """Without an exact key, the latest pending query of the same kind wins."""
        correlator.on_query_executed(update_query(row_id=1))
        clock.advance(1)
        correlator.on_query_executed(update_query(row_id=2))

        correlator.on_model_event(updated_event(primary_key=None))

        assert len(emitted) == 1
        assert emitted[0].fields["query"] == UPDATE_SQL
        assert emitted[0].fields["model_id"] == "2"
        assert correlator.pending_count == 1

    def test_fallback_skips_pending_with_other_row_id(self, correlator, emitted):
        """A pending query for a different known row is never paired."""
        correlator.on_query_executed(update_query(row_id=1))
        correlator.on_model_event(updated_event(primary_key="2"))

        assert len(emitted) == 1
        assert emitted[0].message == "model_updated"
        assert "query" not in emitted[0].fields
        assert correlator.pending_count == 1

    def test_connections_do_not_cross_match(self, correlator, emitted):
        """Same table and id on another connection stays pending."""
        correlator.on_query_executed(update_query(connection="primary"))
        correlator.on_model_event(updated_event(connection="replica"))

        assert "query" not in emitted[0].fields
        assert correlator.pending_count == 1

    def test_transaction_id_attached(self, emitted, clock):
        """Entries carry the tracker's transaction id."""
        tracker = TransactionTracker(lambda name: 1, clock=clock)
        correlator = OperationCorrelator(emitted.append, tracker, clock=clock)

        correlator.on_query_executed(update_query())
        correlator.on_model_event(updated_event())

        assert emitted[0].fields["transaction_id"].startswith("txn-")
        assert emitted[0].fields["transaction_id"] == tracker.id_for("c")


class TestQueryOnly:
    """Pending queries that never meet a lifecycle event."""

    def test_expired_query_is_flushed_once(self, correlator, emitted, clock):
        """After the window, the next event flushes the query exactly once."""
        correlator.on_query_executed(update_query())
        clock.advance(5.1)

        correlator.on_query_executed(QueryEvent(sql="select 1"))
        correlator.on_query_executed(QueryEvent(sql="select 2"))

        assert len(emitted) == 1
        entry = emitted[0]
        assert entry.message == "database_query"
        assert entry.fields["query"] == UPDATE_SQL
        assert entry.fields["model_id"] == "42"
        assert "previous_value" not in entry.fields
        assert "after_value" not in entry.fields
        assert correlator.pending_count == 0

    def test_query_inside_window_is_kept(self, correlator, emitted, clock):
        """Exactly five seconds is still inside the window."""
        correlator.on_query_executed(update_query())
        clock.advance(5.0)
        assert correlator.evict_expired() == 0
        assert correlator.pending_count == 1

    def test_drain_flushes_everything(self, correlator, emitted):
        """drain() emits every pending query as query-only."""
        correlator.on_query_executed(update_query(row_id=1))
        correlator.on_query_executed(update_query(row_id=2))

        assert correlator.drain() == 2
        assert [e.fields["model_id"] for e in emitted] == ["1", "2"]
        assert correlator.pending_count == 0

    def test_key_collision_flushes_older_query(self, correlator, emitted):
        """A second write with the same key flushes the first instead of losing it."""
        correlator.on_query_executed(update_query(elapsed_ms=1))
        correlator.on_query_executed(update_query(elapsed_ms=2))

        assert len(emitted) == 1
        assert emitted[0].message == "database_query"
        assert emitted[0].fields["duration_ms"] == 1

        correlator.on_model_event(updated_event())
        assert emitted[1].fields["duration_ms"] == 2

    def test_model_resolver_names_query_only_entries(self, emitted, clock):
        """Query-only entries get a model name from the resolver."""
        correlator = OperationCorrelator(emitted.append, clock=clock, model_resolver=lambda t: f"App\\{t.title()}")
        correlator.on_query_executed(update_query())
        correlator.drain()
        assert emitted[0].fields["model"] == "App\\Users"


class TestModelOnly:
    def test_event_without_pending_query(self, correlator, emitted):
        """A lifecycle event with nothing pending emits a model-only entry."""
        correlator.on_model_event(
            ModelEvent(kind="deleted", model_type="User", table="users", primary_key="9", connection_name="c")
        )

        assert len(emitted) == 1
        entry = emitted[0]
        assert entry.message == "model_deleted"
        assert entry.fields["action"] == "delete"
        assert entry.fields["model_id"] == "9"
        for key in ("query", "duration_ms", "is_slow_query", "bindings"):
            assert key not in entry.fields


class TestReadsAndFilters:
    def test_selects_dropped_by_default(self, correlator, emitted):
        """Read logging is off unless enabled."""
        correlator.on_query_executed(QueryEvent(sql="select * from users where id = ?", bindings=[1]))
        assert emitted == []

    def test_selects_logged_when_enabled(self, emitted, clock):
        """With read logging on, SELECTs are emitted immediately."""
        correlator = OperationCorrelator(emitted.append, clock=clock, log_read_operations=True)
        correlator.on_query_executed(QueryEvent(sql="select * from users where id = ?", bindings=[1]))

        assert len(emitted) == 1
        assert emitted[0].fields["action"] == "read"
        assert emitted[0].fields["model_id"] == "1"
        assert correlator.pending_count == 0

    def test_ignore_patterns_drop_queries(self, emitted, clock):
        """Ignored statements never reach the pending cache or the output."""
        correlator = OperationCorrelator(
            emitted.append, clock=clock, log_read_operations=True, ignore_patterns=["from `jobs`", "sessions"]
        )
        correlator.on_query_executed(QueryEvent(sql="select * from `jobs` where queue = ?", bindings=["x"]))
        correlator.on_query_executed(QueryEvent(sql="UPDATE sessions SET payload = ? WHERE id = ?", bindings=["p", 1]))

        assert emitted == []
        assert correlator.pending_count == 0

    def test_slow_query_raises_level(self, emitted, clock):
        """Duration at or above the threshold marks the entry slow and warning-level."""
        correlator = OperationCorrelator(emitted.append, clock=clock, slow_query_threshold_ms=100)
        correlator.on_query_executed(update_query(elapsed_ms=100.2))
        correlator.on_model_event(updated_event())

        assert emitted[0].level is LogLevel.WARNING
        assert emitted[0].fields["is_slow_query"] is True

    def test_disabled_correlator_is_inert(self, emitted, clock):
        """enabled=False makes both entry points no-ops."""
        correlator = OperationCorrelator(emitted.append, clock=clock, enabled=False)
        correlator.on_query_executed(update_query())
        correlator.on_model_event(updated_event())
        assert emitted == []
        assert correlator.pending_count == 0

    def test_bindings_are_truncated(self, emitted, clock):
        """Oversized bindings are cut and suffixed."""
        correlator = OperationCorrelator(emitted.append, clock=clock, max_bindings_size=10)
        correlator.on_query_executed(update_query(row_id="a" * 50))
        correlator.drain()
        assert emitted[0].fields["bindings"].endswith("...[truncated]")


class TestEmission:
    def test_context_provider_adds_fields_without_overriding(self, emitted, clock):
        """Context fields are merged in but never replace entry fields."""
        correlator = OperationCorrelator(
            emitted.append, clock=clock, context_provider=lambda: {"user_id": 5, "model": "nope"}
        )
        correlator.on_model_event(updated_event())
        assert emitted[0].fields["user_id"] == 5
        assert emitted[0].fields["model"] == "App\\User"

    def test_emit_failure_is_swallowed(self, clock):
        """A failing emit callback never reaches the host operation."""

        def boom(entry):
            raise RuntimeError("sink down")

        correlator = OperationCorrelator(boom, clock=clock)
        correlator.on_model_event(updated_event())


def test_correlation_key():
    """Unknown row ids use the wildcard suffix."""
    assert correlation_key("c", "users", "UPDATE", "42") == "c:users:UPDATE:42"
    assert correlation_key("c", "users", "INSERT", None) == "c:users:INSERT:*"


@pytest.mark.parametrize("raw, expected", [(0.4, 0), (0.5, 1), (2.5, 3), (1499.6, 1500)])
def test_round_duration_ms(raw, expected):
    """Durations round half away from zero."""
    assert round_duration_ms(raw) == expected


class TestResolverFailures:
    def test_failing_model_resolver_is_ignored(self, emitted, clock):
        """A resolver error leaves the model unset instead of reaching the caller."""

        def broken(table):
            raise RuntimeError("registry unavailable")

        correlator = OperationCorrelator(emitted.append, clock=clock, log_read_operations=True, model_resolver=broken)
        correlator.on_query_executed(QueryEvent(sql="select * from users where id = ?", bindings=[1]))

        assert len(emitted) == 1
        assert "model" not in emitted[0].fields

    def test_failing_model_resolver_does_not_lose_evicted_queries(self, emitted, clock):
        """Eviction keeps flushing every expired query when the resolver fails."""

        def broken(table):
            raise RuntimeError("registry unavailable")

        correlator = OperationCorrelator(emitted.append, clock=clock, model_resolver=broken)
        correlator.on_query_executed(update_query(row_id=1))
        correlator.on_query_executed(update_query(row_id=2))
        clock.advance(6)

        assert correlator.evict_expired() == 2
        assert [e.fields["model_id"] for e in emitted] == ["1", "2"]
        assert correlator.pending_count == 0
