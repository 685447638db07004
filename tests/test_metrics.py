from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

import pytest

from agentdesk.config_store import InMemoryConfigStore, as_bool, provider_key
from agentdesk.metrics import (
    InMemoryMetricsStore,
    PostgresMetricsStore,
    average_value,
    daily_summary,
    record_safely,
    sum_values,
)

DAY = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def test_aggregates_by_type_and_range():
    store = InMemoryMetricsStore()
    store.record(1, "response_time", 2.0, recorded_at=DAY)
    store.record(1, "response_time", 4.0, recorded_at=DAY + timedelta(hours=3))
    store.record(1, "response_time", 9.0, recorded_at=DAY + timedelta(days=1))
    store.record(2, "response_time", 100.0, recorded_at=DAY)
    store.record(1, "token_usage", 50, recorded_at=DAY)

    first_day = store.list_metrics(
        agent_id=1, metric_type="response_time", since=DAY, until=DAY + timedelta(days=1)
    )
    assert sum_values(first_day) == 6.0
    assert average_value(first_day) == 3.0

    summary = daily_summary(store.list_metrics(agent_id=1, metric_type="response_time"))
    assert [(s.metric_date.isoformat(), s.count, s.total) for s in summary] == [
        ("2024-05-01", 2, 6.0),
        ("2024-05-02", 1, 9.0),
    ]
    assert average_value([]) is None


def test_unknown_metric_type_is_rejected():
    with pytest.raises(ValueError):
        InMemoryMetricsStore().record(1, "vibes", 1)


def test_record_safely_swallows_failures(caplog):
    class Broken:
        def record(self, *args, **kwargs):
            raise RuntimeError("disk full")

    assert record_safely(Broken(), 1, "routing_decision", 90) is None
    assert record_safely(None, 1, "routing_decision", 90) is None
    assert "Failed to record routing_decision metric" in caplog.text


def test_delete_for_agent():
    store = InMemoryMetricsStore()
    store.record(1, "message_processed", 1)
    store.record(2, "message_processed", 1)

    store.delete_for_agent(1)

    assert [m.agent_id for m in store.list_metrics()] == [2]


def test_config_store_helpers():
    store = InMemoryConfigStore({"AI_AUTO_ROUTING_ENABLED": "true"})

    assert as_bool(store.get("AI_AUTO_ROUTING_ENABLED"))
    assert not as_bool(store.get("missing"))
    assert not as_bool("off")
    assert provider_key("claude", "api_key") == "AI_CLAUDE_API_KEY"
    store.set("AI_DEFAULT_PROVIDER", "gemini")
    assert store.get("AI_DEFAULT_PROVIDER") == "gemini"


class _BrokenCursor:
    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def execute(self, query, params=None):
        raise RuntimeError("insert or update on table agent_metrics violates foreign key constraint")


class _SavepointConnection:
    def __init__(self):
        self.events = []

    @contextmanager
    def transaction(self):
        self.events.append("savepoint")
        try:
            yield
        except Exception:
            self.events.append("rollback to savepoint")
            raise
        self.events.append("release savepoint")

    def cursor(self, row_factory=None):
        return _BrokenCursor()


def test_postgres_metric_failure_only_rolls_back_its_savepoint(caplog):
    conn = _SavepointConnection()

    assert record_safely(PostgresMetricsStore(conn), 7, "routing_decision", 90) is None
    assert conn.events == ["savepoint", "rollback to savepoint"]
    assert "Failed to record routing_decision metric for agent 7" in caplog.text
