"""Append-only agent metrics with simple aggregation helpers."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Iterable
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

METRIC_TYPES = frozenset(
    {
        "message_processed",
        "response_time",
        "token_usage",
        "success_rate",
        "conversation_completed",
        "escalation_triggered",
        "user_satisfaction",
        "daily_active_conversations",
        "weekly_performance",
        "routing_decision",
        "unassignment_event",
        "generation_failed",
    }
)


class Metric(BaseModel):
    id: int
    agent_id: int
    metric_type: str
    value: float
    metric_date: date
    recorded_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)


class DailySummary(BaseModel):
    metric_date: date
    count: int
    total: float
    average: float


def _check_type(metric_type: str) -> None:
    if metric_type not in METRIC_TYPES:
        raise ValueError(f"Unknown metric type '{metric_type}'")


class MetricsStore(Protocol):
    def record(
        self,
        agent_id: int,
        metric_type: str,
        value: float,
        *,
        metadata: Optional[Dict[str, Any]] = None,
        recorded_at: Optional[datetime] = None,
    ) -> Metric: ...

    def list_metrics(
        self,
        *,
        agent_id: Optional[int] = None,
        metric_type: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[Metric]: ...

    def delete_for_agent(self, agent_id: int) -> None: ...


def record_safely(
    store: Optional[MetricsStore],
    agent_id: int,
    metric_type: str,
    value: float,
    **kwargs: Any,
) -> Optional[Metric]:
    """Record a metric without letting a failed write break the caller."""

    if store is None:
        return None
    try:
        return store.record(agent_id, metric_type, value, **kwargs)
    except Exception:
        logger.exception("Failed to record %s metric for agent %s", metric_type, agent_id)
        return None


def sum_values(metrics: Iterable[Metric]) -> float:
    return float(sum(m.value for m in metrics))


def average_value(metrics: Iterable[Metric]) -> Optional[float]:
    values = [m.value for m in metrics]
    if not values:
        return None
    return sum(values) / len(values)


def daily_summary(metrics: Iterable[Metric]) -> List[DailySummary]:
    """Per-day count/total/average, oldest day first."""

    buckets: Dict[date, List[float]] = defaultdict(list)
    for metric in metrics:
        buckets[metric.metric_date].append(metric.value)
    return [
        DailySummary(
            metric_date=day,
            count=len(values),
            total=sum(values),
            average=sum(values) / len(values),
        )
        for day, values in sorted(buckets.items())
    ]


class InMemoryMetricsStore:
    def __init__(self) -> None:
        self._metrics: List[Metric] = []
        self._id_seq = 1
        self._lock = threading.Lock()

    def record(
        self,
        agent_id: int,
        metric_type: str,
        value: float,
        *,
        metadata: Optional[Dict[str, Any]] = None,
        recorded_at: Optional[datetime] = None,
    ) -> Metric:
        _check_type(metric_type)
        recorded_at = recorded_at or datetime.now(timezone.utc)
        with self._lock:
            metric = Metric(
                id=self._id_seq,
                agent_id=agent_id,
                metric_type=metric_type,
                value=float(value),
                metric_date=recorded_at.date(),
                recorded_at=recorded_at,
                metadata=dict(metadata or {}),
            )
            self._id_seq += 1
            self._metrics.append(metric)
        return metric

    def list_metrics(
        self,
        *,
        agent_id: Optional[int] = None,
        metric_type: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[Metric]:
        with self._lock:
            metrics = list(self._metrics)
        return [
            m
            for m in metrics
            if (agent_id is None or m.agent_id == agent_id)
            and (metric_type is None or m.metric_type == metric_type)
            and (since is None or m.recorded_at >= since)
            and (until is None or m.recorded_at < until)
        ]

    def delete_for_agent(self, agent_id: int) -> None:
        with self._lock:
            self._metrics = [m for m in self._metrics if m.agent_id != agent_id]


class PostgresMetricsStore:
    def __init__(self, connection: psycopg.Connection):
        self._conn = connection

    def cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    def record(
        self,
        agent_id: int,
        metric_type: str,
        value: float,
        *,
        metadata: Optional[Dict[str, Any]] = None,
        recorded_at: Optional[datetime] = None,
    ) -> Metric:
        _check_type(metric_type)
        recorded_at = recorded_at or datetime.now(timezone.utc)
        # Savepoint: a failed insert must not poison the caller's transaction.
        with self._conn.transaction(), self.cursor() as cur:
            cur.execute(
                """
                INSERT INTO agent_metrics (agent_id, metric_type, value, metric_date, recorded_at, metadata)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING id, agent_id, metric_type, value, metric_date, recorded_at, metadata
                """,
                (
                    agent_id,
                    metric_type,
                    value,
                    recorded_at.date(),
                    recorded_at,
                    Jsonb(metadata or {}),
                ),
            )
            row = cur.fetchone()
        return self._row_to_metric(row)

    def list_metrics(
        self,
        *,
        agent_id: Optional[int] = None,
        metric_type: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[Metric]:
        clauses: List[str] = []
        params: List[Any] = []
        for column, operator, value in (
            ("agent_id", "=", agent_id),
            ("metric_type", "=", metric_type),
            ("recorded_at", ">=", since),
            ("recorded_at", "<", until),
        ):
            if value is not None:
                clauses.append(f"{column} {operator} %s")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self.cursor() as cur:
            cur.execute(
                f"""
                SELECT id, agent_id, metric_type, value, metric_date, recorded_at, metadata
                FROM agent_metrics
                {where}
                ORDER BY recorded_at
                """,
                params,
            )
            rows = cur.fetchall()
        return [self._row_to_metric(row) for row in rows]

    def delete_for_agent(self, agent_id: int) -> None:
        with self.cursor() as cur:
            cur.execute("DELETE FROM agent_metrics WHERE agent_id = %s", (agent_id,))

    def _row_to_metric(self, row: Dict[str, Any]) -> Metric:
        return Metric(
            id=row["id"],
            agent_id=row["agent_id"],
            metric_type=row["metric_type"],
            value=float(row["value"]),
            metric_date=row["metric_date"],
            recorded_at=row["recorded_at"],
            metadata=row.get("metadata") or {},
        )
