"""Assignment lifecycle: assign, reassign and unassign agents.

A conversation has at most one active assignment. Every state change for a
conversation runs under a per-conversation lock, and the repository swaps
the active record (deactivate previous + insert new) as one unit of work.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Set

import psycopg
from psycopg import errors as pg_errors
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..agents.schemas import Agent
from ..conversations.repository import ConversationStore
from ..conversations.schemas import Conversation
from ..errors import AssignmentInvariantError, InvalidAssignmentError
from ..metrics import MetricsStore, record_safely
from .schemas import Assignment, AssignmentCreate

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InstalledAgents(Protocol):
    def list_agents(self, account_id: int, *, active_only: bool = False) -> List[Agent]: ...


class AssignmentRepository(Protocol):
    def activate(
        self,
        payload: AssignmentCreate,
        *,
        at: datetime,
        deactivation_metadata: Optional[Dict[str, Any]] = None,
    ) -> Assignment: ...

    def deactivate(
        self,
        conversation_id: int,
        *,
        at: datetime,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> List[Assignment]: ...

    def get_active(self, conversation_id: int) -> Optional[Assignment]: ...

    def list_for_conversation(self, conversation_id: int) -> List[Assignment]: ...

    def list_for_account(
        self,
        account_id: int,
        *,
        since: Optional[datetime] = None,
        active: Optional[bool] = None,
    ) -> List[Assignment]: ...

    def count_active_by_agent(self, account_id: int) -> Dict[int, int]: ...

    def conversation_ids_with_assignments(self, account_id: int) -> Set[int]: ...

    def delete_for_agent(self, agent_id: int) -> None: ...


# ---------------------------------------------------------------------------
# Duration and confidence helpers


def assignment_duration(assignment: Optional[Assignment], now: Optional[datetime] = None) -> Optional[timedelta]:
    if assignment is None:
        return None
    end = assignment.unassigned_at or now or _utcnow()
    return end - assignment.assigned_at


def format_duration(duration: Optional[timedelta]) -> str:
    """``"2h 5m"``, ``"7m"`` or ``"N/A"`` when there is nothing to measure."""

    if duration is None:
        return "N/A"
    minutes = max(0, int(duration.total_seconds() // 60))
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def confidence_band(score: float) -> str:
    if score >= 80:
        return "high"
    if score >= 50:
        return "medium"
    return "low"


# ---------------------------------------------------------------------------
# Lifecycle manager


class AssignmentManager:
    def __init__(
        self,
        repository: AssignmentRepository,
        conversations: ConversationStore,
        metrics: Optional[MetricsStore] = None,
        *,
        agents: Optional[InstalledAgents] = None,
        clock: Clock = _utcnow,
    ) -> None:
        self._repository = repository
        self._conversations = conversations
        self._metrics = metrics
        self._agents = agents
        self._clock = clock
        self._locks: Dict[int, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @property
    def repository(self) -> AssignmentRepository:
        return self._repository

    @contextmanager
    def conversation_lock(self, conversation_id: int) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(conversation_id, threading.RLock())
        with lock:
            yield

    def active_assignment(self, conversation_id: int) -> Optional[Assignment]:
        return self._repository.get_active(conversation_id)

    def history(self, conversation_id: int) -> List[Assignment]:
        return self._repository.list_for_conversation(conversation_id)

    def duration(self, assignment: Optional[Assignment]) -> Optional[timedelta]:
        return assignment_duration(assignment, self._clock())

    def assign(
        self,
        conversation: Conversation,
        agent: Agent,
        *,
        actor: Optional[str] = None,
        reason: Optional[str] = None,
        confidence: float = 100.0,
        auto: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
        deactivation_metadata: Optional[Dict[str, Any]] = None,
    ) -> Assignment:
        """Make ``agent`` the active handler of ``conversation``.

        Any previous active assignment is closed with ``deactivation_metadata``
        (by default marked as replaced).
        """

        self._check_assignable(conversation, agent)
        details = dict(metadata or {})
        if auto:
            details.setdefault("assignment_type", "automatic")
            reason = reason or "Automatically routed"
        else:
            details.setdefault("assignment_type", "manual")
            if actor:
                details.setdefault("assigned_by_user_id", actor)
            reason = reason or (f"Manually assigned by {actor}" if actor else "Manually assigned")
        payload = AssignmentCreate(
            account_id=conversation.account_id,
            conversation_id=conversation.id,
            agent_id=agent.id,
            confidence_score=confidence,
            assignment_reason=reason,
            auto_assigned=auto,
            metadata=details,
        )
        with self.conversation_lock(conversation.id):
            assignment = self._repository.activate(
                payload,
                at=self._clock(),
                deactivation_metadata=deactivation_metadata
                or {"unassignment_reason": "replaced", "unassigned_by": actor},
            )
            current = self._conversations.get_conversation(conversation.id)
            if current is not None and current.status == "pending":
                self._conversations.update_conversation(conversation.id, status="open")
        logger.info(
            "Assigned conversation %s to agent %s (confidence=%.1f, auto=%s): %s",
            conversation.id,
            agent.id,
            confidence,
            auto,
            reason,
        )
        return assignment

    def reassign(
        self,
        conversation: Conversation,
        new_agent: Agent,
        *,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Assignment:
        with self.conversation_lock(conversation.id):
            previous = self._repository.get_active(conversation.id)
            text = f"Reassigned to {new_agent.name}: {reason}" if reason else f"Reassigned to {new_agent.name}"
            metadata: Dict[str, Any] = {"assignment_type": "reassignment"}
            if previous is not None:
                metadata["previous_agent_id"] = previous.agent_id
            if actor:
                metadata["reassigned_by"] = actor
            return self.assign(
                conversation,
                new_agent,
                actor=actor,
                reason=text,
                metadata=metadata,
                deactivation_metadata={
                    "unassignment_reason": text,
                    "unassigned_by": actor,
                    "reassigned_to_agent_id": new_agent.id,
                },
            )

    def unassign(
        self,
        conversation: Conversation,
        *,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> List[Assignment]:
        now = self._clock()
        with self.conversation_lock(conversation.id):
            if self._repository.get_active(conversation.id) is None:
                logger.info("Conversation %s has no active assignment to remove", conversation.id)
                return []
            deactivated = self._repository.deactivate(
                conversation.id,
                at=now,
                metadata={"unassignment_reason": reason or "manual", "unassigned_by": actor},
            )
            self._conversations.update_conversation(
                conversation.id,
                status="open",
                custom_attributes={
                    "requires_human_agent": True,
                    "ai_agent_unassigned_at": now.isoformat(),
                },
            )
        removed_agent_ids = sorted({a.agent_id for a in deactivated})
        for agent_id in self._installed_agent_ids(conversation.account_id, removed_agent_ids):
            record_safely(
                self._metrics,
                agent_id,
                "unassignment_event",
                1,
                metadata={
                    "conversation_id": conversation.id,
                    "reason": reason,
                    "actor": actor,
                    "unassigned_agent_ids": removed_agent_ids,
                },
            )
        logger.info(
            "Unassigned %d agent(s) from conversation %s: %s", len(deactivated), conversation.id, reason
        )
        return deactivated

    def _installed_agent_ids(self, account_id: int, fallback: List[int]) -> List[int]:
        # Every installed agent of the account gets an unassignment event.
        if self._agents is None:
            return fallback
        return [agent.id for agent in self._agents.list_agents(account_id)]

    @staticmethod
    def _check_assignable(conversation: Conversation, agent: Agent) -> None:
        if agent.account_id != conversation.account_id:
            raise InvalidAssignmentError(
                f"Agent {agent.id} does not belong to account {conversation.account_id}"
            )
        if not agent.is_active:
            raise InvalidAssignmentError(f"Agent {agent.id} is not active")


# ---------------------------------------------------------------------------
# In-memory repository


class InMemoryAssignmentRepository:
    def __init__(self) -> None:
        self._assignments: Dict[int, Assignment] = {}
        self._id_seq = 1
        self._lock = threading.Lock()

    def activate(
        self,
        payload: AssignmentCreate,
        *,
        at: datetime,
        deactivation_metadata: Optional[Dict[str, Any]] = None,
    ) -> Assignment:
        with self._lock:
            self._deactivate_locked(payload.conversation_id, at, deactivation_metadata)
            assignment = Assignment(
                id=self._id_seq,
                assigned_at=at,
                active=True,
                **payload.model_dump(),
            )
            self._id_seq += 1
            self._assignments[assignment.id] = assignment
            active = [
                a for a in self._assignments.values()
                if a.conversation_id == payload.conversation_id and a.active
            ]
            if len(active) > 1:
                raise AssignmentInvariantError(
                    f"Conversation {payload.conversation_id} has {len(active)} active assignments"
                )
            return assignment.model_copy(deep=True)

    def deactivate(
        self,
        conversation_id: int,
        *,
        at: datetime,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> List[Assignment]:
        with self._lock:
            return self._deactivate_locked(conversation_id, at, metadata)

    def _deactivate_locked(
        self, conversation_id: int, at: datetime, metadata: Optional[Dict[str, Any]]
    ) -> List[Assignment]:
        deactivated = []
        for assignment in self._assignments.values():
            if assignment.conversation_id == conversation_id and assignment.active:
                assignment.active = False
                assignment.unassigned_at = at
                assignment.metadata = {**assignment.metadata, **(metadata or {})}
                deactivated.append(assignment.model_copy(deep=True))
        return deactivated

    def get_active(self, conversation_id: int) -> Optional[Assignment]:
        with self._lock:
            for assignment in self._assignments.values():
                if assignment.conversation_id == conversation_id and assignment.active:
                    return assignment.model_copy(deep=True)
        return None

    def list_for_conversation(self, conversation_id: int) -> List[Assignment]:
        with self._lock:
            return [
                a.model_copy(deep=True)
                for a in self._assignments.values()
                if a.conversation_id == conversation_id
            ]

    def list_for_account(
        self,
        account_id: int,
        *,
        since: Optional[datetime] = None,
        active: Optional[bool] = None,
    ) -> List[Assignment]:
        with self._lock:
            return [
                a.model_copy(deep=True)
                for a in self._assignments.values()
                if a.account_id == account_id
                and (since is None or a.assigned_at >= since)
                and (active is None or a.active == active)
            ]

    def count_active_by_agent(self, account_id: int) -> Dict[int, int]:
        counts: Dict[int, int] = defaultdict(int)
        with self._lock:
            for a in self._assignments.values():
                if a.account_id == account_id and a.active:
                    counts[a.agent_id] += 1
        return dict(counts)

    def conversation_ids_with_assignments(self, account_id: int) -> Set[int]:
        with self._lock:
            return {a.conversation_id for a in self._assignments.values() if a.account_id == account_id}

    def delete_for_agent(self, agent_id: int) -> None:
        with self._lock:
            self._assignments = {
                key: a for key, a in self._assignments.items() if a.agent_id != agent_id
            }


# ---------------------------------------------------------------------------
# Postgres repository


class PostgresAssignmentRepository:
    """Backed by ``conversation_agent_assignments``.

    The table is expected to carry a partial unique index on
    ``conversation_id WHERE active``.
    """

    _COLUMNS = (
        "id, account_id, conversation_id, agent_id, confidence_score, assignment_reason, "
        "auto_assigned, active, assigned_at, unassigned_at, metadata"
    )

    def __init__(self, connection: psycopg.Connection):
        self._conn = connection

    def cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    def activate(
        self,
        payload: AssignmentCreate,
        *,
        at: datetime,
        deactivation_metadata: Optional[Dict[str, Any]] = None,
    ) -> Assignment:
        try:
            with self._conn.transaction():
                with self.cursor() as cur:
                    cur.execute("SELECT pg_advisory_xact_lock(%s)", (payload.conversation_id,))
                    self._deactivate(cur, payload.conversation_id, at, deactivation_metadata)
                    cur.execute(
                        f"""
                        INSERT INTO conversation_agent_assignments
                            (account_id, conversation_id, agent_id, confidence_score, assignment_reason,
                             auto_assigned, active, assigned_at, metadata)
                        VALUES (%s, %s, %s, %s, %s, %s, true, %s, %s)
                        RETURNING {self._COLUMNS}
                        """,
                        (
                            payload.account_id,
                            payload.conversation_id,
                            payload.agent_id,
                            payload.confidence_score,
                            payload.assignment_reason,
                            payload.auto_assigned,
                            at,
                            Jsonb(payload.metadata),
                        ),
                    )
                    row = cur.fetchone()
        except pg_errors.UniqueViolation as exc:
            raise AssignmentInvariantError(
                f"Conversation {payload.conversation_id} already has an active assignment"
            ) from exc
        return self._row_to_assignment(row)

    def deactivate(
        self,
        conversation_id: int,
        *,
        at: datetime,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> List[Assignment]:
        with self._conn.transaction():
            with self.cursor() as cur:
                cur.execute("SELECT pg_advisory_xact_lock(%s)", (conversation_id,))
                return self._deactivate(cur, conversation_id, at, metadata)

    def _deactivate(self, cur, conversation_id: int, at: datetime, metadata: Optional[Dict[str, Any]]) -> List[Assignment]:
        cur.execute(
            f"""
            UPDATE conversation_agent_assignments
            SET active = false, unassigned_at = %s, metadata = metadata || %s
            WHERE conversation_id = %s AND active
            RETURNING {self._COLUMNS}
            """,
            (at, Jsonb(metadata or {}), conversation_id),
        )
        return [self._row_to_assignment(row) for row in cur.fetchall()]

    def get_active(self, conversation_id: int) -> Optional[Assignment]:
        with self.cursor() as cur:
            cur.execute(
                f"SELECT {self._COLUMNS} FROM conversation_agent_assignments "
                "WHERE conversation_id = %s AND active",
                (conversation_id,),
            )
            row = cur.fetchone()
        return self._row_to_assignment(row) if row else None

    def list_for_conversation(self, conversation_id: int) -> List[Assignment]:
        with self.cursor() as cur:
            cur.execute(
                f"SELECT {self._COLUMNS} FROM conversation_agent_assignments "
                "WHERE conversation_id = %s ORDER BY assigned_at, id",
                (conversation_id,),
            )
            rows = cur.fetchall()
        return [self._row_to_assignment(row) for row in rows]

    def list_for_account(
        self,
        account_id: int,
        *,
        since: Optional[datetime] = None,
        active: Optional[bool] = None,
    ) -> List[Assignment]:
        query = f"SELECT {self._COLUMNS} FROM conversation_agent_assignments WHERE account_id = %s"
        params: List[Any] = [account_id]
        if since is not None:
            query += " AND assigned_at >= %s"
            params.append(since)
        if active is not None:
            query += " AND active = %s"
            params.append(active)
        query += " ORDER BY assigned_at, id"
        with self.cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [self._row_to_assignment(row) for row in rows]

    def count_active_by_agent(self, account_id: int) -> Dict[int, int]:
        with self.cursor() as cur:
            cur.execute(
                """
                SELECT agent_id, count(*) AS open_count
                FROM conversation_agent_assignments
                WHERE account_id = %s AND active
                GROUP BY agent_id
                """,
                (account_id,),
            )
            rows = cur.fetchall()
        return {row["agent_id"]: row["open_count"] for row in rows}

    def conversation_ids_with_assignments(self, account_id: int) -> Set[int]:
        with self.cursor() as cur:
            cur.execute(
                "SELECT DISTINCT conversation_id FROM conversation_agent_assignments WHERE account_id = %s",
                (account_id,),
            )
            rows = cur.fetchall()
        return {row["conversation_id"] for row in rows}

    def delete_for_agent(self, agent_id: int) -> None:
        with self.cursor() as cur:
            cur.execute("DELETE FROM conversation_agent_assignments WHERE agent_id = %s", (agent_id,))

    def _row_to_assignment(self, row: Dict[str, Any]) -> Assignment:
        return Assignment(
            id=row["id"],
            account_id=row["account_id"],
            conversation_id=row["conversation_id"],
            agent_id=row["agent_id"],
            confidence_score=float(row["confidence_score"]),
            assignment_reason=row.get("assignment_reason") or "",
            auto_assigned=row.get("auto_assigned", False),
            active=row.get("active", False),
            assigned_at=row["assigned_at"],
            unassigned_at=row.get("unassigned_at"),
            metadata=row.get("metadata") or {},
        )
