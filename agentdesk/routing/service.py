"""Routing orchestrator: analyse, match, assign and report."""
from __future__ import annotations

import logging
import re
from collections import defaultdict
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, Iterator, List, Optional

import psycopg

from ..agents.schemas import Agent
from ..agents.service import (
    AgentService,
    PostgresAgentRepository,
    create_postgres_service as create_agent_service,
    greeting_for,
)
from ..config_store import AUTO_ROUTING_KEY, PostgresConfigStore, as_bool
from ..conversations.repository import ConversationStore, PostgresConversationStore
from ..conversations.schemas import Conversation
from ..errors import ConversationNotFoundError
from ..metrics import MetricsStore, PostgresMetricsStore, record_safely
from . import schemas
from .analyzer import ContentAnalyzer
from .assignments import (
    AssignmentManager,
    Clock,
    PostgresAssignmentRepository,
    _utcnow,
    assignment_duration,
    confidence_band,
    format_duration,
)
from .matching import AgentCandidate, MatchingEngine
from .settings import RoutingSettings

logger = logging.getLogger(__name__)

_HUMAN_REQUEST = re.compile(
    r"\b(?:speak|talk|chat)\s+(?:to|with)\s+(?:a\s+)?(?:human|person|real person|someone real|representative)\b"
    r"|\b(?:human|real|live)\s+(?:agent|person|support)\b"
    r"|\bnot\s+(?:a\s+)?(?:bot|robot|machine)\b",
    re.I,
)

FALLBACK_OPTIONS = (
    schemas.FallbackOption(type="human_agent", description="Route to human agent if AI routing fails"),
    schemas.FallbackOption(type="general_support", description="Assign to general support queue"),
    schemas.FallbackOption(type="escalation", description="Escalate to supervisor if high priority"),
)

UNASSIGNED_LIMIT = 50
LOW_CONFIDENCE_LIMIT = 20
LONG_UNRESOLVED_LIMIT = 20
PER_AGENT_LIMIT = 10


class RoutingService:
    """Route one account's conversations to its installed agents."""

    def __init__(
        self,
        account_id: int,
        conversations: ConversationStore,
        agents: AgentService,
        assignments: AssignmentManager,
        metrics: Optional[MetricsStore] = None,
        *,
        auto_routing_enabled: bool = False,
        settings: Optional[RoutingSettings] = None,
        analyzer: Optional[ContentAnalyzer] = None,
        engine: Optional[MatchingEngine] = None,
        clock: Clock = _utcnow,
    ) -> None:
        self.account_id = account_id
        self.auto_routing_enabled = auto_routing_enabled
        self.settings = settings or RoutingSettings()
        self._conversations = conversations
        self._agents = agents
        self._assignments = assignments
        self._metrics = metrics
        self._analyzer = analyzer or ContentAnalyzer(default_language=self.settings.default_language)
        self._engine = engine or MatchingEngine(self.settings)
        self._clock = clock

    # ------------------------------------------------------------------
    # Lookups

    def get_conversation(self, conversation_id: int) -> Conversation:
        conversation = self._conversations.get_conversation(conversation_id)
        if conversation is None or conversation.account_id != self.account_id:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    def _inbound_texts(self, conversation_id: int, *, window: bool = True) -> List[str]:
        messages = self._conversations.list_messages(
            conversation_id,
            direction="incoming",
            limit=self.settings.message_window if window else None,
        )
        return [m.content for m in messages]

    # ------------------------------------------------------------------
    # Gate

    def auto_route_blocker(self, conversation: Conversation) -> Optional[str]:
        """Why ``conversation`` must not be auto-routed, or ``None``."""

        if not self.auto_routing_enabled:
            return "Auto-routing is disabled for this account"
        if self._assignments.active_assignment(conversation.id) is not None:
            return "Conversation already has an active agent assignment"
        if self._clock() - conversation.created_at > self.settings.recency_window:
            return "Conversation is older than the auto-routing window"
        # A human request anywhere in the history blocks, not only in the analysis window.
        if any(_HUMAN_REQUEST.search(text) for text in self._inbound_texts(conversation.id, window=False)):
            return "Customer asked for a human agent"
        return None

    def should_auto_route(self, conversation: Conversation) -> bool:
        return self.auto_route_blocker(conversation) is None

    # ------------------------------------------------------------------
    # Routing

    def analyze_and_route(self, conversation: Conversation) -> schemas.RoutingResult:
        """Recommendation only: nothing is written."""

        analysis = self._analyzer.analyse(
            self._inbound_texts(conversation.id),
            previous_conversations=conversation.contact_conversation_count,
        )
        matches = self._engine.rank(analysis, self._candidates())
        blocker = self.auto_route_blocker(conversation)
        return schemas.RoutingResult(
            conversation_id=conversation.id,
            analysis=analysis,
            recommended_agents=matches,
            routing_confidence=self.routing_confidence(analysis),
            should_route=blocker is None,
            routing_reasons=self.routing_reasons(analysis),
            fallback_options=list(FALLBACK_OPTIONS),
            reason=blocker,
        )

    def route(self, conversation: Conversation, *, force: bool = False) -> schemas.RoutingResult:
        result = self.analyze_and_route(conversation)
        if not force and not result.should_route:
            logger.info("Skipped routing conversation %s: %s", conversation.id, result.reason)
            return result
        if not result.recommended_agents:
            logger.info(
                "No agent met the match threshold for conversation %s (categories=%s)",
                conversation.id,
                result.analysis.categories,
            )
            return result.model_copy(
                update={"reason": "No agent met the minimum match score", "should_route": False}
            )

        best = result.recommended_agents[0]
        try:
            assignment = self._assignments.assign(
                conversation,
                best.agent,
                reason=", ".join(result.routing_reasons) or "Matched by content analysis",
                confidence=result.routing_confidence,
                auto=True,
                metadata={"match_score": best.score, "forced": force},
            )
        except Exception as exc:
            logger.exception("Routing conversation %s to agent %s failed", conversation.id, best.agent.id)
            return result.model_copy(update={"routed": False, "error": str(exc)})

        if best.agent.auto_respond:
            self._send_greeting(conversation, best.agent)
        record_safely(
            self._metrics,
            best.agent.id,
            "routing_decision",
            result.routing_confidence,
            metadata={
                "conversation_id": conversation.id,
                "assignment_id": assignment.id,
                "categories": result.analysis.categories,
                "urgency": result.analysis.urgency,
                "match_score": best.score,
                "forced": force,
            },
        )
        logger.info(
            "Routed conversation %s to agent %s (%s) confidence=%.0f reasons=%s",
            conversation.id,
            best.agent.id,
            best.agent.name,
            result.routing_confidence,
            best.reasons,
        )
        return result.model_copy(
            update={
                "routed": True,
                "assigned_agent_id": best.agent.id,
                "assignment_id": assignment.id,
                "reason": None,
            }
        )

    def bulk_route(self, conversation_ids: Iterable[int], *, force: bool = False) -> List[schemas.BulkRouteItem]:
        items: List[schemas.BulkRouteItem] = []
        for conversation_id in conversation_ids:
            try:
                conversation = self.get_conversation(conversation_id)
                result = self.route(conversation, force=force)
            except Exception as exc:
                logger.warning("Bulk routing failed for conversation %s: %s", conversation_id, exc)
                items.append(
                    schemas.BulkRouteItem(conversation_id=conversation_id, routed=False, error=str(exc))
                )
                continue
            items.append(
                schemas.BulkRouteItem(
                    conversation_id=conversation_id,
                    routed=result.routed,
                    assigned_agent_id=result.assigned_agent_id,
                    confidence=result.routing_confidence if result.routed else None,
                    reason=result.reason,
                    error=result.error,
                )
            )
        return items

    # ------------------------------------------------------------------
    # Manual lifecycle operations

    def assign(self, conversation_id: int, agent_id: int, *, actor: Optional[str] = None) -> schemas.Assignment:
        conversation = self.get_conversation(conversation_id)
        agent = self._agents.get_agent(agent_id)
        return self._assignments.assign(conversation, agent, actor=actor)

    def reassign(
        self, conversation_id: int, agent_id: int, *, reason: Optional[str] = None, actor: Optional[str] = None
    ) -> schemas.Assignment:
        conversation = self.get_conversation(conversation_id)
        agent = self._agents.get_agent(agent_id)
        return self._assignments.reassign(conversation, agent, reason=reason, actor=actor)

    def unassign(
        self, conversation_id: int, *, reason: Optional[str] = None, actor: Optional[str] = None
    ) -> List[schemas.Assignment]:
        conversation = self.get_conversation(conversation_id)
        return self._assignments.unassign(conversation, reason=reason, actor=actor)

    def describe(self, assignment: schemas.Assignment) -> schemas.AssignmentOut:
        return schemas.AssignmentOut(
            assignment=assignment,
            duration=format_duration(assignment_duration(assignment, self._clock())),
            confidence_band=confidence_band(assignment.confidence_score),
        )

    # ------------------------------------------------------------------
    # Reporting

    def routing_analytics(self, time_range: timedelta = timedelta(days=7)) -> schemas.RoutingAnalytics:
        now = self._clock()
        since = now - time_range
        assignments = self._assignments.repository.list_for_account(self.account_id, since=since)
        confidences = [a.confidence_score for a in assignments]
        overview = schemas.RoutingOverview(
            total_assignments=len(assignments),
            auto_assignments=sum(1 for a in assignments if a.auto_assigned),
            manual_assignments=sum(1 for a in assignments if not a.auto_assigned),
            active_assignments=sum(1 for a in assignments if a.active),
            average_confidence=_mean(confidences),
        )

        names = {agent.id: agent.name for agent in self._agents.list_agents()}
        by_agent: Dict[int, List[float]] = defaultdict(list)
        by_day: Dict[date, List[schemas.Assignment]] = defaultdict(list)
        for a in assignments:
            by_agent[a.agent_id].append(a.confidence_score)
            by_day[a.assigned_at.date()].append(a)
        per_agent = sorted(
            (
                schemas.AgentRoutingStats(
                    agent_id=agent_id,
                    agent_name=names.get(agent_id),
                    assignments=len(scores),
                    average_confidence=_mean(scores),
                )
                for agent_id, scores in by_agent.items()
            ),
            key=lambda s: (-s.assignments, s.agent_id),
        )[:PER_AGENT_LIMIT]
        return schemas.RoutingAnalytics(
            since=since,
            overview=overview,
            per_agent=per_agent,
            trend=self._daily_trend(since.date(), now.date(), by_day),
            success_metrics=self._success_metrics(assignments),
        )

    @staticmethod
    def _daily_trend(
        first: date, last: date, by_day: Dict[date, List[schemas.Assignment]]
    ) -> List[schemas.TrendPoint]:
        """One point per calendar day of the window, empty days included."""

        trend = []
        day = first
        while day <= last:
            day_assignments = by_day.get(day, [])
            trend.append(
                schemas.TrendPoint(
                    day=day,
                    assignments=len(day_assignments),
                    auto_assignments=sum(1 for a in day_assignments if a.auto_assigned),
                    average_confidence=_mean([a.confidence_score for a in day_assignments]),
                )
            )
            day += timedelta(days=1)
        return trend

    def _success_metrics(self, assignments: List[schemas.Assignment]) -> schemas.SuccessMetrics:
        # A resolved conversation counts as a successful routing.
        if not assignments:
            return schemas.SuccessMetrics()
        conversations: Dict[int, Optional[Conversation]] = {}
        for a in assignments:
            if a.conversation_id not in conversations:
                conversations[a.conversation_id] = self._conversations.get_conversation(a.conversation_id)

        def resolved(a: schemas.Assignment) -> bool:
            conversation = conversations.get(a.conversation_id)
            return conversation is not None and conversation.status == "resolved"

        resolved_assignments = [a for a in assignments if resolved(a)]
        hours = []
        for a in resolved_assignments:
            resolved_at = conversations[a.conversation_id].resolved_at
            if resolved_at is not None:
                hours.append((resolved_at - a.assigned_at).total_seconds() / 3600)
        high = [a for a in assignments if a.confidence_score >= 80]
        return schemas.SuccessMetrics(
            resolution_rate=round(100.0 * len(resolved_assignments) / len(assignments), 1),
            average_resolution_hours=round(sum(hours) / len(hours), 2) if hours else None,
            high_confidence_success_rate=(
                round(100.0 * sum(1 for a in high if resolved(a)) / len(high), 1) if high else None
            ),
        )

    def needs_attention(self) -> schemas.NeedsAttention:
        now = self._clock()
        assigned_ids = self._assignments.repository.conversation_ids_with_assignments(self.account_id)
        unassigned = [
            schemas.AttentionItem(conversation_id=c.id, status=c.status)
            for c in self._conversations.list_conversations(self.account_id, statuses=("pending", "open"))
            if c.id not in assigned_ids
        ][:UNASSIGNED_LIMIT]

        active = self._assignments.repository.list_for_account(self.account_id, active=True)
        low_confidence = [
            self._attention_item(a, now)
            for a in sorted(active, key=lambda a: (a.confidence_score, a.id))
            if a.confidence_score < self.settings.low_confidence_ceiling
        ][:LOW_CONFIDENCE_LIMIT]

        long_unresolved = []
        for a in sorted(active, key=lambda a: (a.assigned_at, a.id)):
            if now - a.assigned_at <= self.settings.stale_after:
                continue
            conversation = self._conversations.get_conversation(a.conversation_id)
            if conversation is None or conversation.status != "open":
                continue
            long_unresolved.append(self._attention_item(a, now, conversation.status))
            if len(long_unresolved) >= LONG_UNRESOLVED_LIMIT:
                break
        return schemas.NeedsAttention(
            unassigned=unassigned, low_confidence=low_confidence, long_unresolved=long_unresolved
        )

    @staticmethod
    def _attention_item(
        assignment: schemas.Assignment, now: datetime, status: Optional[str] = None
    ) -> schemas.AttentionItem:
        return schemas.AttentionItem(
            conversation_id=assignment.conversation_id,
            status=status,
            assignment_id=assignment.id,
            agent_id=assignment.agent_id,
            confidence_score=assignment.confidence_score,
            assigned_at=assignment.assigned_at,
            duration=format_duration(assignment_duration(assignment, now)),
        )

    # ------------------------------------------------------------------
    # Helpers

    def routing_confidence(self, analysis: schemas.AnalysisResult) -> float:
        s = self.settings
        confidence = s.confidence_base
        if analysis.categories:
            confidence += s.confidence_categories
        if analysis.urgency != "low":
            confidence += s.confidence_urgency
        if analysis.keywords:
            confidence += s.confidence_keywords
        if analysis.sentiment == "negative":
            confidence += s.confidence_negative_sentiment
        return min(confidence, 100.0)

    @staticmethod
    def routing_reasons(analysis: schemas.AnalysisResult) -> List[str]:
        reasons = []
        if analysis.categories:
            reasons.append(f"Detected {', '.join(analysis.categories)} categories")
        if analysis.urgency != "low":
            reasons.append(f"{analysis.urgency.capitalize()} priority conversation")
        if analysis.sentiment != "neutral":
            reasons.append(f"{analysis.sentiment.capitalize()} customer sentiment")
        if analysis.customer_type != "existing":
            reasons.append(f"{analysis.customer_type.capitalize()} customer type")
        return reasons

    def _candidates(self) -> List[AgentCandidate]:
        open_counts = self._assignments.repository.count_active_by_agent(self.account_id)
        return [
            AgentCandidate(
                agent=agent,
                success_rate=self._agents.success_rate(agent.id),
                open_conversations=open_counts.get(agent.id, 0),
            )
            for agent in self._agents.list_agents(active_only=True)
        ]

    def _send_greeting(self, conversation: Conversation, agent: Agent) -> None:
        try:
            self._conversations.add_message(
                conversation.id, greeting_for(agent), "outgoing", sender_agent_id=agent.id
            )
        except ConversationNotFoundError:
            logger.warning("Conversation %s vanished before the greeting was sent", conversation.id)


def _mean(values: List[float]) -> Optional[float]:
    if not values:
        return None
    return round(sum(values) / len(values), 1)


def parse_time_range(value: str) -> timedelta:
    """Parse ``"24h"``, ``"7d"`` or ``"4w"`` into a :class:`timedelta`."""

    match = re.fullmatch(r"\s*(\d+)\s*([hdw])\s*", value or "")
    if not match:
        raise ValueError(f"Invalid time range '{value}'")
    amount, unit = int(match.group(1)), match.group(2)
    if amount <= 0:
        raise ValueError(f"Invalid time range '{value}'")
    return {"h": timedelta(hours=amount), "d": timedelta(days=amount), "w": timedelta(weeks=amount)}[unit]


# ---------------------------------------------------------------------------
# Service factory helpers


def create_postgres_service(
    connection: psycopg.Connection,
    account_id: int,
    settings: Optional[RoutingSettings] = None,
) -> RoutingService:
    config = PostgresConfigStore(connection)
    conversations = PostgresConversationStore(connection)
    metrics = PostgresMetricsStore(connection)
    repository = PostgresAssignmentRepository(connection)
    manager = AssignmentManager(
        repository, conversations, metrics, agents=PostgresAgentRepository(connection)
    )
    return RoutingService(
        account_id,
        conversations,
        create_agent_service(connection, account_id, assignments=repository),
        manager,
        metrics,
        auto_routing_enabled=as_bool(config.get(AUTO_ROUTING_KEY, False)),
        settings=settings or RoutingSettings.from_env(),
    )


@contextmanager
def service_context_from_dsn(dsn: str, account_id: int) -> Iterator[RoutingService]:
    conn = psycopg.connect(dsn)
    try:
        service = create_postgres_service(conn, account_id)
        yield service
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
