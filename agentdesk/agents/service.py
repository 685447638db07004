"""Service layer for installing, configuring and running support agents."""
from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Protocol

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..config_store import PostgresConfigStore
from ..conversations.repository import ConversationStore, PostgresConversationStore
from ..errors import (
    AgentAlreadyInstalledError,
    AgentInactiveError,
    AgentNotFoundError,
    FeedbackAlreadyRecordedError,
    PremiumRequiredError,
    TurnNotFoundError,
)
from ..metrics import MetricsStore, PostgresMetricsStore, record_safely
from ..providers.errors import ProviderConfigurationError, ProviderError
from ..providers.gateway import ProviderGateway
from . import registry, schemas
from .prompts import HISTORY_LIMIT, PromptTemplateStore
from .responses import ResponseParameterStore

logger = logging.getLogger(__name__)

FALLBACK_REPLY = (
    "I apologize, but I'm experiencing technical difficulties. "
    "Please try again or contact a human agent."
)


def greeting_for(agent: schemas.Agent) -> str:
    """Opening message posted when an auto-responding agent takes a conversation."""

    responses = agent.suggested_responses
    if responses.get("greeting"):
        return responses["greeting"]
    if responses:
        return next(iter(responses.values()))
    return f"Hello! I'm {agent.name} and I'll be helping you today. How can I assist you?"


class AgentRepository(Protocol):
    """Persistence abstraction used by :class:`AgentService`."""

    def list_agents(self, account_id: int, *, active_only: bool = False) -> List[schemas.Agent]: ...

    def get_agent(self, agent_id: int) -> Optional[schemas.Agent]: ...

    def get_agent_by_template(self, account_id: int, template_id: str) -> Optional[schemas.Agent]: ...

    def create_agent(self, payload: schemas.AgentCreate) -> schemas.Agent: ...

    def update_agent(self, agent_id: int, changes: Dict[str, Any]) -> schemas.Agent: ...

    def delete_agent(self, agent_id: int) -> None: ...

    def record_turn(self, payload: schemas.ConversationTurnCreate) -> schemas.ConversationTurn: ...

    def get_turn(self, turn_id: int) -> Optional[schemas.ConversationTurn]: ...

    def save_feedback(
        self, turn_id: int, was_helpful: bool, feedback: Optional[str]
    ) -> Optional[schemas.ConversationTurn]: ...

    def list_turns(self, agent_id: int, limit: Optional[int] = None) -> List[schemas.ConversationTurn]: ...


class AssignmentLookup(Protocol):
    def count_active_by_agent(self, account_id: int) -> Dict[int, int]: ...

    def delete_for_agent(self, agent_id: int) -> None: ...


class AgentService:
    """Agent marketplace operations and message processing for one account."""

    def __init__(
        self,
        account_id: int,
        repository: AgentRepository,
        gateway: ProviderGateway,
        *,
        conversations: Optional[ConversationStore] = None,
        metrics: Optional[MetricsStore] = None,
        assignments: Optional[AssignmentLookup] = None,
        prompt_store: Optional[PromptTemplateStore] = None,
        response_store: Optional[ResponseParameterStore] = None,
    ) -> None:
        self.account_id = account_id
        self._repository = repository
        self._gateway = gateway
        self._conversations = conversations
        self._metrics = metrics
        self._assignments = assignments
        self._prompts = prompt_store or PromptTemplateStore()
        self._responses = response_store or ResponseParameterStore()

    # ------------------------------------------------------------------
    # Marketplace

    def list_templates(self) -> List[schemas.AgentTemplateOut]:
        installed = {agent.template_id for agent in self.list_agents()}
        return [
            schemas.AgentTemplateOut.from_template(template, template.id in installed)
            for template in registry.all_templates()
        ]

    def install(
        self,
        template_id: str,
        *,
        installed_by: Optional[str] = None,
        premium_enabled: bool = True,
    ) -> schemas.Agent:
        template = registry.get_template(template_id)
        if template.is_premium and not premium_enabled:
            raise PremiumRequiredError(f"'{template.name}' requires a premium plan")
        if self._repository.get_agent_by_template(self.account_id, template.id):
            raise AgentAlreadyInstalledError(f"'{template.name}' is already installed")
        provider = next(
            (name for name in template.provider_recommendations if self._gateway.is_configured(name)),
            self._gateway.default_provider(),
        )
        defaults = dict(template.defaults)
        payload = schemas.AgentCreate(
            account_id=self.account_id,
            template_id=template.id,
            name=template.name,
            description=template.description,
            category=template.category,
            provider=provider,
            model=self._gateway.default_model(provider),
            temperature=defaults.get("temperature", 0.7),
            max_tokens=defaults.get("max_tokens", 2000),
            auto_respond=defaults.get("auto_respond", True),
            installed_by=installed_by,
        )
        agent = self._repository.create_agent(payload)
        logger.info(
            "Installed agent template %s for account %s using %s/%s",
            template.id,
            self.account_id,
            agent.provider,
            agent.model,
        )
        return agent

    def configure(self, agent_id: int, payload: schemas.AgentConfigure) -> schemas.Agent:
        agent = self.get_agent(agent_id)
        changes = payload.model_dump(exclude_none=True)
        if "provider" in changes or "model" in changes:
            provider = changes.get("provider", agent.provider)
            if "model" in changes:
                model = changes["model"]
            elif "provider" in changes and changes["provider"] != agent.provider:
                model = None
            else:
                model = agent.model
            changes["provider"], changes["model"] = self._gateway.validate(provider, model)
        if not changes:
            return agent
        return self._repository.update_agent(agent.id, changes)

    def uninstall(self, agent_id: int) -> None:
        agent = self.get_agent(agent_id)
        self._repository.delete_agent(agent.id)
        if self._assignments is not None:
            self._assignments.delete_for_agent(agent.id)
        if self._metrics is not None:
            self._metrics.delete_for_agent(agent.id)
        logger.info("Uninstalled agent %s (%s) from account %s", agent.id, agent.template_id, self.account_id)

    def list_agents(self, *, active_only: bool = False) -> List[schemas.Agent]:
        return self._repository.list_agents(self.account_id, active_only=active_only)

    def get_agent(self, agent_id: int) -> schemas.Agent:
        agent = self._repository.get_agent(agent_id)
        if not agent or agent.account_id != self.account_id:
            raise AgentNotFoundError(f"Agent {agent_id} not found")
        return agent

    def greeting(self, agent_id: int) -> str:
        return greeting_for(self.get_agent(agent_id))

    # ------------------------------------------------------------------
    # Message processing

    def process_message(
        self,
        agent_id: int,
        conversation_id: int,
        message: str,
        *,
        post_reply: bool = True,
    ) -> schemas.AgentReply:
        agent = self.get_agent(agent_id)
        if not agent.is_active:
            raise AgentInactiveError(f"Agent {agent_id} is inactive")
        history = (
            self._conversations.list_messages(conversation_id, limit=HISTORY_LIMIT)
            if self._conversations is not None
            else []
        )
        system_prompt = self._prompts.resolve(
            agent.template.system_prompt, agent.category, agent.provider, agent.custom_prompt
        )
        messages = self._prompts.build_messages(system_prompt, history, message)
        params = self._responses.merge(
            agent.provider, {"temperature": agent.temperature, "max_tokens": agent.max_tokens}
        )
        started = time.perf_counter()
        try:
            result = self._gateway.chat_completion(
                messages, provider=agent.provider, model=agent.model, **params
            )
        except (ProviderError, ProviderConfigurationError) as exc:
            elapsed = time.perf_counter() - started
            logger.error(
                "Agent %s could not answer conversation %s: %s", agent.id, conversation_id, exc
            )
            turn = self._repository.record_turn(
                schemas.ConversationTurnCreate(
                    agent_id=agent.id,
                    conversation_id=conversation_id,
                    message_content=message,
                    provider=agent.provider,
                    model=agent.model,
                    response_time=elapsed,
                    status="failed",
                    error=str(exc),
                )
            )
            record_safely(
                self._metrics,
                agent.id,
                "generation_failed",
                1,
                metadata={"conversation_id": conversation_id, "error": type(exc).__name__},
            )
            self._post(agent, conversation_id, FALLBACK_REPLY, post_reply)
            return schemas.AgentReply(
                agent_id=agent.id,
                conversation_id=conversation_id,
                content=FALLBACK_REPLY,
                status="failed",
                fallback=True,
                turn_id=turn.id,
                provider=agent.provider,
                model=agent.model,
                response_time=elapsed,
            )

        elapsed = time.perf_counter() - started
        turn = self._repository.record_turn(
            schemas.ConversationTurnCreate(
                agent_id=agent.id,
                conversation_id=conversation_id,
                message_content=message,
                response_content=result.content,
                provider=result.provider,
                model=result.model,
                tokens_used=result.total_tokens,
                response_time=elapsed,
            )
        )
        metric_meta = {"conversation_id": conversation_id, "provider": result.provider, "model": result.model}
        record_safely(self._metrics, agent.id, "message_processed", 1, metadata=metric_meta)
        record_safely(self._metrics, agent.id, "response_time", elapsed, metadata=metric_meta)
        record_safely(self._metrics, agent.id, "token_usage", result.total_tokens, metadata=metric_meta)
        self._post(agent, conversation_id, result.content, post_reply)
        return schemas.AgentReply(
            agent_id=agent.id,
            conversation_id=conversation_id,
            content=result.content,
            status="success",
            turn_id=turn.id,
            provider=result.provider,
            model=result.model,
            tokens_used=result.total_tokens,
            response_time=elapsed,
        )

    def suggest_reply(self, agent_id: int, conversation_id: int) -> schemas.AgentReply:
        """Draft a reply to the latest customer message without posting it."""

        latest = []
        if self._conversations is not None:
            latest = self._conversations.list_messages(conversation_id, direction="incoming", limit=1)
        if not latest:
            raise ValueError(f"Conversation {conversation_id} has no customer message to answer")
        return self.process_message(agent_id, conversation_id, latest[-1].content, post_reply=False)

    def _post(self, agent: schemas.Agent, conversation_id: int, content: str, post_reply: bool) -> None:
        if post_reply and self._conversations is not None and content:
            self._conversations.add_message(
                conversation_id, content, "outgoing", sender_agent_id=agent.id
            )

    # ------------------------------------------------------------------
    # Feedback & performance

    def record_feedback(
        self, turn_id: int, was_helpful: bool, feedback: Optional[str] = None
    ) -> schemas.ConversationTurn:
        turn = self._repository.get_turn(turn_id)
        if turn is None:
            raise TurnNotFoundError(f"Turn {turn_id} not found")
        self.get_agent(turn.agent_id)
        if turn.was_helpful is not None:
            raise FeedbackAlreadyRecordedError(f"Feedback already recorded for turn {turn_id}")
        updated = self._repository.save_feedback(turn_id, was_helpful, feedback)
        if updated is None:
            raise FeedbackAlreadyRecordedError(f"Feedback already recorded for turn {turn_id}")
        record_safely(
            self._metrics,
            turn.agent_id,
            "user_satisfaction",
            100 if was_helpful else 0,
            metadata={"turn_id": turn_id},
        )
        return updated

    def list_turns(self, agent_id: int, limit: int = 20) -> List[schemas.ConversationTurn]:
        self.get_agent(agent_id)
        return self._repository.list_turns(agent_id, limit=limit)

    def success_rate(self, agent_id: int) -> Optional[float]:
        """Share of helpful turns, or of successful generations without feedback."""

        turns = self._repository.list_turns(agent_id)
        rated = [t for t in turns if t.was_helpful is not None]
        if rated:
            return 100.0 * sum(1 for t in rated if t.was_helpful) / len(rated)
        if turns:
            return 100.0 * sum(1 for t in turns if t.status == "success") / len(turns)
        return None

    def performance_summary(self, agent_id: int) -> schemas.PerformanceSummary:
        agent = self.get_agent(agent_id)
        turns = self._repository.list_turns(agent.id)
        successful = [t for t in turns if t.status == "success"]
        open_assignments = 0
        if self._assignments is not None:
            open_assignments = self._assignments.count_active_by_agent(self.account_id).get(agent.id, 0)
        return schemas.PerformanceSummary(
            agent_id=agent.id,
            total_turns=len(turns),
            successful_turns=len(successful),
            failed_turns=len(turns) - len(successful),
            success_rate=self.success_rate(agent.id),
            average_response_time=(
                sum(t.response_time for t in successful) / len(successful) if successful else None
            ),
            total_tokens=sum(t.tokens_used for t in turns),
            helpful_feedback=sum(1 for t in turns if t.was_helpful is True),
            unhelpful_feedback=sum(1 for t in turns if t.was_helpful is False),
            open_assignments=open_assignments,
        )


# ---------------------------------------------------------------------------
# Postgres repository implementation


_AGENT_COLUMNS = (
    "id, account_id, template_id, name, description, category, status, provider, model, "
    "temperature, max_tokens, custom_prompt, auto_respond, trigger_conditions, installed_by, "
    "created_at, updated_at"
)
_TURN_COLUMNS = (
    "id, agent_id, conversation_id, message_content, response_content, provider, model, "
    "tokens_used, response_time, status, error, was_helpful, feedback, created_at"
)


class PostgresAgentRepository:
    """PostgreSQL-backed agent repository."""

    def __init__(self, connection: psycopg.Connection):
        self._conn = connection

    def cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    def list_agents(self, account_id: int, *, active_only: bool = False) -> List[schemas.Agent]:
        query = f"SELECT {_AGENT_COLUMNS} FROM ai_agents WHERE account_id = %s"
        if active_only:
            query += " AND status = 'active'"
        with self.cursor() as cur:
            cur.execute(query + " ORDER BY id", (account_id,))
            rows = cur.fetchall()
        return [self._row_to_agent(row) for row in rows]

    def get_agent(self, agent_id: int) -> Optional[schemas.Agent]:
        with self.cursor() as cur:
            cur.execute(f"SELECT {_AGENT_COLUMNS} FROM ai_agents WHERE id = %s", (agent_id,))
            row = cur.fetchone()
        return self._row_to_agent(row) if row else None

    def get_agent_by_template(self, account_id: int, template_id: str) -> Optional[schemas.Agent]:
        with self.cursor() as cur:
            cur.execute(
                f"SELECT {_AGENT_COLUMNS} FROM ai_agents WHERE account_id = %s AND template_id = %s",
                (account_id, template_id),
            )
            row = cur.fetchone()
        return self._row_to_agent(row) if row else None

    def create_agent(self, payload: schemas.AgentCreate) -> schemas.Agent:
        with self.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO ai_agents
                    (account_id, template_id, name, description, category, status, provider, model,
                     temperature, max_tokens, custom_prompt, auto_respond, trigger_conditions, installed_by)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {_AGENT_COLUMNS}
                """,
                (
                    payload.account_id,
                    payload.template_id,
                    payload.name,
                    payload.description,
                    payload.category,
                    payload.status,
                    payload.provider,
                    payload.model,
                    payload.temperature,
                    payload.max_tokens,
                    payload.custom_prompt,
                    payload.auto_respond,
                    Jsonb(payload.trigger_conditions),
                    payload.installed_by,
                ),
            )
            row = cur.fetchone()
        return self._row_to_agent(row)

    def update_agent(self, agent_id: int, changes: Dict[str, Any]) -> schemas.Agent:
        fields: List[str] = []
        values: List[Any] = []
        for key, value in changes.items():
            fields.append(f"{key} = %s")
            values.append(Jsonb(value) if key == "trigger_conditions" else value)
        fields.append("updated_at = now()")
        values.append(agent_id)
        with self.cursor() as cur:
            cur.execute(
                f"UPDATE ai_agents SET {', '.join(fields)} WHERE id = %s RETURNING {_AGENT_COLUMNS}",
                values,
            )
            row = cur.fetchone()
        if not row:
            raise AgentNotFoundError(f"Agent {agent_id} not found")
        return self._row_to_agent(row)

    def delete_agent(self, agent_id: int) -> None:
        with self.cursor() as cur:
            cur.execute("DELETE FROM agent_conversations WHERE agent_id = %s", (agent_id,))
            cur.execute("DELETE FROM conversation_agent_assignments WHERE agent_id = %s", (agent_id,))
            cur.execute("DELETE FROM ai_agents WHERE id = %s", (agent_id,))

    def record_turn(self, payload: schemas.ConversationTurnCreate) -> schemas.ConversationTurn:
        with self.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO agent_conversations
                    (agent_id, conversation_id, message_content, response_content, provider, model,
                     tokens_used, response_time, status, error)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {_TURN_COLUMNS}
                """,
                (
                    payload.agent_id,
                    payload.conversation_id,
                    payload.message_content,
                    payload.response_content,
                    payload.provider,
                    payload.model,
                    payload.tokens_used,
                    payload.response_time,
                    payload.status,
                    payload.error,
                ),
            )
            row = cur.fetchone()
        return schemas.ConversationTurn(**row)

    def get_turn(self, turn_id: int) -> Optional[schemas.ConversationTurn]:
        with self.cursor() as cur:
            cur.execute(f"SELECT {_TURN_COLUMNS} FROM agent_conversations WHERE id = %s", (turn_id,))
            row = cur.fetchone()
        return schemas.ConversationTurn(**row) if row else None

    def save_feedback(
        self, turn_id: int, was_helpful: bool, feedback: Optional[str]
    ) -> Optional[schemas.ConversationTurn]:
        with self.cursor() as cur:
            cur.execute(
                f"""
                UPDATE agent_conversations
                SET was_helpful = %s, feedback = %s
                WHERE id = %s AND was_helpful IS NULL
                RETURNING {_TURN_COLUMNS}
                """,
                (was_helpful, feedback, turn_id),
            )
            row = cur.fetchone()
        return schemas.ConversationTurn(**row) if row else None

    def list_turns(self, agent_id: int, limit: Optional[int] = None) -> List[schemas.ConversationTurn]:
        query = f"SELECT {_TURN_COLUMNS} FROM agent_conversations WHERE agent_id = %s ORDER BY created_at DESC, id DESC"
        params: List[Any] = [agent_id]
        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)
        with self.cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [schemas.ConversationTurn(**row) for row in rows]

    def _row_to_agent(self, row: Dict[str, Any]) -> schemas.Agent:
        return schemas.Agent(
            id=row["id"],
            account_id=row["account_id"],
            template_id=row["template_id"],
            name=row["name"],
            description=row.get("description"),
            category=row["category"],
            status=row.get("status", "active"),
            provider=row["provider"],
            model=row["model"],
            temperature=float(row.get("temperature") or 0.7),
            max_tokens=int(row.get("max_tokens") or 2000),
            custom_prompt=row.get("custom_prompt"),
            auto_respond=row.get("auto_respond", True),
            trigger_conditions=row.get("trigger_conditions") or {},
            installed_by=row.get("installed_by"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


# ---------------------------------------------------------------------------
# In-memory repository (useful for testing and sandbox environments)


class InMemoryAgentRepository:
    def __init__(self) -> None:
        self._agents: Dict[int, schemas.Agent] = {}
        self._turns: Dict[int, schemas.ConversationTurn] = {}
        self._agent_id_seq = 1
        self._turn_id_seq = 1
        self._lock = threading.Lock()

    def list_agents(self, account_id: int, *, active_only: bool = False) -> List[schemas.Agent]:
        with self._lock:
            agents = [
                a.model_copy(deep=True)
                for a in self._agents.values()
                if a.account_id == account_id and (not active_only or a.is_active)
            ]
        agents.sort(key=lambda a: a.id)
        return agents

    def get_agent(self, agent_id: int) -> Optional[schemas.Agent]:
        with self._lock:
            agent = self._agents.get(agent_id)
            return agent.model_copy(deep=True) if agent else None

    def get_agent_by_template(self, account_id: int, template_id: str) -> Optional[schemas.Agent]:
        with self._lock:
            for agent in self._agents.values():
                if agent.account_id == account_id and agent.template_id == template_id:
                    return agent.model_copy(deep=True)
        return None

    def create_agent(self, payload: schemas.AgentCreate) -> schemas.Agent:
        now = datetime.now(timezone.utc)
        with self._lock:
            agent = schemas.Agent(
                id=self._agent_id_seq,
                created_at=now,
                updated_at=now,
                **payload.model_dump(),
            )
            self._agent_id_seq += 1
            self._agents[agent.id] = agent
            return agent.model_copy(deep=True)

    def update_agent(self, agent_id: int, changes: Dict[str, Any]) -> schemas.Agent:
        with self._lock:
            agent = self._agents.get(agent_id)
            if not agent:
                raise AgentNotFoundError(f"Agent {agent_id} not found")
            updated = agent.model_copy(update={**changes, "updated_at": datetime.now(timezone.utc)})
            self._agents[agent_id] = updated
            return updated.model_copy(deep=True)

    def delete_agent(self, agent_id: int) -> None:
        with self._lock:
            self._agents.pop(agent_id, None)
            self._turns = {key: t for key, t in self._turns.items() if t.agent_id != agent_id}

    def record_turn(self, payload: schemas.ConversationTurnCreate) -> schemas.ConversationTurn:
        with self._lock:
            turn = schemas.ConversationTurn(
                id=self._turn_id_seq,
                created_at=datetime.now(timezone.utc),
                **payload.model_dump(),
            )
            self._turn_id_seq += 1
            self._turns[turn.id] = turn
            return turn

    def get_turn(self, turn_id: int) -> Optional[schemas.ConversationTurn]:
        with self._lock:
            return self._turns.get(turn_id)

    def save_feedback(
        self, turn_id: int, was_helpful: bool, feedback: Optional[str]
    ) -> Optional[schemas.ConversationTurn]:
        with self._lock:
            turn = self._turns.get(turn_id)
            if turn is None or turn.was_helpful is not None:
                return None
            updated = turn.model_copy(update={"was_helpful": was_helpful, "feedback": feedback})
            self._turns[turn_id] = updated
            return updated

    def list_turns(self, agent_id: int, limit: Optional[int] = None) -> List[schemas.ConversationTurn]:
        with self._lock:
            turns = [t for t in self._turns.values() if t.agent_id == agent_id]
        turns.sort(key=lambda t: (t.created_at, t.id), reverse=True)
        return turns[:limit] if limit is not None else turns


# ---------------------------------------------------------------------------
# Service factory helpers


def create_postgres_service(
    connection: psycopg.Connection,
    account_id: int,
    gateway: Optional[ProviderGateway] = None,
    assignments: Optional[AssignmentLookup] = None,
) -> AgentService:
    return AgentService(
        account_id,
        PostgresAgentRepository(connection),
        gateway or ProviderGateway(PostgresConfigStore(connection)),
        conversations=PostgresConversationStore(connection),
        metrics=PostgresMetricsStore(connection),
        assignments=assignments,
    )


@contextmanager
def service_context_from_dsn(dsn: str, account_id: int) -> Iterator[AgentService]:
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
