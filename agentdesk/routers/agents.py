"""Agent marketplace and message processing API router."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import APIRouter, Query, status

from ..agents import schemas
from ..agents.service import AgentService, create_postgres_service
from ..routing.assignments import PostgresAssignmentRepository
from .deps import get_conn, http_error

router = APIRouter(prefix="/api/accounts/{account_id}/agents", tags=["agents"])


@contextmanager
def _service_context(account_id: int) -> Iterator[AgentService]:
    conn = get_conn()
    try:
        service = create_postgres_service(
            conn, account_id, assignments=PostgresAssignmentRepository(conn)
        )
        yield service
        conn.commit()
    except Exception as exc:
        conn.rollback()
        raise http_error(exc) from exc
    finally:
        conn.close()


@router.get("/marketplace", response_model=list[schemas.AgentTemplateOut])
def marketplace(account_id: int) -> list[schemas.AgentTemplateOut]:
    with _service_context(account_id) as svc:
        return svc.list_templates()


@router.get("", response_model=schemas.AgentList)
def list_agents(account_id: int, active_only: bool = Query(False)) -> schemas.AgentList:
    with _service_context(account_id) as svc:
        agents = svc.list_agents(active_only=active_only)
    return schemas.AgentList(items=agents, total=len(agents))


@router.post("", response_model=schemas.Agent, status_code=status.HTTP_201_CREATED)
def install_agent(account_id: int, payload: schemas.AgentInstallRequest) -> schemas.Agent:
    with _service_context(account_id) as svc:
        return svc.install(payload.template_id, installed_by=payload.installed_by)


@router.get("/{agent_id}", response_model=schemas.Agent)
def get_agent(account_id: int, agent_id: int) -> schemas.Agent:
    with _service_context(account_id) as svc:
        return svc.get_agent(agent_id)


@router.patch("/{agent_id}", response_model=schemas.Agent)
def configure_agent(account_id: int, agent_id: int, payload: schemas.AgentConfigure) -> schemas.Agent:
    with _service_context(account_id) as svc:
        return svc.configure(agent_id, payload)


@router.delete("/{agent_id}", status_code=status.HTTP_204_NO_CONTENT)
def uninstall_agent(account_id: int, agent_id: int) -> None:
    with _service_context(account_id) as svc:
        svc.uninstall(agent_id)


@router.post("/{agent_id}/messages", response_model=schemas.AgentReply)
def process_message(account_id: int, agent_id: int, payload: schemas.ProcessMessageRequest) -> schemas.AgentReply:
    with _service_context(account_id) as svc:
        return svc.process_message(
            agent_id, payload.conversation_id, payload.message, post_reply=payload.post_reply
        )


@router.post("/{agent_id}/conversations/{conversation_id}/suggest", response_model=schemas.AgentReply)
def suggest_reply(account_id: int, agent_id: int, conversation_id: int) -> schemas.AgentReply:
    with _service_context(account_id) as svc:
        return svc.suggest_reply(agent_id, conversation_id)


@router.get("/{agent_id}/turns", response_model=list[schemas.ConversationTurn])
def list_turns(
    account_id: int, agent_id: int, limit: int = Query(20, ge=1, le=200)
) -> list[schemas.ConversationTurn]:
    with _service_context(account_id) as svc:
        return svc.list_turns(agent_id, limit=limit)


@router.post("/turns/{turn_id}/feedback", response_model=schemas.ConversationTurn)
def record_feedback(account_id: int, turn_id: int, payload: schemas.FeedbackRequest) -> schemas.ConversationTurn:
    with _service_context(account_id) as svc:
        return svc.record_feedback(turn_id, payload.was_helpful, payload.feedback)


@router.get("/{agent_id}/performance", response_model=schemas.PerformanceSummary)
def performance(account_id: int, agent_id: int) -> schemas.PerformanceSummary:
    with _service_context(account_id) as svc:
        return svc.performance_summary(agent_id)
