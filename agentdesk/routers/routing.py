"""Conversation routing API router."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import APIRouter, HTTPException, Query

from ..routing import schemas
from ..routing.service import RoutingService, create_postgres_service, parse_time_range
from .deps import get_conn, http_error

router = APIRouter(prefix="/api/accounts/{account_id}", tags=["routing"])


@contextmanager
def _service_context(account_id: int) -> Iterator[RoutingService]:
    conn = get_conn()
    try:
        service = create_postgres_service(conn, account_id)
        yield service
        conn.commit()
    except Exception as exc:
        conn.rollback()
        raise http_error(exc) from exc
    finally:
        conn.close()


@router.get("/routing/analytics", response_model=schemas.RoutingAnalytics)
def routing_analytics(account_id: int, time_range: str = Query("7d")) -> schemas.RoutingAnalytics:
    try:
        window = parse_time_range(time_range)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    with _service_context(account_id) as svc:
        return svc.routing_analytics(window)


@router.get("/routing/needs-attention", response_model=schemas.NeedsAttention)
def needs_attention(account_id: int) -> schemas.NeedsAttention:
    with _service_context(account_id) as svc:
        return svc.needs_attention()


@router.post("/routing/bulk-route", response_model=schemas.BulkRouteResponse)
def bulk_route(account_id: int, payload: schemas.BulkRouteRequest) -> schemas.BulkRouteResponse:
    with _service_context(account_id) as svc:
        results = svc.bulk_route(payload.conversation_ids)
    return schemas.BulkRouteResponse(
        results=results, total=len(results), routed=sum(1 for item in results if item.routed)
    )


@router.get("/conversations/{conversation_id}/routing", response_model=schemas.RoutingResult)
def recommend(account_id: int, conversation_id: int) -> schemas.RoutingResult:
    with _service_context(account_id) as svc:
        return svc.analyze_and_route(svc.get_conversation(conversation_id))


@router.post("/conversations/{conversation_id}/routing/route", response_model=schemas.RoutingResult)
def route(account_id: int, conversation_id: int, force: bool = Query(False)) -> schemas.RoutingResult:
    with _service_context(account_id) as svc:
        return svc.route(svc.get_conversation(conversation_id), force=force)


@router.post("/conversations/{conversation_id}/routing/assign", response_model=schemas.AssignmentOut)
def assign(account_id: int, conversation_id: int, payload: schemas.AssignRequest) -> schemas.AssignmentOut:
    with _service_context(account_id) as svc:
        return svc.describe(svc.assign(conversation_id, payload.agent_id, actor=payload.actor))


@router.post("/conversations/{conversation_id}/routing/reassign", response_model=schemas.AssignmentOut)
def reassign(account_id: int, conversation_id: int, payload: schemas.AssignRequest) -> schemas.AssignmentOut:
    with _service_context(account_id) as svc:
        assignment = svc.reassign(
            conversation_id, payload.agent_id, reason=payload.reason, actor=payload.actor
        )
        return svc.describe(assignment)


@router.post("/conversations/{conversation_id}/routing/unassign", response_model=list[schemas.AssignmentOut])
def unassign(
    account_id: int, conversation_id: int, payload: schemas.UnassignRequest
) -> list[schemas.AssignmentOut]:
    with _service_context(account_id) as svc:
        removed = svc.unassign(conversation_id, reason=payload.reason, actor=payload.actor)
        return [svc.describe(item) for item in removed]
