"""Tests for the assignment lifecycle in :mod:`agentdesk.routing.assignments`."""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from agentdesk.errors import AssignmentInvariantError, InvalidAssignmentError
from agentdesk.routing.assignments import (
    InMemoryAssignmentRepository,
    confidence_band,
    format_duration,
)
from agentdesk.routing.schemas import AssignmentCreate


def test_assign_opens_pending_conversation(stack):
    agent, = stack.install("technical_support")
    conversation = stack.conversations.create_conversation(1, messages=["help"])

    assignment = stack.assignments.assign(conversation, agent, actor="alice")

    assert assignment.active
    assert assignment.confidence_score == 100
    assert assignment.assignment_reason == "Manually assigned by alice"
    assert assignment.metadata["assignment_type"] == "manual"
    assert stack.conversations.get_conversation(conversation.id).status == "open"
    assert stack.assignments.active_assignment(conversation.id).id == assignment.id


def test_reassign_keeps_one_active_assignment(stack):
    technical, billing = stack.install("technical_support", "billing_support")
    conversation = stack.conversations.create_conversation(1)
    first = stack.assignments.assign(conversation, technical)

    second = stack.assignments.reassign(conversation, billing, reason="billing question")

    history = stack.assignments.history(conversation.id)
    assert [a.active for a in history] == [False, True]
    assert history[0].id == first.id
    assert history[0].unassigned_at is not None
    assert history[0].metadata["unassignment_reason"] == "Reassigned to Billing & Payments Expert: billing question"
    assert history[0].metadata["reassigned_to_agent_id"] == billing.id
    assert second.assignment_reason == "Reassigned to Billing & Payments Expert: billing question"
    assert second.metadata["previous_agent_id"] == technical.id


def test_unassign_flags_conversation_and_records_metric(stack):
    agent, = stack.install("technical_support")
    conversation = stack.conversations.create_conversation(1)
    stack.assignments.assign(conversation, agent)

    removed = stack.assignments.unassign(conversation, reason="customer asked", actor="bob")

    assert len(removed) == 1
    assert stack.assignments.active_assignment(conversation.id) is None
    stored = stack.conversations.get_conversation(conversation.id)
    assert stored.status == "open"
    assert stored.custom_attributes["requires_human_agent"] is True
    assert "ai_agent_unassigned_at" in stored.custom_attributes
    events = stack.metrics.list_metrics(metric_type="unassignment_event")
    assert [m.agent_id for m in events] == [agent.id]
    assert events[0].metadata["unassigned_agent_ids"] == [agent.id]
    assert removed[0].metadata["unassigned_by"] == "bob"


def test_unassign_records_an_event_for_every_installed_agent(stack):
    technical, billing, onboarding = stack.install("technical_support", "billing_support", "onboarding_guide")
    conversation = stack.conversations.create_conversation(1)
    stack.assignments.assign(conversation, billing)

    stack.assignments.unassign(conversation, reason="escalated")

    events = stack.metrics.list_metrics(metric_type="unassignment_event")
    assert sorted(m.agent_id for m in events) == [technical.id, billing.id, onboarding.id]
    assert {m.metadata["reason"] for m in events} == {"escalated"}
    assert all(m.metadata["unassigned_agent_ids"] == [billing.id] for m in events)


def test_manual_replacement_marks_previous_record_replaced(stack):
    technical, billing = stack.install("technical_support", "billing_support")
    conversation = stack.conversations.create_conversation(1)
    stack.assignments.assign(conversation, technical)

    stack.assignments.assign(conversation, billing, actor="carol")

    previous = stack.assignments.history(conversation.id)[0]
    assert previous.metadata["unassignment_reason"] == "replaced"
    assert previous.metadata["unassigned_by"] == "carol"


def test_unassign_without_assignment_is_a_no_op(stack):
    conversation = stack.conversations.create_conversation(1)

    assert stack.assignments.unassign(conversation) == []
    assert stack.metrics.list_metrics() == []
    assert stack.conversations.get_conversation(conversation.id).custom_attributes == {}


def test_unassign_swallows_metric_failures(stack, monkeypatch):
    agent, = stack.install("technical_support")
    conversation = stack.conversations.create_conversation(1)
    stack.assignments.assign(conversation, agent)

    def broken(*args, **kwargs):
        raise RuntimeError("metrics down")

    monkeypatch.setattr(stack.metrics, "record", broken)

    removed = stack.assignments.unassign(conversation)
    assert len(removed) == 1


def test_inactive_or_foreign_agents_cannot_be_assigned(stack):
    agent, = stack.install("technical_support")
    conversation = stack.conversations.create_conversation(1)
    inactive = agent.model_copy(update={"status": "inactive"})
    foreign = agent.model_copy(update={"account_id": 99})

    with pytest.raises(InvalidAssignmentError):
        stack.assignments.assign(conversation, inactive)
    with pytest.raises(InvalidAssignmentError):
        stack.assignments.assign(conversation, foreign)


def test_concurrent_assignments_leave_one_active(stack):
    agents = stack.install("technical_support", "billing_support", "onboarding_guide")
    conversation = stack.conversations.create_conversation(1)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda i: stack.assignments.assign(conversation, agents[i % 3]), range(40)))

    history = stack.assignments.history(conversation.id)
    assert len(history) == 40
    assert sum(1 for a in history if a.active) == 1


class _LeakyRepository(InMemoryAssignmentRepository):
    def _deactivate_locked(self, conversation_id, at, metadata):
        return []


def test_repository_refuses_a_second_active_assignment():
    repository = _LeakyRepository()
    now = datetime.now(timezone.utc)
    payload = AssignmentCreate(
        account_id=1, conversation_id=5, agent_id=1, confidence_score=80, assignment_reason="test"
    )
    repository.activate(payload, at=now)

    with pytest.raises(AssignmentInvariantError):
        repository.activate(payload, at=now)


@pytest.mark.parametrize(
    "duration, expected",
    [
        (None, "N/A"),
        (timedelta(minutes=7), "7m"),
        (timedelta(hours=2, minutes=5), "2h 5m"),
        (timedelta(seconds=30), "0m"),
    ],
)
def test_format_duration(duration, expected):
    assert format_duration(duration) == expected


@pytest.mark.parametrize("score, band", [(95, "high"), (80, "high"), (79.9, "medium"), (50, "medium"), (10, "low")])
def test_confidence_band(score, band):
    assert confidence_band(score) == band


def test_duration_uses_unassigned_at(stack):
    agent, = stack.install("technical_support")
    conversation = stack.conversations.create_conversation(1)
    assignment = stack.assignments.assign(conversation, agent)
    closed = assignment.model_copy(
        update={"unassigned_at": assignment.assigned_at + timedelta(hours=1, minutes=30)}
    )

    assert format_duration(stack.assignments.duration(closed)) == "1h 30m"
    assert stack.assignments.duration(None) is None
