"""End-to-end routing scenarios against the in-memory stores."""

from datetime import datetime, timedelta, timezone

import pytest

from agentdesk.errors import ConversationNotFoundError
from agentdesk.routing.service import RoutingService, parse_time_range
from agentdesk.routing.settings import RoutingSettings

OUTAGE = "URGENT: our production server is down, customers can't log in"


def test_outage_is_routed_to_escalation_manager(stack):
    stack.install("technical_support", "billing_support", "escalation_manager")
    conversation = stack.conversations.create_conversation(1, messages=[OUTAGE])

    result = stack.routing.route(conversation)

    escalation = stack.installed["escalation_manager"]
    assert result.routed
    assert result.assigned_agent_id == escalation.id
    assert result.routing_confidence == 95
    assert result.analysis.categories == ["technical", "management"]
    assert result.routing_reasons == [
        "Detected technical, management categories",
        "Critical priority conversation",
        "New customer type",
    ]
    active = stack.assignments.active_assignment(conversation.id)
    assert active.auto_assigned
    assert active.confidence_score == 95
    assert active.metadata["assignment_type"] == "automatic"

    replies = stack.conversations.list_messages(conversation.id, direction="outgoing")
    assert [m.sender_agent_id for m in replies] == [escalation.id]
    assert replies[0].content.startswith("I understand this is urgent")

    decisions = stack.metrics.list_metrics(metric_type="routing_decision")
    assert [(m.agent_id, m.value) for m in decisions] == [(escalation.id, 95)]
    assert stack.conversations.get_conversation(conversation.id).status == "open"


def test_spanish_conversation_goes_to_multilingual_agent(stack):
    stack.install("technical_support", "billing_support", "multilingual_support")
    conversation = stack.conversations.create_conversation(1, messages=["Hola, necesito ayuda con mi cuenta"])

    result = stack.routing.route(conversation)

    assert result.routed
    assert result.assigned_agent_id == stack.installed["multilingual_support"].id
    assert result.recommended_agents[0].score == 90


def test_analyze_and_route_writes_nothing(stack):
    stack.install("technical_support")
    conversation = stack.conversations.create_conversation(1, messages=[OUTAGE])

    result = stack.routing.analyze_and_route(conversation)

    assert result.should_route
    assert not result.routed
    assert result.recommended_agents
    assert stack.assignments.history(conversation.id) == []
    assert stack.metrics.list_metrics() == []


def test_no_candidates_returns_fallbacks(stack):
    conversation = stack.conversations.create_conversation(1, messages=[OUTAGE])

    result = stack.routing.route(conversation)

    assert not result.routed
    assert result.recommended_agents == []
    assert result.routing_reasons
    assert [o.type for o in result.fallback_options] == ["human_agent", "general_support", "escalation"]
    assert result.reason == "No agent met the minimum match score"
    assert stack.metrics.list_metrics(metric_type="routing_decision") == []


def test_disabled_auto_routing_blocks_unless_forced(stack):
    stack.install("technical_support")
    stack.routing.auto_routing_enabled = False
    conversation = stack.conversations.create_conversation(1, messages=[OUTAGE])

    skipped = stack.routing.route(conversation)
    forced = stack.routing.route(conversation, force=True)

    assert not skipped.routed
    assert skipped.reason == "Auto-routing is disabled for this account"
    assert forced.routed


def test_human_request_blocks_auto_routing(stack):
    stack.install("technical_support")
    conversation = stack.conversations.create_conversation(
        1, messages=["My login is broken", "Can I speak to a human please?"]
    )

    assert not stack.routing.should_auto_route(conversation)
    assert not stack.routing.route(conversation).routed


def test_human_request_outside_the_analysis_window_still_blocks(stack):
    stack.install("technical_support")
    conversation = stack.conversations.create_conversation(
        1, messages=["Can I talk to a human?"] + ["My login is broken"] * 10
    )

    result = stack.routing.route(conversation)

    assert result.analysis.message_count == 10
    assert not result.routed
    assert result.reason == "Customer asked for a human agent"


def test_old_conversations_are_not_auto_routed(stack):
    stack.install("technical_support")
    conversation = stack.conversations.create_conversation(
        1, messages=[OUTAGE], created_at=datetime.now(timezone.utc) - timedelta(hours=2)
    )

    result = stack.routing.route(conversation)

    assert not result.routed
    assert result.reason == "Conversation is older than the auto-routing window"


def test_already_assigned_conversations_are_skipped(stack):
    technical, = stack.install("technical_support")
    conversation = stack.conversations.create_conversation(1, messages=[OUTAGE])
    stack.assignments.assign(conversation, technical)

    result = stack.routing.route(conversation)

    assert not result.routed
    assert len(stack.assignments.history(conversation.id)) == 1


def test_route_reports_persistence_errors(stack, monkeypatch):
    stack.install("technical_support")
    conversation = stack.conversations.create_conversation(1, messages=[OUTAGE])

    def boom(*args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(stack.assignments.repository, "activate", boom)

    result = stack.routing.route(conversation)

    assert not result.routed
    assert result.error == "database unavailable"


def test_route_survives_metric_failures(stack, monkeypatch):
    stack.install("technical_support")
    conversation = stack.conversations.create_conversation(1, messages=[OUTAGE])

    def broken(*args, **kwargs):
        raise RuntimeError("metrics down")

    monkeypatch.setattr(stack.metrics, "record", broken)

    assert stack.routing.route(conversation).routed


def test_bulk_route_isolates_failures(stack):
    stack.install("technical_support", "billing_support", "escalation_manager")
    routable = [
        stack.conversations.create_conversation(1, messages=[text]).id
        for text in (OUTAGE, "I was charged twice on my invoice", "The export button is broken")
    ]
    human = stack.conversations.create_conversation(1, messages=["I want a real person"]).id

    items = stack.routing.bulk_route([*routable, 999, human])

    assert len(items) == 5
    assert [item.conversation_id for item in items if item.routed] == routable
    missing = next(item for item in items if item.conversation_id == 999)
    assert not missing.routed
    assert "not found" in missing.error


def test_bulk_route_leaves_weak_matches_unrouted(stack):
    billing, = stack.install("billing_support")
    routing = RoutingService(
        1,
        stack.conversations,
        stack.agents,
        stack.assignments,
        stack.metrics,
        auto_routing_enabled=True,
        settings=RoutingSettings(min_match_threshold=50),
    )
    texts = (
        "I was charged twice on my invoice",
        "Hola, necesito ayuda con mi cuenta",
        "My subscription payment failed",
        "The weather is lovely today",
        "Please refund my last payment",
    )
    ids = [stack.conversations.create_conversation(1, messages=[text]).id for text in texts]

    items = routing.bulk_route(ids)

    assert [item.conversation_id for item in items] == ids
    assert [item.routed for item in items] == [True, False, True, False, True]
    assert {item.assigned_agent_id for item in items if item.routed} == {billing.id}
    skipped = [item for item in items if not item.routed]
    assert [item.reason for item in skipped] == ["No agent met the minimum match score"] * 2
    assert all(item.error is None for item in skipped)
    assert len(stack.assignments.repository.list_for_account(1)) == 3


def test_get_conversation_checks_account(stack):
    other = stack.conversations.create_conversation(2, messages=["hello"])

    with pytest.raises(ConversationNotFoundError):
        stack.routing.get_conversation(other.id)


def test_manual_operations_pass_through(stack):
    technical, billing = stack.install("technical_support", "billing_support")
    conversation = stack.conversations.create_conversation(1, messages=["hello"])

    assigned = stack.routing.assign(conversation.id, technical.id, actor="alice")
    moved = stack.routing.reassign(conversation.id, billing.id, reason="invoice")
    removed = stack.routing.unassign(conversation.id, reason="done")

    assert assigned.agent_id == technical.id
    assert moved.agent_id == billing.id
    assert [a.id for a in removed] == [moved.id]
    described = stack.routing.describe(removed[0])
    assert described.confidence_band == "high"
    assert described.duration.endswith("m")


def test_routing_analytics(stack):
    technical, escalation = stack.install("technical_support", "escalation_manager")
    auto = stack.conversations.create_conversation(1, messages=[OUTAGE])
    manual = stack.conversations.create_conversation(1, messages=["hello"])
    stack.routing.route(auto)
    stack.routing.assign(manual.id, technical.id)
    stack.conversations.update_conversation(auto.id, status="resolved")

    analytics = stack.routing.routing_analytics()

    assert analytics.overview.total_assignments == 2
    assert analytics.overview.auto_assignments == 1
    assert analytics.overview.manual_assignments == 1
    assert analytics.overview.active_assignments == 2
    assert analytics.overview.average_confidence == 97.5
    assert {s.agent_id for s in analytics.per_agent} == {technical.id, escalation.id}
    assert len(analytics.trend) == 8
    today = analytics.trend[-1]
    assert (today.assignments, today.auto_assignments, today.average_confidence) == (2, 1, 97.5)
    assert [p.assignments for p in analytics.trend[:-1]] == [0] * 7
    assert analytics.success_metrics.resolution_rate == 50.0
    assert analytics.success_metrics.high_confidence_success_rate == 50.0
    assert analytics.success_metrics.average_resolution_hours is not None


def test_routing_analytics_without_data(stack):
    analytics = stack.routing.routing_analytics(timedelta(days=1))

    assert analytics.overview.total_assignments == 0
    assert analytics.overview.average_confidence is None
    assert analytics.per_agent == []
    assert [(p.assignments, p.auto_assignments, p.average_confidence) for p in analytics.trend] == [
        (0, 0, None),
        (0, 0, None),
    ]
    assert analytics.trend[0].day < analytics.trend[1].day
    assert analytics.success_metrics.resolution_rate is None


def test_needs_attention(stack):
    technical, = stack.install("technical_support")
    waiting = stack.conversations.create_conversation(1, messages=["hello"])
    shaky = stack.conversations.create_conversation(1, messages=["hello"])
    stale = stack.conversations.create_conversation(1, messages=["hello"])
    stack.conversations.create_conversation(1, status="resolved")
    stack.assignments.assign(shaky, technical, confidence=30)
    stack.assignments.assign(stale, technical, confidence=90)

    later = RoutingService(
        1,
        stack.conversations,
        stack.agents,
        stack.assignments,
        stack.metrics,
        clock=lambda: datetime.now(timezone.utc) + timedelta(hours=25),
    )
    report = later.needs_attention()

    assert [item.conversation_id for item in report.unassigned] == [waiting.id]
    assert [item.conversation_id for item in report.low_confidence] == [shaky.id]
    assert {item.conversation_id for item in report.long_unresolved} == {shaky.id, stale.id}
    assert report.long_unresolved[0].duration.startswith("25h")


def test_low_confidence_uses_a_strict_ceiling(stack):
    technical, = stack.install("technical_support")
    conversation = stack.conversations.create_conversation(1, messages=["hello"])
    stack.assignments.assign(conversation, technical, confidence=40)

    assert stack.routing.needs_attention().low_confidence == []


@pytest.mark.parametrize(
    "value, expected",
    [("24h", timedelta(hours=24)), ("7d", timedelta(days=7)), ("2w", timedelta(weeks=2))],
)
def test_parse_time_range(value, expected):
    assert parse_time_range(value) == expected


@pytest.mark.parametrize("value", ["", "7", "0d", "3y"])
def test_parse_time_range_rejects_garbage(value):
    with pytest.raises(ValueError):
        parse_time_range(value)
