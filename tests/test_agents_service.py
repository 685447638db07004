"""Tests for :mod:`agentdesk.agents.service`."""

import pytest

from agentdesk.agents import schemas
from agentdesk.agents.service import FALLBACK_REPLY, greeting_for
from agentdesk.errors import (
    AgentAlreadyInstalledError,
    AgentNotFoundError,
    FeedbackAlreadyRecordedError,
    PremiumRequiredError,
    TemplateNotFoundError,
)
from agentdesk.providers import ProviderConfigurationError

from conftest import FakeResponse


def test_install_applies_template_defaults(stack):
    technical, sales, multilingual = stack.install(
        "technical_support", "sales_assistant", "multilingual_support"
    )

    assert (technical.provider, technical.model) == ("openai", "gpt-4o-mini")
    assert (technical.temperature, technical.max_tokens) == (0.5, 3000)
    assert technical.auto_respond
    assert sales.provider == "claude"
    assert sales.temperature == 0.8
    assert not sales.auto_respond
    assert multilingual.max_tokens == 2500
    assert technical.capabilities == ["troubleshooting", "debugging", "system_analysis", "solution_steps"]


def test_install_picks_first_configured_recommendation(stack):
    agent = stack.agents.install("onboarding_guide")

    assert agent.provider == "openai"


def test_install_falls_back_to_gateway_default(stack, monkeypatch):
    monkeypatch.setattr(stack.gateway, "is_configured", lambda name: False)
    stack.config.set("AI_DEFAULT_PROVIDER", "gemini")

    agent = stack.agents.install("billing_support")

    assert (agent.provider, agent.model) == ("gemini", "gemini-1.5-flash")


def test_install_rules(stack):
    stack.install("technical_support")

    with pytest.raises(AgentAlreadyInstalledError):
        stack.agents.install("technical_support")
    with pytest.raises(PremiumRequiredError):
        stack.agents.install("escalation_manager", premium_enabled=False)
    with pytest.raises(TemplateNotFoundError):
        stack.agents.install("astrologer")


def test_marketplace_marks_installed_templates(stack):
    stack.install("billing_support")

    listing = {t.id: t.installed for t in stack.agents.list_templates()}

    assert listing["billing_support"] is True
    assert listing["technical_support"] is False
    assert len(listing) == 6


def test_configure_validates_provider_and_model(stack):
    agent, = stack.install("technical_support")

    switched = stack.agents.configure(agent.id, schemas.AgentConfigure(provider="claude"))
    assert (switched.provider, switched.model) == ("claude", "claude-3-5-sonnet-20241022")

    tuned = stack.agents.configure(agent.id, schemas.AgentConfigure(temperature=0.1, status="inactive"))
    assert tuned.temperature == 0.1
    assert not tuned.is_active

    with pytest.raises(ProviderConfigurationError):
        stack.agents.configure(agent.id, schemas.AgentConfigure(model="gpt-9"))


def test_agents_of_other_accounts_are_hidden(stack):
    agent, = stack.install("technical_support")
    stack.agents.account_id = 2

    with pytest.raises(AgentNotFoundError):
        stack.agents.get_agent(agent.id)


def test_process_message_records_turn_metrics_and_reply(stack):
    agent, = stack.install("technical_support")
    conversation = stack.conversations.create_conversation(1, messages=["The app crashes on start"])

    reply = stack.agents.process_message(agent.id, conversation.id, "The app crashes on start")

    assert reply.status == "success"
    assert reply.content == "Happy to help!"
    assert reply.tokens_used == 42
    sent = stack.session.requests[0]["json"]
    assert sent["messages"][0]["role"] == "system"
    assert sent["messages"][0]["content"].startswith("You are a technical support specialist")
    assert sent["temperature"] == 0.5
    assert sent["max_tokens"] == 3000
    assert sent["messages"][-1] == {"role": "user", "content": "The app crashes on start"}

    turns = stack.agents.list_turns(agent.id)
    assert [t.status for t in turns] == ["success"]
    types = sorted(m.metric_type for m in stack.metrics.list_metrics(agent_id=agent.id))
    assert types == ["message_processed", "response_time", "token_usage"]
    outgoing = stack.conversations.list_messages(conversation.id, direction="outgoing")
    assert [m.content for m in outgoing] == ["Happy to help!"]


def test_process_message_history_is_limited(stack):
    agent, = stack.install("technical_support")
    conversation = stack.conversations.create_conversation(
        1, messages=[f"message {i}" for i in range(15)]
    )

    stack.agents.process_message(agent.id, conversation.id, "latest", post_reply=False)

    sent = stack.session.requests[0]["json"]["messages"]
    # system + 10 history messages + the new one
    assert len(sent) == 12
    assert sent[1]["content"] == "message 5"
    assert stack.conversations.list_messages(conversation.id, direction="outgoing") == []


def test_generation_failure_returns_fallback(stack):
    agent, = stack.install("technical_support")
    conversation = stack.conversations.create_conversation(1, messages=["help"])
    stack.session.responses[:] = [FakeResponse(500, {"error": {"message": "boom"}})]

    reply = stack.agents.process_message(agent.id, conversation.id, "help")

    assert reply.status == "failed"
    assert reply.fallback
    assert reply.content == FALLBACK_REPLY
    turn = stack.agents.list_turns(agent.id)[0]
    assert turn.status == "failed"
    assert "boom" in turn.error
    assert [m.metric_type for m in stack.metrics.list_metrics(agent_id=agent.id)] == ["generation_failed"]


def test_suggest_reply_does_not_post(stack):
    agent, = stack.install("technical_support")
    conversation = stack.conversations.create_conversation(1, messages=["first", "second"])

    reply = stack.agents.suggest_reply(agent.id, conversation.id)

    assert reply.content == "Happy to help!"
    assert stack.session.requests[0]["json"]["messages"][-1]["content"] == "second"
    assert stack.conversations.list_messages(conversation.id, direction="outgoing") == []


def test_suggest_reply_needs_a_customer_message(stack):
    agent, = stack.install("technical_support")
    conversation = stack.conversations.create_conversation(1)

    with pytest.raises(ValueError):
        stack.agents.suggest_reply(agent.id, conversation.id)


def test_feedback_is_write_once(stack):
    agent, = stack.install("technical_support")
    conversation = stack.conversations.create_conversation(1, messages=["hi"])
    reply = stack.agents.process_message(agent.id, conversation.id, "hi")

    updated = stack.agents.record_feedback(reply.turn_id, True, "great")

    assert updated.was_helpful is True
    assert updated.feedback == "great"
    with pytest.raises(FeedbackAlreadyRecordedError):
        stack.agents.record_feedback(reply.turn_id, False)
    satisfaction = stack.metrics.list_metrics(metric_type="user_satisfaction")
    assert [m.value for m in satisfaction] == [100]


def test_success_rate_and_performance_summary(stack):
    agent, = stack.install("technical_support")
    conversation = stack.conversations.create_conversation(1, messages=["hi"])

    assert stack.agents.success_rate(agent.id) is None

    first = stack.agents.process_message(agent.id, conversation.id, "one")
    stack.agents.process_message(agent.id, conversation.id, "two")
    assert stack.agents.success_rate(agent.id) == 100.0

    stack.agents.record_feedback(first.turn_id, False)
    assert stack.agents.success_rate(agent.id) == 0.0

    stack.assignments.assign(conversation, agent)
    summary = stack.agents.performance_summary(agent.id)
    assert summary.total_turns == 2
    assert summary.successful_turns == 2
    assert summary.total_tokens == 84
    assert summary.unhelpful_feedback == 1
    assert summary.open_assignments == 1


def test_uninstall_cascades(stack):
    agent, = stack.install("technical_support")
    conversation = stack.conversations.create_conversation(1, messages=["hi"])
    stack.agents.process_message(agent.id, conversation.id, "hi")
    stack.assignments.assign(conversation, agent)

    stack.agents.uninstall(agent.id)

    assert stack.agents.list_agents() == []
    assert stack.assignments.history(conversation.id) == []
    assert stack.metrics.list_metrics(agent_id=agent.id) == []
    with pytest.raises(AgentNotFoundError):
        stack.agents.get_agent(agent.id)


def test_greeting_prefers_template_responses(stack):
    technical, = stack.install("technical_support")

    assert greeting_for(technical).startswith("Let me help you analyze this error")
    assert stack.agents.greeting(technical.id) == greeting_for(technical)
