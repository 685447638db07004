import dataclasses

import pytest

from agentdesk.agents import registry
from agentdesk.errors import TemplateNotFoundError


def test_catalog_contents():
    ids = [t.id for t in registry.all_templates()]

    assert ids == [
        "technical_support",
        "billing_support",
        "sales_assistant",
        "onboarding_guide",
        "multilingual_support",
        "escalation_manager",
    ]
    assert {t.id for t in registry.premium_templates()} == {
        "sales_assistant",
        "multilingual_support",
        "escalation_manager",
    }
    assert len(registry.free_templates()) == 3


def test_catalog_is_read_only():
    template = registry.get_template("billing_support")

    with pytest.raises(TypeError):
        registry.TEMPLATES["new"] = template
    with pytest.raises(dataclasses.FrozenInstanceError):
        template.name = "Renamed"
    with pytest.raises(TypeError):
        template.suggested_responses["extra"] = "nope"


def test_unknown_template():
    with pytest.raises(TemplateNotFoundError):
        registry.get_template("astrologer")


def test_lookups():
    assert [t.id for t in registry.templates_by_category("management")] == ["escalation_manager"]
    assert registry.template_categories() == [
        "technical",
        "billing",
        "sales",
        "onboarding",
        "multilingual",
        "management",
    ]
    assert [t.id for t in registry.search_templates("REFUND")] == ["billing_support"]
    assert len(registry.search_templates("  ")) == 6


def test_recommendations_for_text():
    assert registry.recommended_templates_for_text("My invoice shows an error") == [
        "technical_support",
        "billing_support",
    ]
    assert registry.recommended_templates_for_text("¿Dónde está mi pedido?") == ["multilingual_support"]
    assert registry.recommended_templates_for_text("") == []
