"""Built-in catalog of specialised support agents.

The catalog is static and read-only: templates are frozen dataclasses exposed
through a :class:`types.MappingProxyType` keyed by template id.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from ..errors import TemplateNotFoundError


@dataclass(frozen=True)
class AgentTemplate:
    id: str
    name: str
    description: str
    category: str
    capabilities: tuple[str, ...]
    icon: str
    system_prompt: str
    conversation_starters: tuple[str, ...]
    suggested_responses: Mapping[str, str]
    pricing: str
    provider_recommendations: tuple[str, ...]
    created_by: str = "AgentDesk"
    version: str = "1.0.0"
    defaults: Mapping[str, object] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def is_premium(self) -> bool:
        return self.pricing == "premium"


def _template(**kwargs) -> AgentTemplate:
    kwargs["suggested_responses"] = MappingProxyType(dict(kwargs["suggested_responses"]))
    kwargs["defaults"] = MappingProxyType(dict(kwargs.get("defaults", {})))
    return AgentTemplate(**kwargs)


_TEMPLATES = (
    _template(
        id="technical_support",
        name="Technical Support Specialist",
        description="Expert at diagnosing technical issues and providing step-by-step solutions",
        category="technical",
        capabilities=("troubleshooting", "debugging", "system_analysis", "solution_steps"),
        icon="🔧",
        system_prompt=(
            "You are a technical support specialist. Diagnose the customer's problem, ask for "
            "exact error messages when they are missing and answer with numbered, verifiable steps."
        ),
        conversation_starters=(
            "I'm having trouble with...",
            "The system is showing an error...",
            "How do I configure...",
            "The feature isn't working...",
        ),
        suggested_responses={
            "error_analysis": "Let me help you analyze this error. Can you provide the exact error message?",
            "step_by_step": "I will walk you through this step by step to resolve the issue.",
            "system_check": "Let us run through some basic system checks first.",
        },
        pricing="free",
        provider_recommendations=("openai", "claude"),
        defaults={"temperature": 0.5, "max_tokens": 3000},
    ),
    _template(
        id="billing_support",
        name="Billing & Payments Expert",
        description="Specialized in handling billing inquiries, payment issues, and subscription management",
        category="billing",
        capabilities=("payment_processing", "subscription_management", "refund_handling", "pricing_questions"),
        icon="💳",
        system_prompt=(
            "You are a billing and payments expert. Explain charges plainly, never ask for full "
            "card numbers and state refund timelines precisely."
        ),
        conversation_starters=(
            "I have a question about my bill...",
            "My payment didn't go through...",
            "I need a refund for...",
            "Can you explain the charges...",
        ),
        suggested_responses={
            "billing_inquiry": "I can help you with your billing question. Let me review your account details.",
            "payment_issue": "Let me help resolve this payment issue for you.",
            "refund_request": "I will process your refund request and explain the timeline.",
        },
        pricing="free",
        provider_recommendations=("openai",),
    ),
    _template(
        id="sales_assistant",
        name="Sales Assistant Pro",
        description="Helps convert inquiries into sales with product knowledge and persuasive communication",
        category="sales",
        capabilities=("product_recommendations", "lead_qualification", "objection_handling", "upselling"),
        icon="📈",
        system_prompt=(
            "You are a sales assistant focused on helping customers. Qualify the need before "
            "recommending a plan and be honest about what the product does not do."
        ),
        conversation_starters=(
            "I'm interested in your product...",
            "What's the difference between plans...",
            "Do you offer discounts...",
            "Can I schedule a demo...",
        ),
        suggested_responses={
            "product_demo": "I would be happy to show you how our product can solve your specific needs.",
            "pricing_discussion": "Let me explain our pricing options and find the best fit for you.",
            "feature_comparison": "Here is how our features compare and which would work best for your use case.",
        },
        pricing="premium",
        provider_recommendations=("claude", "openai"),
        defaults={"temperature": 0.8, "auto_respond": False},
    ),
    _template(
        id="onboarding_guide",
        name="Customer Onboarding Guide",
        description="Helps new customers get started quickly with personalized setup assistance",
        category="onboarding",
        capabilities=("setup_guidance", "feature_introduction", "training_resources", "progress_tracking"),
        icon="🎯",
        system_prompt=(
            "You are a customer onboarding guide. Find out what the customer wants to achieve "
            "first and introduce one feature at a time."
        ),
        conversation_starters=(
            "I just signed up, where do I start?",
            "How do I set up my account?",
            "What features should I use first?",
            "I'm new to this type of software...",
        ),
        suggested_responses={
            "welcome_message": "Welcome! I will help you get started with a personalized setup plan.",
            "next_steps": "Great progress! Here are the next steps to get you fully set up.",
            "feature_tutorial": "Let me show you how to use this key feature.",
        },
        pricing="free",
        provider_recommendations=("openai", "gemini"),
    ),
    _template(
        id="multilingual_support",
        name="Multilingual Support Agent",
        description="Provides customer support in multiple languages with cultural awareness",
        category="multilingual",
        capabilities=("translation", "cultural_adaptation", "language_detection", "localized_responses"),
        icon="🌍",
        system_prompt=(
            "You are a multilingual support agent. Always answer in the language the customer "
            "writes in and adapt examples to their region."
        ),
        conversation_starters=(
            "Can you help me in Spanish?",
            "I need help in French",
            "Can you help me in German?",
            "Can you help me in English?",
        ),
        suggested_responses={
            "language_switch": "Of course! I can help you in your preferred language.",
            "translation_offer": "I can translate this information for you.",
            "cultural_note": "Let me provide information relevant to your region.",
        },
        pricing="premium",
        provider_recommendations=("claude", "gemini"),
        defaults={"max_tokens": 2500},
    ),
    _template(
        id="escalation_manager",
        name="Escalation Manager",
        description="Handles complex issues and manages escalations to appropriate human agents",
        category="management",
        capabilities=("issue_assessment", "priority_routing", "escalation_management", "handoff_preparation"),
        icon="⚡",
        system_prompt=(
            "You are an escalation manager. Acknowledge the impact, collect what a human specialist "
            "needs to act and summarise the case for handoff."
        ),
        conversation_starters=(
            "This is urgent and needs immediate attention",
            "I have tried everything and nothing works",
            "I need to speak with a manager",
            "This issue is affecting my business",
        ),
        suggested_responses={
            "urgent_assessment": "I understand this is urgent. Let me assess the situation and get you the right help.",
            "escalation_preparation": "I am preparing your case for escalation to ensure quick resolution.",
            "priority_handling": "This requires priority attention. I am connecting you with our specialist team.",
        },
        pricing="premium",
        provider_recommendations=("claude", "openai"),
    ),
)

TEMPLATES: Mapping[str, AgentTemplate] = MappingProxyType({t.id: t for t in _TEMPLATES})

_RECOMMENDATION_PATTERNS = (
    ("technical_support", re.compile(r"error|bug|not working|broken|issue|problem|troubleshoot", re.I)),
    ("billing_support", re.compile(r"bill|payment|charge|refund|subscription|pricing|invoice", re.I)),
    ("sales_assistant", re.compile(r"buy|purchase|demo|trial|pricing|upgrade|features|product", re.I)),
    ("onboarding_guide", re.compile(r"\bnew\b|start|setup|how to|tutorial|guide|first time", re.I)),
    ("escalation_manager", re.compile(r"urgent|emergency|critical|asap|immediately|manager|escalate", re.I)),
    ("multilingual_support", re.compile(r"[^\x00-\x7F]")),
)


def get_template(template_id: str) -> AgentTemplate:
    try:
        return TEMPLATES[str(template_id)]
    except KeyError:
        raise TemplateNotFoundError(f"Agent template '{template_id}' not found") from None


def all_templates() -> list[AgentTemplate]:
    return list(TEMPLATES.values())


def templates_by_category(category: str) -> list[AgentTemplate]:
    return [t for t in TEMPLATES.values() if t.category == category]


def free_templates() -> list[AgentTemplate]:
    return [t for t in TEMPLATES.values() if t.pricing == "free"]


def premium_templates() -> list[AgentTemplate]:
    return [t for t in TEMPLATES.values() if t.pricing == "premium"]


def search_templates(query: str) -> list[AgentTemplate]:
    """Case-insensitive match on name, description or capability."""

    needle = query.strip().lower()
    if not needle:
        return all_templates()
    return [
        t
        for t in TEMPLATES.values()
        if needle in t.name.lower()
        or needle in t.description.lower()
        or any(needle in capability for capability in t.capabilities)
    ]


def template_categories() -> list[str]:
    return list(dict.fromkeys(t.category for t in TEMPLATES.values()))


def recommended_templates_for_text(text: str) -> list[str]:
    """Template ids whose trigger vocabulary appears in ``text``."""

    return [template_id for template_id, pattern in _RECOMMENDATION_PATTERNS if pattern.search(text or "")]
