"""Pydantic schemas for installed agents and their conversation turns."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .registry import AgentTemplate, get_template

AgentStatus = Literal["active", "inactive"]


class AgentCreate(BaseModel):
    """Values written when a template is installed for an account."""

    account_id: int
    template_id: str
    name: str
    description: str | None = None
    category: str
    status: AgentStatus = "active"
    provider: str
    model: str
    temperature: float = 0.7
    max_tokens: int = 2000
    custom_prompt: str | None = None
    auto_respond: bool = True
    trigger_conditions: dict[str, Any] = Field(default_factory=dict)
    installed_by: str | None = None


class AgentConfigure(BaseModel):
    """Patchable generation settings."""

    name: str | None = None
    description: str | None = None
    status: AgentStatus | None = None
    provider: str | None = None
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0, le=32_000)
    custom_prompt: str | None = None
    auto_respond: bool | None = None
    trigger_conditions: dict[str, Any] | None = None


class Agent(AgentCreate):
    id: int
    created_at: datetime
    updated_at: datetime

    @property
    def template(self) -> AgentTemplate:
        return get_template(self.template_id)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def capabilities(self) -> list[str]:
        return list(self.template.capabilities)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def icon(self) -> str:
        return self.template.icon

    @computed_field  # type: ignore[prop-decorator]
    @property
    def pricing(self) -> str:
        return self.template.pricing

    @computed_field  # type: ignore[prop-decorator]
    @property
    def recommended_providers(self) -> list[str]:
        return list(self.template.provider_recommendations)

    @property
    def system_prompt(self) -> str:
        return self.custom_prompt or self.template.system_prompt

    @property
    def suggested_responses(self) -> dict[str, str]:
        return dict(self.template.suggested_responses)


class AgentList(BaseModel):
    items: list[Agent]
    total: int


class AgentInstallRequest(BaseModel):
    template_id: str
    installed_by: str | None = None


class AgentTemplateOut(BaseModel):
    id: str
    name: str
    description: str
    category: str
    capabilities: list[str]
    icon: str
    pricing: str
    provider_recommendations: list[str]
    conversation_starters: list[str]
    version: str
    installed: bool = False

    @classmethod
    def from_template(cls, template: AgentTemplate, installed: bool = False) -> "AgentTemplateOut":
        return cls(
            id=template.id,
            name=template.name,
            description=template.description,
            category=template.category,
            capabilities=list(template.capabilities),
            icon=template.icon,
            pricing=template.pricing,
            provider_recommendations=list(template.provider_recommendations),
            conversation_starters=list(template.conversation_starters),
            version=template.version,
            installed=installed,
        )


class ConversationTurnCreate(BaseModel):
    agent_id: int
    conversation_id: int
    message_content: str
    response_content: str | None = None
    provider: str
    model: str
    tokens_used: int = 0
    response_time: float = 0.0
    status: Literal["success", "failed"] = "success"
    error: str | None = None


class ConversationTurn(ConversationTurnCreate):
    """A recorded generation call. Feedback is set at most once."""

    model_config = ConfigDict(frozen=True)

    id: int
    was_helpful: bool | None = None
    feedback: str | None = None
    created_at: datetime


class AgentReply(BaseModel):
    agent_id: int
    conversation_id: int
    content: str
    status: Literal["success", "failed"]
    fallback: bool = False
    turn_id: int | None = None
    provider: str | None = None
    model: str | None = None
    tokens_used: int = 0
    response_time: float = 0.0


class ProcessMessageRequest(BaseModel):
    conversation_id: int
    message: str = Field(min_length=1)
    post_reply: bool = True


class FeedbackRequest(BaseModel):
    was_helpful: bool
    feedback: str | None = None


class PerformanceSummary(BaseModel):
    agent_id: int
    total_turns: int
    successful_turns: int
    failed_turns: int
    success_rate: float | None = None
    average_response_time: float | None = None
    total_tokens: int = 0
    helpful_feedback: int = 0
    unhelpful_feedback: int = 0
    open_assignments: int = 0
