"""Pydantic schemas for analysis, matching, assignments and analytics."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from ..agents.schemas import Agent

Urgency = Literal["low", "medium", "high", "critical"]
Sentiment = Literal["positive", "neutral", "negative"]
Level = Literal["low", "medium", "high"]
CustomerType = Literal["new", "existing", "vip"]


class AnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    categories: list[str] = Field(default_factory=list)
    urgency: Urgency = "low"
    language: str = "en"
    sentiment: Sentiment = "neutral"
    keywords: dict[str, int] = Field(default_factory=dict)
    complexity: Level = "low"
    customer_type: CustomerType = "new"
    message_count: int = 0


class ScoreBreakdown(BaseModel):
    category_match: float = 0.0
    capability_match: float = 0.0
    priority_match: float = 0.0
    language_match: float = 0.0
    performance_bonus: float = 0.0
    availability_factor: float = 0.0

    @property
    def total(self) -> float:
        return (
            self.category_match
            + self.capability_match
            + self.priority_match
            + self.language_match
            + self.performance_bonus
            + self.availability_factor
        )


class AgentMatch(BaseModel):
    agent: Agent
    score: float
    breakdown: ScoreBreakdown
    reasons: list[str] = Field(default_factory=list)

    @property
    def agent_id(self) -> int:
        return self.agent.id


class FallbackOption(BaseModel):
    type: Literal["human_agent", "general_support", "escalation"]
    description: str


class Assignment(BaseModel):
    id: int
    account_id: int
    conversation_id: int
    agent_id: int
    confidence_score: float = Field(ge=0.0, le=100.0)
    assignment_reason: str
    auto_assigned: bool = False
    active: bool = True
    assigned_at: datetime
    unassigned_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AssignmentCreate(BaseModel):
    account_id: int
    conversation_id: int
    agent_id: int
    confidence_score: float = Field(ge=0.0, le=100.0)
    assignment_reason: str
    auto_assigned: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class RoutingResult(BaseModel):
    conversation_id: int
    analysis: AnalysisResult
    recommended_agents: list[AgentMatch] = Field(default_factory=list)
    routing_confidence: float = 0.0
    should_route: bool = False
    routing_reasons: list[str] = Field(default_factory=list)
    fallback_options: list[FallbackOption] = Field(default_factory=list)
    routed: bool = False
    assigned_agent_id: int | None = None
    assignment_id: int | None = None
    reason: str | None = None
    error: str | None = None


class BulkRouteItem(BaseModel):
    conversation_id: int
    routed: bool
    assigned_agent_id: int | None = None
    confidence: float | None = None
    reason: str | None = None
    error: str | None = None


class BulkRouteRequest(BaseModel):
    conversation_ids: list[int] = Field(min_length=1, max_length=200)


class BulkRouteResponse(BaseModel):
    results: list[BulkRouteItem]
    total: int
    routed: int


class AssignRequest(BaseModel):
    agent_id: int
    actor: str | None = None
    reason: str | None = None


class UnassignRequest(BaseModel):
    actor: str | None = None
    reason: str | None = None


class AssignmentOut(BaseModel):
    assignment: Assignment
    duration: str
    confidence_band: Level


class RoutingOverview(BaseModel):
    total_assignments: int
    auto_assignments: int
    manual_assignments: int
    active_assignments: int
    average_confidence: float | None = None


class AgentRoutingStats(BaseModel):
    agent_id: int
    agent_name: str | None = None
    assignments: int
    average_confidence: float | None = None


class TrendPoint(BaseModel):
    day: date
    assignments: int
    auto_assignments: int = 0
    average_confidence: float | None = None


class SuccessMetrics(BaseModel):
    resolution_rate: float | None = None
    average_resolution_hours: float | None = None
    high_confidence_success_rate: float | None = None


class RoutingAnalytics(BaseModel):
    since: datetime
    overview: RoutingOverview
    per_agent: list[AgentRoutingStats] = Field(default_factory=list)
    trend: list[TrendPoint] = Field(default_factory=list)
    success_metrics: SuccessMetrics


class AttentionItem(BaseModel):
    conversation_id: int
    status: str | None = None
    assignment_id: int | None = None
    agent_id: int | None = None
    confidence_score: float | None = None
    assigned_at: datetime | None = None
    duration: str | None = None


class NeedsAttention(BaseModel):
    unassigned: list[AttentionItem] = Field(default_factory=list)
    low_confidence: list[AttentionItem] = Field(default_factory=list)
    long_unresolved: list[AttentionItem] = Field(default_factory=list)
