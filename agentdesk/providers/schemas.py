"""Pydantic schemas for the provider gateway API."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ModelCapabilities(BaseModel):
    name: str
    context_length: int
    supports_vision: bool
    supports_tools: bool


class ProviderStatus(BaseModel):
    provider: str
    configured: bool
    api_key_present: bool
    model: str
    default: bool = False
    available_models: list[ModelCapabilities] = Field(default_factory=list)


class ProviderStatusList(BaseModel):
    default_provider: str
    providers: list[ProviderStatus]


class ProviderConfigure(BaseModel):
    api_key: str | None = None
    model: str | None = None
    make_default: bool = False


class ConnectionTestResult(BaseModel):
    provider: str
    model: str | None = None
    success: bool
    response: str | None = None
    error: str | None = None


class ChatCompletionRequest(BaseModel):
    messages: list[ChatMessage] = Field(min_length=1)
    provider: str | None = None
    model: str | None = None
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0)


class ChatCompletionResponse(BaseModel):
    content: str
    provider: str
    model: str
    usage: dict[str, int] = Field(default_factory=dict)
    raw: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Agent assist

RephraseStyle = Literal["professional", "friendly", "formal", "casual", "concise", "detailed"]
BulkOperation = Literal["summarize", "categorize", "sentiment"]


class RephraseRequest(BaseModel):
    text: str = Field(min_length=1)
    style: RephraseStyle = "professional"
    provider: str | None = None


class RephraseResponse(BaseModel):
    original_text: str
    rephrased_text: str
    style: str
    provider: str
    model: str


class SentimentRequest(BaseModel):
    text: str = Field(min_length=1)
    provider: str | None = None


class SentimentResponse(BaseModel):
    text: str
    sentiment: str
    confidence: Literal["high", "medium", "low"]


class ConversationAssistRequest(BaseModel):
    conversation_id: int
    provider: str | None = None
    categories: list[str] | None = Field(default=None, min_length=1)


class SummaryResponse(BaseModel):
    conversation_id: int
    summary: str
    provider: str
    model: str


class CategoryResponse(BaseModel):
    conversation_id: int
    category: str | None = None
    raw_answer: str
    available_categories: list[str]


class BulkOperationRequest(BaseModel):
    operation: BulkOperation
    conversation_ids: list[int] = Field(min_length=1)
    provider: str | None = None


class BulkOperationItem(BaseModel):
    conversation_id: int
    summary: str | None = None
    category: str | None = None
    sentiment: str | None = None
    error: str | None = None


class BulkOperationResponse(BaseModel):
    operation: BulkOperation
    results: list[BulkOperationItem]
    processed_count: int
