"""Pydantic models for conversations and their messages."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

ConversationStatus = Literal["pending", "open", "snoozed", "resolved"]
MessageDirection = Literal["incoming", "outgoing"]


class Conversation(BaseModel):
    id: int
    account_id: int
    status: ConversationStatus = "pending"
    contact_id: int | None = None
    contact_conversation_count: int | None = None
    custom_attributes: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    resolved_at: datetime | None = None


class ConversationMessage(BaseModel):
    id: int
    conversation_id: int
    content: str
    direction: MessageDirection
    sender_agent_id: int | None = None
    created_at: datetime
