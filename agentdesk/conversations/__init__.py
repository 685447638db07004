"""Conversation store interface and implementations."""

from .repository import ConversationStore, InMemoryConversationStore, PostgresConversationStore
from .schemas import Conversation, ConversationMessage

__all__ = [
    "Conversation",
    "ConversationMessage",
    "ConversationStore",
    "InMemoryConversationStore",
    "PostgresConversationStore",
]
