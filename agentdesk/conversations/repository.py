"""Conversation store used by routing and agent message processing.

The store itself belongs to the host helpdesk; this module only defines what
AgentDesk needs from it plus in-memory and PostgreSQL implementations.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..errors import ConversationNotFoundError
from .schemas import Conversation, ConversationMessage, ConversationStatus, MessageDirection


class ConversationStore(Protocol):
    def get_conversation(self, conversation_id: int) -> Optional[Conversation]: ...

    def list_conversations(
        self, account_id: int, statuses: Optional[Iterable[str]] = None
    ) -> List[Conversation]: ...

    def list_messages(
        self,
        conversation_id: int,
        *,
        direction: Optional[MessageDirection] = None,
        limit: Optional[int] = None,
    ) -> List[ConversationMessage]: ...

    def add_message(
        self,
        conversation_id: int,
        content: str,
        direction: MessageDirection,
        *,
        sender_agent_id: Optional[int] = None,
    ) -> ConversationMessage: ...

    def update_conversation(
        self,
        conversation_id: int,
        *,
        status: Optional[ConversationStatus] = None,
        custom_attributes: Optional[Dict[str, Any]] = None,
    ) -> Conversation: ...


class InMemoryConversationStore:
    def __init__(self) -> None:
        self._conversations: Dict[int, Conversation] = {}
        self._messages: Dict[int, List[ConversationMessage]] = {}
        self._conversation_id_seq = 1
        self._message_id_seq = 1
        self._lock = threading.RLock()

    def create_conversation(
        self,
        account_id: int,
        *,
        status: ConversationStatus = "pending",
        messages: Iterable[str] = (),
        contact_conversation_count: Optional[int] = None,
        created_at: Optional[datetime] = None,
        custom_attributes: Optional[Dict[str, Any]] = None,
    ) -> Conversation:
        with self._lock:
            conversation = Conversation(
                id=self._conversation_id_seq,
                account_id=account_id,
                status=status,
                contact_conversation_count=contact_conversation_count,
                custom_attributes=dict(custom_attributes or {}),
                created_at=created_at or datetime.now(timezone.utc),
            )
            self._conversation_id_seq += 1
            self._conversations[conversation.id] = conversation
            self._messages[conversation.id] = []
        for content in messages:
            self.add_message(conversation.id, content, "incoming")
        return conversation

    def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            return conversation.model_copy(deep=True) if conversation else None

    def list_conversations(
        self, account_id: int, statuses: Optional[Iterable[str]] = None
    ) -> List[Conversation]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            return [
                c.model_copy(deep=True)
                for c in sorted(self._conversations.values(), key=lambda c: c.id)
                if c.account_id == account_id and (wanted is None or c.status in wanted)
            ]

    def list_messages(
        self,
        conversation_id: int,
        *,
        direction: Optional[MessageDirection] = None,
        limit: Optional[int] = None,
    ) -> List[ConversationMessage]:
        with self._lock:
            messages = [
                m for m in self._messages.get(conversation_id, [])
                if direction is None or m.direction == direction
            ]
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return messages

    def add_message(
        self,
        conversation_id: int,
        content: str,
        direction: MessageDirection,
        *,
        sender_agent_id: Optional[int] = None,
    ) -> ConversationMessage:
        with self._lock:
            if conversation_id not in self._conversations:
                raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
            message = ConversationMessage(
                id=self._message_id_seq,
                conversation_id=conversation_id,
                content=content,
                direction=direction,
                sender_agent_id=sender_agent_id,
                created_at=datetime.now(timezone.utc),
            )
            self._message_id_seq += 1
            self._messages[conversation_id].append(message)
            return message

    def update_conversation(
        self,
        conversation_id: int,
        *,
        status: Optional[ConversationStatus] = None,
        custom_attributes: Optional[Dict[str, Any]] = None,
    ) -> Conversation:
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            if not conversation:
                raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
            if status is not None:
                conversation.status = status
                if status == "resolved" and conversation.resolved_at is None:
                    conversation.resolved_at = datetime.now(timezone.utc)
            if custom_attributes:
                conversation.custom_attributes.update(custom_attributes)
            return conversation.model_copy(deep=True)


class PostgresConversationStore:
    """Reads the host helpdesk's ``conversations`` and ``messages`` tables."""

    _CONVERSATION_COLUMNS = (
        "id, account_id, status, contact_id, contact_conversation_count, "
        "custom_attributes, created_at, resolved_at"
    )

    def __init__(self, connection: psycopg.Connection):
        self._conn = connection

    def cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        with self.cursor() as cur:
            cur.execute(
                f"SELECT {self._CONVERSATION_COLUMNS} FROM conversations WHERE id = %s",
                (conversation_id,),
            )
            row = cur.fetchone()
        return self._row_to_conversation(row) if row else None

    def list_conversations(
        self, account_id: int, statuses: Optional[Iterable[str]] = None
    ) -> List[Conversation]:
        query = f"SELECT {self._CONVERSATION_COLUMNS} FROM conversations WHERE account_id = %s"
        params: List[Any] = [account_id]
        if statuses is not None:
            query += " AND status = ANY(%s)"
            params.append(list(statuses))
        query += " ORDER BY id"
        with self.cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [self._row_to_conversation(row) for row in rows]

    def list_messages(
        self,
        conversation_id: int,
        *,
        direction: Optional[MessageDirection] = None,
        limit: Optional[int] = None,
    ) -> List[ConversationMessage]:
        query = (
            "SELECT id, conversation_id, content, direction, sender_agent_id, created_at "
            "FROM messages WHERE conversation_id = %s"
        )
        params: List[Any] = [conversation_id]
        if direction is not None:
            query += " AND direction = %s"
            params.append(direction)
        query += " ORDER BY created_at DESC, id DESC"
        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)
        with self.cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [ConversationMessage(**row) for row in reversed(rows)]

    def add_message(
        self,
        conversation_id: int,
        content: str,
        direction: MessageDirection,
        *,
        sender_agent_id: Optional[int] = None,
    ) -> ConversationMessage:
        with self.cursor() as cur:
            cur.execute(
                """
                INSERT INTO messages (conversation_id, content, direction, sender_agent_id)
                VALUES (%s, %s, %s, %s)
                RETURNING id, conversation_id, content, direction, sender_agent_id, created_at
                """,
                (conversation_id, content, direction, sender_agent_id),
            )
            row = cur.fetchone()
        return ConversationMessage(**row)

    def update_conversation(
        self,
        conversation_id: int,
        *,
        status: Optional[ConversationStatus] = None,
        custom_attributes: Optional[Dict[str, Any]] = None,
    ) -> Conversation:
        fields: List[str] = []
        values: List[Any] = []
        if status is not None:
            fields.append("status = %s")
            values.append(status)
            if status == "resolved":
                fields.append("resolved_at = COALESCE(resolved_at, now())")
        if custom_attributes:
            fields.append("custom_attributes = COALESCE(custom_attributes, '{}'::jsonb) || %s")
            values.append(Jsonb(custom_attributes))
        if not fields:
            conversation = self.get_conversation(conversation_id)
            if not conversation:
                raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
            return conversation
        values.append(conversation_id)
        with self.cursor() as cur:
            cur.execute(
                f"UPDATE conversations SET {', '.join(fields)} WHERE id = %s "
                f"RETURNING {self._CONVERSATION_COLUMNS}",
                values,
            )
            row = cur.fetchone()
        if not row:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return self._row_to_conversation(row)

    def _row_to_conversation(self, row: Dict[str, Any]) -> Conversation:
        return Conversation(
            id=row["id"],
            account_id=row["account_id"],
            status=row["status"],
            contact_id=row.get("contact_id"),
            contact_conversation_count=row.get("contact_conversation_count"),
            custom_attributes=row.get("custom_attributes") or {},
            created_at=row["created_at"],
            resolved_at=row.get("resolved_at"),
        )
