"""
Conversation Store Implementation.

Short-term memory: conversations and their append-only message log, with
tenant and owner isolation. ConversationStore uses PostgreSQL via asyncpg;
InMemoryConversationStore serves development setups without a database
and tests.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Optional, Protocol
from uuid import UUID

from ..domain.entities import (
    Conversation,
    Message,
    MessageRole,
    ToolCall,
    UserContext,
)
from ..domain.ports import IConversationStore

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS agent_conversations (
    id UUID PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    title TEXT,
    persona TEXT NOT NULL DEFAULT 'assistant',
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS agent_messages (
    seq BIGSERIAL PRIMARY KEY,
    id UUID NOT NULL UNIQUE,
    conversation_id UUID NOT NULL REFERENCES agent_conversations(id) ON DELETE CASCADE,
    tenant_id TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    tool_calls JSONB,
    tool_call_id TEXT,
    name TEXT,
    thinking_summary TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_agent_messages_conversation
    ON agent_messages (conversation_id, seq DESC);
"""


class IAsyncDBPool(Protocol):
    """Protocol for async database pool."""

    def acquire(self): ...


def _serialize_tool_calls(tool_calls: Optional[list[ToolCall]]) -> Optional[str]:
    if not tool_calls:
        return None
    return json.dumps(
        [{"id": tc.id, "name": tc.name, "arguments": tc.arguments} for tc in tool_calls],
        ensure_ascii=False,
    )


def _deserialize_tool_calls(raw: Any) -> Optional[list[ToolCall]]:
    if not raw:
        return None
    data = json.loads(raw) if isinstance(raw, str) else raw
    return [
        ToolCall(id=tc.get("id", ""), name=tc.get("name", ""), arguments=tc.get("arguments", {}))
        for tc in data
    ]


class ConversationStore(IConversationStore):
    """PostgreSQL-based conversation store with tenant isolation.

    Every query filters by tenant_id and user_id, so a conversation is
    only visible to its owner.

    Usage:
        store = ConversationStore(db_pool)

        conv = await store.create(Conversation(tenant_id="t1", user_id="u1"))
        await store.append_message(
            conv.id,
            Message(role=MessageRole.USER, content="你好"),
            context,
        )
        history = await store.get_recent_messages(conv.id, context, limit=20)
    """

    def __init__(self, db_pool: IAsyncDBPool):
        """Initialize the conversation store.

        Args:
            db_pool: asyncpg connection pool
        """
        self.db = db_pool

    async def ensure_schema(self) -> None:
        """Create the tables if they do not exist."""
        async with self.db.acquire() as conn:
            await conn.execute(SCHEMA_SQL)

    async def create(self, conversation: Conversation) -> Conversation:
        """Create a new conversation."""
        async with self.db.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO agent_conversations (id, tenant_id, user_id, title, persona)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING created_at, updated_at
                """,
                conversation.id,
                conversation.tenant_id,
                conversation.user_id,
                conversation.title,
                conversation.persona,
            )

        conversation.created_at = row["created_at"]
        conversation.updated_at = row["updated_at"]

        logger.info(f"Created conversation {conversation.id} for user {conversation.user_id}")
        return conversation

    async def get(
        self, conversation_id: UUID, context: UserContext
    ) -> Optional[Conversation]:
        """Get a conversation owned by the context's user, or None."""
        async with self.db.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, tenant_id, user_id, title, persona, created_at, updated_at
                FROM agent_conversations
                WHERE id = $1 AND tenant_id = $2 AND user_id = $3
                """,
                conversation_id,
                context.tenant_id,
                context.user_id,
            )

        if not row:
            return None

        return Conversation(
            id=row["id"],
            tenant_id=row["tenant_id"],
            user_id=row["user_id"],
            title=row["title"],
            persona=row["persona"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def get_recent_messages(
        self,
        conversation_id: UUID,
        context: UserContext,
        limit: int = 20,
    ) -> list[Message]:
        """Return the newest `limit` messages in chronological order.

        Args:
            conversation_id: Conversation ID
            context: User context for tenant isolation
            limit: Maximum number of messages

        Returns:
            Messages, oldest first
        """
        async with self.db.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT m.id, m.role, m.content, m.tool_calls, m.tool_call_id,
                       m.name, m.thinking_summary, m.created_at
                FROM agent_messages m
                JOIN agent_conversations c ON c.id = m.conversation_id
                WHERE m.conversation_id = $1 AND c.tenant_id = $2 AND c.user_id = $3
                ORDER BY m.seq DESC
                LIMIT $4
                """,
                conversation_id,
                context.tenant_id,
                context.user_id,
                limit,
            )

        messages = [
            Message(
                id=row["id"],
                conversation_id=conversation_id,
                role=MessageRole(row["role"]),
                content=row["content"],
                tool_calls=_deserialize_tool_calls(row["tool_calls"]),
                tool_call_id=row["tool_call_id"],
                name=row["name"],
                thinking_summary=row["thinking_summary"],
                created_at=row["created_at"],
            )
            for row in rows
        ]
        messages.reverse()
        return messages

    async def append_message(
        self, conversation_id: UUID, message: Message, context: UserContext
    ) -> Message:
        """Append a message to a conversation.

        Raises:
            ValueError: If the conversation does not belong to the user
        """
        message.conversation_id = conversation_id

        async with self.db.acquire() as conn:
            async with conn.transaction():
                exists = await conn.fetchval(
                    """
                    SELECT 1 FROM agent_conversations
                    WHERE id = $1 AND tenant_id = $2 AND user_id = $3
                    """,
                    conversation_id,
                    context.tenant_id,
                    context.user_id,
                )

                if not exists:
                    raise ValueError(
                        f"Conversation {conversation_id} not found or access denied"
                    )

                row = await conn.fetchrow(
                    """
                    INSERT INTO agent_messages (
                        id, conversation_id, tenant_id, role, content,
                        tool_calls, tool_call_id, name, thinking_summary
                    ) VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7, $8, $9)
                    RETURNING created_at
                    """,
                    message.id,
                    conversation_id,
                    context.tenant_id,
                    message.role.value,
                    message.content,
                    _serialize_tool_calls(message.tool_calls),
                    message.tool_call_id,
                    message.name,
                    message.thinking_summary,
                )

                await conn.execute(
                    "UPDATE agent_conversations SET updated_at = now() WHERE id = $1",
                    conversation_id,
                )

        message.created_at = row["created_at"]

        logger.debug(f"Added {message.role.value} message to conversation {conversation_id}")
        return message

    async def update_title(
        self, conversation_id: UUID, title: str, context: UserContext
    ) -> None:
        """Set the conversation title."""
        async with self.db.acquire() as conn:
            await conn.execute(
                """
                UPDATE agent_conversations
                SET title = $1, updated_at = now()
                WHERE id = $2 AND tenant_id = $3 AND user_id = $4
                """,
                title,
                conversation_id,
                context.tenant_id,
                context.user_id,
            )


class InMemoryConversationStore(IConversationStore):
    """Process-local conversation store.

    Used when DATABASE_URL is unset. Data is lost on restart.
    """

    def __init__(self):
        self._conversations: dict[UUID, Conversation] = {}
        self._messages: dict[UUID, list[Message]] = {}

    def _owned(self, conversation_id: UUID, context: UserContext) -> Optional[Conversation]:
        conversation = self._conversations.get(conversation_id)
        if (
            conversation is None
            or conversation.tenant_id != context.tenant_id
            or conversation.user_id != context.user_id
        ):
            return None
        return conversation

    async def create(self, conversation: Conversation) -> Conversation:
        self._conversations[conversation.id] = conversation
        self._messages[conversation.id] = []
        return conversation

    async def get(
        self, conversation_id: UUID, context: UserContext
    ) -> Optional[Conversation]:
        return self._owned(conversation_id, context)

    async def get_recent_messages(
        self,
        conversation_id: UUID,
        context: UserContext,
        limit: int = 20,
    ) -> list[Message]:
        if self._owned(conversation_id, context) is None or limit <= 0:
            return []
        return list(self._messages[conversation_id][-limit:])

    async def append_message(
        self, conversation_id: UUID, message: Message, context: UserContext
    ) -> Message:
        conversation = self._owned(conversation_id, context)
        if conversation is None:
            raise ValueError(f"Conversation {conversation_id} not found or access denied")

        message.conversation_id = conversation_id
        self._messages[conversation_id].append(message)
        conversation.updated_at = datetime.utcnow()
        return message

    async def update_title(
        self, conversation_id: UUID, title: str, context: UserContext
    ) -> None:
        conversation = self._owned(conversation_id, context)
        if conversation is not None:
            conversation.title = title
            conversation.updated_at = datetime.utcnow()
