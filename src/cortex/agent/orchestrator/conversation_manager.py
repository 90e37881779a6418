"""
Conversation Manager.

Handles conversation lifecycle management: creation, ownership-checked
retrieval, recent history, message storage and titling.
"""

from __future__ import annotations

import logging
import re
from typing import Optional
from uuid import UUID

from ..domain.entities import Conversation, Message, UserContext
from ..domain.ports import IConversationStore

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "新对话"
TITLE_CHARS = 20

_TITLE_STRIP = re.compile(r"[#*\n]")


def make_title(reply: str) -> str:
    """Title from the first reply: Markdown marks and newlines removed."""
    return _TITLE_STRIP.sub("", reply)[:TITLE_CHARS] + "..."


class ConversationManager:
    """Manages conversation lifecycle operations.

    Usage:
        manager = ConversationManager(conversation_store)

        conversation = await manager.get_or_create(
            conversation_id=None,
            context=user_context,
            persona="coder",
        )
        await manager.add_message(conversation.id, user_message, user_context)
        history = await manager.get_history(conversation.id, user_context)
    """

    def __init__(self, conversation_store: IConversationStore, history_limit: int = 20):
        """Initialize the conversation manager.

        Args:
            conversation_store: Store for conversation persistence
            history_limit: Number of recent messages loaded per turn
        """
        self.store = conversation_store
        self.history_limit = history_limit

    async def create(
        self,
        context: UserContext,
        persona: str = "assistant",
        title: Optional[str] = None,
    ) -> Conversation:
        """Create a conversation owned by the context's user."""
        conversation = Conversation(
            tenant_id=context.tenant_id,
            user_id=context.user_id,
            persona=persona,
            title=title or DEFAULT_TITLE,
        )
        return await self.store.create(conversation)

    async def get(self, conversation_id: UUID, context: UserContext) -> Optional[Conversation]:
        """Get a conversation if the context's user owns it."""
        return await self.store.get(conversation_id, context)

    async def get_or_create(
        self,
        conversation_id: Optional[UUID],
        context: UserContext,
        persona: str = "assistant",
    ) -> Optional[Conversation]:
        """Load an existing conversation or start a new one.

        Returns:
            The conversation, or None when conversation_id is given but
            not owned by the user
        """
        if conversation_id is not None:
            conversation = await self.store.get(conversation_id, context)
            if conversation is None:
                logger.warning(
                    f"Conversation {conversation_id} not found for user {context.user_id}"
                )
            return conversation

        conversation = await self.create(context, persona=persona)
        logger.info(f"Started conversation {conversation.id}")
        return conversation

    async def get_history(
        self,
        conversation_id: UUID,
        context: UserContext,
        limit: Optional[int] = None,
    ) -> list[Message]:
        """Recent messages, oldest first."""
        return await self.store.get_recent_messages(
            conversation_id, context, limit=limit or self.history_limit
        )

    async def add_message(
        self, conversation_id: UUID, message: Message, context: UserContext
    ) -> Message:
        return await self.store.append_message(conversation_id, message, context)

    async def set_title_from_reply(
        self, conversation: Conversation, reply: str, context: UserContext
    ) -> Optional[str]:
        """Title an untitled conversation from its first reply.

        Returns:
            The new title, or None if the conversation already had one
        """
        if conversation.title not in (None, "", DEFAULT_TITLE) or not reply:
            return None

        title = make_title(reply)
        await self.store.update_title(conversation.id, title, context)
        conversation.title = title
        return title
