"""Short-term (conversation) and long-term (extracted facts) memory."""

from .conversation import ConversationStore, InMemoryConversationStore
from .long_term import (
    InMemoryMemoryStore,
    MemoryExtractor,
    PostgresMemoryStore,
    format_memories_for_prompt,
    search_tokens,
)

__all__ = [
    "ConversationStore",
    "InMemoryConversationStore",
    "InMemoryMemoryStore",
    "MemoryExtractor",
    "PostgresMemoryStore",
    "format_memories_for_prompt",
    "search_tokens",
]
