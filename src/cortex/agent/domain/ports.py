"""
Port interfaces (abstract base classes) for the agent module.

These define the contracts that adapters must implement.
Following the Ports & Adapters (Hexagonal) architecture pattern.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, AsyncIterator, Optional
from uuid import UUID

if TYPE_CHECKING:
    from .entities import (
        ChatEvent,
        Conversation,
        LongTermMemoryRecord,
        Message,
        ToolCall,
        ToolDefinition,
        ToolResult,
        UserContext,
    )


# ============================================
# LLM Provider Interface
# ============================================


class ILLMProvider(ABC):
    """Interface for LLM providers (OpenAI-compatible, Claude, Ollama).

    Implementations handle the specifics of each LLM API while
    providing a consistent interface to the orchestrator.
    """

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model identifier."""
        pass

    @property
    @abstractmethod
    def supports_tools(self) -> bool:
        """Return True if this provider supports tool/function calling."""
        pass

    @abstractmethod
    async def chat(
        self,
        messages: list[Message],
        tools: Optional[list[ToolDefinition]] = None,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[ChatEvent]:
        """Run one model turn over the full message list.

        Args:
            messages: Conversation history including earlier tool turns
            tools: Tools the model may request
            system_prompt: System prompt to prepend
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate

        Yields:
            ChatEvent objects ending in DONE or ERROR
        """
        pass

    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 500,
        temperature: float = 0.7,
    ) -> str:
        """Generate a simple text completion without tools.

        Used by the memory extractor for its auxiliary call.

        Args:
            prompt: The prompt to complete
            system_prompt: Optional system prompt
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature

        Returns:
            Generated text response
        """
        from .entities import ChatEventType, Message, MessageRole

        messages = [Message(role=MessageRole.USER, content=prompt)]
        result_text = ""

        async for event in self.chat(
            messages=messages,
            system_prompt=system_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
        ):
            if event.type == ChatEventType.TEXT_DELTA and event.content:
                result_text += event.content
            elif event.type == ChatEventType.ERROR:
                raise RuntimeError(event.error or "LLM completion failed")

        return result_text


# ============================================
# Embedding Provider Interface
# ============================================


class IEmbeddingProvider(ABC):
    """Interface for embedding providers used by semantic retrieval."""

    @property
    @abstractmethod
    def embedding_model_name(self) -> str:
        """Return the embedding model name."""
        pass

    @abstractmethod
    async def embed_text(self, text: str) -> list[float]:
        """Generate an embedding for the given text."""
        pass

    @abstractmethod
    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts, in input order."""
        pass


# ============================================
# Conversation Store Interface
# ============================================


class IConversationStore(ABC):
    """Interface for conversation (short-term memory) persistence."""

    @abstractmethod
    async def create(self, conversation: Conversation) -> Conversation:
        """Create a new conversation."""
        pass

    @abstractmethod
    async def get(
        self, conversation_id: UUID, context: UserContext
    ) -> Optional[Conversation]:
        """Get a conversation by ID (with tenant and owner isolation)."""
        pass

    @abstractmethod
    async def get_recent_messages(
        self,
        conversation_id: UUID,
        context: UserContext,
        limit: int = 20,
    ) -> list[Message]:
        """Return the newest `limit` messages in chronological order."""
        pass

    @abstractmethod
    async def append_message(
        self, conversation_id: UUID, message: Message, context: UserContext
    ) -> Message:
        """Append a message to a conversation (insert only)."""
        pass

    @abstractmethod
    async def update_title(
        self, conversation_id: UUID, title: str, context: UserContext
    ) -> None:
        """Set the conversation title."""
        pass


# ============================================
# Long-Term Memory Store Interface
# ============================================


class ILongTermMemoryStore(ABC):
    """Interface for long-term memory persistence and keyword retrieval."""

    @abstractmethod
    async def save(self, record: LongTermMemoryRecord) -> LongTermMemoryRecord:
        """Append a memory record."""
        pass

    @abstractmethod
    async def search(
        self,
        query: str,
        context: Optional[UserContext] = None,
        limit: int = 5,
    ) -> list[LongTermMemoryRecord]:
        """Find records whose content or keywords contain any query token.

        Results are ordered importance-first (high, normal, other) and
        then by recency, newest first.
        """
        pass


# ============================================
# Tool Interfaces
# ============================================


class ITool(ABC):
    """Interface for a single invocable tool."""

    @property
    @abstractmethod
    def definition(self) -> ToolDefinition:
        """Return the schema offered to the model."""
        pass

    @abstractmethod
    async def run(self, tool_call: ToolCall) -> ToolResult:
        """Execute the call. Must never raise; failures become text."""
        pass


class IToolSource(ABC):
    """Interface for dynamically discovered tools (external tool servers)."""

    @abstractmethod
    async def list_tools(self) -> list[ITool]:
        """Discover the tools this source exposes."""
        pass

    async def close(self) -> None:
        """Release any held connections."""
        return None


class IQueryExecutor(ABC):
    """Interface for the read-only SQL backend used by the database tool."""

    @abstractmethod
    async def fetch(self, sql: str, timeout: float) -> list[dict[str, Any]]:
        """Run a read-only statement and return rows as dicts."""
        pass
