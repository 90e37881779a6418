"""Domain entities and port interfaces for the agent module."""

from .entities import (
    ChatEvent,
    ChatEventType,
    Conversation,
    ErrorType,
    Importance,
    KnowledgeChunk,
    LongTermMemoryRecord,
    Message,
    MessageRole,
    SearchResult,
    StreamEvent,
    StreamEventType,
    ToolCall,
    ToolDefinition,
    ToolResult,
    TurnEvent,
    TurnEventType,
    TurnState,
    UserContext,
)
from .ports import (
    IConversationStore,
    IEmbeddingProvider,
    ILLMProvider,
    ILongTermMemoryStore,
    IQueryExecutor,
    ITool,
    IToolSource,
)

__all__ = [
    # Entities
    "ChatEvent",
    "ChatEventType",
    "Conversation",
    "ErrorType",
    "Importance",
    "KnowledgeChunk",
    "LongTermMemoryRecord",
    "Message",
    "MessageRole",
    "SearchResult",
    "StreamEvent",
    "StreamEventType",
    "ToolCall",
    "ToolDefinition",
    "ToolResult",
    "TurnEvent",
    "TurnEventType",
    "TurnState",
    "UserContext",
    # Ports
    "IConversationStore",
    "IEmbeddingProvider",
    "ILLMProvider",
    "ILongTermMemoryStore",
    "IQueryExecutor",
    "ITool",
    "IToolSource",
]
