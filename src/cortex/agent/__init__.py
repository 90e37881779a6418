"""
Cortex Conversational Agent.

A multi-tenant chat agent that answers through an iterative
reason-and-act loop: the model may call tools, read their results and
call more tools before giving a final answer, streamed to the caller as
discrete events.

Architecture:
- Domain: Core entities and port interfaces
- Providers: LLM provider implementations (OpenAI-compatible, Claude, Ollama)
- Tools: Registry, built-in tools and MCP-over-HTTP external tools
- Retrieval: Knowledge base with semantic search and BM25 fallback
- Memory: Conversation history and keyword-recalled long-term facts
- Orchestrator: Reasoning loop, tool fan-out and event translation
- API: FastAPI routers streaming Server-Sent Events
"""

# Domain entities
from .domain.entities import (
    ChatEvent,
    ChatEventType,
    Conversation,
    ErrorType,
    LongTermMemoryRecord,
    Message,
    MessageRole,
    StreamEvent,
    StreamEventType,
    ToolCall,
    ToolDefinition,
    ToolResult,
    TurnEvent,
    TurnEventType,
    UserContext,
)

# Orchestrator
from .orchestrator import AgentConfig, AgentOrchestrator, ChatOptions, EventTranslator

# Memory
from .memory import (
    ConversationStore,
    InMemoryConversationStore,
    InMemoryMemoryStore,
    MemoryExtractor,
    PostgresMemoryStore,
)

# Retrieval
from .retrieval import BM25Index, KnowledgeBase

# Tools
from .tools import MCPToolSource, ToolRegistry, create_builtin_tools

# Providers
from .providers import (
    AnthropicProvider,
    BaseLLMProvider,
    LLMProviderConfig,
    OllamaProvider,
    OpenAIProvider,
)

# Configuration
from .config import AgentSettings

__all__ = [
    # Domain
    "ChatEvent",
    "ChatEventType",
    "Conversation",
    "ErrorType",
    "LongTermMemoryRecord",
    "Message",
    "MessageRole",
    "StreamEvent",
    "StreamEventType",
    "ToolCall",
    "ToolDefinition",
    "ToolResult",
    "TurnEvent",
    "TurnEventType",
    "UserContext",
    # Orchestrator
    "AgentConfig",
    "AgentOrchestrator",
    "ChatOptions",
    "EventTranslator",
    # Memory
    "ConversationStore",
    "InMemoryConversationStore",
    "InMemoryMemoryStore",
    "MemoryExtractor",
    "PostgresMemoryStore",
    # Retrieval
    "BM25Index",
    "KnowledgeBase",
    # Tools
    "MCPToolSource",
    "ToolRegistry",
    "create_builtin_tools",
    # Providers
    "AnthropicProvider",
    "BaseLLMProvider",
    "LLMProviderConfig",
    "OllamaProvider",
    "OpenAIProvider",
    # Configuration
    "AgentSettings",
]
