"""Agent Orchestrator.

The orchestrator coordinates all components of the agent:
- LLM provider for response generation
- Tool registry and concurrent tool execution
- Short-term and long-term memory
- Event translation for streaming clients
"""

from .agent import (
    FALLBACK_ANSWER,
    ITERATION_LIMIT_ANSWER,
    AgentConfig,
    AgentOrchestrator,
    ChatOptions,
    ConversationNotFoundError,
)
from .conversation_manager import ConversationManager, make_title
from .event_translator import EventTranslator, chunk_text
from .memory_manager import MemoryManager
from .personas import BUILTIN_PERSONAS, Persona, PersonaRegistry
from .prompt_builder import PromptBuilder
from .tool_executor import ToolExecutor

__all__ = [
    # Main orchestrator
    "AgentOrchestrator",
    "AgentConfig",
    "ChatOptions",
    "ConversationNotFoundError",
    "FALLBACK_ANSWER",
    "ITERATION_LIMIT_ANSWER",
    # Core managers
    "ConversationManager",
    "make_title",
    "MemoryManager",
    "ToolExecutor",
    "EventTranslator",
    "chunk_text",
    "PromptBuilder",
    "Persona",
    "PersonaRegistry",
    "BUILTIN_PERSONAS",
]
