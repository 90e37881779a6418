"""
Domain entities for the Cortex agent.

These are pure domain objects with no infrastructure dependencies.
They define the core data structures shared by the providers, tools,
memory subsystem, orchestrator and streaming layer.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

# ============================================
# User Context
# ============================================


@dataclass(frozen=True)
class UserContext:
    """User context for tenant isolation and audit tracking.

    Attributes:
        tenant_id: Tenant identifier for multi-tenancy isolation
        user_id: User identifier within the tenant
        session_id: Optional session identifier for tracking
        request_id: Optional request ID for distributed tracing
    """

    tenant_id: str
    user_id: str
    session_id: Optional[str] = None
    request_id: Optional[str] = None

    def __post_init__(self):
        if not self.tenant_id:
            raise ValueError("tenant_id is required")
        if not self.user_id:
            raise ValueError("user_id is required")


# ============================================
# Message Types
# ============================================


class MessageRole(str, Enum):
    """Role of a message in a conversation."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"  # Tool result fed back to the model


@dataclass
class Message:
    """A single message in a conversation.

    Messages are append-only: a correction is a new message, never an
    in-place edit of an existing one.

    Attributes:
        role: Message role (user, assistant, system, tool)
        content: Message text content (may be empty)
        id: Unique message identifier
        conversation_id: Parent conversation ID
        tool_calls: Tool calls requested by the assistant in this message
        tool_call_id: For TOOL messages, the request this result answers
        name: For TOOL messages, the tool that produced the result
        thinking_summary: Reasoning-channel text captured for this turn
        created_at: Creation timestamp
    """

    role: MessageRole
    content: str
    id: Optional[uuid.UUID] = None
    conversation_id: Optional[uuid.UUID] = None
    tool_calls: Optional[list[ToolCall]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    thinking_summary: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.id is None:
            self.id = uuid.uuid4()
        if self.created_at is None:
            self.created_at = datetime.utcnow()

    @classmethod
    def tool_result(cls, result: ToolResult) -> Message:
        """Build the TOOL message that feeds a result back to the model."""
        return cls(
            role=MessageRole.TOOL,
            content=result.content,
            tool_call_id=result.tool_call_id,
            name=result.name,
        )


# ============================================
# Conversation
# ============================================


@dataclass
class Conversation:
    """A chat session owned by one user of one tenant.

    Attributes:
        tenant_id: Tenant for isolation
        user_id: User who owns this conversation
        id: Unique conversation identifier
        title: Conversation title (set from the first reply)
        persona: Persona key used to build the system prompt
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    tenant_id: str
    user_id: str
    id: Optional[uuid.UUID] = None
    title: Optional[str] = None
    persona: str = "assistant"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.id is None:
            self.id = uuid.uuid4()
        if self.created_at is None:
            self.created_at = datetime.utcnow()
        if self.updated_at is None:
            self.updated_at = self.created_at


# ============================================
# Long-Term Memory
# ============================================


class Importance(str, Enum):
    """Importance of a long-term memory record."""

    HIGH = "high"
    NORMAL = "normal"

    @classmethod
    def parse(cls, value: str) -> Importance:
        """Anything other than 'high' is treated as normal."""
        return cls.HIGH if value.strip().lower() == "high" else cls.NORMAL


@dataclass(frozen=True)
class LongTermMemoryRecord:
    """A durable fact about the user, extracted from a finished exchange.

    Attributes:
        content: Free-text fact
        keywords: Keyword tags used for retrieval
        importance: high or normal
        tenant_id: Tenant for isolation
        session_id: Conversation the fact was extracted from
        created_at: Creation timestamp
        id: Unique record identifier
    """

    content: str
    keywords: tuple[str, ...] = ()
    importance: Importance = Importance.NORMAL
    tenant_id: Optional[str] = None
    session_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    @property
    def keyword_text(self) -> str:
        """Keywords as stored: comma separated."""
        return ",".join(self.keywords)


# ============================================
# Retrieval
# ============================================


@dataclass(frozen=True)
class KnowledgeChunk:
    """A fragment of reference text with its source attribution.

    Attributes:
        content: Chunk text
        source: Stable source identifier (file name)
        index: Position of the chunk in the whole corpus
        embedding: Vector embedding when semantic mode is active
    """

    content: str
    source: str
    index: int
    embedding: Optional[tuple[float, ...]] = None


@dataclass(frozen=True)
class SearchResult:
    """A structured web search hit.

    Attributes:
        title: Page title
        url: Page URL
        snippet: Summary text shown by the search engine
    """

    title: str
    url: str
    snippet: str = ""

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary for JSON serialization."""
        return {"title": self.title, "url": self.url, "snippet": self.snippet}


# ============================================
# Tool System
# ============================================


@dataclass
class ToolDefinition:
    """Definition of an available tool as offered to the model.

    Attributes:
        name: Tool name (e.g., 'get_weather')
        description: Natural-language guidance on when to call the tool
        parameters: JSON Schema for parameters
        is_read_only: True if tool only reads data
        timeout_seconds: Maximum execution time
    """

    name: str
    description: str
    parameters: dict[str, Any]
    is_read_only: bool = True
    timeout_seconds: float = 30.0

    def to_openai_format(self) -> dict[str, Any]:
        """Convert to OpenAI function calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def to_anthropic_format(self) -> dict[str, Any]:
        """Convert to Anthropic tool use format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }


def new_tool_call_id() -> str:
    """Generate a tool call id for providers that do not supply one."""
    return f"call_{uuid.uuid4().hex[:24]}"


@dataclass
class ToolCall:
    """A tool call requested by the model.

    Attributes:
        name: Tool name being called
        arguments: Arguments passed to the tool
        id: Unique tool call identifier (for correlation)
    """

    name: str
    arguments: dict[str, Any]
    id: str = field(default_factory=new_tool_call_id)


@dataclass
class ToolResult:
    """Result from a tool execution.

    The content is always text; binary output (images) has already been
    turned into a file reference or Markdown image link.

    Attributes:
        tool_call_id: ID of the tool call this is a result for
        name: Tool that produced the result
        content: Textual result handed back to the model
        success: Whether execution succeeded
        sources: Structured sources (web search hits) for the caller
        latency_ms: Execution time in milliseconds
    """

    tool_call_id: str
    name: str
    content: str
    success: bool = True
    sources: list[SearchResult] = field(default_factory=list)
    latency_ms: Optional[int] = None


# ============================================
# Provider Stream Events
# ============================================


class ChatEventType(str, Enum):
    """Types of events streamed by an LLM provider."""

    TEXT_DELTA = "text_delta"  # Partial answer token
    THINKING_DELTA = "thinking_delta"  # Reasoning-channel token
    TOOL_CALL_START = "tool_call_start"  # Tool request begins
    TOOL_CALL_END = "tool_call_end"  # Tool request arguments complete
    ERROR = "error"  # Provider failure
    DONE = "done"  # Model turn finished


class ErrorType(str, Enum):
    """Types of errors in streaming."""

    RECOVERABLE = "recoverable"  # Can retry
    FATAL = "fatal"  # Must abort
    TIMEOUT = "timeout"  # Tool/LLM timeout
    RATE_LIMIT = "rate_limit"  # Rate limited, back off


@dataclass
class ChatEvent:
    """A streaming event produced by an LLM provider for one model turn.

    Attributes:
        type: Event type
        sequence: Sequence number for ordering
        content: Text content (TEXT_DELTA, THINKING_DELTA, ERROR)
        tool_call_id: Links TOOL_CALL_* events
        tool_name: Tool name (TOOL_CALL_START)
        tool_arguments: Parsed tool arguments (TOOL_CALL_END)
        error: Error message (ERROR)
        error_type: Type of error
    """

    type: ChatEventType
    sequence: int
    content: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None
    tool_arguments: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    error_type: Optional[ErrorType] = None

    @classmethod
    def text_delta(cls, text: str, sequence: int) -> ChatEvent:
        """Create a text delta event."""
        return cls(type=ChatEventType.TEXT_DELTA, sequence=sequence, content=text)

    @classmethod
    def thinking_delta(cls, text: str, sequence: int) -> ChatEvent:
        """Create a thinking delta event."""
        return cls(type=ChatEventType.THINKING_DELTA, sequence=sequence, content=text)

    @classmethod
    def tool_call_start(cls, tool_call_id: str, name: str, sequence: int) -> ChatEvent:
        """Create a tool call start event."""
        return cls(
            type=ChatEventType.TOOL_CALL_START,
            sequence=sequence,
            tool_call_id=tool_call_id,
            tool_name=name,
        )

    @classmethod
    def tool_call_end(
        cls, tool_call_id: str, arguments: dict[str, Any], sequence: int
    ) -> ChatEvent:
        """Create a tool call end event."""
        return cls(
            type=ChatEventType.TOOL_CALL_END,
            sequence=sequence,
            tool_call_id=tool_call_id,
            tool_arguments=arguments,
        )

    @classmethod
    def error_event(cls, message: str, error_type: ErrorType, sequence: int) -> ChatEvent:
        """Create an error event."""
        return cls(
            type=ChatEventType.ERROR,
            sequence=sequence,
            content=message,
            error=message,
            error_type=error_type,
        )

    @classmethod
    def done(cls, sequence: int) -> ChatEvent:
        """Create a done event."""
        return cls(type=ChatEventType.DONE, sequence=sequence)


# ============================================
# Orchestrator Turn Events
# ============================================


class TurnState(str, Enum):
    """States of the reasoning loop."""

    AWAITING_MODEL = "awaiting_model"
    HAS_TOOL_CALLS = "has_tool_calls"
    TERMINAL = "terminal"


class TurnEventType(str, Enum):
    """Internal events produced by the reasoning loop."""

    THINKING_DELTA = "thinking_delta"
    THINKING_END = "thinking_end"
    TOOL_STARTED = "tool_started"
    TOOL_FINISHED = "tool_finished"
    ANSWER_DELTA = "answer_delta"
    FAILED = "failed"
    COMPLETED = "completed"


@dataclass
class TurnEvent:
    """An orchestrator-internal event, independent of any wire format.

    Attributes:
        type: Event type
        iteration: Model invocation number the event belongs to (1-based)
        text: Text for THINKING_DELTA, ANSWER_DELTA and FAILED
        tool_call: Request for TOOL_STARTED
        tool_result: Result for TOOL_FINISHED
        answer: Full final answer for COMPLETED
        metadata: Extra data for COMPLETED (conversation id, iterations)
    """

    type: TurnEventType
    iteration: int = 0
    text: Optional[str] = None
    tool_call: Optional[ToolCall] = None
    tool_result: Optional[ToolResult] = None
    answer: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


# ============================================
# External Stream Events
# ============================================


class StreamEventType(str, Enum):
    """Event kinds delivered to a remote caller."""

    THINKING = "thinking"
    THINKING_END = "thinking_end"
    TOOL_START = "tool_start"
    TOOL_END = "tool_end"
    CONTENT = "content"
    ERROR = "error"
    DONE = "done"


@dataclass
class StreamEvent:
    """A discrete, independently parseable event sent to the caller.

    Attributes:
        type: Event discriminator
        sequence: Monotonic position in the stream (starts at 1)
        data: Event payload
    """

    type: StreamEventType
    sequence: int
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {"type": self.type.value, "sequence": self.sequence, **self.data}

    def to_sse(self) -> str:
        """Render as one Server-Sent Events frame."""
        return f"data: {json.dumps(self.to_dict(), ensure_ascii=False)}\n\n"
