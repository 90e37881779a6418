"""
Pydantic schemas for the agent API.

Defines request/response models for the session-backed chat API and the
stateless v1 chat API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..domain.entities import Conversation, Message

# =============================================================================
# Constants
# =============================================================================

MAX_MESSAGE_LENGTH = 10000
MAX_STATELESS_MESSAGES = 100


# =============================================================================
# Session Chat Schemas
# =============================================================================


class ChatRequest(BaseModel):
    """Request to send a chat message in a conversation."""

    message: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    conversation_id: Optional[UUID] = None
    persona: Optional[str] = Field(default=None, max_length=64)
    web_search_enabled: bool = False
    allowed_tools: Optional[list[str]] = None

    class Config:
        json_schema_extra = {
            "example": {
                "message": "公司的报销流程是什么？",
                "conversation_id": None,
                "web_search_enabled": False,
                "allowed_tools": None,
            }
        }


# =============================================================================
# Conversation Schemas
# =============================================================================


class CreateConversationRequest(BaseModel):
    """Request to start a conversation."""

    persona: str = Field(default="assistant", max_length=64)

    class Config:
        json_schema_extra = {"example": {"persona": "coder"}}


class ConversationResponse(BaseModel):
    """A conversation."""

    id: UUID
    title: Optional[str] = None
    persona: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, conversation: Conversation) -> ConversationResponse:
        return cls(
            id=conversation.id,
            title=conversation.title,
            persona=conversation.persona,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
        )


class MessageResponse(BaseModel):
    """A message in a conversation."""

    id: UUID
    role: str
    content: str
    tool_calls: Optional[list[dict[str, Any]]] = None
    tool_call_id: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_entity(cls, message: Message) -> MessageResponse:
        return cls(
            id=message.id,
            role=message.role.value,
            content=message.content,
            tool_calls=(
                [
                    {"id": tc.id, "name": tc.name, "arguments": tc.arguments}
                    for tc in message.tool_calls
                ]
                if message.tool_calls
                else None
            ),
            tool_call_id=message.tool_call_id,
            created_at=message.created_at,
        )


class MessageListResponse(BaseModel):
    """Recent messages of a conversation, oldest first."""

    conversation_id: UUID
    messages: list[MessageResponse]


# =============================================================================
# Stateless v1 Schemas
# =============================================================================


class V1Message(BaseModel):
    """One message supplied by a stateless caller."""

    role: Literal["system", "user", "assistant"]
    content: str = Field(..., max_length=MAX_MESSAGE_LENGTH)


class V1ChatRequest(BaseModel):
    """Stateless chat request: the caller supplies the whole history."""

    messages: list[V1Message] = Field(..., min_length=1, max_length=MAX_STATELESS_MESSAGES)
    tools: Optional[list[str]] = None
    web_search_enabled: bool = True
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)

    class Config:
        json_schema_extra = {
            "example": {
                "messages": [
                    {"role": "system", "content": "你是一个严谨的助手。"},
                    {"role": "user", "content": "现在几点？"},
                ],
                "tools": ["get_current_time", "calculator"],
                "web_search_enabled": False,
                "temperature": 0.7,
            }
        }


# =============================================================================
# Health
# =============================================================================


class HealthResponse(BaseModel):
    """Service health."""

    status: str = "ok"
    agent_initialized: bool = False
    tools: int = 0
    knowledge_base_ready: bool = False
    semantic_search: bool = False
