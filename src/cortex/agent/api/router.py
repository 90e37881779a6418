"""
FastAPI Router for the Agent.

Session-backed endpoints: chat over Server-Sent Events and conversation
management. Every endpoint requires a JWT identifying tenant and user.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from ..domain.entities import UserContext
from ..orchestrator import AgentOrchestrator, ChatOptions, ConversationNotFoundError
from ..retrieval.knowledge_base import KnowledgeBase
from ..tools.registry import ToolRegistry
from .auth import get_user_context_jwt
from .schemas import (
    ChatRequest,
    ConversationResponse,
    CreateConversationRequest,
    MessageListResponse,
    MessageResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/agent", tags=["agent"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# =============================================================================
# Dependencies
# =============================================================================


class AgentDependencies:
    """Container for agent dependencies.

    Injected at application startup.
    """

    orchestrator: Optional[AgentOrchestrator] = None
    tool_registry: Optional[ToolRegistry] = None
    knowledge_base: Optional[KnowledgeBase] = None


_deps = AgentDependencies()


def create_agent_dependencies(
    orchestrator: Optional[AgentOrchestrator],
    tool_registry: Optional[ToolRegistry] = None,
    knowledge_base: Optional[KnowledgeBase] = None,
) -> None:
    """Initialize agent dependencies.

    Call this at application startup (and with None at shutdown).
    """
    _deps.orchestrator = orchestrator
    _deps.tool_registry = tool_registry
    _deps.knowledge_base = knowledge_base


def get_dependencies() -> AgentDependencies:
    return _deps


def get_orchestrator() -> AgentOrchestrator:
    """Get the agent orchestrator dependency."""
    if not _deps.orchestrator:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Agent not initialized",
        )
    return _deps.orchestrator


def get_user_context(
    context: UserContext = Depends(get_user_context_jwt),
) -> UserContext:
    """User context from the validated JWT. Raw identity headers are never trusted."""
    return context


async def sse_stream(events: AsyncIterator) -> AsyncIterator[str]:
    """Frame StreamEvents as `data: <json>\\n\\n`."""
    async for event in events:
        yield event.to_sse()


# =============================================================================
# Chat
# =============================================================================


@router.post("/chat")
async def chat(
    request: ChatRequest,
    context: UserContext = Depends(get_user_context),
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    """Send a message and stream the agent's response as SSE.

    Events: thinking, thinking_end, tool_start, tool_end, content, then
    done (or error).
    """
    if request.conversation_id is not None:
        conversation = await orchestrator.get_conversation(request.conversation_id, context)
        if conversation is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Conversation not found",
            )

    options = ChatOptions(
        persona=request.persona,
        allowed_tools=request.allowed_tools,
        web_search_enabled=request.web_search_enabled,
    )

    logger.info(
        f"Chat request from {context.tenant_id}/{context.user_id} "
        f"(conversation={request.conversation_id})"
    )

    return StreamingResponse(
        sse_stream(
            orchestrator.chat(request.message, context, request.conversation_id, options)
        ),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


# =============================================================================
# Conversations
# =============================================================================


@router.post(
    "/conversations",
    response_model=ConversationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_conversation(
    request: CreateConversationRequest,
    context: UserContext = Depends(get_user_context),
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
) -> ConversationResponse:
    """Start a conversation with a persona (unknown personas fall back to assistant)."""
    conversation = await orchestrator.start_conversation(context, request.persona)
    return ConversationResponse.from_entity(conversation)


@router.get("/conversations/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: UUID,
    context: UserContext = Depends(get_user_context),
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
) -> ConversationResponse:
    """Get a conversation owned by the caller."""
    conversation = await orchestrator.get_conversation(conversation_id, context)
    if conversation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found",
        )
    return ConversationResponse.from_entity(conversation)


@router.get("/conversations/{conversation_id}/messages", response_model=MessageListResponse)
async def get_conversation_messages(
    conversation_id: UUID,
    limit: int = Query(default=20, ge=1, le=200),
    context: UserContext = Depends(get_user_context),
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
) -> MessageListResponse:
    """Recent messages of a conversation, oldest first."""
    try:
        messages = await orchestrator.get_messages(conversation_id, context, limit)
    except ConversationNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found",
        )

    return MessageListResponse(
        conversation_id=conversation_id,
        messages=[MessageResponse.from_entity(m) for m in messages],
    )
