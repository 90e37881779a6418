"""
Stateless Chat API (v1).

For other services that keep their own conversation history: no sessions,
no long-term memory. The caller sends the whole message list and receives
the same SSE event stream as the session API; tool_end events carry
structured sources.

Auth: `Authorization: Bearer <API_SECRET_KEY>`.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from ..domain.entities import Message, MessageRole
from ..orchestrator import AgentOrchestrator, EventTranslator
from .auth import verify_api_key
from .router import SSE_HEADERS, get_orchestrator
from .schemas import V1ChatRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["v1"])

DEFAULT_SYSTEM_PROMPT = "你是一个友好的AI助手，请用中文回复。"

_ROLES = {"user": MessageRole.USER, "assistant": MessageRole.ASSISTANT}


def build_stateless_input(request: V1ChatRequest) -> tuple[str, list[Message]]:
    """Split caller messages into a system prompt and the chat history.

    System messages are joined with newlines; without any, the default
    prompt is used.
    """
    system_parts: list[str] = []
    messages: list[Message] = []

    for item in request.messages:
        if item.role == "system":
            system_parts.append(item.content)
        else:
            messages.append(Message(role=_ROLES[item.role], content=item.content))

    return "\n".join(system_parts) or DEFAULT_SYSTEM_PROMPT, messages


@router.post("/chat", dependencies=[Depends(verify_api_key)])
async def stateless_chat(
    request: V1ChatRequest,
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    """Run the agent over caller-supplied history and stream SSE events.

    `tools` is an allow-list of tool names: omitted means every tool, an
    empty list means plain chat without tools.
    """
    system_prompt, messages = build_stateless_input(request)
    if not messages:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="At least one user or assistant message is required",
        )

    system_prompt += orchestrator.prompt_builder.date_context()

    tools = orchestrator.tools.select(
        allowed=request.tools,
        web_search_enabled=request.web_search_enabled,
    )

    logger.info(
        f"Stateless chat: {len(messages)} messages, {len(tools)} tools offered"
    )

    async def event_stream():
        translator = EventTranslator()
        async for turn_event in orchestrator.run(
            messages,
            system_prompt=system_prompt,
            tools=tools,
            temperature=request.temperature,
        ):
            stream_event = translator.translate(turn_event)
            if stream_event is not None:
                yield stream_event.to_sse()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
