"""
Agent Orchestrator.

Main orchestration logic for the agent. Coordinates:
- LLM calls with streaming
- Tool execution and result handling (fan-out / fan-in per turn)
- Long-term memory recall and background extraction
- Conversation persistence and titling
- Event translation for streaming clients
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Iterable, Optional
from uuid import UUID

from ..domain.entities import (
    ChatEventType,
    Conversation,
    Message,
    MessageRole,
    StreamEvent,
    ToolCall,
    ToolDefinition,
    TurnEvent,
    TurnEventType,
    TurnState,
    UserContext,
)
from ..domain.ports import IConversationStore, ILLMProvider, ILongTermMemoryStore
from ..memory.long_term import MemoryExtractor
from ..security.error_sanitizer import sanitize_error_message
from ..tools.registry import ToolRegistry
from .conversation_manager import ConversationManager
from .event_translator import EventTranslator, chunk_text
from .memory_manager import MemoryManager
from .personas import PersonaRegistry
from .prompt_builder import PromptBuilder
from .tool_executor import ToolExecutor

logger = logging.getLogger(__name__)

FALLBACK_ANSWER = "[AI 未生成回复]"
ITERATION_LIMIT_ANSWER = "抱歉，我在多次调用工具后仍未能完成这个请求，请尝试换一种问法或缩小问题范围。"
THINKING_SUMMARY_CHARS = 500


class ConversationNotFoundError(LookupError):
    """Raised when a conversation does not exist or belongs to someone else."""


@dataclass
class AgentConfig:
    """Configuration for the agent orchestrator.

    Attributes:
        max_iterations: Model invocations allowed per user message
        history_limit: Recent messages loaded from the conversation
        memory_search_limit: Long-term memories recalled per message
        content_chunk_size: Characters per content delta for buffered answers
        max_tokens: Maximum tokens per model call (provider default if None)
        timezone: Timezone for the date line in the system prompt
        enable_memory_search: Whether to recall long-term memories
        enable_memory_extraction: Whether to extract facts after each answer
    """

    max_iterations: int = 10
    history_limit: int = 20
    memory_search_limit: int = 5
    content_chunk_size: int = 5
    max_tokens: Optional[int] = None
    timezone: str = "Asia/Shanghai"
    enable_memory_search: bool = True
    enable_memory_extraction: bool = True


@dataclass
class ChatOptions:
    """Per-request options.

    Attributes:
        persona: Persona key for a new conversation (existing ones keep theirs)
        system_prompt: Replaces the persona-built system prompt entirely
        temperature: Overrides the persona temperature
        allowed_tools: Tool allow-list; None means all, empty means none
        web_search_enabled: Offer the web_search tool
    """

    persona: Optional[str] = None
    system_prompt: Optional[str] = None
    temperature: Optional[float] = None
    allowed_tools: Optional[list[str]] = None
    web_search_enabled: bool = False


@dataclass
class _ModelTurn:
    """What one model invocation produced."""

    text: str = ""
    thinking: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def state(self) -> TurnState:
        return TurnState.HAS_TOOL_CALLS if self.tool_calls else TurnState.TERMINAL


class AgentOrchestrator:
    """Main agent orchestration logic.

    Manages the reasoning loop:
    1. Call the LLM with the full accumulated message list and the offered tools
    2. If the turn requested tools, run them concurrently, append the
       results in request order and call the LLM again
    3. A turn without tool calls is the answer; stop

    chat() wraps the loop with conversation state: history, persona,
    memory recall, persistence, titling and background fact extraction.
    run() is the bare loop, shared with the stateless API.

    Usage:
        orchestrator = AgentOrchestrator(
            llm_provider=provider,
            tool_registry=registry,
            conversation_store=conv_store,
            memory_store=memory_store,
        )

        async for event in orchestrator.chat("现在几点？", context):
            yield event.to_sse()
    """

    def __init__(
        self,
        llm_provider: ILLMProvider,
        tool_registry: ToolRegistry,
        conversation_store: IConversationStore,
        memory_store: Optional[ILongTermMemoryStore] = None,
        memory_extractor: Optional[MemoryExtractor] = None,
        personas: Optional[PersonaRegistry] = None,
        config: Optional[AgentConfig] = None,
    ):
        """Initialize the orchestrator.

        Args:
            llm_provider: LLM provider for chat turns
            tool_registry: Registry of available tools
            conversation_store: Store for conversations (short-term memory)
            memory_store: Long-term memory store
            memory_extractor: Fact extractor (defaults to one on llm_provider)
            personas: Persona registry (built-in personas if None)
            config: Agent configuration
        """
        self.llm = llm_provider
        self.tools = tool_registry
        self.config = config or AgentConfig()
        self.personas = personas or PersonaRegistry()

        self.conversations = ConversationManager(
            conversation_store, history_limit=self.config.history_limit
        )
        self.memory = MemoryManager(
            memory_store=memory_store,
            extractor=memory_extractor or (MemoryExtractor(llm_provider) if memory_store else None),
            search_limit=self.config.memory_search_limit,
            enable_search=self.config.enable_memory_search,
            enable_extraction=self.config.enable_memory_extraction,
        )
        self.prompt_builder = PromptBuilder(timezone=self.config.timezone)
        self.tool_executor = ToolExecutor(tool_registry)

    # ============================================
    # Reasoning loop
    # ============================================

    async def run(
        self,
        messages: list[Message],
        system_prompt: Optional[str] = None,
        tools: Optional[list[ToolDefinition]] = None,
        temperature: float = 0.7,
        allowed_names: Optional[Iterable[str]] = None,
    ) -> AsyncIterator[TurnEvent]:
        """Run the reasoning loop over a message list.

        Args:
            messages: History ending with the user's message (not mutated)
            system_prompt: System prompt for every model call
            tools: Tool definitions offered to the model
            temperature: Sampling temperature
            allowed_names: Names the executor accepts (defaults to the
                names in tools)

        Yields:
            TurnEvents, ending with exactly one COMPLETED or FAILED
        """
        messages = list(messages)
        tools = list(tools or [])
        if allowed_names is None:
            allowed_names = [tool.name for tool in tools]
        allowed = frozenset(allowed_names)

        try:
            for iteration in range(1, self.config.max_iterations + 1):
                turn = _ModelTurn()

                async for event in self._call_model(messages, system_prompt, tools, temperature, turn):
                    event.iteration = iteration
                    yield event

                if turn.thinking:
                    yield TurnEvent(type=TurnEventType.THINKING_END, iteration=iteration)

                if turn.error is not None:
                    logger.warning(f"LLM provider failed on iteration {iteration}: {turn.error}")
                    yield TurnEvent(
                        type=TurnEventType.FAILED,
                        iteration=iteration,
                        text=sanitize_error_message(turn.error),
                    )
                    return

                if turn.state == TurnState.TERMINAL:
                    answer = turn.text or FALLBACK_ANSWER
                    for event in self._answer_events(answer, iteration):
                        yield event
                    return

                messages.append(
                    Message(
                        role=MessageRole.ASSISTANT,
                        content=turn.text,
                        tool_calls=turn.tool_calls,
                        thinking_summary=turn.thinking[:THINKING_SUMMARY_CHARS] or None,
                    )
                )

                # Calls to tools that were not offered are answered in context
                # but never surface as tool events
                for tool_call in turn.tool_calls:
                    if tool_call.name in allowed:
                        yield TurnEvent(
                            type=TurnEventType.TOOL_STARTED,
                            iteration=iteration,
                            tool_call=tool_call,
                        )
                    else:
                        logger.warning(f"Model requested tool not offered: {tool_call.name}")

                results = await self.tool_executor.execute_tool_calls(turn.tool_calls, allowed)

                for tool_call, result in zip(turn.tool_calls, results):
                    if tool_call.name in allowed:
                        yield TurnEvent(
                            type=TurnEventType.TOOL_FINISHED,
                            iteration=iteration,
                            tool_result=result,
                        )
                    messages.append(Message.tool_result(result))

            logger.warning(
                f"Reached max iterations ({self.config.max_iterations}) without a final answer"
            )
            for event in self._answer_events(
                ITERATION_LIMIT_ANSWER, self.config.max_iterations, truncated=True
            ):
                yield event

        except Exception as e:
            logger.exception(f"Reasoning loop failed: {e}")
            yield TurnEvent(type=TurnEventType.FAILED, text=sanitize_error_message(str(e)))

    async def _call_model(
        self,
        messages: list[Message],
        system_prompt: Optional[str],
        tools: list[ToolDefinition],
        temperature: float,
        turn: _ModelTurn,
    ) -> AsyncIterator[TurnEvent]:
        """Stream one model invocation, accumulating into turn.

        Thinking deltas are forwarded as they arrive; answer text is
        buffered because a turn is only known to be terminal once the
        provider has finished it.
        """
        text_parts: list[str] = []
        thinking_parts: list[str] = []
        pending_names: dict[str, str] = {}

        async for event in self.llm.chat(
            messages=messages,
            tools=tools or None,
            system_prompt=system_prompt,
            temperature=temperature,
            max_tokens=self.config.max_tokens,
        ):
            if event.type == ChatEventType.TEXT_DELTA and event.content:
                text_parts.append(event.content)

            elif event.type == ChatEventType.THINKING_DELTA and event.content:
                thinking_parts.append(event.content)
                yield TurnEvent(type=TurnEventType.THINKING_DELTA, text=event.content)

            elif event.type == ChatEventType.TOOL_CALL_START:
                pending_names[event.tool_call_id] = event.tool_name or ""

            elif event.type == ChatEventType.TOOL_CALL_END:
                name = pending_names.pop(event.tool_call_id, None) or event.tool_name or ""
                turn.tool_calls.append(
                    ToolCall(
                        id=event.tool_call_id,
                        name=name,
                        arguments=event.tool_arguments or {},
                    )
                )

            elif event.type == ChatEventType.ERROR:
                turn.error = event.error or event.content or "LLM error"
                break

            elif event.type == ChatEventType.DONE:
                break

        turn.text = "".join(text_parts)
        turn.thinking = "".join(thinking_parts)

    def _answer_events(
        self, answer: str, iteration: int, truncated: bool = False
    ) -> list[TurnEvent]:
        events = [
            TurnEvent(type=TurnEventType.ANSWER_DELTA, iteration=iteration, text=chunk)
            for chunk in chunk_text(answer, self.config.content_chunk_size)
        ]
        metadata = {"truncated": True} if truncated else {}
        events.append(
            TurnEvent(
                type=TurnEventType.COMPLETED,
                iteration=iteration,
                answer=answer,
                metadata=metadata,
            )
        )
        return events

    # ============================================
    # Session-backed chat
    # ============================================

    async def start_conversation(
        self, context: UserContext, persona: Optional[str] = None
    ) -> Conversation:
        """Create a conversation with a (resolved) persona."""
        resolved = self.personas.resolve(persona)
        return await self.conversations.create(context, persona=resolved.key)

    async def get_conversation(
        self, conversation_id: UUID, context: UserContext
    ) -> Optional[Conversation]:
        return await self.conversations.get(conversation_id, context)

    async def get_messages(
        self, conversation_id: UUID, context: UserContext, limit: Optional[int] = None
    ) -> list[Message]:
        """Recent messages of an owned conversation.

        Raises:
            ConversationNotFoundError: If the user does not own the conversation
        """
        if await self.conversations.get(conversation_id, context) is None:
            raise ConversationNotFoundError(str(conversation_id))
        return await self.conversations.get_history(conversation_id, context, limit)

    async def chat(
        self,
        message: str,
        context: UserContext,
        conversation_id: Optional[UUID] = None,
        options: Optional[ChatOptions] = None,
    ) -> AsyncIterator[StreamEvent]:
        """Process a user message and stream the response.

        Args:
            message: User's message
            context: User context for tenant isolation
            conversation_id: Existing conversation, or None to start one
            options: Per-request options

        Yields:
            StreamEvents ending with `done` or `error`
        """
        options = options or ChatOptions()
        translator = EventTranslator()

        try:
            conversation = await self.conversations.get_or_create(
                conversation_id,
                context,
                persona=self.personas.resolve(options.persona).key,
            )
            if conversation is None:
                yield translator.translate(
                    TurnEvent(type=TurnEventType.FAILED, text="对话不存在或无权访问")
                )
                return

            persona = self.personas.resolve(conversation.persona)

            history = await self.conversations.get_history(conversation.id, context)
            user_message = await self.conversations.add_message(
                conversation.id,
                Message(role=MessageRole.USER, content=message),
                context,
            )

            memories = await self.memory.search_memory(message, context)
            system_prompt = options.system_prompt or self.prompt_builder.build(
                persona.prompt, memories
            )
            temperature = (
                options.temperature if options.temperature is not None else persona.temperature
            )

            tools = self.tools.select(
                allowed=options.allowed_tools,
                web_search_enabled=options.web_search_enabled,
            )

            completed: Optional[TurnEvent] = None
            async for event in self.run(
                history + [user_message],
                system_prompt=system_prompt,
                tools=tools,
                temperature=temperature,
            ):
                if event.type == TurnEventType.COMPLETED:
                    completed = event
                    continue

                stream_event = translator.translate(event)
                if stream_event is not None:
                    yield stream_event

                if event.type == TurnEventType.FAILED:
                    return

            if completed is None:
                return

            await self.conversations.add_message(
                conversation.id,
                Message(role=MessageRole.ASSISTANT, content=completed.answer),
                context,
            )
            await self.conversations.set_title_from_reply(conversation, completed.answer, context)

            self.memory.schedule_extraction(
                message, completed.answer, context, session_id=str(conversation.id)
            )

            completed.metadata["conversation_id"] = str(conversation.id)
            yield translator.translate(completed)

        except Exception as e:
            logger.exception(f"Chat failed: {e}")
            yield translator.translate(
                TurnEvent(type=TurnEventType.FAILED, text=sanitize_error_message(str(e)))
            )
