"""
Tests for the agent orchestrator.

Drives the reasoning loop with a scripted provider and checks the event
stream a client sees:
- Tool turns produce paired tool_start / tool_end events, answers stream
  as content, and every stream ends with exactly one done or error
- The iteration cap, tool failures and provider errors
- Session behavior: history, persistence, titles, personas, memory
"""

import asyncio
from uuid import UUID, uuid4

import pytest

from src.cortex.agent.domain.entities import (
    Importance,
    LongTermMemoryRecord,
    Message,
    MessageRole,
    StreamEventType,
    TurnEventType,
)
from src.cortex.agent.memory import InMemoryConversationStore, InMemoryMemoryStore
from src.cortex.agent.orchestrator import (
    FALLBACK_ANSWER,
    ITERATION_LIMIT_ANSWER,
    AgentConfig,
    AgentOrchestrator,
    ChatOptions,
    ConversationNotFoundError,
    PromptBuilder,
    make_title,
)
from src.cortex.agent.orchestrator.personas import BUILTIN_PERSONAS
from src.cortex.agent.tools import BaseTool, CalculatorTool, CurrentTimeTool, ToolRegistry


class FailingTool(BaseTool):
    name = "flaky"
    description = "Always fails"

    async def execute(self, params) -> str:
        raise ConnectionError("upstream refused")


class SlowTool(BaseTool):
    description = "Sleeps then answers"

    def __init__(self, name: str, delay: float):
        self.name = name
        self.delay = delay

    async def execute(self, params) -> str:
        await asyncio.sleep(self.delay)
        return f"{self.name} result"


@pytest.fixture
def registry(fixed_clock):
    return ToolRegistry([
        CurrentTimeTool("Asia/Shanghai", clock=fixed_clock),
        CalculatorTool(),
        FailingTool(),
        SlowTool("slow", 0.05),
        SlowTool("fast", 0.0),
    ])


@pytest.fixture
def memory_store():
    return InMemoryMemoryStore()


@pytest.fixture
def make_orchestrator(registry, memory_store, fixed_clock):
    def factory(provider, max_iterations=10, memory=True):
        orchestrator = AgentOrchestrator(
            llm_provider=provider,
            tool_registry=registry,
            conversation_store=InMemoryConversationStore(),
            memory_store=memory_store if memory else None,
            config=AgentConfig(max_iterations=max_iterations),
        )
        orchestrator.prompt_builder = PromptBuilder(clock=fixed_clock)
        return orchestrator

    return factory


async def _chat(orchestrator, message, context, conversation_id=None, options=None):
    events = [
        event
        async for event in orchestrator.chat(message, context, conversation_id, options)
    ]
    await orchestrator.memory.drain()
    return events


def _types(events):
    return [event.type for event in events]


def _content(events):
    return "".join(e.data["content"] for e in events if e.type == StreamEventType.CONTENT)


# =============================================================================
# Reasoning loop through chat()
# =============================================================================


class TestReasoningLoop:
    """Tests for tool turns and answers."""

    @pytest.mark.asyncio
    async def test_time_question_uses_tool(self, scripted_provider, make_orchestrator, user_context):
        provider = scripted_provider([
            scripted_provider.tool_turn(("call_1", "get_current_time", {})),
            scripted_provider.text_turn("现在是下午两点零九分。"),
        ])
        orchestrator = make_orchestrator(provider)

        events = await _chat(orchestrator, "现在几点", user_context)

        types = _types(events)
        assert types[:2] == [StreamEventType.TOOL_START, StreamEventType.TOOL_END]
        assert types[-1] == StreamEventType.DONE
        assert set(types[2:-1]) == {StreamEventType.CONTENT}

        start, end = events[0], events[1]
        assert start.data == {"tool_call_id": "call_1", "name": "get_current_time", "input": {}}
        assert end.data["tool_call_id"] == "call_1"
        assert end.data["result"] == "2026/02/12 星期四 14:09:57"
        assert end.data["success"] is True

        assert _content(events) == "现在是下午两点零九分。"
        assert events[-1].data["iterations"] == 2
        assert "conversation_id" in events[-1].data

    @pytest.mark.asyncio
    async def test_sequences_are_contiguous(self, scripted_provider, make_orchestrator, user_context):
        provider = scripted_provider([
            scripted_provider.tool_turn(("call_1", "calculator", {"expression": "127 * 389"})),
            scripted_provider.text_turn("127 乘以 389 等于 49403。"),
        ])

        events = await _chat(make_orchestrator(provider), "127*389等于多少", user_context)

        assert [e.sequence for e in events] == list(range(1, len(events) + 1))

    @pytest.mark.asyncio
    async def test_tool_results_fed_back_to_model(self, scripted_provider, make_orchestrator, user_context):
        provider = scripted_provider([
            scripted_provider.tool_turn(("call_1", "calculator", {"expression": "1 + 1"})),
            scripted_provider.text_turn("等于 2"),
        ])

        await _chat(make_orchestrator(provider), "1+1", user_context)

        second_call = provider.calls[1].messages
        assistant, tool = second_call[-2], second_call[-1]
        assert assistant.role == MessageRole.ASSISTANT
        assert [tc.id for tc in assistant.tool_calls] == ["call_1"]
        assert tool.role == MessageRole.TOOL
        assert tool.tool_call_id == "call_1"
        assert tool.content == "1 + 1 = 2"

    @pytest.mark.asyncio
    async def test_parallel_calls_keep_request_order(self, scripted_provider, make_orchestrator, user_context):
        provider = scripted_provider([
            scripted_provider.tool_turn(("a", "slow", {}), ("b", "fast", {})),
            scripted_provider.text_turn("好了"),
        ])

        events = await _chat(make_orchestrator(provider), "并行", user_context)

        starts = [e.data["tool_call_id"] for e in events if e.type == StreamEventType.TOOL_START]
        ends = [e.data["tool_call_id"] for e in events if e.type == StreamEventType.TOOL_END]
        assert starts == ["a", "b"]
        assert ends == ["a", "b"]

        tool_messages = [m for m in provider.calls[1].messages if m.role == MessageRole.TOOL]
        assert [m.tool_call_id for m in tool_messages] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_tool_turn_text_is_not_streamed(self, scripted_provider, make_orchestrator, user_context):
        provider = scripted_provider([
            scripted_provider.tool_turn(("call_1", "get_current_time", {}), text="让我查一下时间"),
            scripted_provider.text_turn("两点了"),
        ])

        events = await _chat(make_orchestrator(provider), "几点了", user_context)

        assert _content(events) == "两点了"
        assert provider.calls[1].messages[-2].content == "让我查一下时间"

    @pytest.mark.asyncio
    async def test_tool_failure_does_not_end_turn(self, scripted_provider, make_orchestrator, user_context):
        provider = scripted_provider([
            scripted_provider.tool_turn(("call_1", "flaky", {})),
            scripted_provider.text_turn("工具暂时不可用。"),
        ])

        events = await _chat(make_orchestrator(provider), "试试", user_context)

        end = next(e for e in events if e.type == StreamEventType.TOOL_END)
        assert end.data["success"] is False
        assert "upstream refused" in end.data["result"]
        assert events[-1].type == StreamEventType.DONE

    @pytest.mark.asyncio
    async def test_unknown_tool_answered_in_context_only(self, scripted_provider, make_orchestrator, user_context):
        provider = scripted_provider([
            scripted_provider.tool_turn(("call_1", "nonexistent", {})),
            scripted_provider.text_turn("没有这个工具"),
        ])

        events = await _chat(make_orchestrator(provider), "试试", user_context)

        assert StreamEventType.TOOL_START not in _types(events)
        assert StreamEventType.TOOL_END not in _types(events)
        tool_messages = [m for m in provider.calls[1].messages if m.role == MessageRole.TOOL]
        assert [m.tool_call_id for m in tool_messages] == ["call_1"]
        assert events[-1].type == StreamEventType.DONE

    @pytest.mark.asyncio
    async def test_tool_not_offered_is_rejected(self, scripted_provider, make_orchestrator, user_context):
        provider = scripted_provider([
            scripted_provider.tool_turn(
                ("call_1", "calculator", {"expression": "1+1"}),
                ("call_2", "get_current_time", {}),
            ),
            scripted_provider.text_turn("好的"),
        ])
        options = ChatOptions(allowed_tools=["get_current_time"])

        events = await _chat(make_orchestrator(provider), "算一下", user_context, options=options)

        assert [d.name for d in provider.calls[0].tools] == ["get_current_time"]
        starts = [e.data["name"] for e in events if e.type == StreamEventType.TOOL_START]
        ends = [e.data["name"] for e in events if e.type == StreamEventType.TOOL_END]
        assert starts == ends == ["get_current_time"]

        tool_messages = [m for m in provider.calls[1].messages if m.role == MessageRole.TOOL]
        assert [m.tool_call_id for m in tool_messages] == ["call_1", "call_2"]
        assert "不可用" in tool_messages[0].content

    @pytest.mark.asyncio
    async def test_disabled_web_search_never_announced(
        self, scripted_provider, make_orchestrator, registry, user_context
    ):
        registry.register(SlowTool("web_search", 0.0))
        provider = scripted_provider([
            scripted_provider.tool_turn(("call_1", "web_search", {"query": "新闻"})),
            scripted_provider.text_turn("今天没有搜索结果。"),
        ])
        options = ChatOptions(web_search_enabled=False)

        events = await _chat(make_orchestrator(provider), "查新闻", user_context, options=options)

        assert "web_search" not in [d.name for d in provider.calls[0].tools]
        starts = [e.data["name"] for e in events if e.type == StreamEventType.TOOL_START]
        assert "web_search" not in starts
        assert _content(events) == "今天没有搜索结果。"
        assert events[-1].type == StreamEventType.DONE

    @pytest.mark.asyncio
    async def test_empty_allow_list_offers_no_tools(self, scripted_provider, make_orchestrator, user_context):
        provider = scripted_provider([scripted_provider.text_turn("你好")])

        await _chat(make_orchestrator(provider), "你好", user_context, options=ChatOptions(allowed_tools=[]))

        assert provider.calls[0].tools is None

    @pytest.mark.asyncio
    async def test_iteration_cap(self, scripted_provider, make_orchestrator, user_context):
        provider = scripted_provider(
            [scripted_provider.tool_turn(("call_loop", "get_current_time", {}))],
            repeat_last=True,
        )

        events = await _chat(make_orchestrator(provider, max_iterations=3), "一直查", user_context)

        assert len(provider.calls) == 3
        assert _types(events).count(StreamEventType.TOOL_START) == 3
        assert _content(events) == ITERATION_LIMIT_ANSWER
        assert events[-1].type == StreamEventType.DONE
        assert events[-1].data["truncated"] is True

    @pytest.mark.asyncio
    async def test_empty_answer_uses_fallback(self, scripted_provider, make_orchestrator, user_context):
        provider = scripted_provider([scripted_provider.text_turn("")])

        events = await _chat(make_orchestrator(provider), "你好", user_context)

        assert _content(events) == FALLBACK_ANSWER

    @pytest.mark.asyncio
    async def test_thinking_is_streamed_then_closed(self, scripted_provider, make_orchestrator, user_context):
        provider = scripted_provider([scripted_provider.text_turn("答案", thinking="先想一想")])

        events = await _chat(make_orchestrator(provider), "问题", user_context)

        assert _types(events) == [
            StreamEventType.THINKING,
            StreamEventType.THINKING_END,
            StreamEventType.CONTENT,
            StreamEventType.DONE,
        ]
        assert events[0].data == {"content": "先想一想"}

    @pytest.mark.asyncio
    async def test_provider_error_ends_with_sanitized_error(
        self, scripted_provider, make_orchestrator, user_context
    ):
        provider = scripted_provider([
            scripted_provider.error_turn("connect failed: postgresql://admin:pw@10.0.0.5/db"),
        ])
        orchestrator = make_orchestrator(provider)

        events = await _chat(orchestrator, "你好", user_context)

        assert _types(events) == [StreamEventType.ERROR]
        message = events[0].data["message"]
        assert "admin:pw" not in message
        assert "[DATABASE_URL]" in message

    @pytest.mark.asyncio
    async def test_provider_exception_ends_with_error(
        self, scripted_provider, make_orchestrator, user_context
    ):
        provider = scripted_provider()

        async def broken_chat(**kwargs):
            raise RuntimeError("socket closed")
            yield  # pragma: no cover

        provider.chat = broken_chat

        events = await _chat(make_orchestrator(provider), "你好", user_context)

        assert events[-1].type == StreamEventType.ERROR
        assert "socket closed" in events[-1].data["message"]
        assert StreamEventType.DONE not in _types(events)


# =============================================================================
# Bare loop
# =============================================================================


class TestRun:
    """Tests for run(), the loop shared with the stateless API."""

    @pytest.mark.asyncio
    async def test_run_yields_single_terminal_event(self, scripted_provider, make_orchestrator):
        provider = scripted_provider([
            scripted_provider.tool_turn(("c1", "get_current_time", {})),
            scripted_provider.text_turn("好"),
        ])
        orchestrator = make_orchestrator(provider)
        tools = orchestrator.tools.select(["get_current_time"])


        events = [
            event
            async for event in orchestrator.run(
                [Message(role=MessageRole.USER, content="几点")],
                system_prompt="你是助手",
                tools=tools,
            )
        ]

        terminal = [e for e in events if e.type in (TurnEventType.COMPLETED, TurnEventType.FAILED)]
        assert len(terminal) == 1
        assert terminal[0].answer == "好"
        assert provider.calls[0].system_prompt == "你是助手"

    @pytest.mark.asyncio
    async def test_run_does_not_mutate_input(self, scripted_provider, make_orchestrator):

        provider = scripted_provider([
            scripted_provider.tool_turn(("c1", "get_current_time", {})),
            scripted_provider.text_turn("好"),
        ])
        orchestrator = make_orchestrator(provider)
        messages = [Message(role=MessageRole.USER, content="几点")]

        async for _ in orchestrator.run(messages, tools=orchestrator.tools.select()):
            pass

        assert len(messages) == 1


# =============================================================================
# Session behavior
# =============================================================================


class TestSession:
    """Tests for conversation state around the loop."""

    @pytest.mark.asyncio
    async def test_messages_persisted_and_title_set(
        self, scripted_provider, make_orchestrator, user_context
    ):
        answer = "## 你好！\n我是你的**助手**，很高兴见到你，有什么可以帮你？"
        provider = scripted_provider([scripted_provider.text_turn(answer)])
        orchestrator = make_orchestrator(provider)

        events = await _chat(orchestrator, "你好", user_context)
        conversation_id = events[-1].data["conversation_id"]


        conversation = await orchestrator.get_conversation(UUID(conversation_id), user_context)
        messages = await orchestrator.get_messages(UUID(conversation_id), user_context)

        assert [(m.role, m.content) for m in messages] == [
            (MessageRole.USER, "你好"),
            (MessageRole.ASSISTANT, answer),
        ]
        assert conversation.title == make_title(answer)
        assert "#" not in conversation.title and "*" not in conversation.title

    @pytest.mark.asyncio
    async def test_title_only_set_once(self, scripted_provider, make_orchestrator, user_context):
        provider = scripted_provider([
            scripted_provider.text_turn("第一次回复的内容"),
            scripted_provider.text_turn("第二次回复的内容"),
        ])
        orchestrator = make_orchestrator(provider)

        events = await _chat(orchestrator, "一", user_context)

        conversation_id = UUID(events[-1].data["conversation_id"])
        await _chat(orchestrator, "二", user_context, conversation_id)

        conversation = await orchestrator.get_conversation(conversation_id, user_context)
        assert conversation.title == make_title("第一次回复的内容")

    @pytest.mark.asyncio
    async def test_history_sent_on_next_turn(self, scripted_provider, make_orchestrator, user_context):
        provider = scripted_provider([
            scripted_provider.text_turn("你好，小明"),
            scripted_provider.text_turn("你叫小明"),
        ])
        orchestrator = make_orchestrator(provider)

        events = await _chat(orchestrator, "我叫小明", user_context)

        conversation_id = UUID(events[-1].data["conversation_id"])
        await _chat(orchestrator, "我叫什么", user_context, conversation_id)

        contents = [m.content for m in provider.calls[1].messages]
        assert contents == ["我叫小明", "你好，小明", "我叫什么"]

    @pytest.mark.asyncio
    async def test_failed_turn_persists_only_user_message(
        self, scripted_provider, make_orchestrator, user_context
    ):
        provider = scripted_provider([scripted_provider.error_turn("boom")])
        orchestrator = make_orchestrator(provider)
        conversation = await orchestrator.start_conversation(user_context)

        await _chat(orchestrator, "你好", user_context, conversation.id)

        messages = await orchestrator.get_messages(conversation.id, user_context)
        assert [m.role for m in messages] == [MessageRole.USER]

    @pytest.mark.asyncio
    async def test_foreign_conversation_rejected(
        self, scripted_provider, make_orchestrator, user_context, other_user_context
    ):
        provider = scripted_provider([scripted_provider.text_turn("不应调用")])
        orchestrator = make_orchestrator(provider)
        conversation = await orchestrator.start_conversation(user_context)

        events = await _chat(orchestrator, "你好", other_user_context, conversation.id)

        assert _types(events) == [StreamEventType.ERROR]
        assert provider.calls == []
        with pytest.raises(ConversationNotFoundError):
            await orchestrator.get_messages(conversation.id, other_user_context)

    @pytest.mark.asyncio
    async def test_unknown_conversation_rejected(self, scripted_provider, make_orchestrator, user_context):
        orchestrator = make_orchestrator(scripted_provider())

        events = await _chat(orchestrator, "你好", user_context, uuid4())

        assert _types(events) == [StreamEventType.ERROR]


class TestPersonasAndPrompt:
    """Tests for system prompt construction."""

    @pytest.mark.asyncio
    async def test_persona_prompt_temperature_and_date(
        self, scripted_provider, make_orchestrator, user_context
    ):
        provider = scripted_provider([scripted_provider.text_turn("喵～")])
        orchestrator = make_orchestrator(provider)

        await _chat(orchestrator, "你好", user_context, options=ChatOptions(persona="cat"))

        call = provider.calls[0]
        assert call.system_prompt.startswith(BUILTIN_PERSONAS["cat"].prompt)
        assert "[当前日期: 2026年2月12日星期四]" in call.system_prompt
        assert call.temperature == BUILTIN_PERSONAS["cat"].temperature

    @pytest.mark.asyncio
    async def test_unknown_persona_falls_back(self, scripted_provider, make_orchestrator, user_context):
        provider = scripted_provider([scripted_provider.text_turn("好")])
        orchestrator = make_orchestrator(provider)

        conversation = await orchestrator.start_conversation(user_context, persona="pirate")
        await _chat(orchestrator, "你好", user_context, conversation.id)

        assert conversation.persona == "assistant"
        assert provider.calls[0].system_prompt.startswith(BUILTIN_PERSONAS["assistant"].prompt)

    @pytest.mark.asyncio
    async def test_existing_conversation_keeps_persona(
        self, scripted_provider, make_orchestrator, user_context
    ):
        provider = scripted_provider([scripted_provider.text_turn("好")])
        orchestrator = make_orchestrator(provider)
        conversation = await orchestrator.start_conversation(user_context, persona="coder")

        await _chat(orchestrator, "你好", user_context, conversation.id, ChatOptions(persona="poet"))

        assert provider.calls[0].system_prompt.startswith(BUILTIN_PERSONAS["coder"].prompt)

    @pytest.mark.asyncio
    async def test_option_overrides(self, scripted_provider, make_orchestrator, user_context):
        provider = scripted_provider([scripted_provider.text_turn("好")])
        orchestrator = make_orchestrator(provider)

        await _chat(
            orchestrator,
            "你好",
            user_context,
            options=ChatOptions(system_prompt="只回答一个字", temperature=0.1),
        )

        assert provider.calls[0].system_prompt == "只回答一个字"
        assert provider.calls[0].temperature == 0.1


class TestLongTermMemory:
    """Tests for recall into the prompt and background extraction."""

    @pytest.mark.asyncio
    async def test_memories_recalled_into_prompt(
        self, scripted_provider, make_orchestrator, memory_store, user_context
    ):
        await memory_store.save(LongTermMemoryRecord(
            content="用户养了一只叫咪咪的橘猫",
            keywords=("猫", "宠物"),
            importance=Importance.HIGH,
            tenant_id=user_context.tenant_id,
        ))
        provider = scripted_provider([scripted_provider.text_turn("你的猫叫咪咪")])

        await _chat(make_orchestrator(provider), "我的 宠物 叫什么", user_context)

        assert "- 用户养了一只叫咪咪的橘猫" in provider.calls[0].system_prompt

    @pytest.mark.asyncio
    async def test_memories_from_other_tenant_not_recalled(
        self, scripted_provider, make_orchestrator, memory_store, user_context
    ):
        await memory_store.save(LongTermMemoryRecord(
            content="别的租户的宠物信息", keywords=("宠物",), tenant_id="tenant-z",
        ))
        provider = scripted_provider([scripted_provider.text_turn("不知道")])

        await _chat(make_orchestrator(provider), "我的 宠物 叫什么", user_context)

        assert "别的租户" not in provider.calls[0].system_prompt

    @pytest.mark.asyncio
    async def test_facts_extracted_after_answer(
        self, scripted_provider, make_orchestrator, memory_store, user_context
    ):
        provider = scripted_provider(
            [scripted_provider.text_turn("咪咪这个名字真可爱！")],
            completion="猫,宠物,咪咪|high|用户养了一只叫咪咪的橘猫",
        )

        events = await _chat(make_orchestrator(provider), "我养了一只叫咪咪的橘猫", user_context)

        assert len(provider.completions) == 1
        records = await memory_store.search("宠物", user_context)
        assert [r.content for r in records] == ["用户养了一只叫咪咪的橘猫"]
        assert records[0].session_id == events[-1].data["conversation_id"]

    @pytest.mark.asyncio
    async def test_no_extraction_after_failure(
        self, scripted_provider, make_orchestrator, user_context
    ):
        provider = scripted_provider([scripted_provider.error_turn("boom")])

        await _chat(make_orchestrator(provider), "我养了一只叫咪咪的橘猫", user_context)

        assert provider.completions == []

    @pytest.mark.asyncio
    async def test_extraction_failure_does_not_affect_stream(
        self, scripted_provider, make_orchestrator, user_context
    ):
        provider = scripted_provider([scripted_provider.text_turn("咪咪这个名字真可爱！")])

        async def broken_complete(**kwargs):
            raise RuntimeError("extraction model down")

        provider.complete = broken_complete

        events = await _chat(make_orchestrator(provider), "我养了一只叫咪咪的橘猫", user_context)

        assert events[-1].type == StreamEventType.DONE
