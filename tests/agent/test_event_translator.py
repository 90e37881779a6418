"""
Tests for the streaming event translator, personas and prompt building.
"""

import json

import pytest

from src.cortex.agent.domain.entities import (
    LongTermMemoryRecord,
    SearchResult,
    StreamEventType,
    ToolCall,
    ToolResult,
    TurnEvent,
    TurnEventType,
)
from src.cortex.agent.orchestrator import (
    BUILTIN_PERSONAS,
    EventTranslator,
    Persona,
    PersonaRegistry,
    PromptBuilder,
    chunk_text,
    make_title,
)


class TestEventTranslator:
    """Tests for TurnEvent -> StreamEvent mapping."""

    def test_sequence_starts_at_one_and_increments(self):
        translator = EventTranslator()
        first = translator.translate(TurnEvent(type=TurnEventType.ANSWER_DELTA, text="你好"))
        second = translator.translate(TurnEvent(type=TurnEventType.ANSWER_DELTA, text="世界"))

        assert (first.sequence, second.sequence) == (1, 2)
        assert translator.sequence == 2

    def test_events_without_wire_form_do_not_consume_sequence(self):
        translator = EventTranslator()
        assert translator.translate(TurnEvent(type=TurnEventType.ANSWER_DELTA, text="")) is None
        assert translator.translate(TurnEvent(type=TurnEventType.THINKING_DELTA, text=None)) is None

        event = translator.translate(TurnEvent(type=TurnEventType.THINKING_END))
        assert event.sequence == 1

    def test_tool_start(self):
        call = ToolCall(id="call_1", name="calculator", arguments={"expression": "1+1"})
        event = EventTranslator().translate(TurnEvent(type=TurnEventType.TOOL_STARTED, tool_call=call))

        assert event.type == StreamEventType.TOOL_START
        assert event.data == {
            "tool_call_id": "call_1",
            "name": "calculator",
            "input": {"expression": "1+1"},
        }

    def test_tool_end_truncates_result_and_carries_sources(self):
        result = ToolResult(
            tool_call_id="call_1",
            name="web_search",
            content="x" * 2000,
            sources=[SearchResult(title="标题", url="https://example.com", snippet="摘要")],
        )
        event = EventTranslator().translate(
            TurnEvent(type=TurnEventType.TOOL_FINISHED, tool_result=result)
        )

        assert event.type == StreamEventType.TOOL_END
        assert len(event.data["result"]) == 800
        assert event.data["success"] is True
        assert event.data["sources"] == [
            {"title": "标题", "url": "https://example.com", "snippet": "摘要"}
        ]

    def test_failed_maps_to_error(self):
        event = EventTranslator().translate(TurnEvent(type=TurnEventType.FAILED, text=None))
        assert event.type == StreamEventType.ERROR
        assert event.data == {"message": "生成出错"}

    def test_completed_maps_to_done_with_metadata(self):
        event = EventTranslator().translate(
            TurnEvent(
                type=TurnEventType.COMPLETED,
                iteration=2,
                answer="好",
                metadata={"conversation_id": "abc"},
            )
        )
        assert event.type == StreamEventType.DONE
        assert event.data == {"iterations": 2, "conversation_id": "abc"}

    def test_sse_frame(self):
        event = EventTranslator().translate(TurnEvent(type=TurnEventType.ANSWER_DELTA, text="你好"))
        frame = event.to_sse()

        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        assert "你好" in frame
        assert json.loads(frame[len("data: "):]) == {"type": "content", "sequence": 1, "content": "你好"}

    def test_reset(self):
        translator = EventTranslator()
        translator.translate(TurnEvent(type=TurnEventType.THINKING_END))
        translator.reset()
        assert translator.translate(TurnEvent(type=TurnEventType.THINKING_END)).sequence == 1


class TestChunkText:
    def test_chunks_of_five(self):
        assert chunk_text("一二三四五六七", 5) == ["一二三四五", "六七"]

    def test_empty(self):
        assert chunk_text("", 5) == []


class TestTitle:
    def test_strips_markdown_and_truncates(self):
        assert make_title("##标题\n**重点**内容") == "标题重点内容..."
        assert make_title("字" * 30) == "字" * 20 + "..."


class TestPersonas:
    """Tests for the persona registry."""

    def test_builtin_personas(self):
        registry = PersonaRegistry()
        assert registry.keys == ["assistant", "cat", "coder", "poet"]
        assert registry.resolve("coder").temperature == 0.3

    @pytest.mark.parametrize("key", [None, "", "pirate"])
    def test_unknown_falls_back_to_assistant(self, key):
        assert PersonaRegistry().resolve(key).key == "assistant"

    def test_custom_persona(self):
        registry = PersonaRegistry([Persona(key="lawyer", name="律师", prompt="你是律师。", temperature=0.2)])
        assert registry.resolve("lawyer").prompt == "你是律师。"
        assert "lawyer" not in BUILTIN_PERSONAS


class TestPromptBuilder:
    """Tests for system prompt assembly."""

    def test_date_context(self, fixed_clock):
        assert PromptBuilder(clock=fixed_clock).date_context() == "\n[当前日期: 2026年2月12日星期四]"

    def test_date_follows_timezone(self, fixed_clock):
        # 06:09 UTC is still the 11th in Los Angeles
        builder = PromptBuilder(timezone="America/Los_Angeles", clock=fixed_clock)
        assert "2026年2月11日星期三" in builder.date_context()

    def test_build_without_memories(self, fixed_clock):
        prompt = PromptBuilder(clock=fixed_clock).build("你是助手。")
        assert prompt == "你是助手。\n[当前日期: 2026年2月12日星期四]"

    def test_build_with_memories(self, fixed_clock):
        prompt = PromptBuilder(clock=fixed_clock).build(
            "你是助手。", [LongTermMemoryRecord(content="用户喜欢吃川菜")]
        )
        assert prompt.startswith("你是助手。\n[当前日期: 2026年2月12日星期四]\n\n[长期记忆")
        assert "- 用户喜欢吃川菜" in prompt
