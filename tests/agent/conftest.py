"""
Shared fixtures for the agent tests.

ScriptedProvider replays pre-recorded model turns so the reasoning loop
can be driven without a network call.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

import pytest

from src.cortex.agent.domain.entities import (
    ChatEvent,
    ErrorType,
    Message,
    ToolDefinition,
    UserContext,
)
from src.cortex.agent.domain.ports import ILLMProvider


@dataclass
class RecordedCall:
    """Arguments of one chat() invocation."""

    messages: list[Message]
    tools: Optional[list[ToolDefinition]]
    system_prompt: Optional[str]
    temperature: float


class ScriptedProvider(ILLMProvider):
    """LLM provider that yields scripted ChatEvents, one script per turn.

    When the script runs out, the last turn is replayed if repeat_last is
    set; otherwise a plain "完成" answer is produced.
    """

    def __init__(
        self,
        turns: Optional[list[list[ChatEvent]]] = None,
        repeat_last: bool = False,
        completion: str = "NONE",
    ):
        self.turns = list(turns or [])
        self.repeat_last = repeat_last
        self.completion = completion
        self.calls: list[RecordedCall] = []
        self.completions: list[dict[str, Any]] = []

    @property
    def model_name(self) -> str:
        return "scripted"

    @property
    def supports_tools(self) -> bool:
        return True

    async def chat(
        self,
        messages,
        tools=None,
        system_prompt=None,
        temperature=0.7,
        max_tokens=None,
    ) -> AsyncIterator[ChatEvent]:
        self.calls.append(RecordedCall(list(messages), tools, system_prompt, temperature))

        index = len(self.calls) - 1
        if index < len(self.turns):
            events = self.turns[index]
        elif self.repeat_last and self.turns:
            events = self.turns[-1]
        else:
            events = self.text_turn("完成")

        for event in events:
            yield event

    async def complete(self, prompt, system_prompt=None, max_tokens=500, temperature=0.7) -> str:
        self.completions.append({"prompt": prompt, "system_prompt": system_prompt})
        return self.completion

    # Script builders

    @staticmethod
    def text_turn(text: str, thinking: Optional[str] = None) -> list[ChatEvent]:
        events = []
        if thinking:
            events.append(ChatEvent.thinking_delta(thinking, len(events)))
        if text:
            # Split so the loop sees several deltas
            middle = len(text) // 2 or 1
            for part in (text[:middle], text[middle:]):
                if part:
                    events.append(ChatEvent.text_delta(part, len(events)))
        events.append(ChatEvent.done(len(events)))
        return events

    @staticmethod
    def tool_turn(*calls: tuple[str, str, dict], text: str = "") -> list[ChatEvent]:
        events = []
        if text:
            events.append(ChatEvent.text_delta(text, len(events)))
        for call_id, name, arguments in calls:
            events.append(ChatEvent.tool_call_start(call_id, name, len(events)))
            events.append(ChatEvent.tool_call_end(call_id, arguments, len(events)))
        events.append(ChatEvent.done(len(events)))
        return events

    @staticmethod
    def error_turn(message: str) -> list[ChatEvent]:
        return [ChatEvent.error_event(message, ErrorType.FATAL, 0)]


@pytest.fixture
def scripted_provider():
    """Factory for ScriptedProvider instances."""
    return ScriptedProvider


@pytest.fixture
def user_context():
    return UserContext(tenant_id="tenant-a", user_id="user-1", session_id="session-1")


@pytest.fixture
def other_user_context():
    return UserContext(tenant_id="tenant-a", user_id="user-2")


@pytest.fixture
def fixed_clock():
    """2026-02-12 14:09:57 in Asia/Shanghai."""
    moment = datetime(2026, 2, 12, 6, 9, 57, tzinfo=timezone.utc)
    return lambda: moment
