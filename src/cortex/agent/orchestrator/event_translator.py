"""
Event Translator.

Maps the orchestrator's internal TurnEvents onto the StreamEvents delivered
to callers, assigning a monotonically increasing sequence number to each
emitted event. Kept separate from the reasoning loop so the wire format can
change without touching orchestration logic.
"""

from __future__ import annotations

from typing import Any, Optional

from ..domain.entities import (
    StreamEvent,
    StreamEventType,
    TurnEvent,
    TurnEventType,
)

TOOL_RESULT_PREVIEW_CHARS = 800


def chunk_text(text: str, size: int = 5) -> list[str]:
    """Split text into deltas of at most `size` characters."""
    if size <= 0:
        return [text] if text else []
    return [text[i : i + size] for i in range(0, len(text), size)]


class EventTranslator:
    """Translates TurnEvents into StreamEvents with sequence tracking.

    Mappings:
        THINKING_DELTA  -> thinking      {content}
        THINKING_END    -> thinking_end
        TOOL_STARTED    -> tool_start    {tool_call_id, name, input}
        TOOL_FINISHED   -> tool_end      {tool_call_id, name, result, success, sources}
        ANSWER_DELTA    -> content       {content}
        FAILED          -> error         {message}
        COMPLETED       -> done          {conversation_id?, iterations, ...}

    Usage:
        translator = EventTranslator()

        async for turn_event in orchestrator.run(...):
            stream_event = translator.translate(turn_event)
            if stream_event:
                yield stream_event.to_sse()
    """

    def __init__(self, result_preview_chars: int = TOOL_RESULT_PREVIEW_CHARS):
        """Initialize the translator.

        Args:
            result_preview_chars: tool_end result text is cut to this length
        """
        self.result_preview_chars = result_preview_chars
        self._sequence = 0

    def translate(self, event: TurnEvent) -> Optional[StreamEvent]:
        """Map one TurnEvent; returns None for events with no wire form."""
        mapped = self._map(event)
        if mapped is None:
            return None

        event_type, data = mapped
        self._sequence += 1
        return StreamEvent(type=event_type, sequence=self._sequence, data=data)

    def _map(self, event: TurnEvent) -> Optional[tuple[StreamEventType, dict[str, Any]]]:
        if event.type == TurnEventType.THINKING_DELTA:
            if not event.text:
                return None
            return StreamEventType.THINKING, {"content": event.text}

        if event.type == TurnEventType.THINKING_END:
            return StreamEventType.THINKING_END, {}

        if event.type == TurnEventType.TOOL_STARTED:
            tool_call = event.tool_call
            return StreamEventType.TOOL_START, {
                "tool_call_id": tool_call.id,
                "name": tool_call.name,
                "input": tool_call.arguments,
            }

        if event.type == TurnEventType.TOOL_FINISHED:
            result = event.tool_result
            return StreamEventType.TOOL_END, {
                "tool_call_id": result.tool_call_id,
                "name": result.name,
                "result": result.content[: self.result_preview_chars],
                "success": result.success,
                "sources": [source.to_dict() for source in result.sources],
            }

        if event.type == TurnEventType.ANSWER_DELTA:
            if not event.text:
                return None
            return StreamEventType.CONTENT, {"content": event.text}

        if event.type == TurnEventType.FAILED:
            return StreamEventType.ERROR, {"message": event.text or "生成出错"}

        if event.type == TurnEventType.COMPLETED:
            data = {"iterations": event.iteration}
            data.update(event.metadata)
            return StreamEventType.DONE, data

        return None

    def reset(self) -> None:
        """Reset the sequence counter."""
        self._sequence = 0

    @property
    def sequence(self) -> int:
        """Sequence number of the last emitted event."""
        return self._sequence
