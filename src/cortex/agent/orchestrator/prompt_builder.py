"""
Prompt Builder for Agent Orchestrator.

Encapsulates system prompt construction:
- Persona base prompt
- Current date line, so the model knows what "today" is
- Long-term memory block recalled for this message
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from ..domain.entities import LongTermMemoryRecord
from ..memory.long_term import format_memories_for_prompt
from ..tools.builtin import format_chinese_date

logger = logging.getLogger(__name__)


class PromptBuilder:
    """Manages system prompt construction for the agent.

    Usage:
        prompt_builder = PromptBuilder(timezone="Asia/Shanghai")

        system_prompt = prompt_builder.build(
            base_prompt=persona.prompt,
            memories=recalled_memories,
        )
        # "<persona prompt>\\n[当前日期: 2026年2月12日星期四]<memory block>"
    """

    def __init__(
        self,
        timezone: str = "Asia/Shanghai",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the prompt builder.

        Args:
            timezone: IANA timezone used for the date line
            clock: Returns the current aware datetime (tests inject a fixed one)
        """
        self.tz = ZoneInfo(timezone)
        self._clock = clock

    def now(self) -> datetime:
        if self._clock is not None:
            return self._clock().astimezone(self.tz)
        return datetime.now(self.tz)

    def date_context(self) -> str:
        return f"\n[当前日期: {format_chinese_date(self.now())}]"

    def build(
        self,
        base_prompt: str,
        memories: Optional[list[LongTermMemoryRecord]] = None,
    ) -> str:
        """Build the system prompt.

        Args:
            base_prompt: Persona prompt
            memories: Long-term memories recalled for the current message

        Returns:
            Persona prompt, date line and memory block, concatenated
        """
        return base_prompt + self.date_context() + format_memories_for_prompt(memories or [])
