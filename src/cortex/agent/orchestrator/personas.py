"""
Personas.

A persona is the base system prompt plus the sampling temperature used for
a conversation. Built-in personas cover the common cases; deployments may
register custom ones at startup.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_PERSONA = "assistant"


@dataclass(frozen=True)
class Persona:
    """A named system prompt and temperature.

    Attributes:
        key: Identifier stored on the conversation
        name: Display name
        prompt: Base system prompt
        temperature: Sampling temperature for chat turns
    """

    key: str
    name: str
    prompt: str
    temperature: float = 0.7


BUILTIN_PERSONAS: dict[str, Persona] = {
    "assistant": Persona(
        key="assistant",
        name="通用助手",
        prompt=(
            "你是一个友好的AI助手，说话简洁有趣。请用中文回复。"
            "你有工具可以使用：查询时间、数学计算、查询天气、搜索公司知识库、联网搜索、"
            "查询博客数据库、生成图片、解析文件。"
            "当用户问公司制度、产品信息等问题时，请先搜索知识库获取准确信息再回答。"
            "当用户询问你不确定的问题、最新新闻、实时信息时，请使用联网搜索工具获取最新数据。"
            "当用户要求画图或生成图片时，请使用图片生成工具。"
            "重要：当用户询问数据库相关的问题（如博客数量、文章列表等）时，"
            "必须每次都重新调用工具查询最新数据，不要依赖之前对话中的查询结果，"
            "因为数据可能已经发生变化。"
        ),
        temperature=0.7,
    ),
    "cat": Persona(
        key="cat",
        name="猫娘",
        prompt=(
            "你是一只可爱的猫娘，名叫小喵。说话时会在句尾加上「喵~」，"
            "性格活泼可爱，喜欢撒娇，偶尔会用猫的视角看待问题。"
            "你有工具可以使用：可以查询时间、进行数学计算、查询天气。需要时请主动使用工具。请用中文回复。"
        ),
        temperature=0.9,
    ),
    "coder": Persona(
        key="coder",
        name="编程导师",
        prompt=(
            "你是一个资深编程导师，擅长用通俗易懂的方式讲解技术概念。"
            "回答时会给出代码示例，并解释每一步。"
            "你有工具可以使用：可以查询时间、进行数学计算、查询天气。请用中文回复。"
        ),
        temperature=0.3,
    ),
    "poet": Persona(
        key="poet",
        name="文艺诗人",
        prompt=(
            "你是一位才华横溢的诗人，说话富有诗意和哲理。"
            "喜欢用比喻和意象表达观点，偶尔会即兴作诗。"
            "你有工具可以使用：可以查询时间、进行数学计算、查询天气。请用中文回复。"
        ),
        temperature=0.95,
    ),
}


class PersonaRegistry:
    """Looks up personas by key, falling back to the default assistant.

    Usage:
        personas = PersonaRegistry()
        personas.register(Persona(key="lawyer", name="律师", prompt="...", temperature=0.2))

        persona = personas.resolve(conversation.persona)
    """

    def __init__(self, custom: Optional[list[Persona]] = None):
        self._personas: dict[str, Persona] = dict(BUILTIN_PERSONAS)
        for persona in custom or []:
            self.register(persona)

    def register(self, persona: Persona) -> None:
        """Register (or replace) a custom persona."""
        if persona.key in BUILTIN_PERSONAS:
            logger.warning(f"Custom persona overrides built-in persona: {persona.key}")
        self._personas[persona.key] = persona

    def get(self, key: str) -> Optional[Persona]:
        return self._personas.get(key)

    def resolve(self, key: Optional[str]) -> Persona:
        """Return the persona for key, or the default assistant if unknown."""
        persona = self._personas.get(key or DEFAULT_PERSONA)
        if persona is None:
            logger.info(f"Unknown persona {key!r}, using {DEFAULT_PERSONA}")
            return self._personas[DEFAULT_PERSONA]
        return persona

    @property
    def keys(self) -> list[str]:
        return list(self._personas)
