"""
OpenAI-compatible LLM Provider.

Implements the ILLMProvider interface for OpenAI's chat completions API
and for compatible gateways reached through `base_url` (DeepSeek,
SiliconFlow, vLLM). Supports streaming, tool calling, the
`reasoning_content` reasoning channel and embeddings.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Optional

from ..domain.entities import (
    ChatEvent,
    ErrorType,
    Message,
    MessageRole,
    ToolDefinition,
    new_tool_call_id,
)
from ..domain.ports import IEmbeddingProvider
from .base import BaseLLMProvider, LLMProviderConfig, LLMProviderError

logger = logging.getLogger(__name__)

# Lazy import to avoid requiring openai if not used
try:
    import openai
    from openai import AsyncOpenAI

    OPENAI_AVAILABLE = True
except ImportError:
    OPENAI_AVAILABLE = False
    openai = None
    AsyncOpenAI = None


class OpenAIProvider(BaseLLMProvider, IEmbeddingProvider):
    """OpenAI-compatible provider implementation.

    Supports:
    - GPT-4o family and any OpenAI-compatible chat model
    - Streaming responses
    - Tool/function calling
    - Reasoning channel (`delta.reasoning_content`) from reasoning models
    - Embeddings (text-embedding-3-small/large)

    Usage:
        config = LLMProviderConfig(
            api_key="sk-...",
            model="deepseek-chat",
            base_url="https://api.deepseek.com/v1",
        )
        provider = OpenAIProvider(config)

        async for event in provider.chat(messages, tools):
            print(event)
    """

    DEFAULT_MODEL = "gpt-4o-mini"
    DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"

    def __init__(self, config: LLMProviderConfig):
        """Initialize the OpenAI provider.

        Args:
            config: Provider configuration

        Raises:
            ImportError: If openai package is not installed
        """
        if not OPENAI_AVAILABLE:
            raise ImportError(
                "openai package is required for OpenAIProvider. "
                "Install with: pip install openai"
            )

        super().__init__(config)

        self.embedding_model = config.embedding_model or self.DEFAULT_EMBEDDING_MODEL

        self.client = AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
        )

    @property
    def embedding_model_name(self) -> str:
        """Return the embedding model name."""
        return self.embedding_model

    def _format_messages_for_api(
        self, messages: list[Message], system_prompt: Optional[str] = None
    ) -> list[dict[str, Any]]:
        """Convert messages to OpenAI format.

        OpenAI includes system messages in the messages array.
        """
        api_messages = []

        if system_prompt:
            api_messages.append({
                "role": "system",
                "content": system_prompt,
            })

        for msg in messages:
            if msg.role == MessageRole.TOOL:
                api_messages.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id or "unknown",
                    "content": msg.content,
                })
            elif msg.role == MessageRole.ASSISTANT and msg.tool_calls:
                api_messages.append({
                    "role": "assistant",
                    "content": msg.content or None,
                    "tool_calls": [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {
                                "name": tc.name,
                                "arguments": json.dumps(tc.arguments, ensure_ascii=False),
                            },
                        }
                        for tc in msg.tool_calls
                    ],
                })
            else:
                api_messages.append({
                    "role": msg.role.value,
                    "content": msg.content,
                })

        return api_messages

    def _format_tools_for_api(
        self, tools: list[ToolDefinition]
    ) -> list[dict[str, Any]]:
        """Convert tools to OpenAI format."""
        return [tool.to_openai_format() for tool in tools]

    async def chat(
        self,
        messages: list[Message],
        tools: Optional[list[ToolDefinition]] = None,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[ChatEvent]:
        """Run one streaming model turn.

        Args:
            messages: Conversation history
            tools: Available tools
            system_prompt: System prompt
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate

        Yields:
            ChatEvent objects
        """
        self._reset_sequence()

        api_messages = self._format_messages_for_api(messages, system_prompt)

        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": api_messages,
            "temperature": temperature,
            "stream": True,
        }

        if max_tokens:
            kwargs["max_tokens"] = max_tokens

        if tools:
            kwargs["tools"] = self._format_tools_for_api(tools)
            kwargs["tool_choice"] = "auto"

        try:
            stream_response = await self.client.chat.completions.create(**kwargs)

            # Tool calls arrive as fragments keyed by index
            tool_calls_in_progress: dict[int, dict[str, Any]] = {}

            async for chunk in stream_response:
                choice = chunk.choices[0] if chunk.choices else None
                if not choice:
                    continue

                delta = choice.delta

                reasoning = getattr(delta, "reasoning_content", None)
                if reasoning:
                    yield self._create_thinking_delta(reasoning)

                if delta.content:
                    yield self._create_text_delta(delta.content)

                if delta.tool_calls:
                    for tc in delta.tool_calls:
                        idx = tc.index

                        if idx not in tool_calls_in_progress:
                            tool_calls_in_progress[idx] = {
                                "id": tc.id or new_tool_call_id(),
                                "name": tc.function.name if tc.function else "",
                                "arguments": "",
                                "started": False,
                            }
                        entry = tool_calls_in_progress[idx]

                        if tc.function and tc.function.name and not entry["name"]:
                            entry["name"] = tc.function.name
                        if entry["name"] and not entry["started"]:
                            entry["started"] = True
                            yield self._create_tool_call_start(entry["id"], entry["name"])

                        if tc.function and tc.function.arguments:
                            entry["arguments"] += tc.function.arguments

                if choice.finish_reason:
                    break

            for tc_data in tool_calls_in_progress.values():
                try:
                    arguments = json.loads(tc_data["arguments"]) if tc_data["arguments"] else {}
                except json.JSONDecodeError:
                    arguments = {"raw": tc_data["arguments"]}

                yield self._create_tool_call_end(tc_data["id"], arguments)

            yield self._create_done()

        except openai.RateLimitError as e:
            logger.warning(f"Rate limited by OpenAI: {e}")
            yield self._create_error(f"Rate limited: {e}", ErrorType.RATE_LIMIT)
        except openai.APITimeoutError as e:
            logger.error(f"OpenAI API timeout: {e}")
            yield self._create_error(f"Request timed out: {e}", ErrorType.TIMEOUT)
        except openai.APIError as e:
            logger.error(f"OpenAI API error: {e}")
            yield self._create_error(f"API error: {e}", ErrorType.RECOVERABLE)
        except Exception as e:
            logger.exception(f"Unexpected error in OpenAI chat: {e}")
            yield self._create_error(str(e), ErrorType.FATAL)

    async def embed_text(self, text: str) -> list[float]:
        """Generate an embedding for text.

        Raises:
            LLMProviderError: On API errors
        """
        vectors = await self.embed_texts([text])
        return vectors[0]

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts in one request.

        Raises:
            LLMProviderError: On API errors
        """
        if not texts:
            return []

        try:
            response = await self.client.embeddings.create(
                model=self.embedding_model,
                input=texts,
            )
            ordered = sorted(response.data, key=lambda item: item.index)
            return [list(item.embedding) for item in ordered]

        except openai.RateLimitError as e:
            logger.warning(f"Rate limited during embedding: {e}")
            raise LLMProviderError(
                f"Rate limited: {e}",
                error_type=ErrorType.RATE_LIMIT,
                original_error=e,
            )
        except openai.APIError as e:
            logger.error(f"OpenAI embedding error: {e}")
            raise LLMProviderError(
                f"Embedding failed: {e}",
                error_type=ErrorType.RECOVERABLE,
                original_error=e,
            )

    async def close(self) -> None:
        """Close the client."""
        await self.client.close()
