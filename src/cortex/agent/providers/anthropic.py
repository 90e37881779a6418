"""
Anthropic Claude LLM Provider.

Implements the ILLMProvider interface for Anthropic's Claude models.
Supports streaming, tool calling, and extended thinking as a separate
reasoning channel.
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
)
from .base import BaseLLMProvider, LLMProviderConfig

logger = logging.getLogger(__name__)

# Lazy import to avoid requiring anthropic if not used
try:
    import anthropic
    from anthropic import AsyncAnthropic

    ANTHROPIC_AVAILABLE = True
except ImportError:
    ANTHROPIC_AVAILABLE = False
    anthropic = None
    AsyncAnthropic = None


class AnthropicProvider(BaseLLMProvider):
    """Anthropic Claude provider implementation.

    Usage:
        config = LLMProviderConfig(
            api_key="sk-ant-...",
            model="claude-sonnet-4-5-20250929",
            enable_thinking=True,
        )
        provider = AnthropicProvider(config)

        async for event in provider.chat(messages, tools):
            print(event)
    """

    DEFAULT_MODEL = "claude-sonnet-4-5-20250929"

    MODELS_WITH_THINKING = {
        "claude-opus-4-20250514",
        "claude-sonnet-4-20250514",
        "claude-sonnet-4-5-20250929",
    }

    def __init__(self, config: LLMProviderConfig):
        """Initialize the Anthropic provider.

        Args:
            config: Provider configuration

        Raises:
            ImportError: If anthropic package is not installed
        """
        if not ANTHROPIC_AVAILABLE:
            raise ImportError(
                "anthropic package is required for AnthropicProvider. "
                "Install with: pip install anthropic"
            )

        super().__init__(config)

        self.client = AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
        )

        self._supports_thinking = config.model in self.MODELS_WITH_THINKING

    def _format_messages_for_api(
        self, messages: list[Message], system_prompt: Optional[str] = None
    ) -> tuple[Optional[str], list[dict[str, Any]]]:
        """Convert messages to Anthropic format.

        Anthropic uses a separate system parameter, and all tool results
        answering one assistant turn must share a single user message.

        Returns:
            Tuple of (system_prompt, messages_list)
        """
        api_messages: list[dict[str, Any]] = []
        system = system_prompt

        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                system = f"{msg.content}\n\n{system}" if system else msg.content
            elif msg.role == MessageRole.TOOL:
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id or "unknown",
                    "content": msg.content,
                }
                previous = api_messages[-1] if api_messages else None
                if (
                    previous
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                    and previous["content"]
                    and previous["content"][0].get("type") == "tool_result"
                ):
                    previous["content"].append(block)
                else:
                    api_messages.append({"role": "user", "content": [block]})
            elif msg.role == MessageRole.ASSISTANT and msg.tool_calls:
                content_blocks: list[dict[str, Any]] = []
                if msg.content:
                    content_blocks.append({"type": "text", "text": msg.content})
                for tc in msg.tool_calls:
                    content_blocks.append({
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": tc.arguments,
                    })
                api_messages.append({"role": "assistant", "content": content_blocks})
            else:
                api_messages.append({
                    "role": msg.role.value,
                    "content": msg.content,
                })

        return system, api_messages

    def _format_tools_for_api(
        self, tools: list[ToolDefinition]
    ) -> list[dict[str, Any]]:
        """Convert tools to Anthropic format."""
        return [tool.to_anthropic_format() for tool in tools]

    async def chat(
        self,
        messages: list[Message],
        tools: Optional[list[ToolDefinition]] = None,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[ChatEvent]:
        """Run one streaming model turn using Claude.

        Yields:
            ChatEvent objects
        """
        self._reset_sequence()

        system, api_messages = self._format_messages_for_api(messages, system_prompt)

        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": api_messages,
        }

        if self._supports_thinking and self.config.enable_thinking:
            thinking_budget = self.config.thinking_budget
            kwargs["thinking"] = {"type": "enabled", "budget_tokens": thinking_budget}
            kwargs["temperature"] = 1  # Required for extended thinking
            kwargs["max_tokens"] = max(thinking_budget + 4096, max_tokens or 0)
        else:
            kwargs["temperature"] = temperature
            kwargs["max_tokens"] = max_tokens or self.config.max_tokens

        if system:
            kwargs["system"] = system

        if tools:
            kwargs["tools"] = self._format_tools_for_api(tools)

        try:
            async with self.client.messages.stream(**kwargs) as stream_response:
                current_tool_call_id: Optional[str] = None
                accumulated_tool_input = ""

                async for event in stream_response:
                    if event.type == "content_block_start":
                        block = event.content_block
                        if block.type == "tool_use":
                            current_tool_call_id = block.id
                            accumulated_tool_input = ""
                            yield self._create_tool_call_start(block.id, block.name)

                    elif event.type == "content_block_delta":
                        delta = event.delta
                        if delta.type == "text_delta":
                            yield self._create_text_delta(delta.text)
                        elif delta.type == "input_json_delta":
                            accumulated_tool_input += delta.partial_json
                        elif delta.type == "thinking_delta":
                            yield self._create_thinking_delta(delta.thinking)

                    elif event.type == "content_block_stop":
                        if current_tool_call_id:
                            try:
                                arguments = (
                                    json.loads(accumulated_tool_input)
                                    if accumulated_tool_input
                                    else {}
                                )
                            except json.JSONDecodeError:
                                arguments = {"raw": accumulated_tool_input}

                            yield self._create_tool_call_end(current_tool_call_id, arguments)
                            current_tool_call_id = None

                yield self._create_done()

        except anthropic.RateLimitError as e:
            logger.warning(f"Rate limited by Anthropic: {e}")
            yield self._create_error(f"Rate limited: {e}", ErrorType.RATE_LIMIT)
        except anthropic.APITimeoutError as e:
            logger.error(f"Anthropic API timeout: {e}")
            yield self._create_error(f"Request timed out: {e}", ErrorType.TIMEOUT)
        except anthropic.APIError as e:
            logger.error(f"Anthropic API error: {e}")
            yield self._create_error(f"API error: {e}", ErrorType.RECOVERABLE)
        except Exception as e:
            logger.exception(f"Unexpected error in Anthropic chat: {e}")
            yield self._create_error(str(e), ErrorType.FATAL)

    async def close(self) -> None:
        """Close the client."""
        await self.client.close()
