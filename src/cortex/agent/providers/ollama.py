"""
Ollama LLM Provider.

Implements the ILLMProvider interface for Ollama's local LLM API.
Supports streaming chat, tool calls, the `thinking` reasoning field and
embeddings with locally-hosted models.
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

# Lazy import to avoid requiring httpx if not used
try:
    import httpx

    OLLAMA_AVAILABLE = True
except ImportError:
    OLLAMA_AVAILABLE = False
    httpx = None


class OllamaProvider(BaseLLMProvider, IEmbeddingProvider):
    """Ollama local LLM provider implementation.

    Usage:
        config = LLMProviderConfig(
            api_key="not-needed",  # Ollama doesn't require auth
            model="qwen3:4b",
            base_url="http://localhost:11434",
        )
        provider = OllamaProvider(config)

        async for event in provider.chat(messages, tools):
            print(event)
    """

    DEFAULT_MODEL = "qwen3:4b"
    DEFAULT_BASE_URL = "http://localhost:11434"
    DEFAULT_EMBEDDING_MODEL = "all-minilm"

    def __init__(self, config: LLMProviderConfig):
        """Initialize the Ollama provider.

        Args:
            config: Provider configuration

        Raises:
            ImportError: If httpx package is not installed
        """
        if not OLLAMA_AVAILABLE:
            raise ImportError(
                "httpx package is required for OllamaProvider. "
                "Install with: pip install httpx"
            )

        super().__init__(config)

        self.base_url = config.base_url or self.DEFAULT_BASE_URL
        self.embedding_model = config.embedding_model or self.DEFAULT_EMBEDDING_MODEL

        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=config.timeout,
        )

    @property
    def embedding_model_name(self) -> str:
        """Return the embedding model name."""
        return self.embedding_model

    def _format_messages_for_api(
        self, messages: list[Message], system_prompt: Optional[str] = None
    ) -> list[dict[str, Any]]:
        """Convert messages to Ollama's chat format."""
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
                    "tool_name": msg.name or "",
                    "content": msg.content,
                })
            elif msg.role == MessageRole.ASSISTANT and msg.tool_calls:
                api_messages.append({
                    "role": "assistant",
                    "content": msg.content or "",
                    "tool_calls": [
                        {"function": {"name": tc.name, "arguments": tc.arguments}}
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
        """Ollama uses the OpenAI-compatible tool format."""
        return [tool.to_openai_format() for tool in tools]

    async def chat(
        self,
        messages: list[Message],
        tools: Optional[list[ToolDefinition]] = None,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[ChatEvent]:
        """Run one streaming model turn using Ollama.

        Yields:
            ChatEvent objects
        """
        self._reset_sequence()

        payload: dict[str, Any] = {
            "model": self.config.model,
            "messages": self._format_messages_for_api(messages, system_prompt),
            "stream": True,
            "options": {
                "temperature": temperature,
            },
        }

        if max_tokens:
            payload["options"]["num_predict"] = max_tokens

        if self.config.enable_thinking:
            payload["think"] = True

        if tools:
            payload["tools"] = self._format_tools_for_api(tools)

        try:
            async with self.client.stream("POST", "/api/chat", json=payload) as response:
                response.raise_for_status()

                # Newline-delimited JSON stream
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue

                    try:
                        chunk = json.loads(line)
                    except json.JSONDecodeError as e:
                        logger.warning(f"Failed to parse Ollama response: {e}")
                        continue

                    message = chunk.get("message", {})

                    thinking = message.get("thinking", "")
                    if thinking:
                        yield self._create_thinking_delta(thinking)

                    content = message.get("content", "")
                    if content:
                        yield self._create_text_delta(content)

                    for tool_call in message.get("tool_calls", []):
                        function = tool_call.get("function", {})
                        tool_name = function.get("name")
                        if not tool_name:
                            continue

                        tool_args = function.get("arguments", {})
                        if isinstance(tool_args, str):
                            try:
                                tool_args = json.loads(tool_args)
                            except json.JSONDecodeError:
                                tool_args = {"raw": tool_args}

                        tool_id = tool_call.get("id") or new_tool_call_id()
                        yield self._create_tool_call_start(tool_id, tool_name)
                        yield self._create_tool_call_end(tool_id, tool_args or {})

                    if chunk.get("done"):
                        break

            yield self._create_done()

        except httpx.HTTPStatusError as e:
            error_msg = f"Ollama API error: {e.response.status_code}"
            logger.error(error_msg)
            yield self._create_error(error_msg, ErrorType.RECOVERABLE)

        except httpx.TimeoutException as e:
            error_msg = f"Ollama request timeout: {str(e)}"
            logger.error(error_msg)
            yield self._create_error(error_msg, ErrorType.TIMEOUT)

        except httpx.RequestError as e:
            error_msg = f"Ollama connection error: {str(e)}"
            logger.error(error_msg)
            yield self._create_error(error_msg, ErrorType.FATAL)

        except Exception as e:
            error_msg = f"Unexpected error in Ollama provider: {str(e)}"
            logger.exception(error_msg)
            yield self._create_error(error_msg, ErrorType.FATAL)

    async def embed_text(self, text: str) -> list[float]:
        """Generate an embedding using Ollama.

        Raises:
            LLMProviderError: If embedding generation fails
        """
        vectors = await self.embed_texts([text])
        return vectors[0]

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for several texts with one /api/embed call.

        Raises:
            LLMProviderError: If embedding generation fails
        """
        if not texts:
            return []

        try:
            response = await self.client.post(
                "/api/embed",
                json={"model": self.embedding_model, "input": texts},
            )
            response.raise_for_status()

            embeddings = response.json().get("embeddings", [])
            if len(embeddings) != len(texts):
                raise LLMProviderError(
                    f"Ollama returned {len(embeddings)} embeddings for {len(texts)} inputs",
                    error_type=ErrorType.RECOVERABLE,
                )
            return embeddings

        except httpx.HTTPStatusError as e:
            raise LLMProviderError(
                f"Ollama embedding API error: {e.response.status_code}",
                error_type=ErrorType.RECOVERABLE,
                original_error=e,
            )

        except httpx.TimeoutException as e:
            raise LLMProviderError(
                f"Ollama embedding timeout: {str(e)}",
                error_type=ErrorType.TIMEOUT,
                original_error=e,
            )

        except httpx.RequestError as e:
            raise LLMProviderError(
                f"Ollama connection error: {str(e)}",
                error_type=ErrorType.FATAL,
                original_error=e,
            )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
