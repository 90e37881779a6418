"""
Base LLM Provider Implementation.

Provides common functionality for all LLM providers.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from ..domain.entities import (
    ChatEvent,
    ChatEventType,
    ErrorType,
    Message,
    ToolDefinition,
)
from ..domain.ports import ILLMProvider

logger = logging.getLogger(__name__)


class LLMProviderError(Exception):
    """Base exception for LLM provider errors."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.RECOVERABLE,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.original_error = original_error


@dataclass
class LLMProviderConfig:
    """Configuration for LLM providers.

    Attributes:
        api_key: API key for the provider
        model: Model name to use
        embedding_model: Model for embeddings (if different)
        base_url: Optional custom base URL (OpenAI-compatible gateways)
        timeout: Request timeout in seconds
        max_retries: Maximum retry attempts inside the SDK client
        max_tokens: Default max tokens
        enable_thinking: Request a separate reasoning channel when supported
        thinking_budget: Token budget for the reasoning channel
    """

    api_key: str
    model: str
    embedding_model: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = 60.0
    max_retries: int = 2
    max_tokens: int = 4096
    enable_thinking: bool = False
    thinking_budget: int = 4000


class BaseLLMProvider(ILLMProvider, ABC):
    """Base class for LLM provider implementations.

    Provides the sequenced event constructors shared by every provider.
    Subclasses must implement chat() for their specific API.
    """

    def __init__(self, config: LLMProviderConfig):
        """Initialize the provider.

        Args:
            config: Provider configuration
        """
        self.config = config
        self._sequence_counter = 0

    @property
    def model_name(self) -> str:
        """Return the model name."""
        return self.config.model

    @property
    def supports_tools(self) -> bool:
        """Most modern providers support tool calling."""
        return True

    def _next_sequence(self) -> int:
        """Get the next sequence number for events."""
        self._sequence_counter += 1
        return self._sequence_counter

    def _reset_sequence(self) -> None:
        """Reset the sequence counter (call at start of each model turn)."""
        self._sequence_counter = 0

    def _create_text_delta(self, text: str) -> ChatEvent:
        """Create a text delta event."""
        return ChatEvent.text_delta(text, self._next_sequence())

    def _create_thinking_delta(self, text: str) -> ChatEvent:
        """Create a thinking delta event."""
        return ChatEvent.thinking_delta(text, self._next_sequence())

    def _create_tool_call_start(self, tool_call_id: str, name: str) -> ChatEvent:
        """Create a tool call start event."""
        return ChatEvent.tool_call_start(tool_call_id, name, self._next_sequence())

    def _create_tool_call_end(self, tool_call_id: str, arguments: dict) -> ChatEvent:
        """Create a tool call end event."""
        return ChatEvent.tool_call_end(tool_call_id, arguments, self._next_sequence())

    def _create_error(self, message: str, error_type: ErrorType) -> ChatEvent:
        """Create an error event."""
        return ChatEvent.error_event(message, error_type, self._next_sequence())

    def _create_done(self) -> ChatEvent:
        """Create a done event."""
        return ChatEvent(type=ChatEventType.DONE, sequence=self._next_sequence())

    @abstractmethod
    async def chat(
        self,
        messages: list[Message],
        tools: Optional[list[ToolDefinition]] = None,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[ChatEvent]:
        """Generate a response. Must be implemented by subclasses."""
        pass

    async def close(self) -> None:
        """Release client resources."""
        return None

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
