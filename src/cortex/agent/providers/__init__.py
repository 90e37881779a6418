"""LLM provider implementations."""

from .base import BaseLLMProvider, LLMProviderError, LLMProviderConfig
from .anthropic import AnthropicProvider
from .openai import OpenAIProvider
from .ollama import OllamaProvider
from .factory import create_embedding_provider, create_llm_provider

__all__ = [
    "BaseLLMProvider",
    "LLMProviderError",
    "LLMProviderConfig",
    "AnthropicProvider",
    "OpenAIProvider",
    "OllamaProvider",
    "create_embedding_provider",
    "create_llm_provider",
]
