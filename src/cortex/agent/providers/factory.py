"""
Provider selection.

Builds the chat and embedding providers from AgentSettings. The embedding
provider is optional: without one the knowledge base runs keyword-only.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..config import AgentSettings
from ..domain.ports import IEmbeddingProvider, ILLMProvider
from ..errors import ConfigurationError
from .anthropic import AnthropicProvider
from .base import LLMProviderConfig
from .ollama import OllamaProvider
from .openai import OpenAIProvider

logger = logging.getLogger(__name__)


def create_llm_provider(settings: AgentSettings) -> ILLMProvider:
    """Create the chat provider named by settings.llm_provider.

    Raises:
        ConfigurationError: If the provider is unknown or its key is missing
    """
    name = settings.llm_provider

    if name == "openai":
        if not settings.openai_api_key:
            raise ConfigurationError(
                "OPENAI_API_KEY is required for LLM_PROVIDER=openai",
                missing_keys=["OPENAI_API_KEY"],
            )
        config = LLMProviderConfig(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            enable_thinking=settings.enable_thinking,
        )
        provider: ILLMProvider = OpenAIProvider(config)

    elif name == "anthropic":
        if not settings.anthropic_api_key:
            raise ConfigurationError(
                "ANTHROPIC_API_KEY is required for LLM_PROVIDER=anthropic",
                missing_keys=["ANTHROPIC_API_KEY"],
            )
        config = LLMProviderConfig(
            api_key=settings.anthropic_api_key,
            model=settings.anthropic_model,
            enable_thinking=settings.enable_thinking,
        )
        provider = AnthropicProvider(config)

    elif name == "ollama":
        config = LLMProviderConfig(
            api_key="not-needed",
            model=settings.ollama_model,
            base_url=settings.ollama_base_url,
            enable_thinking=settings.enable_thinking,
        )
        provider = OllamaProvider(config)

    else:
        raise ConfigurationError(f"Unknown LLM_PROVIDER: {name}")

    logger.info(f"Using {name} provider with model: {provider.model_name}")
    return provider


def create_embedding_provider(settings: AgentSettings) -> Optional[IEmbeddingProvider]:
    """Create the embedding provider for semantic retrieval.

    Returns None (keyword-only retrieval) when embeddings are disabled or
    cannot be configured.
    """
    name = settings.embedding_provider

    if name in ("", "none", "disabled"):
        logger.info("Embedding provider disabled - knowledge base will use BM25 only")
        return None

    try:
        if name == "openai":
            if not settings.openai_api_key:
                logger.warning("OPENAI_API_KEY not set - semantic retrieval disabled")
                return None
            config = LLMProviderConfig(
                api_key=settings.openai_api_key,
                model=settings.openai_model,
                base_url=settings.openai_base_url,
                embedding_model=settings.embedding_model,
            )
            embedder: IEmbeddingProvider = OpenAIProvider(config)

        elif name == "ollama":
            config = LLMProviderConfig(
                api_key="not-needed",
                model=settings.ollama_model,
                base_url=settings.ollama_base_url,
                embedding_model=settings.embedding_model,
            )
            embedder = OllamaProvider(config)

        else:
            logger.warning(f"Unknown EMBEDDING_PROVIDER={name} - semantic retrieval disabled")
            return None

    except ImportError as e:
        logger.warning(f"Failed to initialize embedding provider: {e}")
        return None

    logger.info(f"Embedding provider configured: {embedder.embedding_model_name}")
    return embedder
