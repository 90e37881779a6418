"""
Agent Settings.

Environment-driven configuration for the Cortex agent service. Values are
read when AgentSettings() is instantiated, so call load_dotenv() first
(the app does this at import time).
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Invalid integer for {name}={value!r}, using {default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_json_list(name: str) -> list[dict[str, Any]]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Ignoring {name}: invalid JSON ({e})")
        return []
    if not isinstance(data, list):
        logger.warning(f"Ignoring {name}: expected a JSON list")
        return []
    return [item for item in data if isinstance(item, dict)]


@dataclass
class AgentSettings:
    """Service-wide settings.

    Attributes:
        database_url: PostgreSQL DSN for conversations and long-term memory
            (in-memory stores are used when unset)
        blog_database_url: PostgreSQL DSN for the read-only blog database tool
        llm_provider: Chat provider: openai, anthropic or ollama
        openai_api_key: Key for OpenAI or an OpenAI-compatible gateway
        openai_base_url: Base URL for OpenAI-compatible gateways
        openai_model: Chat model for the openai provider
        anthropic_api_key: Key for Anthropic
        anthropic_model: Chat model for the anthropic provider
        ollama_base_url: Ollama server URL
        ollama_model: Chat model for the ollama provider
        enable_thinking: Request a reasoning channel from the model
        embedding_provider: Embedding provider for retrieval: openai, ollama or none
        embedding_model: Embedding model name
        siliconflow_api_key: Key for the image generation and vision APIs
        siliconflow_base_url: Base URL for the image generation and vision APIs
        knowledge_dir: Directory of .txt reference documents
        upload_dir: Directory uploaded and generated files live in
        mcp_servers: External tool servers ({name, url, headers})
        api_secret_key: Bearer key for the stateless /api/v1/chat endpoint
        max_iterations: Reasoning loop iteration cap
        history_limit: Recent messages loaded per turn
        timezone: Timezone for the date context and the time tool
        cors_origins: Allowed CORS origins
    """

    database_url: Optional[str] = field(default_factory=lambda: os.getenv("DATABASE_URL"))
    blog_database_url: Optional[str] = field(
        default_factory=lambda: os.getenv("BLOG_DATABASE_URL")
    )

    llm_provider: str = field(
        default_factory=lambda: os.getenv("LLM_PROVIDER", "openai").lower()
    )
    openai_api_key: Optional[str] = field(default_factory=lambda: os.getenv("OPENAI_API_KEY"))
    openai_base_url: Optional[str] = field(default_factory=lambda: os.getenv("OPENAI_BASE_URL"))
    openai_model: str = field(default_factory=lambda: os.getenv("OPENAI_MODEL", "gpt-4o-mini"))
    anthropic_api_key: Optional[str] = field(
        default_factory=lambda: os.getenv("ANTHROPIC_API_KEY")
    )
    anthropic_model: str = field(
        default_factory=lambda: os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-5-20250929")
    )
    ollama_base_url: str = field(
        default_factory=lambda: os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    )
    ollama_model: str = field(default_factory=lambda: os.getenv("OLLAMA_MODEL", "qwen3:4b"))
    enable_thinking: bool = field(default_factory=lambda: _env_bool("LLM_ENABLE_THINKING", False))

    embedding_provider: str = field(
        default_factory=lambda: os.getenv("EMBEDDING_PROVIDER", "openai").lower()
    )
    embedding_model: Optional[str] = field(default_factory=lambda: os.getenv("EMBEDDING_MODEL"))

    siliconflow_api_key: Optional[str] = field(
        default_factory=lambda: os.getenv("SILICONFLOW_API_KEY")
    )
    siliconflow_base_url: str = field(
        default_factory=lambda: os.getenv("SILICONFLOW_BASE_URL", "https://api.siliconflow.cn/v1")
    )

    knowledge_dir: str = field(default_factory=lambda: os.getenv("KNOWLEDGE_DIR", "knowledge"))
    upload_dir: str = field(default_factory=lambda: os.getenv("UPLOAD_DIR", "public/uploads"))
    mcp_servers: list[dict[str, Any]] = field(
        default_factory=lambda: _env_json_list("MCP_SERVERS")
    )

    api_secret_key: Optional[str] = field(default_factory=lambda: os.getenv("API_SECRET_KEY"))

    max_iterations: int = field(default_factory=lambda: _env_int("AGENT_MAX_ITERATIONS", 10))
    history_limit: int = field(default_factory=lambda: _env_int("AGENT_HISTORY_LIMIT", 20))
    timezone: str = field(default_factory=lambda: os.getenv("AGENT_TIMEZONE", "Asia/Shanghai"))
    cors_origins: list[str] = field(
        default_factory=lambda: [
            origin.strip()
            for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
            if origin.strip()
        ]
    )
