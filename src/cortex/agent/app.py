"""FastAPI application for the Cortex agent.

This is the main entry point for the agent API server:
- /api/agent/*  session chat (JWT)
- /api/v1/chat  stateless chat (API key)
- /health       liveness and readiness details
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import asyncpg
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import agent_router, create_agent_dependencies, get_dependencies, v1_router
from .api.schemas import HealthResponse
from .config import AgentSettings
from .domain.ports import IConversationStore, ILongTermMemoryStore, IQueryExecutor
from .errors import ConfigurationError
from .memory import (
    ConversationStore,
    InMemoryConversationStore,
    InMemoryMemoryStore,
    PostgresMemoryStore,
)
from .orchestrator import AgentConfig, AgentOrchestrator
from .providers import create_embedding_provider, create_llm_provider
from .retrieval import KnowledgeBase
from .tools import AsyncpgQueryExecutor, MCPToolSource, ToolRegistry, create_builtin_tools

load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

SHUTDOWN_DRAIN_SECONDS = 10.0


class _AppState:
    """Resources opened at startup and released at shutdown."""

    db_pool: Optional[asyncpg.Pool] = None
    blog_pool: Optional[asyncpg.Pool] = None
    orchestrator: Optional[AgentOrchestrator] = None
    tool_registry: Optional[ToolRegistry] = None
    knowledge_base: Optional[KnowledgeBase] = None
    kb_task: Optional[asyncio.Task] = None


_state = _AppState()


def _task_exception_handler(task: asyncio.Task) -> None:
    """Log exceptions from background tasks."""
    try:
        exc = task.exception()
        if exc:
            logger.error(
                f"Background task {task.get_name()} failed: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )
    except asyncio.CancelledError:
        pass


async def _init_stores(
    settings: AgentSettings,
) -> tuple[IConversationStore, ILongTermMemoryStore]:
    """PostgreSQL stores when DATABASE_URL is set, in-memory otherwise."""
    if not settings.database_url:
        logger.warning("DATABASE_URL not set - using in-memory stores (data lost on restart)")
        return InMemoryConversationStore(), InMemoryMemoryStore()

    _state.db_pool = await asyncpg.create_pool(settings.database_url, min_size=1, max_size=10)
    conversation_store = ConversationStore(_state.db_pool)
    memory_store = PostgresMemoryStore(_state.db_pool)
    await conversation_store.ensure_schema()
    await memory_store.ensure_schema()
    logger.info("Database pool initialized")
    return conversation_store, memory_store


async def _init_blog_executor(settings: AgentSettings) -> Optional[IQueryExecutor]:
    """Read-only executor for the blog database tools (None disables them)."""
    if not settings.blog_database_url:
        logger.info("BLOG_DATABASE_URL not set - blog database tools disabled")
        return None

    try:
        _state.blog_pool = await asyncpg.create_pool(
            settings.blog_database_url, min_size=1, max_size=5
        )
    except (OSError, asyncpg.PostgresError) as e:
        logger.warning(f"Failed to connect to blog database, tools disabled: {e}")
        return None

    logger.info("Blog database pool initialized")
    return AsyncpgQueryExecutor(_state.blog_pool)


async def _init_agent(settings: AgentSettings) -> None:
    """Build providers, tools, stores and the orchestrator."""
    try:
        llm_provider = create_llm_provider(settings)
    except ConfigurationError as e:
        logger.warning(f"LLM provider not configured - agent will be unavailable: {e}")
        return

    conversation_store, memory_store = await _init_stores(settings)

    knowledge_base = KnowledgeBase(
        settings.knowledge_dir,
        embedder=create_embedding_provider(settings),
    )
    _state.kb_task = asyncio.create_task(knowledge_base.initialize(), name="knowledge-base-init")
    _state.kb_task.add_done_callback(_task_exception_handler)

    registry = ToolRegistry(
        create_builtin_tools(settings, knowledge_base, await _init_blog_executor(settings))
    )
    if settings.mcp_servers:
        registry.add_source(MCPToolSource.from_settings(settings.mcp_servers, settings.upload_dir))
        await registry.refresh_external()

    orchestrator = AgentOrchestrator(
        llm_provider=llm_provider,
        tool_registry=registry,
        conversation_store=conversation_store,
        memory_store=memory_store,
        config=AgentConfig(
            max_iterations=settings.max_iterations,
            history_limit=settings.history_limit,
            timezone=settings.timezone,
        ),
    )

    _state.orchestrator = orchestrator
    _state.tool_registry = registry
    _state.knowledge_base = knowledge_base
    create_agent_dependencies(orchestrator, registry, knowledge_base)
    logger.info(f"Agent initialized with {len(registry.names)} tools")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Startup: open pools, build the agent. Shutdown: let background memory
    extraction finish, close tool clients and pools.
    """
    logger.info("Starting Cortex agent API...")
    settings = AgentSettings()

    try:
        await _init_agent(settings)
    except Exception as e:
        logger.error(f"Failed to initialize agent: {e}")
        raise

    yield

    logger.info("Shutting down Cortex agent API...")
    create_agent_dependencies(None)

    if _state.orchestrator is not None:
        try:
            await asyncio.wait_for(_state.orchestrator.memory.drain(), SHUTDOWN_DRAIN_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for memory extraction tasks")

    if _state.kb_task is not None and not _state.kb_task.done():
        _state.kb_task.cancel()

    if _state.tool_registry is not None:
        await _state.tool_registry.close()

    for pool in (_state.blog_pool, _state.db_pool):
        if pool is not None:
            await pool.close()
    logger.info("Database pools closed")


# Create FastAPI application
app = FastAPI(
    title="Cortex Agent API",
    description="Multi-tenant conversational agent with tools, retrieval and memory.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=AgentSettings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept"],
)

app.include_router(agent_router)
app.include_router(v1_router)


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Global health check."""
    deps = get_dependencies()
    kb = deps.knowledge_base
    return HealthResponse(
        status="ok",
        agent_initialized=deps.orchestrator is not None,
        tools=len(deps.tool_registry.names) if deps.tool_registry else 0,
        knowledge_base_ready=bool(kb and kb.is_initialized),
        semantic_search=bool(kb and kb.semantic_enabled),
    )


# Entry point for running with uvicorn
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.cortex.agent.app:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
    )
