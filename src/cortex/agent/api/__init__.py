"""HTTP surface for the agent: session chat, conversations and stateless v1 chat."""

from .auth import get_user_context_jwt, verify_api_key
from .router import create_agent_dependencies, get_dependencies, get_orchestrator
from .router import router as agent_router
from .v1 import router as v1_router

__all__ = [
    "agent_router",
    "v1_router",
    "create_agent_dependencies",
    "get_dependencies",
    "get_orchestrator",
    "get_user_context_jwt",
    "verify_api_key",
]
