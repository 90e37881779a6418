"""Agent tools: the registry, built-in tools and MCP-backed external tools."""

from __future__ import annotations

from typing import Optional

from ..config import AgentSettings
from ..domain.ports import IQueryExecutor, ITool
from ..retrieval.knowledge_base import KnowledgeBase
from .base import BaseTool, NoParams, ToolOutput, ToolParams
from .builtin import CalculatorTool, CurrentTimeTool, WeatherTool, calculate
from .database import (
    AsyncpgQueryExecutor,
    BlogDatabaseConfig,
    BlogQueryTool,
    BlogSchemaTool,
    validate_read_only_sql,
)
from .file_parser import ParseFileTool
from .images import AnalyzeImageTool, GenerateImageTool, ImageServiceConfig
from .knowledge import KnowledgeSearchTool
from .mcp_client import MCPClient, MCPServerConfig, MCPToolSource
from .registry import ToolRegistry
from .web_search import WebSearchConfig, WebSearchTool


def create_builtin_tools(
    settings: AgentSettings,
    knowledge_base: KnowledgeBase,
    query_executor: Optional[IQueryExecutor] = None,
) -> list[ITool]:
    """Create the built-in tools in the order they are offered.

    The blog database tools are only created when a query executor
    (blog database pool) is available.
    """
    image_config = ImageServiceConfig(
        api_key=settings.siliconflow_api_key,
        base_url=settings.siliconflow_base_url,
    )

    tools: list[ITool] = [
        CurrentTimeTool(settings.timezone),
        CalculatorTool(),
        WeatherTool(),
        KnowledgeSearchTool(knowledge_base),
        WebSearchTool(),
        GenerateImageTool(image_config),
        AnalyzeImageTool(image_config),
        ParseFileTool(settings.upload_dir),
    ]

    if query_executor is not None:
        db_config = BlogDatabaseConfig()
        tools.append(BlogSchemaTool(query_executor, db_config))
        tools.append(BlogQueryTool(query_executor, db_config))

    return tools


__all__ = [
    "BaseTool",
    "NoParams",
    "ToolOutput",
    "ToolParams",
    "CalculatorTool",
    "CurrentTimeTool",
    "WeatherTool",
    "calculate",
    "AsyncpgQueryExecutor",
    "BlogDatabaseConfig",
    "BlogQueryTool",
    "BlogSchemaTool",
    "validate_read_only_sql",
    "ParseFileTool",
    "AnalyzeImageTool",
    "GenerateImageTool",
    "ImageServiceConfig",
    "KnowledgeSearchTool",
    "MCPClient",
    "MCPServerConfig",
    "MCPToolSource",
    "ToolRegistry",
    "WebSearchConfig",
    "WebSearchTool",
    "create_builtin_tools",
]
