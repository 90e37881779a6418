"""
Tool Registry.

Provides a unified registry of the tools the agent may offer to the model:
built-in tools registered at startup plus tools discovered from external
tool servers. Handles tool selection per request and execution routing.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from ..domain.entities import ToolCall, ToolDefinition, ToolResult
from ..domain.ports import ITool, IToolSource
from .base import TOOL_NAME_PATTERN

logger = logging.getLogger(__name__)

WEB_SEARCH_TOOL = "web_search"


class ToolRegistry:
    """Unified registry of all agent tools.

    Combines:
    - Built-in tools (time, calculator, weather, retrieval, web, images,
      files, read-only database)
    - External tools discovered from MCP servers over HTTP

    Usage:
        registry = ToolRegistry()
        registry.register_many(create_builtin_tools(settings, knowledge_base))
        registry.add_source(mcp_client)
        await registry.refresh_external()

        # Tools offered for one request
        definitions = registry.select(allowed=None, web_search_enabled=False)

        # Execute a tool call the model made
        result = await registry.execute(tool_call, {d.name for d in definitions})
    """

    def __init__(self, tools: Optional[Iterable[ITool]] = None):
        """Initialize the tool registry.

        Args:
            tools: Built-in tools to register immediately
        """
        self._tools: dict[str, ITool] = {}
        self._external: dict[str, ITool] = {}
        self._sources: list[IToolSource] = []
        if tools:
            self.register_many(tools)

    def register(self, tool: ITool) -> None:
        """Register a tool.

        Raises:
            ValueError: If the name is invalid or already registered
        """
        name = tool.definition.name
        if not TOOL_NAME_PATTERN.match(name):
            raise ValueError(f"Invalid tool name: {name!r}")
        if name in self._tools or name in self._external:
            raise ValueError(f"Tool already registered: {name}")
        self._tools[name] = tool
        logger.debug(f"Registered tool: {name}")

    def register_many(self, tools: Iterable[ITool]) -> None:
        """Register several tools."""
        for tool in tools:
            self.register(tool)

    def add_source(self, source: IToolSource) -> None:
        """Add an external tool source, loaded by refresh_external()."""
        self._sources.append(source)

    async def refresh_external(self) -> int:
        """(Re)load tools from every external source.

        Sources that fail are logged and skipped. Names that collide with
        built-in tools are skipped.

        Returns:
            Number of external tools now registered
        """
        loaded: dict[str, ITool] = {}

        for source in self._sources:
            try:
                tools = await source.list_tools()
            except Exception as e:
                logger.warning(f"Failed to load external tools from {source!r}: {e}")
                continue

            for tool in tools:
                name = tool.definition.name
                if name in self._tools or name in loaded:
                    logger.warning(f"Skipping external tool with duplicate name: {name}")
                    continue
                loaded[name] = tool

        self._external = loaded
        logger.info(
            f"Tool registry loaded {len(self._tools)} built-in and "
            f"{len(self._external)} external tools"
        )
        return len(self._external)

    def get(self, name: str) -> Optional[ITool]:
        """Find a tool by name."""
        return self._tools.get(name) or self._external.get(name)

    @property
    def names(self) -> list[str]:
        """All registered tool names, built-in first."""
        return list(self._tools) + list(self._external)

    def definitions(self) -> list[ToolDefinition]:
        """Definitions of every registered tool."""
        return [self.get(name).definition for name in self.names]

    def select(
        self,
        allowed: Optional[Iterable[str]] = None,
        web_search_enabled: bool = True,
    ) -> list[ToolDefinition]:
        """Return the tool definitions offered to the model for one request.

        Args:
            allowed: Allow-list of tool names. None means every tool; an
                empty collection means no tools.
            web_search_enabled: When False, web_search is removed from the
                list so the model can never request it

        Returns:
            Tool definitions in registration order
        """
        allowed_set = None if allowed is None else set(allowed)

        selected = []
        for definition in self.definitions():
            if allowed_set is not None and definition.name not in allowed_set:
                continue
            if not web_search_enabled and definition.name == WEB_SEARCH_TOOL:
                continue
            selected.append(definition)

        if allowed_set:
            unknown = allowed_set - set(self.names)
            if unknown:
                logger.warning(f"Ignoring unknown tools in allow-list: {sorted(unknown)}")

        return selected

    async def execute(
        self,
        tool_call: ToolCall,
        allowed_names: Optional[Iterable[str]] = None,
    ) -> ToolResult:
        """Execute a tool call.

        Never raises: an unknown tool, or one that was not offered for
        this request, produces a text error result.

        Args:
            tool_call: Tool call from the model
            allowed_names: Names offered for this request (None means all)

        Returns:
            Tool result with text content
        """
        logger.debug(f"Executing tool: {tool_call.name}")

        if allowed_names is not None and tool_call.name not in set(allowed_names):
            return self._error_result(tool_call, f"工具 {tool_call.name} 在本次对话中不可用")

        tool = self.get(tool_call.name)
        if tool is None:
            return self._error_result(tool_call, f"未知工具: {tool_call.name}")

        try:
            return await tool.run(tool_call)
        except Exception as e:
            logger.exception(f"Tool {tool_call.name} raised from run(): {e}")
            return self._error_result(tool_call, f"工具 {tool_call.name} 执行出错: {e}")

    async def close(self) -> None:
        """Close every external tool source and any tool holding a client."""
        for tool in self._tools.values():
            close = getattr(tool, "close", None)
            if close is not None:
                try:
                    await close()
                except Exception as e:
                    logger.warning(f"Error closing tool {tool.definition.name}: {e}")

        for source in self._sources:
            try:
                await source.close()
            except Exception as e:
                logger.warning(f"Error closing tool source {source!r}: {e}")

    @staticmethod
    def _error_result(tool_call: ToolCall, message: str) -> ToolResult:
        logger.warning(message)
        return ToolResult(
            tool_call_id=tool_call.id,
            name=tool_call.name,
            content=message,
            success=False,
        )
