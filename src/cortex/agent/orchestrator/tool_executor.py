"""
Tool Executor.

Runs the tool calls of one model turn concurrently and hands the results
back in request order. Coordinates with ToolRegistry to route each call.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional

from ..domain.entities import ToolCall, ToolResult
from ..tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class ToolExecutor:
    """Executes tool calls with fan-out / fan-in.

    Each call runs in its own task. The caller awaits shielded views of
    those tasks, so if the consumer goes away (client disconnect cancels
    the stream) the tools still run to completion. Task references are
    held until each task finishes.

    Usage:
        executor = ToolExecutor(tool_registry)

        results = await executor.execute_tool_calls(
            tool_calls,
            allowed_names={"calculator", "get_current_time"},
        )
        # results[i] answers tool_calls[i]
    """

    def __init__(self, tool_registry: ToolRegistry):
        """Initialize the tool executor.

        Args:
            tool_registry: Registry for tool discovery and execution
        """
        self.tools = tool_registry
        self._in_flight: set[asyncio.Task] = set()

    async def execute_tool_call(
        self,
        tool_call: ToolCall,
        allowed_names: Optional[Iterable[str]] = None,
    ) -> ToolResult:
        """Execute one tool call. Never raises."""
        logger.info(f"Executing tool: {tool_call.name}")

        try:
            result = await self.tools.execute(tool_call, allowed_names)
        except Exception as e:
            logger.error(f"Tool execution failed: {e}")
            result = ToolResult(
                tool_call_id=tool_call.id,
                name=tool_call.name,
                content=f"工具 {tool_call.name} 执行出错: {e}",
                success=False,
            )

        logger.debug(f"Tool {tool_call.name} result: {result.content[:200]}")
        return result

    async def execute_tool_calls(
        self,
        tool_calls: list[ToolCall],
        allowed_names: Optional[Iterable[str]] = None,
    ) -> list[ToolResult]:
        """Execute every call of a turn concurrently.

        Args:
            tool_calls: Calls requested by the model, in request order
            allowed_names: Names offered for this request (None means all)

        Returns:
            One result per call, in request order
        """
        if not tool_calls:
            return []

        allowed = None if allowed_names is None else frozenset(allowed_names)

        tasks = []
        for tool_call in tool_calls:
            task = asyncio.create_task(
                self.execute_tool_call(tool_call, allowed),
                name=f"tool-{tool_call.name}-{tool_call.id}",
            )
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            tasks.append(task)

        return list(await asyncio.gather(*(asyncio.shield(task) for task in tasks)))

    @property
    def in_flight(self) -> int:
        """Number of tool tasks still running."""
        return len(self._in_flight)
