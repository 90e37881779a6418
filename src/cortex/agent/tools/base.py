"""
Tool base types.

Every tool declares a name, a description that tells the model when to
use it, a pydantic parameter model (the input schema), and a timeout.
BaseTool.run() is the only entry point the orchestrator uses: it
validates the model's arguments, applies the timeout, and converts every
failure into descriptive text so the model can reason about it.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from pydantic import BaseModel, ValidationError

from ..domain.entities import SearchResult, ToolCall, ToolDefinition, ToolResult
from ..domain.ports import ITool
from ..errors import ToolError, ToolTimeoutError, ToolValidationError

logger = logging.getLogger(__name__)

TOOL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class ToolParams(BaseModel):
    """Base class for tool parameter models.

    Subclass with Field() definitions. The JSON schema offered to the
    model is generated with model_json_schema().
    """


class NoParams(ToolParams):
    """Parameter model for tools that take no input."""


@dataclass
class ToolOutput:
    """Text plus optional structured sources returned by a tool.

    Attributes:
        text: Rendering handed to the model
        sources: Structured records for the caller (never parsed from text)
    """

    text: str
    sources: list[SearchResult] = field(default_factory=list)


class BaseTool(ITool):
    """Abstract base for tool implementations.

    Example::

        class EchoParams(ToolParams):
            text: str = Field(description="Text to echo")

        class EchoTool(BaseTool):
            name = "echo"
            description = "Echo the input back"
            params_model = EchoParams

            async def execute(self, params: EchoParams) -> str:
                return params.text
    """

    name: str = ""
    description: str = ""
    params_model: type[ToolParams] = NoParams
    timeout_seconds: float = 30.0
    is_read_only: bool = True

    @property
    def definition(self) -> ToolDefinition:
        """Return the schema offered to the model."""
        schema = self.params_model.model_json_schema()
        schema.pop("title", None)
        schema.setdefault("properties", {})
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=schema,
            is_read_only=self.is_read_only,
            timeout_seconds=self.timeout_seconds,
        )

    @abstractmethod
    async def execute(self, params: Any) -> Union[str, ToolOutput]:
        """Execute with validated parameters.

        May raise; run() turns exceptions into text.
        """
        ...

    def validate_arguments(self, arguments: Optional[dict[str, Any]]) -> ToolParams:
        """Validate model-supplied arguments against the parameter model.

        Raises:
            ToolValidationError: If the arguments do not match the schema
        """
        try:
            return self.params_model(**(arguments or {}))
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
                for err in e.errors()
            )
            raise ToolValidationError(
                f"参数无效: {problems}",
                tool_name=self.name,
                cause=e,
            )

    async def run(self, tool_call: ToolCall) -> ToolResult:
        """Validate, execute with timeout, and never raise.

        Args:
            tool_call: Request from the model

        Returns:
            ToolResult whose content is always text
        """
        start = time.monotonic()
        success = True
        sources: list[SearchResult] = []

        try:
            params = self.validate_arguments(tool_call.arguments)
            try:
                output = await asyncio.wait_for(
                    self.execute(params), timeout=self.timeout_seconds
                )
            except asyncio.TimeoutError:
                raise ToolTimeoutError(
                    f"工具 {self.name} 执行超时（{self.timeout_seconds:g} 秒）",
                    timeout_seconds=self.timeout_seconds,
                    tool_name=self.name,
                )

            if isinstance(output, ToolOutput):
                text, sources = output.text, output.sources
            else:
                text = "" if output is None else str(output)

        except ToolError as e:
            logger.warning(f"Tool {self.name} failed: {e}")
            text, success = str(e), False
        except Exception as e:
            logger.exception(f"Unexpected error in tool {self.name}: {e}")
            text, success = f"工具 {self.name} 执行出错: {e}", False

        latency_ms = int((time.monotonic() - start) * 1000)
        logger.info(f"Tool {self.name} finished in {latency_ms}ms (success={success})")

        return ToolResult(
            tool_call_id=tool_call.id,
            name=self.name,
            content=text,
            success=success,
            sources=sources,
            latency_ms=latency_ms,
        )
