"""
MCP Client for External Tools.

Connects to MCP servers over HTTP, discovers their tools and exposes each
one as a regular agent tool named <server>_<tool>. Tool results are
converted to text: images are saved under the uploads directory and
returned as Markdown image links.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import aiohttp

from ..domain.entities import ToolDefinition
from ..domain.ports import ITool, IToolSource
from ..errors import ToolError
from .base import BaseTool

logger = logging.getLogger(__name__)

_INVALID_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_DATA_URL = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)

MAX_BLOCK_CHARS = 2000
UPLOAD_URL_PREFIX = "/uploads/"


class MCPToolError(ToolError):
    """Error talking to an MCP server."""

    def __init__(self, message: str, tool_name: str, recoverable: bool = True, **kwargs):
        super().__init__(
            message,
            tool_name=tool_name,
            code="MCP_TOOL_ERROR",
            recoverable=recoverable,
            **kwargs,
        )


@dataclass
class MCPServerConfig:
    """Configuration for one MCP server.

    Attributes:
        name: Server name, used as the tool name prefix
        url: Base URL of the server's HTTP transport
        headers: Extra request headers (auth tokens)
        timeout: Request timeout in seconds
        max_retries: Attempts per call on connection errors and 429s
    """

    name: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float = 30.0
    max_retries: int = 3

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MCPServerConfig:
        return cls(
            name=str(data["name"]),
            url=str(data["url"]).rstrip("/"),
            headers={str(k): str(v) for k, v in (data.get("headers") or {}).items()},
            timeout=float(data.get("timeout", 30.0)),
        )


def sanitize_tool_name(name: str) -> str:
    """Replace characters model APIs reject in tool names."""
    return _INVALID_NAME_CHARS.sub("_", name)


def unique_tool_name(name: str, taken: set[str]) -> str:
    """Append _2, _3, ... until the name is unused."""
    if name not in taken:
        return name
    suffix = 2
    while f"{name}_{suffix}" in taken:
        suffix += 1
    return f"{name}_{suffix}"


def save_image(data: str, mime_type: str, upload_dir: Path) -> str:
    """Save a base64 image under the uploads directory.

    The file name is derived from the content hash, so saving the same
    image twice writes one file.

    Returns:
        The public /uploads/ URL of the file
    """
    raw = base64.b64decode(data)
    ext = "jpg" if ("jpeg" in mime_type or "jpg" in mime_type) else "png"
    filename = f"mcp-{hashlib.sha256(raw).hexdigest()[:16]}.{ext}"

    upload_dir.mkdir(parents=True, exist_ok=True)
    path = upload_dir / filename
    if not path.exists():
        path.write_bytes(raw)
    return f"{UPLOAD_URL_PREFIX}{filename}"


def _convert_block(block: Any, upload_dir: Path) -> str:
    if isinstance(block, str):
        return block
    if not isinstance(block, dict):
        return json.dumps(block, ensure_ascii=False, default=str)[:MAX_BLOCK_CHARS]

    block_type = block.get("type")

    if block_type == "text" and isinstance(block.get("text"), str):
        return block["text"]

    if block_type == "image":
        source = block.get("source") or {}
        data = source.get("data") or block.get("data") or ""
        mime = source.get("media_type") or block.get("mimeType") or "image/png"
        if not data:
            return "[图片保存失败]"
        try:
            return f"![截图]({save_image(data, mime, upload_dir)})"
        except (binascii.Error, ValueError, OSError) as e:
            logger.warning(f"Failed to save MCP image: {e}")
            return "[图片保存失败]"

    if block_type == "image_url":
        url = (block.get("image_url") or {}).get("url", "")
        match = _DATA_URL.match(url)
        if match:
            try:
                return f"![截图]({save_image(match.group(2), match.group(1), upload_dir)})"
            except (binascii.Error, ValueError, OSError) as e:
                logger.warning(f"Failed to save MCP image: {e}")
                return "[图片处理失败]"
        return f"![截图]({url})"

    if block_type == "resource":
        return f"[资源: {block.get('uri', '')}]"

    return json.dumps(block, ensure_ascii=False, default=str)[:MAX_BLOCK_CHARS]


def convert_content(content: Any, upload_dir: Path) -> str:
    """Convert an MCP tool result into text for the model."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [_convert_block(block, upload_dir) for block in content]
        return "\n".join(part for part in parts if part) or "[工具无文本输出]"
    return json.dumps(content, ensure_ascii=False, default=str)[:MAX_BLOCK_CHARS]


class MCPClient:
    """Client for one MCP server's HTTP transport.

    Usage:
        config = MCPServerConfig(name="browser", url="http://mcp-browser:8000")
        client = MCPClient(config)

        specs = await client.list_tools()
        content = await client.call_tool("screenshot", {"url": "https://example.com"})
    """

    def __init__(self, config: MCPServerConfig):
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the client session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def _get_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            **self.config.headers,
        }

    async def list_tools(self) -> list[dict[str, Any]]:
        """List raw tool specs ({name, description, inputSchema}).

        Raises:
            MCPToolError: If the server cannot be reached or refuses
        """
        session = await self._get_session()
        url = f"{self.config.url}/mcp/v1/tools/list"

        try:
            async with session.post(url, headers=self._get_headers(), json={}) as response:
                if response.status != 200:
                    text = await response.text()
                    raise MCPToolError(
                        f"Failed to list tools: {response.status} - {text[:200]}",
                        tool_name="list_tools",
                    )
                data = await response.json()
        except aiohttp.ClientError as e:
            raise MCPToolError(
                f"Failed to connect to MCP server {self.config.name}: {e}",
                tool_name="list_tools",
                cause=e,
            )

        return [spec for spec in data.get("tools", []) if spec.get("name")]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        """Execute a tool on the MCP server.

        Returns:
            The result's content blocks

        Raises:
            MCPToolError: On execution failure
        """
        session = await self._get_session()
        url = f"{self.config.url}/mcp/v1/tools/call"
        payload = {"name": name, "arguments": arguments}

        for attempt in range(self.config.max_retries):
            try:
                async with session.post(url, headers=self._get_headers(), json=payload) as response:
                    if response.status == 200:
                        data = await response.json()
                        if data.get("isError"):
                            message = "\n".join(
                                block.get("text", "")
                                for block in data.get("content", [])
                                if isinstance(block, dict)
                            )
                            raise MCPToolError(
                                message or f"Tool {name} reported an error",
                                tool_name=name,
                                recoverable=False,
                            )
                        return data.get("content", [])

                    if response.status == 404:
                        raise MCPToolError(
                            f"Tool not found: {name}",
                            tool_name=name,
                            recoverable=False,
                        )

                    if response.status == 429 and attempt < self.config.max_retries - 1:
                        wait_time = 2 ** attempt
                        logger.warning(f"Rate limited by {self.config.name}, retrying in {wait_time}s")
                        await asyncio.sleep(wait_time)
                        continue

                    text = await response.text()
                    raise MCPToolError(
                        f"Tool execution failed: {response.status} - {text[:200]}",
                        tool_name=name,
                    )

            except aiohttp.ClientError as e:
                if attempt < self.config.max_retries - 1:
                    wait_time = 2 ** attempt
                    logger.warning(f"Connection error, retrying in {wait_time}s: {e}")
                    await asyncio.sleep(wait_time)
                    continue

                raise MCPToolError(
                    f"Failed to connect to MCP server {self.config.name}: {e}",
                    tool_name=name,
                    cause=e,
                )

        raise MCPToolError(
            f"Tool execution failed after {self.config.max_retries} retries",
            tool_name=name,
        )


class MCPTool(BaseTool):
    """A remote MCP tool adapted to the agent tool interface.

    Arguments are forwarded as-is; the remote server validates them
    against its own schema.
    """

    def __init__(
        self,
        client: MCPClient,
        remote_name: str,
        exposed_name: str,
        description: str,
        input_schema: dict[str, Any],
        upload_dir: Path,
    ):
        self.client = client
        self.remote_name = remote_name
        self.name = exposed_name
        self.description = description
        self.input_schema = input_schema or {"type": "object", "properties": {}}
        self.upload_dir = upload_dir
        self.timeout_seconds = client.config.timeout * client.config.max_retries

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.input_schema,
            is_read_only=False,
            timeout_seconds=self.timeout_seconds,
        )

    def validate_arguments(self, arguments: Optional[dict[str, Any]]) -> dict[str, Any]:
        return dict(arguments or {})

    async def execute(self, params: dict[str, Any]) -> str:
        content = await self.client.call_tool(self.remote_name, params)
        return convert_content(content, self.upload_dir)


class MCPToolSource(IToolSource):
    """Tool source aggregating every configured MCP server.

    A server that cannot be reached is logged and skipped.
    """

    def __init__(self, servers: list[MCPServerConfig], upload_dir: str | Path = "public/uploads"):
        self.clients = [MCPClient(server) for server in servers]
        self.upload_dir = Path(upload_dir)

    @classmethod
    def from_settings(cls, raw_servers: list[dict[str, Any]], upload_dir: str | Path) -> MCPToolSource:
        servers = []
        for raw in raw_servers:
            try:
                servers.append(MCPServerConfig.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Ignoring invalid MCP server config {raw!r}: {e}")
        return cls(servers, upload_dir)

    async def list_tools(self) -> list[ITool]:
        tools: list[ITool] = []
        taken: set[str] = set()

        for client in self.clients:
            try:
                specs = await client.list_tools()
            except MCPToolError as e:
                logger.warning(f"Skipping MCP server {client.config.name}: {e}")
                continue

            prefix = sanitize_tool_name(client.config.name)
            for spec in specs:
                exposed = unique_tool_name(f"{prefix}_{sanitize_tool_name(spec['name'])}", taken)
                taken.add(exposed)
                tools.append(
                    MCPTool(
                        client=client,
                        remote_name=spec["name"],
                        exposed_name=exposed,
                        description=spec.get("description", ""),
                        input_schema=spec.get("inputSchema", {}),
                        upload_dir=self.upload_dir,
                    )
                )

            logger.info(f"Loaded {len(specs)} tools from MCP server {client.config.name}")

        return tools

    async def close(self) -> None:
        for client in self.clients:
            await client.close()
