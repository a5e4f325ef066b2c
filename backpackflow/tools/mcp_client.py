"""
MCP (Model Context Protocol) client management.

Connects to one or more MCP servers over stdio or SSE, discovers their
tools and executes tool calls for the tool agent.
"""

import time
from contextlib import AsyncExitStack
from typing import Any, Dict, List, Literal, Optional

from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from pydantic import BaseModel, Field, model_validator

from ..core.state import MCPTool, ToolRequest, ToolResult
from ..utils.logger import get_logger


logger = get_logger()


class ToolTransportError(Exception):
    """An MCP server could not be reached or misbehaved."""


class MCPServerConfig(BaseModel):
    """How to reach one MCP server."""
    name: str
    transport: Literal["stdio", "sse"] = "stdio"
    command: Optional[str] = None
    args: List[str] = Field(default_factory=list)
    env: Optional[Dict[str, str]] = None
    url: Optional[str] = None

    @model_validator(mode="after")
    def check_transport(self) -> "MCPServerConfig":
        if self.transport == "stdio" and not self.command:
            raise ValueError("stdio transport requires a command")
        if self.transport == "sse" and not self.url:
            raise ValueError("sse transport requires a url")
        return self


def content_to_python(content: List[Any]) -> Any:
    """Flatten MCP content blocks: text blocks become strings, others dicts."""
    values = []
    for block in content or []:
        text = getattr(block, "text", None)
        if text is not None:
            values.append(text)
        elif hasattr(block, "model_dump"):
            values.append(block.model_dump())
        else:
            values.append(block)
    if len(values) == 1:
        return values[0]
    return values


class MCPServerManager:
    """
    Owns the sessions of every connected MCP server.

    Use as an async context manager, or call ``close()`` when done.
    """

    def __init__(self):
        self._stack = AsyncExitStack()
        self._sessions: Dict[str, ClientSession] = {}
        self._configs: Dict[str, MCPServerConfig] = {}

    @property
    def server_ids(self) -> List[str]:
        return list(self._sessions)

    async def connect_to_server(self, config: MCPServerConfig, server_id: str) -> None:
        """
        Open a session to ``config`` and register it under ``server_id``.

        A failed connection closes whatever it had opened before raising.
        """
        if server_id in self._sessions:
            return

        async with AsyncExitStack() as connection:
            try:
                if config.transport == "stdio":
                    params = StdioServerParameters(
                        command=config.command,
                        args=config.args,
                        env=config.env,
                    )
                    read, write = await connection.enter_async_context(stdio_client(params))
                else:
                    read, write = await connection.enter_async_context(sse_client(config.url))

                session = await connection.enter_async_context(ClientSession(read, write))
                await session.initialize()
            except Exception as e:
                raise ToolTransportError(f"Failed to connect to MCP server {config.name}: {e}") from e

            self._stack.push_async_exit(connection.pop_all())

        self._sessions[server_id] = session
        self._configs[server_id] = config
        logger.with_node("MCP").info(f"Connected to MCP server: {server_id} ({config.name})")

    async def discover_tools(self) -> List[MCPTool]:
        """List the tools of every connected server."""
        tools = []
        for server_id, session in self._sessions.items():
            try:
                response = await session.list_tools()
            except Exception as e:
                raise ToolTransportError(f"Failed to list tools on {server_id}: {e}") from e

            for tool in response.tools:
                tools.append(MCPTool(
                    name=tool.name,
                    description=tool.description or "",
                    input_schema=tool.inputSchema or {"type": "object", "properties": {}},
                    server_id=server_id,
                ))

        logger.with_node("MCP").info(f"Discovered {len(tools)} tools on {len(self._sessions)} servers")
        return tools

    async def execute_tool(self, request: ToolRequest) -> ToolResult:
        """
        Call a tool.

        A tool that reports an error yields an unsuccessful ToolResult; an
        unknown server or a broken transport raises ToolTransportError.
        """
        session = self._sessions.get(request.server_id)
        if session is None:
            raise ToolTransportError(f"Not connected to MCP server {request.server_id!r}")

        started = time.monotonic()
        try:
            response = await session.call_tool(request.tool_name, request.arguments)
        except Exception as e:
            raise ToolTransportError(f"Tool call {request.tool_name} failed: {e}") from e
        elapsed = time.monotonic() - started

        content = content_to_python(response.content)
        if response.isError:
            return ToolResult(success=False, error=str(content), execution_time=elapsed)
        return ToolResult(success=True, content=content, execution_time=elapsed)

    async def close(self) -> None:
        """Close every session and transport."""
        await self._stack.aclose()
        self._sessions.clear()
        self._configs.clear()
        self._stack = AsyncExitStack()

    async def __aenter__(self) -> "MCPServerManager":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
