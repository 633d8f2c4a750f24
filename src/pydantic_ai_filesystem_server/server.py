"""MCP stdio server publishing the FileSystemToolset's tools.

Tool definitions and dispatch are shared with the PydanticAI toolset, so an
agent and an MCP client see the same tools with the same behaviour.

Example:
    toolset = FileSystemToolset.create_default("./project")
    asyncio.run(serve(toolset))
"""
from __future__ import annotations

import logging
from typing import Any

from mcp import types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server

from . import __version__
from .sandbox import SandboxError
from .toolset import FileSystemToolset

logger = logging.getLogger(__name__)

SERVER_NAME = "secure-filesystem-server"


class ToolCallError(Exception):
    """A failed tool call, reported to the client as an error result."""


def list_tools(toolset: FileSystemToolset) -> list[types.Tool]:
    """MCP tool listing for every tool the toolset provides."""
    return [
        types.Tool(
            name=tool_def.name,
            description=tool_def.description,
            inputSchema=tool_def.parameters_json_schema,
        )
        for tool_def in toolset.tool_definitions()
    ]


async def call_tool(
    toolset: FileSystemToolset, name: str, arguments: dict[str, Any] | None
) -> list[types.TextContent]:
    """Run one tool call and wrap its text result.

    Raises:
        ToolCallError: With text 'Error: <message>' for any sandbox,
            argument, unknown-tool or operating-system failure
    """
    try:
        text = await toolset.dispatch(name, arguments or {})
    except SandboxError as e:
        logger.info("Tool %s failed: %s", name, e.message)
        raise ToolCallError(f"Error: {e.message}") from e
    except ValueError as e:
        logger.info("Tool %s rejected: %s", name, e)
        raise ToolCallError(f"Error: {e}") from e
    except OSError as e:
        logger.warning("Tool %s failed: %s", name, e)
        raise ToolCallError(f"Error: {e}") from e
    return [types.TextContent(type="text", text=text)]


def create_server(toolset: FileSystemToolset) -> Server:
    """Build a low-level MCP server whose handlers delegate to the toolset."""
    server: Server = Server(SERVER_NAME, version=__version__)

    @server.list_tools()
    async def handle_list_tools() -> list[types.Tool]:
        return list_tools(toolset)

    @server.call_tool()
    async def handle_call_tool(
        name: str, arguments: dict[str, Any] | None
    ) -> list[types.TextContent]:
        return await call_tool(toolset, name, arguments)

    return server


async def serve(toolset: FileSystemToolset) -> None:
    """Serve the toolset over stdio until the client disconnects."""
    server = create_server(toolset)
    logger.info(
        "Secure MCP Filesystem Server running on stdio. Allowed directories: %s",
        ", ".join(toolset.sandbox.allowed_directories),
    )
    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options(),
        )
