"""Model Context Protocol server for Headless PM.

Exposes the project management operations as MCP tools and read-only
resources over a JSON-RPC 2.0 HTTP endpoint.
"""

from __future__ import annotations

from headless_pm.mcp.dispatcher import MCPDispatcher
from headless_pm.mcp.protocol import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    PROTOCOL_VERSION,
    JSONRPCError,
)
from headless_pm.mcp.resources import list_resources, read_resource
from headless_pm.mcp.router import create_mcp_router
from headless_pm.mcp.tools import TOOLS, Tool, ToolContext, call_tool, list_tools

__all__ = [
    "INTERNAL_ERROR",
    "INVALID_PARAMS",
    "INVALID_REQUEST",
    "METHOD_NOT_FOUND",
    "PARSE_ERROR",
    "PROTOCOL_VERSION",
    "JSONRPCError",
    "MCPDispatcher",
    "TOOLS",
    "Tool",
    "ToolContext",
    "call_tool",
    "create_mcp_router",
    "list_resources",
    "list_tools",
    "read_resource",
]
