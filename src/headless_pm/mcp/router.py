"""HTTP surface of the MCP server.

``POST /mcp`` speaks JSON-RPC 2.0. The remaining routes mirror the
JSON-RPC methods as plain REST calls. Every route requires a valid token;
tool calls that mutate additionally require the ``write`` scope.

Example:
    >>> from fastapi import FastAPI
    >>> from headless_pm.mcp.router import create_mcp_router
    >>>
    >>> app = FastAPI()
    >>> app.include_router(create_mcp_router())
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi import status as http_status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from headless_pm.errors import HeadlessPMError
from headless_pm.logging import get_logger
from headless_pm.mcp.dispatcher import MCPDispatcher
from headless_pm.mcp.protocol import SERVER_NAME, SERVER_VERSION, JSONRPCError
from headless_pm.mcp.resources import list_resources, read_resource
from headless_pm.mcp.tools import TOOLS, call_tool, list_tools
from headless_pm.web.auth import AuthContext, authenticate, require_scopes

logger = get_logger(__name__)


class ToolCallRequest(BaseModel):
    name: str = Field(..., min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)


def get_mcp_dispatcher(request: Request) -> MCPDispatcher:
    return request.app.state.mcp_dispatcher


def create_mcp_router() -> APIRouter:
    """Create the MCP router.

    Routes:
        POST /mcp - JSON-RPC 2.0 endpoint
        GET /mcp - Server information
        GET /mcp/tools - Tool catalog
        POST /mcp/tools/call - Run one tool
        GET /mcp/resources - Resource catalog
        GET /mcp/resources/get?uri= - Read one resource
    """
    router = APIRouter(prefix="/mcp", tags=["mcp"])
    read = [Depends(require_scopes("read"))]

    @router.post("")
    async def jsonrpc(
        request: Request,
        auth: AuthContext = Depends(authenticate),  # noqa: B008
        dispatcher: MCPDispatcher = Depends(get_mcp_dispatcher),  # noqa: B008
    ) -> Response:
        """Answer a JSON-RPC request, batch or notification."""
        response = await dispatcher.handle_raw(await request.body(), auth)
        if response is None:
            return Response(status_code=http_status.HTTP_204_NO_CONTENT)
        return JSONResponse(response)

    @router.get("", dependencies=read)
    async def info() -> dict[str, Any]:
        return {
            "name": SERVER_NAME,
            "version": SERVER_VERSION,
            "description": "Project management tools for agents",
            "capabilities": {"tools": len(TOOLS), "resources": len(list_resources())},
        }

    @router.get("/tools", dependencies=read)
    async def tools() -> dict[str, Any]:
        return {"tools": list_tools()}

    @router.post("/tools/call")
    async def tools_call(
        body: ToolCallRequest,
        auth: AuthContext = Depends(authenticate),  # noqa: B008
        dispatcher: MCPDispatcher = Depends(get_mcp_dispatcher),  # noqa: B008
    ) -> Any:
        """Run one tool; failures answer 400 with ``{"error"}``."""
        try:
            result = await call_tool(dispatcher.context.for_caller(auth), body.name, body.arguments)
        except (JSONRPCError, HeadlessPMError) as e:
            logger.info("mcp_tool_failed", tool=body.name, error=e.message)
            return JSONResponse({"error": e.message}, status_code=http_status.HTTP_400_BAD_REQUEST)
        return {"result": result}

    @router.get("/resources", dependencies=read)
    async def resources() -> dict[str, Any]:
        return {"resources": list_resources()}

    @router.get("/resources/get")
    async def resource_get(
        uri: str = Query(..., min_length=1),
        auth: AuthContext = Depends(require_scopes("read")),  # noqa: B008
        dispatcher: MCPDispatcher = Depends(get_mcp_dispatcher),  # noqa: B008
    ) -> dict[str, Any]:
        """Read one resource; unknown URIs answer 404."""
        return await read_resource(dispatcher.context.for_caller(auth), uri)

    return router
