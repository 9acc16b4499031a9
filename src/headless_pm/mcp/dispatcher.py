"""JSON-RPC 2.0 dispatcher for the MCP endpoint.

Routes ``initialize``, ``ping``, ``tools/list``, ``tools/call``,
``resources/list`` and ``resources/read`` to the tool and resource
catalogs. Requests without an ``id`` are notifications and produce no
response; batches are handled in order.

Example usage:
    >>> dispatcher = MCPDispatcher(context)
    >>> await dispatcher.handle({"jsonrpc": "2.0", "id": 1, "method": "ping"}, auth)
    {'jsonrpc': '2.0', 'id': 1, 'result': {}}
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import Any

from headless_pm.errors import HeadlessPMError, NotFoundError
from headless_pm.logging import get_logger
from headless_pm.mcp.protocol import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    JSONRPC_VERSION,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    JSONRPCError,
    initialize_result,
    success_response,
    text_content,
)
from headless_pm.mcp.resources import list_resources, read_resource
from headless_pm.mcp.tools import ToolContext, call_tool, list_tools
from headless_pm.web.auth import AuthContext

logger = get_logger(__name__)

Method = Callable[[ToolContext, dict[str, Any]], Awaitable[Any]]


class MCPDispatcher:
    """Answers JSON-RPC messages on behalf of one application.

    Attributes:
        context: Services shared by every call; the caller is bound per
            message.
    """

    def __init__(self, context: ToolContext) -> None:
        self.context = context
        self._methods: dict[str, Method] = {
            "initialize": self._initialize,
            "notifications/initialized": self._ping,
            "ping": self._ping,
            "tools/list": self._tools_list,
            "tools/call": self._tools_call,
            "resources/list": self._resources_list,
            "resources/read": self._resources_read,
        }
        self._logger = logger.bind(component="MCPDispatcher")

    async def handle_raw(self, body: bytes, auth: AuthContext) -> dict[str, Any] | list[Any] | None:
        """Parse a request body and dispatch it.

        Malformed JSON yields a -32700 error response.
        """
        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            self._logger.info("mcp_parse_error", size=len(body))
            return JSONRPCError(PARSE_ERROR, "Parse error").to_response(None)
        return await self.handle(payload, auth)

    async def handle(self, payload: Any, auth: AuthContext) -> dict[str, Any] | list[Any] | None:
        """Dispatch a decoded message or batch.

        Args:
            payload: A JSON-RPC request object or a list of them.
            auth: Caller of the HTTP request.

        Returns:
            The response object, a list of responses for a batch, or None
            when nothing needs answering.
        """
        if isinstance(payload, list):
            if not payload:
                return JSONRPCError(INVALID_REQUEST, "Invalid Request").to_response(None)
            responses = [await self._handle_one(message, auth) for message in payload]
            answered = [r for r in responses if r is not None]
            return answered or None
        return await self._handle_one(payload, auth)

    async def _handle_one(self, message: Any, auth: AuthContext) -> dict[str, Any] | None:
        if not isinstance(message, dict):
            return JSONRPCError(INVALID_REQUEST, "Invalid Request").to_response(None)

        request_id = message.get("id")
        method = message.get("method")
        if message.get("jsonrpc") != JSONRPC_VERSION or not isinstance(method, str):
            return JSONRPCError(INVALID_REQUEST, "Invalid Request").to_response(request_id)
        is_notification = "id" not in message

        params = message.get("params")
        if params is None:
            params = {}

        try:
            if not isinstance(params, dict):
                raise JSONRPCError(INVALID_PARAMS, "Invalid params")
            handler = self._methods.get(method)
            if handler is None:
                raise JSONRPCError(METHOD_NOT_FOUND, "Method not found")
            result = await handler(self.context.for_caller(auth), params)
            response = success_response(request_id, result)
        except JSONRPCError as e:
            self._logger.info("mcp_request_failed", method=method, code=e.code, error=e.message)
            response = e.to_response(request_id)
        except HeadlessPMError as e:
            self._logger.warning("mcp_request_failed", method=method, error=e.message)
            response = JSONRPCError(INTERNAL_ERROR, e.message).to_response(request_id)
        except Exception:
            self._logger.exception("mcp_request_error", method=method)
            response = JSONRPCError(INTERNAL_ERROR, "Internal error").to_response(request_id)

        return None if is_notification else response

    async def _initialize(self, context: ToolContext, params: dict[str, Any]) -> dict[str, Any]:
        self._logger.info("mcp_initialized", client=params.get("clientInfo"))
        return initialize_result()

    async def _ping(self, context: ToolContext, params: dict[str, Any]) -> dict[str, Any]:
        return {}

    async def _tools_list(self, context: ToolContext, params: dict[str, Any]) -> dict[str, Any]:
        return {"tools": list_tools()}

    async def _tools_call(self, context: ToolContext, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise JSONRPCError(INVALID_PARAMS, "Invalid params: name is required")
        try:
            result = await call_tool(context, name, params.get("arguments"))
        except HeadlessPMError as e:
            self._logger.info("mcp_tool_failed", tool=name, error=e.message)
            return text_content(e.message, is_error=True)
        return text_content(json.dumps(result))

    async def _resources_list(self, context: ToolContext, params: dict[str, Any]) -> dict[str, Any]:
        return {"resources": list_resources()}

    async def _resources_read(self, context: ToolContext, params: dict[str, Any]) -> dict[str, Any]:
        uri = params.get("uri")
        if not isinstance(uri, str) or not uri:
            raise JSONRPCError(INVALID_PARAMS, "Invalid params: uri is required")
        try:
            content = await read_resource(context, uri)
        except NotFoundError as e:
            raise JSONRPCError(INVALID_PARAMS, e.message) from None
        return {"contents": [content]}
