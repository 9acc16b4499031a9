"""JSON-RPC 2.0 message helpers for the MCP endpoint.

Example usage:
    >>> success_response(1, {"tools": []})
    {'jsonrpc': '2.0', 'id': 1, 'result': {'tools': []}}
    >>> JSONRPCError(METHOD_NOT_FOUND, "Method not found").to_response(7)["error"]["code"]
    -32601
"""

from __future__ import annotations

from typing import Any

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "Headless PM MCP Server"
SERVER_VERSION = "2.0.0"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class JSONRPCError(Exception):
    """A failure reported to the client as a JSON-RPC error object.

    Attributes:
        code: JSON-RPC error code.
        message: Short description.
        data: Optional structured detail.
    """

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error

    def to_response(self, request_id: Any) -> dict[str, Any]:
        return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": self.to_dict()}


def success_response(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def text_content(text: str, is_error: bool = False) -> dict[str, Any]:
    """Wrap text as an MCP tool result."""
    result: dict[str, Any] = {"content": [{"type": "text", "text": text}]}
    if is_error:
        result["isError"] = True
    return result


def initialize_result() -> dict[str, Any]:
    """Result of the ``initialize`` handshake."""
    return {
        "protocolVersion": PROTOCOL_VERSION,
        "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
        "capabilities": {
            "tools": {"listChanged": False},
            "resources": {"subscribe": False, "listChanged": False},
        },
    }
