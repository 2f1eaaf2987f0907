"""MCP 协议服务端（JSON-RPC 2.0 over stdio）。"""

from __future__ import annotations

from local_agents.mcp.protocol import PROTOCOL_VERSION, CallToolResult, JsonRpcError
from local_agents.mcp.server import McpServer
from local_agents.mcp.transport import LineTransport

__all__ = ["PROTOCOL_VERSION", "CallToolResult", "JsonRpcError", "LineTransport", "McpServer"]
