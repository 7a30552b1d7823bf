"""mcplink - MCP client runtime with pluggable SSE, WebSocket and Streamable HTTP transports.

Usage:
    from mcplink import ConnectionRequest, McpClient

    client = McpClient()
    await client.initialize()
    await client.connect(ConnectionRequest(uri="ws://localhost:3006/message", type="websocket"))
    primitives = await client.get_primitives()
    result = await client.call_tool("echo", {"message": "hello"})
    await client.disconnect()
"""

from mcplink.client import ClientState, McpClient
from mcplink.compat import ClientContext
from mcplink.config import ClientConfig, load_config
from mcplink.core import (
    ConnectionFailedError,
    ConnectionRequest,
    ConnectionTimeoutError,
    EventEmitter,
    McpLinkError,
    NotConnectedError,
    PrimitivesResponse,
    TransportType,
    configure_logging,
    detect_transport_type,
)
from mcplink.mcp import MCPToolResult
from mcplink.plugin import PluginRegistry

__version__ = "0.1.0"

__all__ = [
    "ClientConfig",
    "ClientContext",
    "ClientState",
    "ConnectionFailedError",
    "ConnectionRequest",
    "ConnectionTimeoutError",
    "EventEmitter",
    "MCPToolResult",
    "McpClient",
    "McpLinkError",
    "NotConnectedError",
    "PluginRegistry",
    "PrimitivesResponse",
    "TransportType",
    "configure_logging",
    "detect_transport_type",
    "load_config",
]
